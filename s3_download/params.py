from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from .utils import parse_patterns

KEY_MANAGEMENT_NONE = "none"
KEY_MANAGEMENT_CUSTOMER = "customer-managed"
KEY_MANAGEMENT_CHOICES = (KEY_MANAGEMENT_NONE, KEY_MANAGEMENT_CUSTOMER)

AES256 = "AES256"
DEFAULT_GLOBS = ("**",)


@dataclass(frozen=True)
class EncryptionParams:
    """SSE-C settings handed to get_object as-is."""
    customer_key: bytes = field(repr=False)
    algorithm: str = AES256

    def request_kwargs(self) -> Dict[str, Any]:
        return {"SSECustomerAlgorithm": self.algorithm, "SSECustomerKey": self.customer_key}

    @classmethod
    def from_hex(cls, hex_key: str) -> "EncryptionParams":
        try:
            key = bytes.fromhex(hex_key.strip())
        except ValueError as e:
            raise ValueError("customer key must be hex encoded") from e
        if len(key) != 32:
            raise ValueError(f"customer key must be 256 bits, got {len(key) * 8}")
        return cls(customer_key=key)


@dataclass(frozen=True)
class DownloadParameters:
    bucket: str
    target_folder: Path
    source_prefix: Optional[str] = None
    globs: Tuple[str, ...] = DEFAULT_GLOBS
    flatten: bool = False
    overwrite: bool = False
    key_management: str = KEY_MANAGEMENT_NONE
    encryption: Optional[EncryptionParams] = None
    region: Optional[str] = None
    force_path_style: bool = False
    endpoint_url: Optional[str] = None
    max_workers: int = 8
    allow_partial_listing: bool = False
    log_request_data: bool = False
    log_response_data: bool = False
    dry_run: bool = False
    progress: bool = False
    preserve_mtime: bool = False
    manifest_path: Optional[Path] = None

    def __post_init__(self):
        if not self.bucket:
            raise ValueError("bucket is required")
        if not self.globs:
            raise ValueError("at least one glob pattern is required")
        if self.key_management not in KEY_MANAGEMENT_CHOICES:
            raise ValueError(f"key_management must be one of {', '.join(KEY_MANAGEMENT_CHOICES)}")
        if self.key_management == KEY_MANAGEMENT_CUSTOMER and self.encryption is None:
            raise ValueError("a customer key is required for customer-managed key management")
        if self.max_workers < 1:
            raise ValueError("max_workers must be >= 1")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "DownloadParameters":
        """
        Build parameters from a flat mapping (merged CLI flags and YAML).
        Unknown keys are ignored, None values fall back to defaults.
        """
        d = {k: v for k, v in data.items() if v is not None}
        key_management = str(d.get("key_management", KEY_MANAGEMENT_NONE)).lower()
        encryption = None
        if key_management == KEY_MANAGEMENT_CUSTOMER and d.get("customer_key"):
            encryption = EncryptionParams.from_hex(str(d["customer_key"]))

        globs = parse_patterns(d.get("globs")) or list(DEFAULT_GLOBS)
        manifest = d.get("manifest_path")
        return cls(
            bucket=str(d.get("bucket", "")),
            target_folder=Path(d.get("target_folder", "./downloads")),
            source_prefix=d.get("source_prefix") or None,
            globs=tuple(globs),
            flatten=bool(d.get("flatten", False)),
            overwrite=bool(d.get("overwrite", False)),
            key_management=key_management,
            encryption=encryption,
            region=d.get("region"),
            force_path_style=bool(d.get("force_path_style", False)),
            endpoint_url=d.get("endpoint_url"),
            max_workers=int(d.get("max_workers", 8)),
            allow_partial_listing=bool(d.get("allow_partial_listing", False)),
            log_request_data=bool(d.get("log_request_data", False)),
            log_response_data=bool(d.get("log_response_data", False)),
            dry_run=bool(d.get("dry_run", False)),
            progress=bool(d.get("progress", False)),
            preserve_mtime=bool(d.get("preserve_mtime", False)),
            manifest_path=Path(manifest) if manifest else None,
        )
