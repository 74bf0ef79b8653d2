# cli.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, List

import typer
import click

from .core import get_s3_client, get_iam_client, role_arn_from_name
from .download import execute
from .params import DownloadParameters, KEY_MANAGEMENT_CHOICES
from .utils import read_yaml, parse_s3_uri
from .errors import setup_logging, S3UtilsError

app = typer.Typer(add_completion=False, help="Download objects from an S3 bucket by glob pattern")

# ---------------- Settings kept in Typer context ----------------
@dataclass
class Settings:
    verbose: bool = False
    aws_profile: Optional[str] = None
    aws_region: Optional[str] = None

DEFAULT_CONFIG = "config/config.yaml"

# ---------------- Helpers ----------------
def _load_cfg(config_path: Optional[str]) -> dict:
    """
    Load YAML config if present, otherwise return {}.
    Never crash on missing/empty config.
    """
    path = config_path or DEFAULT_CONFIG
    try:
        cfg = read_yaml(path)
    except FileNotFoundError:
        return {}
    if not cfg:
        return {}
    return cfg

def _client_kwargs(cfg: dict, settings: Settings, region: Optional[str] = None) -> dict:
    """
    Resolve AWS auth/region with priority:
    CLI flags -> ENV (handled inside boto3) -> YAML.
    """
    aws = (cfg.get("aws") or {}) if cfg else {}
    return dict(
        aws_profile=settings.aws_profile or aws.get("profile"),
        aws_access_key_id=aws.get("access_key_id"),
        aws_secret_access_key=aws.get("secret_access_key"),
        region_name=settings.aws_region or region or aws.get("region"),
        retries_max_attempts=aws.get("retries_max_attempts", 8),
        retries_mode=aws.get("retries_mode", "standard"),
        connect_timeout=aws.get("connect_timeout", 10),
        read_timeout=aws.get("read_timeout", 60),
    )

def _pick(value: Any, section: dict, key: str) -> Any:
    """CLI value if given, else the YAML value (may be None)."""
    return value if value is not None else section.get(key)

# ---------------- Root options (global) ----------------
@app.callback()
def _root(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
    profile: Optional[str] = typer.Option(None, "--profile", help="AWS profile name"),
    region: Optional[str] = typer.Option(None, "--region", help="AWS region (e.g. us-east-1)"),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="Also write logs to this file"),
):
    """
    Set up global Settings and logging once.
    """
    level = logging.DEBUG if verbose else logging.INFO
    setup_logging(level=level, logfile=log_file)

    ctx.obj = Settings(
        verbose=verbose,
        aws_profile=profile,
        aws_region=region,
    )

# ---------------- DOWNLOAD ----------------
@app.command("download")
def cmd_download(
    ctx: typer.Context,
    source: Optional[str] = typer.Option(None, "--from", help="Source S3 URI (e.g. s3://bucket/prefix)"),
    to: Optional[str] = typer.Option(None, "--to", help="Local target folder"),
    globs: Optional[List[str]] = typer.Option(None, "--glob", "-g", help="Glob pattern, relative to the source prefix (repeatable)"),
    flatten: Optional[bool] = typer.Option(None, "--flatten/--no-flatten", help="Drop key folders, keep file names only"),
    overwrite: Optional[bool] = typer.Option(None, "--overwrite/--no-overwrite", help="Overwrite existing files"),
    key_management: Optional[str] = typer.Option(
        None,
        help="Server-side encryption key management",
        case_sensitive=False,
        click_type=click.Choice(list(KEY_MANAGEMENT_CHOICES), case_sensitive=False),
    ),
    customer_key: Optional[str] = typer.Option(None, "--customer-key", help="Hex encoded SSE-C key"),
    force_path_style: Optional[bool] = typer.Option(None, "--force-path-style/--no-force-path-style", help="Use path-style bucket addressing"),
    endpoint_url: Optional[str] = typer.Option(None, "--endpoint-url", help="Custom S3 endpoint"),
    max_workers: Optional[int] = typer.Option(None, help="Parallel downloads"),
    allow_partial_listing: Optional[bool] = typer.Option(
        None, "--allow-partial-listing/--no-allow-partial-listing",
        help="Continue with the keys listed so far if a listing page fails",
    ),
    log_request_data: Optional[bool] = typer.Option(None, "--log-request-data/--no-log-request-data", help="Log request paths and headers"),
    log_response_data: Optional[bool] = typer.Option(None, "--log-response-data/--no-log-response-data", help="Log response status and headers"),
    dry_run: Optional[bool] = typer.Option(None, "--dry-run/--no-dry-run", help="Plan only; do not download files"),
    progress: Optional[bool] = typer.Option(None, "--progress/--no-progress", help="Show progress bar"),
    preserve_mtime: Optional[bool] = typer.Option(None, "--preserve-mtime/--no-preserve-mtime", help="Set local mtime to S3 LastModified"),
    manifest: Optional[str] = typer.Option(None, "--manifest", help="Write CSV manifest of downloaded files"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
):
    log = logging.getLogger("s3_download.cli.download")
    cfg = _load_cfg(config)
    dcfg = (cfg.get("download") or {}) if cfg else {}

    # resolve values: CLI flag -> YAML -> defaults in DownloadParameters
    try:
        from_uri = _pick(source, dcfg, "from")
        if from_uri:
            bucket, prefix = parse_s3_uri(from_uri)
        else:
            bucket, prefix = dcfg.get("bucket"), dcfg.get("source_folder")
        if not bucket:
            raise ValueError("Provide --from or set download.from (or download.bucket) in config.yaml")
        params = DownloadParameters.from_mapping({
            "bucket": bucket,
            "source_prefix": prefix,
            "target_folder": _pick(to, dcfg, "to"),
            "globs": globs or dcfg.get("globs"),
            "flatten": _pick(flatten, dcfg, "flatten"),
            "overwrite": _pick(overwrite, dcfg, "overwrite"),
            "key_management": _pick(key_management, dcfg, "key_management"),
            "customer_key": _pick(customer_key, dcfg, "customer_key"),
            "region": dcfg.get("region"),
            "force_path_style": _pick(force_path_style, dcfg, "force_path_style"),
            "endpoint_url": _pick(endpoint_url, dcfg, "endpoint_url"),
            "max_workers": _pick(max_workers, dcfg, "max_workers"),
            "allow_partial_listing": _pick(allow_partial_listing, dcfg, "allow_partial_listing"),
            "log_request_data": _pick(log_request_data, dcfg, "log_request_data"),
            "log_response_data": _pick(log_response_data, dcfg, "log_response_data"),
            "dry_run": _pick(dry_run, dcfg, "dry_run"),
            "progress": _pick(progress, dcfg, "progress"),
            "preserve_mtime": _pick(preserve_mtime, dcfg, "preserve_mtime"),
            "manifest_path": _pick(manifest, dcfg, "manifest"),
        })
    except ValueError as e:
        raise typer.BadParameter(str(e))

    s3 = get_s3_client(
        **_client_kwargs(cfg, ctx.obj, region=params.region),
        force_path_style=params.force_path_style,
        endpoint_url=params.endpoint_url,
        log_request_data=params.log_request_data,
        log_response_data=params.log_response_data,
    )

    try:
        res = execute(s3, params)
    except S3UtilsError as e:
        log.error("%s", e)
        raise typer.Exit(code=1)

    stats = res["stats"]
    if params.dry_run:
        log.info("Planned: %d items (dry-run), Dest=%s", stats["total"], stats["target_folder"])
        for key, path in stats["planned"]:
            typer.echo(f"{key} -> {path}")
        return

    log.info(
        "Downloaded=%d Listed=%d Dest=%s Flatten=%s Overwrite=%s",
        stats["downloaded"],
        stats["listed"],
        stats["target_folder"],
        stats["flatten"],
        stats["overwrite"],
    )
    typer.echo(f"Downloaded: {stats['downloaded']} file(s) to {stats['target_folder']}")

# ---------------- ROLE ARN ----------------
@app.command("role-arn")
def cmd_role_arn(
    ctx: typer.Context,
    role: str = typer.Argument(..., help="IAM role name or ARN"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
):
    """Print the ARN of an IAM role (ARNs are echoed unchanged)."""
    cfg = _load_cfg(config)
    iam = None
    if not role.startswith("arn:"):
        iam = get_iam_client(**_client_kwargs(cfg, ctx.obj))
    try:
        typer.echo(role_arn_from_name(iam, role))
    except S3UtilsError as e:
        logging.getLogger("s3_download.cli.role_arn").error("%s", e)
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
