from __future__ import annotations
import logging
from typing import Any, Dict, Iterator, List, Optional
import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .errors import ListingError, IdentityResolutionError, log_and_reraise

log = logging.getLogger(__name__)

FOLDER_MARKER_SUFFIX = "_$folder$"

_REDACTED_HEADERS = {
    "authorization",
    "x-amz-security-token",
    "x-amz-server-side-encryption-customer-key",
    "x-amz-server-side-encryption-customer-key-md5",
}


def _redact(headers) -> Dict[str, str]:
    return {
        k: ("****" if k.lower() in _REDACTED_HEADERS else str(v))
        for k, v in (headers or {}).items()
    }


def attach_request_logging(
    client,
    log_request_data: bool = False,
    log_response_data: bool = False,
) -> None:
    """
    Log the request id of every call made by `client` at DEBUG level.
    Optionally dump request path/headers and response status/headers.
    """
    service = client.meta.service_model.endpoint_prefix

    def _before_send(request, **kwargs):
        if log_request_data:
            log.debug("---Request data---")
            log.debug("  %s %s", request.method, request.url)
            for k, v in _redact(request.headers).items():
                log.debug("    %s=%s", k, v)

    def _after_call(http_response, parsed, model, **kwargs):
        request_id = (parsed or {}).get("ResponseMetadata", {}).get("RequestId")
        log.debug("AWS %s request ID: %s", model.name, request_id)
        if log_response_data:
            log.debug("---Response data for request %s---", request_id)
            log.debug("  Status code: %s", http_response.status_code)
            for k, v in _redact(http_response.headers).items():
                log.debug("    %s=%s", k, v)

    client.meta.events.register(f"before-send.{service}", _before_send)
    client.meta.events.register(f"after-call.{service}", _after_call)


def get_client(
    service: str,
    aws_profile: Optional[str] = None,
    aws_access_key_id: Optional[str] = None,
    aws_secret_access_key: Optional[str] = None,
    region_name: Optional[str] = None,
    retries_max_attempts: int = 8,
    retries_mode: str = "standard",
    connect_timeout: int = 10,
    read_timeout: int = 60,
    force_path_style: bool = False,
    endpoint_url: Optional[str] = None,
    log_request_data: bool = False,
    log_response_data: bool = False,
):
    """
    Create a boto3 client with retries and timeouts applied.
    """
    cfg = Config(
        retries={"max_attempts": retries_max_attempts, "mode": retries_mode},
        connect_timeout=connect_timeout,
        read_timeout=read_timeout,
        s3={"addressing_style": "path" if force_path_style else "auto"},
    )
    if aws_profile:
        session = boto3.Session(profile_name=aws_profile, region_name=region_name)
    else:
        session = boto3.Session(
            aws_access_key_id=aws_access_key_id,
            aws_secret_access_key=aws_secret_access_key,
            region_name=region_name,
        )
    client = session.client(service, config=cfg, endpoint_url=endpoint_url)
    attach_request_logging(client, log_request_data, log_response_data)
    return client


def get_s3_client(**kwargs):
    return get_client("s3", **kwargs)


def get_iam_client(**kwargs):
    return get_client("iam", **kwargs)


def bucket_exists(s3_client, bucket: str) -> bool:
    """
    HEAD the bucket; any client or transport error counts as "does not exist".
    """
    try:
        s3_client.head_bucket(Bucket=bucket)
        return True
    except (ClientError, BotoCoreError) as e:
        log.debug("head_bucket(%s) failed: %s", bucket, e)
        return False


def is_placeholder(key: str, size: Optional[int] = None) -> bool:
    """Zero-byte folder markers left in buckets by IDE toolkits and the console."""
    if key.endswith(FOLDER_MARKER_SUFFIX):
        return True
    return key.endswith("/") and not size


def iter_key_pages(s3_client, bucket: str, prefix: Optional[str] = None) -> Iterator[List[Dict[str, Any]]]:
    """
    Yield the `Contents` of each list_objects_v2 page under prefix.
    The paginator follows continuation tokens until the listing is exhausted.
    """
    paginator = s3_client.get_paginator("list_objects_v2")
    for page in paginator.paginate(Bucket=bucket, Prefix=prefix or ""):
        yield page.get("Contents", []) or []


def list_all_keys(
    s3_client,
    bucket: str,
    prefix: Optional[str] = None,
    allow_partial: bool = False,
) -> List[str]:
    """
    Collect every key under prefix, skipping folder placeholders.

    A failing page request raises ListingError. With allow_partial=True the
    error is logged instead and the keys gathered so far are returned.
    """
    if prefix:
        log.info("Listing object keys under prefix %s in bucket %s", prefix, bucket)
    else:
        log.info("Listing object keys from the root of bucket %s", bucket)

    keys: List[str] = []
    try:
        for contents in iter_key_pages(s3_client, bucket, prefix=prefix):
            for obj in contents:
                key = obj.get("Key")
                if not key or is_placeholder(key, obj.get("Size")):
                    continue
                keys.append(key)
    except (ClientError, BotoCoreError) as e:
        if not allow_partial:
            raise ListingError(
                f"Listing objects in bucket {bucket} failed after {len(keys)} keys: {e}"
            ) from e
        log.error("Listing objects in bucket %s failed, continuing with %d keys: %s", bucket, len(keys), e)

    log.debug("Listed %d keys from bucket %s", len(keys), bucket)
    return keys


@log_and_reraise(IdentityResolutionError)
def role_arn_from_name(iam_client, role_name: str) -> str:
    """Resolve an IAM role name to its ARN; ARNs are returned unchanged."""
    if role_name.startswith("arn:"):
        return role_name
    log.info("Attempting to retrieve Amazon Resource Name (ARN) for role %s", role_name)
    resp = iam_client.get_role(RoleName=role_name)
    return resp["Role"]["Arn"]
