import io
import logging
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest
from botocore.exceptions import ClientError
from botocore.response import StreamingBody

LAST_MODIFIED = datetime(2023, 5, 17, 12, 0, tzinfo=timezone.utc)


def client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


def make_s3_client(objects: dict, page_size: int = 1000, fail_on_page: int | None = None) -> Mock:
    """
    Mock S3 client backed by {key: bytes}. Listing is split into pages of
    page_size; fail_on_page makes that page (0-based) raise a ClientError.
    """
    mock_s3 = Mock()
    keys = list(objects)

    def _paginate(Bucket, Prefix=""):
        matching = [k for k in keys if k.startswith(Prefix)]
        pages = [matching[i : i + page_size] for i in range(0, len(matching), page_size)] or [[]]
        for n, page in enumerate(pages):
            if fail_on_page is not None and n == fail_on_page:
                raise client_error("InternalError", "ListObjectsV2")
            yield {"Contents": [{"Key": k, "Size": len(objects[k])} for k in page]}

    paginator = Mock()
    paginator.paginate.side_effect = _paginate
    mock_s3.get_paginator.return_value = paginator

    def _get_object(Bucket, Key, **kwargs):
        if Key not in objects:
            raise client_error("NoSuchKey", "GetObject")
        data = objects[Key]
        return {
            "Body": StreamingBody(io.BytesIO(data), len(data)),
            "ContentLength": len(data),
            "LastModified": LAST_MODIFIED,
        }

    mock_s3.get_object.side_effect = _get_object
    mock_s3.head_bucket.return_value = {}
    return mock_s3


@pytest.fixture
def bucket_objects():
    return {
        "docs/a.txt": b"alpha",
        "docs/b.txt": b"bravo",
        "docs/_$folder$": b"",
        "images/c.png": b"\x89PNG",
    }


@pytest.fixture
def s3_client(bucket_objects):
    return make_s3_client(bucket_objects)


@pytest.fixture(autouse=True)
def _restore_root_logging():
    """The CLI reconfigures the root logger; put it back after each test."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def make_s3():
    return make_s3_client
