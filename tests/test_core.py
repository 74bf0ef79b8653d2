import logging
from types import SimpleNamespace
from unittest.mock import Mock, patch

import pytest
from botocore.exceptions import ClientError

from s3_download import core
from s3_download.errors import IdentityResolutionError, ListingError

SESSION_PATCH_TARGET = "s3_download.core.boto3.Session"


class TestListAllKeys:
    def test_folder_markers_are_excluded(self, s3_client):
        keys = core.list_all_keys(s3_client, "bucket")
        assert keys == ["docs/a.txt", "docs/b.txt", "images/c.png"]

    def test_zero_byte_directory_placeholders_are_excluded(self, make_s3):
        s3 = make_s3({"dir/": b"", "dir/file": b"x", "weird/": b"not empty"})
        assert core.list_all_keys(s3, "bucket") == ["dir/file", "weird/"]

    def test_all_pages_are_accumulated(self, make_s3):
        objects = {f"logs/{i:03d}.log": b"x" for i in range(7)}
        s3 = make_s3(objects, page_size=2)
        assert core.list_all_keys(s3, "bucket", prefix="logs") == sorted(objects)

    def test_prefix_is_passed_to_listing(self, s3_client):
        core.list_all_keys(s3_client, "bucket", prefix="docs")
        s3_client.get_paginator.assert_called_once_with("list_objects_v2")
        s3_client.get_paginator.return_value.paginate.assert_called_once_with(Bucket="bucket", Prefix="docs")

    def test_page_failure_raises_by_default(self, make_s3):
        objects = {f"k{i}": b"x" for i in range(6)}
        s3 = make_s3(objects, page_size=2, fail_on_page=1)
        with pytest.raises(ListingError, match="after 2 keys") as exc:
            core.list_all_keys(s3, "bucket")
        assert isinstance(exc.value.__cause__, ClientError)

    def test_page_failure_returns_partial_keys_when_allowed(self, make_s3, caplog):
        objects = {f"k{i}": b"x" for i in range(6)}
        s3 = make_s3(objects, page_size=2, fail_on_page=1)
        with caplog.at_level(logging.ERROR, logger="s3_download.core"):
            keys = core.list_all_keys(s3, "bucket", allow_partial=True)
        assert keys == ["k0", "k1"]
        assert "continuing with 2 keys" in caplog.text


def test_bucket_exists():
    s3 = Mock()
    assert core.bucket_exists(s3, "bucket") is True
    s3.head_bucket.side_effect = ClientError({"Error": {"Code": "404"}}, "HeadBucket")
    assert core.bucket_exists(s3, "bucket") is False


class TestRoleArnFromName:
    def test_arn_passes_through(self):
        iam = Mock()
        arn = "arn:aws:iam::123456789012:role/deploy"
        assert core.role_arn_from_name(iam, arn) == arn
        iam.get_role.assert_not_called()

    def test_name_is_resolved(self):
        iam = Mock()
        iam.get_role.return_value = {"Role": {"Arn": "arn:aws:iam::1:role/deploy"}}
        assert core.role_arn_from_name(iam, "deploy") == "arn:aws:iam::1:role/deploy"
        iam.get_role.assert_called_once_with(RoleName="deploy")

    def test_lookup_failure(self):
        iam = Mock()
        iam.get_role.side_effect = ClientError({"Error": {"Code": "NoSuchEntity"}}, "GetRole")
        with pytest.raises(IdentityResolutionError, match="role_arn_from_name failed"):
            core.role_arn_from_name(iam, "missing")


class TestGetClient:
    @patch(SESSION_PATCH_TARGET)
    def test_path_style_and_endpoint(self, mock_session):
        client = mock_session.return_value.client.return_value
        client.meta.service_model.endpoint_prefix = "s3"

        core.get_s3_client(region_name="eu-west-1", force_path_style=True, endpoint_url="http://localhost:9000")

        mock_session.assert_called_once_with(aws_access_key_id=None, aws_secret_access_key=None, region_name="eu-west-1")
        args, kwargs = mock_session.return_value.client.call_args
        assert args == ("s3",)
        assert kwargs["endpoint_url"] == "http://localhost:9000"
        assert kwargs["config"].s3 == {"addressing_style": "path"}

    @patch(SESSION_PATCH_TARGET)
    def test_profile_session(self, mock_session):
        core.get_s3_client(aws_profile="ci", region_name="us-east-1")
        mock_session.assert_called_once_with(profile_name="ci", region_name="us-east-1")


class TestRequestLogging:
    def _handlers(self, **kwargs):
        client = Mock()
        client.meta.service_model.endpoint_prefix = "s3"
        core.attach_request_logging(client, **kwargs)
        return {call.args[0]: call.args[1] for call in client.meta.events.register.call_args_list}

    def test_request_id_logged(self, caplog):
        handlers = self._handlers()
        assert set(handlers) == {"before-send.s3", "after-call.s3"}
        with caplog.at_level(logging.DEBUG, logger="s3_download.core"):
            handlers["after-call.s3"](
                http_response=SimpleNamespace(status_code=200, headers={}),
                parsed={"ResponseMetadata": {"RequestId": "REQ123"}},
                model=SimpleNamespace(name="GetObject"),
            )
        assert "AWS GetObject request ID: REQ123" in caplog.text
        assert "Status code" not in caplog.text

    def test_sse_key_headers_redacted(self, caplog):
        handlers = self._handlers(log_request_data=True, log_response_data=True)
        headers = {"x-amz-server-side-encryption-customer-key": "c2VjcmV0", "Content-Type": "text/plain"}
        with caplog.at_level(logging.DEBUG, logger="s3_download.core"):
            handlers["before-send.s3"](request=SimpleNamespace(method="GET", url="https://b.s3/k", headers=headers))
            handlers["after-call.s3"](
                http_response=SimpleNamespace(status_code=200, headers=headers),
                parsed={"ResponseMetadata": {"RequestId": "REQ9"}},
                model=SimpleNamespace(name="GetObject"),
            )
        assert "c2VjcmV0" not in caplog.text
        assert "Content-Type=text/plain" in caplog.text
        assert "Status code: 200" in caplog.text
