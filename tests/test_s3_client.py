"""Tests for the S3 client wrapper with a mocked boto3 client."""

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from app.core.errors import IncompletePartSet, InvalidKey, StoreUnavailable, UnknownUpload
from app.s3.client import S3Client, normalize_etag, normalize_parts


def client_error(code, operation="Operation"):
    return ClientError({"Error": {"Code": code, "Message": f"{code} happened"}}, operation)


@pytest.fixture
def s3():
    wrapper = S3Client()
    wrapper.client = MagicMock()
    return wrapper


class TestNormalization:
    @pytest.mark.parametrize("raw,expected", [
        ('"abc123"', "abc123"),
        ("'abc123'", "abc123"),
        ("abc123", "abc123"),
        (' "abc123" ', "abc123"),
    ])
    def test_normalize_etag(self, raw, expected):
        assert normalize_etag(raw) == expected

    def test_parts_sorted_ascending_and_unquoted(self):
        parts = normalize_parts([(3, '"c"'), (1, '"a"'), (2, "b")])
        assert parts == [
            {"PartNumber": 1, "ETag": "a"},
            {"PartNumber": 2, "ETag": "b"},
            {"PartNumber": 3, "ETag": "c"},
        ]

    def test_duplicate_part_numbers_keep_last_tag(self):
        parts = normalize_parts([(1, "old"), (2, "b"), (1, "new")])
        assert parts == [{"PartNumber": 1, "ETag": "new"}, {"PartNumber": 2, "ETag": "b"}]


@pytest.mark.asyncio
async def test_create_multipart_upload(s3):
    s3.client.create_multipart_upload.return_value = {"UploadId": "up-1"}

    upload_id = await s3.create_multipart_upload("uploads/u/report final.pdf", "application/pdf", "report final.pdf")

    assert upload_id == "up-1"
    kwargs = s3.client.create_multipart_upload.call_args.kwargs
    assert kwargs["Bucket"] == "vault-test"
    assert kwargs["ContentType"] == "application/pdf"
    assert kwargs["Metadata"] == {"original-name": "report%20final.pdf"}


@pytest.mark.asyncio
async def test_upload_part_returns_normalized_etag(s3):
    s3.client.upload_part.return_value = {"ETag": '"etag-1"'}

    etag = await s3.upload_part("k", "up-1", 1, b"data")

    assert etag == "etag-1"
    assert s3.client.upload_part.call_args.kwargs["PartNumber"] == 1


@pytest.mark.asyncio
async def test_complete_submits_sorted_parts(s3):
    s3.client.complete_multipart_upload.return_value = {"Location": "http://store/k"}

    location = await s3.complete_multipart_upload("k", "up-1", [(2, '"b"'), (1, '"a"')])

    assert location == "http://store/k"
    submitted = s3.client.complete_multipart_upload.call_args.kwargs["MultipartUpload"]["Parts"]
    assert [p["PartNumber"] for p in submitted] == [1, 2]
    assert [p["ETag"] for p in submitted] == ["a", "b"]


@pytest.mark.asyncio
async def test_complete_with_no_parts_is_rejected(s3):
    with pytest.raises(IncompletePartSet):
        await s3.complete_multipart_upload("k", "up-1", [])
    s3.client.complete_multipart_upload.assert_not_called()


@pytest.mark.asyncio
@pytest.mark.parametrize("code,error_type", [
    ("NoSuchUpload", UnknownUpload),
    ("InvalidPart", IncompletePartSet),
    ("InvalidPartOrder", IncompletePartSet),
    ("EntityTooSmall", IncompletePartSet),
    ("NoSuchBucket", InvalidKey),
    ("InternalError", StoreUnavailable),
    ("SlowDown", StoreUnavailable),
])
async def test_complete_error_mapping(s3, code, error_type):
    s3.client.complete_multipart_upload.side_effect = client_error(code, "CompleteMultipartUpload")

    with pytest.raises(error_type):
        await s3.complete_multipart_upload("k", "up-1", [(1, "a")])


@pytest.mark.asyncio
async def test_connection_failure_is_transient(s3):
    s3.client.upload_part.side_effect = EndpointConnectionError(endpoint_url="http://localhost:9000")

    with pytest.raises(StoreUnavailable):
        await s3.upload_part("k", "up-1", 1, b"x")


@pytest.mark.asyncio
async def test_abort_swallows_failures(s3):
    s3.client.abort_multipart_upload.side_effect = client_error("NoSuchUpload")

    assert await s3.abort_multipart_upload("k", "up-1") is False


@pytest.mark.asyncio
async def test_abort_success(s3):
    assert await s3.abort_multipart_upload("k", "up-1") is True
    s3.client.abort_multipart_upload.assert_called_once_with(Bucket="vault-test", Key="k", UploadId="up-1")


@pytest.mark.asyncio
@pytest.mark.parametrize("code", ["404", "NoSuchKey", "NotFound"])
async def test_object_exists_false_when_missing(s3, code):
    s3.client.head_object.side_effect = client_error(code, "HeadObject")
    assert await s3.object_exists("k") is False


@pytest.mark.asyncio
async def test_object_exists_true(s3):
    s3.client.head_object.return_value = {"ContentLength": 3}
    assert await s3.object_exists("k") is True


@pytest.mark.asyncio
async def test_object_exists_propagates_other_errors(s3):
    s3.client.head_object.side_effect = client_error("403", "HeadObject")
    with pytest.raises(StoreUnavailable):
        await s3.object_exists("k")


def test_presigned_url_sets_attachment_name(s3):
    s3.client.generate_presigned_url.return_value = "http://signed"

    url = s3.generate_presigned_url("k", expiration=600, filename="résumé.pdf")

    assert url == "http://signed"
    args, kwargs = s3.client.generate_presigned_url.call_args
    assert args[0] == "get_object"
    assert kwargs["ExpiresIn"] == 600
    assert "attachment" in kwargs["Params"]["ResponseContentDisposition"]
    assert "r%C3%A9sum%C3%A9.pdf" in kwargs["Params"]["ResponseContentDisposition"]
