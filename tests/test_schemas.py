"""Tests for the shared wire schemas."""

import pytest
from pydantic import ValidationError

from shared_schemas.common import MAX_BYTE_SIZE, ErrorKind, ErrorResponse
from shared_schemas.file_service import (
    CompleteUploadRequest,
    InitUploadResponse,
    RequestCodeRequest,
)


def _complete_payload(**overrides):
    payload = {
        "originalName": "video.mp4",
        "uploadId": "abc",
        "parts": [{"partNumber": 1, "etag": "e1"}],
        "size": "12582912",
        "contentType": "video/mp4",
        "key": "uploads/u/video.mp4",
    }
    payload.update(overrides)
    return payload


class TestByteSize:
    def test_accepts_decimal_string(self):
        request = CompleteUploadRequest.model_validate(_complete_payload(size="12582912"))
        assert request.size == 12582912

    def test_accepts_int(self):
        request = CompleteUploadRequest.model_validate(_complete_payload(size=42))
        assert request.size == 42

    def test_accepts_values_beyond_32_bits(self):
        big = 50 * 1024 ** 3
        request = CompleteUploadRequest.model_validate(_complete_payload(size=str(big)))
        assert request.size == big

    def test_serializes_as_string_in_json(self):
        request = CompleteUploadRequest.model_validate(_complete_payload(size=7))
        dumped = request.model_dump(mode="json", by_alias=True)
        assert dumped["size"] == "7"
        # Python mode keeps the integer
        assert request.model_dump()["size"] == 7

    @pytest.mark.parametrize("bad", ["-1", "1.5", "abc", "", True, 1.5, str(MAX_BYTE_SIZE + 1)])
    def test_rejects_invalid_sizes(self, bad):
        with pytest.raises(ValidationError):
            CompleteUploadRequest.model_validate(_complete_payload(size=bad))


class TestCompleteUploadRequest:
    def test_requires_parts(self):
        with pytest.raises(ValidationError):
            CompleteUploadRequest.model_validate(_complete_payload(parts=[]))

    @pytest.mark.parametrize("field", ["originalName", "uploadId", "contentType", "key", "size"])
    def test_requires_every_field(self, field):
        payload = _complete_payload()
        del payload[field]
        with pytest.raises(ValidationError):
            CompleteUploadRequest.model_validate(payload)

    def test_part_number_bounds(self):
        with pytest.raises(ValidationError):
            CompleteUploadRequest.model_validate(
                _complete_payload(parts=[{"partNumber": 10001, "etag": "x"}])
            )

    def test_accepts_snake_case_names(self):
        request = CompleteUploadRequest(
            original_name="a.txt",
            upload_id="u",
            parts=[{"part_number": 1, "etag": "e"}],
            size=1,
            content_type="text/plain",
            key="k",
        )
        assert request.parts[0].part_number == 1


def test_responses_use_camel_case():
    dumped = InitUploadResponse(upload_id="u1", key="k").model_dump(by_alias=True)
    assert dumped == {"uploadId": "u1", "key": "k"}


def test_email_is_normalized():
    assert RequestCodeRequest(email="  Alice@Corp.Example ").email == "alice@corp.example"


@pytest.mark.parametrize("email", ["alice", "alice@", "@corp.example", "alice@localhost"])
def test_invalid_email_rejected(email):
    with pytest.raises(ValidationError):
        RequestCodeRequest(email=email)


def test_error_response_defaults():
    error = ErrorResponse(detail="boom")
    assert error.success is False
    assert error.kind == ErrorKind.INTERNAL
