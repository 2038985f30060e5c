"""
HTTP client for the upload lifecycle API.
"""

import io
import logging
from typing import Callable, List, Optional

import httpx

from shared_schemas.common import ErrorKind
from shared_schemas.file_service import (
    AbortUploadRequest,
    CompletedPart,
    CompleteUploadRequest,
    CompleteUploadResponse,
    FileRecord,
    InitUploadRequest,
    InitUploadResponse,
    UploadPartResponse,
)

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Error returned by the service (or raised by the network)."""

    def __init__(self, status_code: int, kind: ErrorKind, detail: str, code: Optional[str] = None):
        super().__init__(detail)
        self.status_code = status_code
        self.kind = kind
        self.detail = detail
        self.code = code

    @property
    def is_transient(self) -> bool:
        """Worth retrying with the same part number."""
        return self.kind == ErrorKind.TRANSIENT

    def __str__(self) -> str:
        return f"{self.detail} ({self.code or self.kind.value}, HTTP {self.status_code})"


class RateLimitedError(ApiError):
    """HTTP 429; `reset` is the number of seconds to wait."""

    def __init__(self, detail: str, reset: int):
        super().__init__(429, ErrorKind.RATE_LIMITED, detail, "rate_limited")
        self.reset = reset


class ProgressReader(io.BytesIO):
    """BytesIO reporting how many bytes the HTTP stack has consumed."""

    def __init__(self, data: bytes, callback: Optional[Callable[[int], None]] = None):
        super().__init__(data)
        self._callback = callback

    def read(self, size: Optional[int] = -1) -> bytes:
        chunk = super().read(size)
        if chunk and self._callback:
            self._callback(len(chunk))
        return chunk


def _raise_for_error(response: httpx.Response):
    if response.is_success:
        return

    try:
        body = response.json()
    except ValueError:
        body = {}

    detail = body.get("detail") or response.reason_phrase or "Request failed"
    if not isinstance(detail, str):
        detail = str(detail)

    if response.status_code == 429:
        reset = body.get("reset") or response.headers.get("X-RateLimit-Reset") or 1
        raise RateLimitedError(detail, int(reset))

    try:
        kind = ErrorKind(body.get("kind"))
    except ValueError:
        kind = ErrorKind.TRANSIENT if response.status_code >= 500 else ErrorKind.CLIENT_INPUT
    raise ApiError(response.status_code, kind, detail, body.get("error_code"))


class UploadApiClient:
    """
    Async client for init / upload-part / complete / abort.

    Usage:
        async with UploadApiClient("https://vault.example.com", token) as api:
            started = await api.init_upload("report.pdf", "application/pdf")
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 300.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self.client.headers["Authorization"] = f"Bearer {token}"

    async def __aenter__(self) -> "UploadApiClient":
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self):
        if self._owns_client:
            await self.client.aclose()

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise ApiError(0, ErrorKind.TRANSIENT, f"Network error: {e}", "network_error") from e
        _raise_for_error(response)
        return response

    async def init_upload(self, original_name: str, content_type: str) -> InitUploadResponse:
        payload = InitUploadRequest(original_name=original_name, content_type=content_type)
        response = await self._send(
            "POST", "/api/files/init-multipart",
            json=payload.model_dump(mode="json", by_alias=True)
        )
        return InitUploadResponse.model_validate(response.json())

    async def upload_part(
        self,
        upload_id: str,
        key: str,
        part_number: int,
        data: bytes,
        on_bytes_sent: Optional[Callable[[int], None]] = None
    ) -> str:
        """
        Upload one part.

        Returns:
            Entity tag of the stored part
        """
        response = await self._send(
            "POST", "/api/files/upload-multipart",
            data={"uploadId": upload_id, "key": key, "partNumber": str(part_number)},
            files={"file": (f"part-{part_number}", ProgressReader(data, on_bytes_sent), "application/octet-stream")},
        )
        return UploadPartResponse.model_validate(response.json()).etag

    async def complete_upload(
        self,
        upload_id: str,
        key: str,
        original_name: str,
        content_type: str,
        size: int,
        parts: List[CompletedPart]
    ) -> FileRecord:
        payload = CompleteUploadRequest(
            original_name=original_name,
            upload_id=upload_id,
            parts=sorted(parts, key=lambda p: p.part_number),
            size=size,
            content_type=content_type,
            key=key,
        )
        response = await self._send(
            "POST", "/api/files/complete-multipart",
            json=payload.model_dump(mode="json", by_alias=True)
        )
        return CompleteUploadResponse.model_validate(response.json()).file

    async def abort_upload(self, upload_id: str, key: str) -> None:
        payload = AbortUploadRequest(upload_id=upload_id, key=key)
        await self._send(
            "POST", "/api/files/abort-multipart",
            json=payload.model_dump(mode="json", by_alias=True)
        )
