"""
S3 Client wrapper.
Handles multipart upload primitives, existence probes, deletes and presigned URLs.
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, Optional, TypeVar
from urllib.parse import quote

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from app.core.config import settings
from app.core.errors import (
    IncompletePartSet,
    InvalidKey,
    StoreUnavailable,
    UnknownUpload,
    VaultError,
)
from app.s3.config import (
    ETAG_QUOTE_CHARS,
    INCOMPLETE_PART_CODES,
    INVALID_KEY_CODES,
    MISSING_OBJECT_CODES,
    UNKNOWN_UPLOAD_CODES,
)

logger = logging.getLogger(__name__)

R = TypeVar("R")


def normalize_etag(etag: str) -> str:
    """Strip surrounding quote characters from an entity tag."""
    return etag.strip().strip(ETAG_QUOTE_CHARS)


def normalize_parts(parts: Iterable[tuple[int, str]]) -> list[dict]:
    """
    Build the part list accepted by CompleteMultipartUpload.

    Duplicate part numbers collapse to the last tag seen and the result is
    sorted ascending by part number.

    Args:
        parts: (part_number, etag) pairs in any order

    Returns:
        List of {"PartNumber", "ETag"} dicts
    """
    latest: dict[int, str] = {}
    for part_number, etag in parts:
        latest[int(part_number)] = normalize_etag(etag)
    return [
        {"PartNumber": number, "ETag": latest[number]}
        for number in sorted(latest)
    ]


def _error_code(e: ClientError) -> str:
    return str(e.response.get("Error", {}).get("Code", ""))


class S3Client:
    """Wrapper for S3-compatible object store operations."""

    def __init__(self):
        """Initialize S3 client from settings."""
        endpoint_url = settings.S3_ENDPOINT
        if not endpoint_url.startswith(('http://', 'https://')):
            endpoint_url = f"https://{endpoint_url}"

        self.client = boto3.client(
            's3',
            endpoint_url=endpoint_url,
            aws_access_key_id=settings.S3_ACCESS_KEY,
            aws_secret_access_key=settings.S3_SECRET_KEY,
            config=Config(signature_version='s3v4', s3={'addressing_style': 'path'}),
            region_name=settings.S3_REGION
        )

        self.endpoint_url = endpoint_url
        self.bucket = settings.S3_BUCKET

        # Bounded executor so blocking boto3 calls never run on the event loop
        self.executor = ThreadPoolExecutor(
            max_workers=settings.S3_MAX_WORKERS,
            thread_name_prefix="s3-io"
        )

        logger.info(f"S3 client initialized with endpoint: {endpoint_url}, bucket: {self.bucket}")

    async def _run(self, fn: Callable[[], R]) -> R:
        return await asyncio.get_event_loop().run_in_executor(self.executor, fn)

    def _translate(self, e: Exception, operation: str, key: str) -> VaultError:
        """Map a boto3 failure onto the error hierarchy."""
        if isinstance(e, ClientError):
            code = _error_code(e)
            message = e.response.get("Error", {}).get("Message", "") or code
            if code in UNKNOWN_UPLOAD_CODES:
                return UnknownUpload(f"Upload not found in store for {key}")
            if code in INCOMPLETE_PART_CODES:
                return IncompletePartSet(f"Store rejected part set for {key}: {message}")
            if code in INVALID_KEY_CODES:
                return InvalidKey(f"Store rejected key {key}: {message}")
            return StoreUnavailable(f"{operation} failed for {key}: {message}")
        return StoreUnavailable(f"{operation} failed for {key}: {e}")

    async def create_multipart_upload(
        self,
        key: str,
        content_type: str,
        original_name: Optional[str] = None
    ) -> str:
        """
        Start a multipart upload.

        Args:
            key: Object key
            content_type: MIME type stored on the final object
            original_name: Original filename, kept URL-encoded in object metadata

        Returns:
            Upload id issued by the store

        Raises:
            StoreUnavailable, InvalidKey
        """
        params = {
            "Bucket": self.bucket,
            "Key": key,
            "ContentType": content_type,
        }
        if original_name:
            params["Metadata"] = {"original-name": quote(original_name)}

        try:
            response = await self._run(lambda: self.client.create_multipart_upload(**params))
        except (ClientError, BotoCoreError) as e:
            logger.error(f"[CREATE MULTIPART] Failed: {self.bucket}/{key} :: {e}")
            raise self._translate(e, "CreateMultipartUpload", key) from e

        upload_id = response["UploadId"]
        logger.info(f"[CREATE MULTIPART] {self.bucket}/{key} upload_id={upload_id}")
        return upload_id

    async def upload_part(
        self,
        key: str,
        upload_id: str,
        part_number: int,
        body: bytes
    ) -> str:
        """
        Upload one part of a multipart upload.

        Args:
            key: Object key
            upload_id: Upload id from create_multipart_upload
            part_number: 1-based part number
            body: Part bytes

        Returns:
            Normalized entity tag of the stored part

        Raises:
            StoreUnavailable, UnknownUpload
        """
        try:
            response = await self._run(lambda: self.client.upload_part(
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
                PartNumber=part_number,
                Body=body
            ))
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"[UPLOAD PART] Failed: {key} part={part_number} :: {e}")
            raise self._translate(e, "UploadPart", key) from e

        etag = normalize_etag(response["ETag"])
        logger.debug(f"[UPLOAD PART] {key} part={part_number} size={len(body)} etag={etag}")
        return etag

    async def complete_multipart_upload(
        self,
        key: str,
        upload_id: str,
        parts: Iterable[tuple[int, str]]
    ) -> str:
        """
        Finalize a multipart upload.

        Args:
            key: Object key
            upload_id: Upload id
            parts: (part_number, etag) pairs, in any order

        Returns:
            Location of the finished object

        Raises:
            IncompletePartSet, StoreUnavailable, UnknownUpload
        """
        normalized = normalize_parts(parts)
        if not normalized:
            raise IncompletePartSet(f"No parts supplied for {key}")

        try:
            response = await self._run(lambda: self.client.complete_multipart_upload(
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={"Parts": normalized}
            ))
        except (ClientError, BotoCoreError) as e:
            logger.error(f"[COMPLETE MULTIPART] Failed: {self.bucket}/{key} :: {e}")
            raise self._translate(e, "CompleteMultipartUpload", key) from e

        location = response.get("Location") or f"{self.endpoint_url}/{self.bucket}/{key}"
        logger.info(f"[COMPLETE MULTIPART] {self.bucket}/{key} parts={len(normalized)}")
        return location

    async def abort_multipart_upload(self, key: str, upload_id: str) -> bool:
        """
        Abort a multipart upload. Best-effort: failures are logged, never raised.

        Returns:
            True if the store acknowledged the abort
        """
        try:
            await self._run(lambda: self.client.abort_multipart_upload(
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id
            ))
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"[ABORT MULTIPART] Ignored failure for {key} upload_id={upload_id}: {e}")
            return False

        logger.info(f"[ABORT MULTIPART] {self.bucket}/{key} upload_id={upload_id}")
        return True

    async def object_exists(self, key: str) -> bool:
        """
        Check if an object exists.

        Raises:
            StoreUnavailable: If the probe fails for any reason other than absence
        """
        try:
            await self._run(lambda: self.client.head_object(Bucket=self.bucket, Key=key))
            return True
        except ClientError as e:
            if _error_code(e) in MISSING_OBJECT_CODES:
                return False
            raise self._translate(e, "HeadObject", key) from e
        except BotoCoreError as e:
            raise self._translate(e, "HeadObject", key) from e

    async def delete_object(self, key: str) -> None:
        """
        Delete an object.

        Raises:
            StoreUnavailable: If deletion fails
        """
        try:
            await self._run(lambda: self.client.delete_object(Bucket=self.bucket, Key=key))
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to delete {self.bucket}/{key}: {e}")
            raise self._translate(e, "DeleteObject", key) from e

        logger.info(f"Deleted object: {self.bucket}/{key}")

    def generate_presigned_url(
        self,
        key: str,
        expiration: int = 3600,
        filename: Optional[str] = None
    ) -> str:
        """
        Generate a presigned GET URL for temporary access to an object.

        Args:
            key: Object key
            expiration: URL expiration time in seconds (default: 1 hour)
            filename: Name offered to the browser as an attachment

        Returns:
            Presigned URL string
        """
        params = {'Bucket': self.bucket, 'Key': key}
        if filename:
            params['ResponseContentDisposition'] = (
                f"attachment; filename*=UTF-8''{quote(filename)}"
            )

        try:
            url = self.client.generate_presigned_url(
                'get_object',
                Params=params,
                ExpiresIn=expiration
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to generate presigned URL for {self.bucket}/{key}: {e}")
            raise self._translate(e, "PresignGetObject", key) from e

        logger.info(f"Generated presigned URL for {self.bucket}/{key} (expires in {expiration}s)")
        return url

    def check_connection(self) -> None:
        """Probe the bucket; raises on failure."""
        self.client.head_bucket(Bucket=self.bucket)

    def ensure_bucket_exists(self) -> None:
        """
        Ensure the configured bucket exists, create if it doesn't.

        Raises:
            ClientError: If bucket creation fails
        """
        try:
            self.client.head_bucket(Bucket=self.bucket)
            logger.info(f"Bucket exists: {self.bucket}")
        except ClientError as e:
            if _error_code(e) in ('404', 'NoSuchBucket', 'NotFound'):
                self.client.create_bucket(Bucket=self.bucket)
                logger.info(f"Created bucket: {self.bucket}")
            else:
                logger.error(f"Error checking bucket {self.bucket}: {e}")
                raise


# Global S3 client instance
s3_client = S3Client()
