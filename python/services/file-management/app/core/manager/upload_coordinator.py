"""
Upload Coordinator - Drives the multipart upload lifecycle.

init -> upload_part* -> complete | abort

The coordinator owns key derivation, validates requests before any store call,
and persists the File and UploadHistory records once the store has assembled
the object. If the record step fails after the store committed, the session
keeps `store_committed` so a retried complete resumes at the record step.
"""

import logging
import os
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import Principal
from app.core.errors import (
    IncompletePartSet,
    InvalidRequest,
    ReconciliationError,
    SessionExpired,
    StoreUnavailable,
    UnknownUpload,
    UploadInitFailed,
)
from app.core.manager.session_registry import UploadSessionRegistry, session_registry
from app.models.file_record import File
from app.models.upload_history import UploadHistory
from app.models.upload_session import PartRecord, UploadSession
from app.models.user import User
from app.s3.client import S3Client, s3_client
from app.s3.config import MAX_PART_NUMBER, MAX_PART_SIZE
from shared_schemas.file_service import CompleteUploadRequest, UploadStatus

logger = logging.getLogger(__name__)

# Upper bound on "(n)" suffixes tried before giving up on a name
MAX_KEY_SUFFIX = 10000


def sanitize_filename(name: str) -> str:
    """
    Reduce a client-supplied name to a bare filename.

    Raises:
        InvalidRequest: If nothing usable remains
    """
    base = (name or "").replace("\\", "/").split("/")[-1].strip()
    if not base or base in (".", ".."):
        raise InvalidRequest("originalName must be a file name")
    return base


def user_prefix(owner_id) -> str:
    return f"uploads/{owner_id}/"


def suffixed_name(name: str, counter: int) -> str:
    """Insert "(counter)" before the extension: report.pdf -> report(1).pdf."""
    if counter == 0:
        return name
    stem, ext = os.path.splitext(name)
    return f"{stem}({counter}){ext}"


class UploadCoordinator:
    """Implements init, upload-part, complete and abort."""

    def __init__(self, store: S3Client, registry: UploadSessionRegistry):
        self.store = store
        self.registry = registry

    async def resolve_unique_key(self, owner_id, filename: str) -> str:
        """
        Pick the first free key among name, name(1), name(2), ... and reserve it.

        A key is taken if the object already exists or an open session holds it.

        Raises:
            StoreUnavailable: If the existence probe fails
            InvalidRequest: If every suffix is taken
        """
        prefix = user_prefix(owner_id)
        for counter in range(MAX_KEY_SUFFIX):
            candidate = prefix + suffixed_name(filename, counter)
            if self.registry.is_key_reserved(candidate):
                continue
            if await self.store.object_exists(candidate):
                continue
            if await self.registry.try_reserve_key(candidate):
                return candidate

        raise InvalidRequest(f"Too many files named {filename}")

    async def init_upload(
        self,
        owner: Principal,
        original_name: str,
        content_type: str
    ) -> UploadSession:
        """
        Start a multipart upload under a collision-free key.

        Raises:
            InvalidRequest, InvalidKey, UploadInitFailed
        """
        if not content_type or not content_type.strip():
            raise InvalidRequest("contentType is required")
        filename = sanitize_filename(original_name)

        key = await self.resolve_unique_key(owner.id, filename)

        try:
            upload_id = await self.store.create_multipart_upload(key, content_type, filename)
        except StoreUnavailable as e:
            await self.registry.release_key(key)
            raise UploadInitFailed(f"Failed to start upload: {e.detail}") from e
        except Exception:
            await self.registry.release_key(key)
            raise

        session = UploadSession.create(
            upload_id=upload_id,
            key=key,
            owner_id=owner.id,
            original_name=filename,
            content_type=content_type,
        )
        await self.registry.register(session)

        logger.info(f"[INIT UPLOAD] {key} upload_id={upload_id} owner={owner.id}")
        return session

    async def upload_part(
        self,
        owner: Principal,
        upload_id: str,
        key: str,
        part_number: int,
        body: bytes
    ) -> PartRecord:
        """
        Forward one part to the store and record its tag.

        Re-uploading a part number replaces the previous tag.

        Raises:
            InvalidRequest, UnknownUpload, NotSessionOwner, SessionConflict, StoreUnavailable
        """
        if not 1 <= part_number <= MAX_PART_NUMBER:
            raise InvalidRequest(f"partNumber must be between 1 and {MAX_PART_NUMBER}")
        if len(body) > MAX_PART_SIZE:
            raise InvalidRequest(f"Part exceeds {MAX_PART_SIZE} bytes")

        session = await self.registry.begin_part(upload_id, key, owner.id)

        etag = await self.store.upload_part(key, upload_id, part_number, body)
        await self.registry.record_part(session, part_number, len(body), etag)

        logger.info(f"[UPLOAD PART] {key} part={part_number} size={len(body)}")
        return session.parts[part_number]

    async def complete_upload(
        self,
        db: AsyncSession,
        owner: Principal,
        request: CompleteUploadRequest
    ) -> File:
        """
        Assemble the object and persist File + UploadHistory(SUCCESS) atomically.

        Raises:
            SessionExpired: If the owner no longer exists
            IncompletePartSet, SessionConflict, StoreUnavailable: Store assembly failed
            ReconciliationError: Object stored but records could not be written
        """
        session = await self.registry.get_owned(request.upload_id, request.key, owner.id)

        if await db.get(User, owner.id) is None:
            raise SessionExpired("Session expired")

        session = await self.registry.begin_complete(request.upload_id, request.key, owner.id)

        try:
            file, part_count = await self._assemble_and_record(db, owner, session, request)
        except BaseException:
            await self.registry.fail_complete(session)
            raise

        await self.registry.finish_complete(session)
        logger.info(f"[COMPLETE UPLOAD] {session.key} size={request.size} parts={part_count}")
        return file

    async def _assemble_and_record(
        self,
        db: AsyncSession,
        owner: Principal,
        session: UploadSession,
        request: CompleteUploadRequest
    ) -> tuple[File, int]:
        """Run the store and record steps of a COMPLETING session."""
        parts = self._select_parts(session, request)

        if not session.store_committed:
            try:
                await self.store.complete_multipart_upload(
                    session.key,
                    session.upload_id,
                    [(p.part_number, p.etag) for p in parts]
                )
            except Exception:
                await self._record_failure(db, owner, request.size)
                raise
            session.store_committed = True
        else:
            logger.info(f"[COMPLETE UPLOAD] Resuming record step for {session.key}")

        try:
            file = File(
                name=session.original_name,
                size=request.size,
                type=session.content_type,
                path=session.key,
                user_id=owner.id,
            )
            db.add(file)
            await db.flush()
            db.add(UploadHistory(
                file_id=file.id,
                user_id=owner.id,
                size=request.size,
                status=UploadStatus.SUCCESS,
            ))
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(
                f"[COMPLETE UPLOAD] Object stored but record failed: "
                f"key={session.key} upload_id={session.upload_id} :: {e}"
            )
            raise ReconciliationError(
                f"File stored at {session.key} but could not be recorded; retry completion"
            ) from e

        return file, len(parts)

    def _select_parts(self, session: UploadSession, request: CompleteUploadRequest) -> list[PartRecord]:
        """
        Resolve the submitted part numbers against the recorded inventory.

        The recorded tag wins over the submitted one, and the declared size
        must equal the sum of the selected parts.
        """
        numbers = sorted({p.part_number for p in request.parts})
        missing = [n for n in numbers if n not in session.parts]
        if missing:
            raise IncompletePartSet(f"Parts never uploaded: {missing[:10]}")

        parts = [session.parts[n] for n in numbers]
        total = sum(p.size for p in parts)
        if total != request.size:
            raise InvalidRequest(f"Declared size {request.size} does not match uploaded bytes {total}")
        return parts

    async def _record_failure(self, db: AsyncSession, owner: Principal, size: int):
        """Write an ERROR history row. Best-effort."""
        try:
            db.add(UploadHistory(
                file_id=None,
                user_id=owner.id,
                size=size,
                status=UploadStatus.ERROR,
            ))
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.warning(f"[COMPLETE UPLOAD] Could not record failed attempt: {e}")

    async def abort_upload(self, owner: Principal, upload_id: str, key: str) -> None:
        """
        Abort an upload. Store cleanup is best-effort.

        An unknown upload id under the caller's own prefix is still aborted at
        the store, which cleans up sessions lost across a restart.

        Raises:
            UnknownUpload, NotSessionOwner, SessionConflict
        """
        existing: Optional[UploadSession] = await self.registry.get_session(upload_id)
        if existing is None:
            if key.startswith(user_prefix(owner.id)):
                logger.info(f"[ABORT UPLOAD] Untracked upload {upload_id}, aborting at store")
                await self.store.abort_multipart_upload(key, upload_id)
                return
            raise UnknownUpload(f"Upload {upload_id} not found")

        session = await self.registry.begin_abort(upload_id, key, owner.id)
        if session is None:
            logger.info(f"[ABORT UPLOAD] {upload_id} already aborted")
            return

        await self.store.abort_multipart_upload(session.key, session.upload_id)
        await self.registry.finish_abort(session)
        logger.info(f"[ABORT UPLOAD] {session.key} upload_id={upload_id}")


# Global upload coordinator instance
upload_coordinator = UploadCoordinator(s3_client, session_registry)


def get_upload_coordinator() -> UploadCoordinator:
    return upload_coordinator
