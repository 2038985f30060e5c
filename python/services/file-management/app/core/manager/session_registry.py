"""
Upload Session Registry - Tracks in-flight multipart uploads.

Handles:
- Session registration and lookup with owner authorization
- State transitions (INIT, UPLOADING, COMPLETING, COMPLETED, ABORTING, ABORTED)
- Object key reservations while a session is open
- Stale session sweeping and tombstone purging
"""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Dict, List, Optional, Set

from app.core.config import settings
from app.core.errors import (
    IncompletePartSet,
    InvalidRequest,
    NotSessionOwner,
    SessionConflict,
    UnknownUpload,
)
from app.models.upload_session import UploadSession
from app.s3.client import S3Client, s3_client
from shared_schemas.file_service import UploadSessionState

logger = logging.getLogger(__name__)

OPEN_STATES = {UploadSessionState.INIT, UploadSessionState.UPLOADING}


class UploadSessionRegistry:
    """
    Owns every UploadSession and serializes its state transitions.
    Store calls happen outside the lock while a session sits in a transitional state.
    """

    def __init__(self, store: S3Client):
        self._store = store
        self._sessions: Dict[str, UploadSession] = {}
        self._reserved_keys: Set[str] = set()
        self._lock = asyncio.Lock()
        self._initialized = False
        self._monitor_task: Optional[asyncio.Task] = None

    async def initialize(self):
        """Start the stale session monitor."""
        if self._initialized:
            return

        logger.info("Initializing Upload Session Registry...")
        self._initialized = True
        self._monitor_task = asyncio.create_task(self._monitor_sessions_loop())
        logger.info("Upload Session Registry initialized")

    async def shutdown(self):
        """Stop the monitor. Open sessions are left for the store's own lifecycle rules."""
        logger.info("Shutting down Upload Session Registry...")

        if self._monitor_task:
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass
            self._monitor_task = None

        self._initialized = False
        logger.info(f"Upload Session Registry shutdown complete ({len(self._sessions)} sessions tracked)")

    # ------------------------------------------------------------------
    # Key reservations
    # ------------------------------------------------------------------

    def is_key_reserved(self, key: str) -> bool:
        return key in self._reserved_keys

    async def try_reserve_key(self, key: str) -> bool:
        """Atomically claim a key. Returns False if another session holds it."""
        async with self._lock:
            if key in self._reserved_keys:
                return False
            self._reserved_keys.add(key)
            return True

    async def release_key(self, key: str):
        async with self._lock:
            self._reserved_keys.discard(key)

    # ------------------------------------------------------------------
    # Registration and lookup
    # ------------------------------------------------------------------

    async def register(self, session: UploadSession) -> UploadSession:
        """Track a new session. Its key must already be reserved."""
        async with self._lock:
            self._sessions[session.upload_id] = session
            self._reserved_keys.add(session.key)
            logger.info(f"Registered upload session {session.upload_id} for {session.key}")
            return session

    async def get_session(self, upload_id: str) -> Optional[UploadSession]:
        return self._sessions.get(upload_id)

    def _owned(self, upload_id: str, key: str, owner_id: uuid.UUID) -> UploadSession:
        session = self._sessions.get(upload_id)
        if session is None:
            raise UnknownUpload(f"Upload {upload_id} not found")
        if session.owner_id != owner_id:
            raise NotSessionOwner("Upload session belongs to another user")
        if session.key != key:
            raise InvalidRequest("Key does not match upload session")
        return session

    async def get_owned(self, upload_id: str, key: str, owner_id: uuid.UUID) -> UploadSession:
        """
        Look up a session and authorize the caller.

        Raises:
            UnknownUpload, NotSessionOwner, InvalidRequest
        """
        async with self._lock:
            return self._owned(upload_id, key, owner_id)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def begin_part(self, upload_id: str, key: str, owner_id: uuid.UUID) -> UploadSession:
        """Check that parts may still be uploaded to this session."""
        async with self._lock:
            session = self._owned(upload_id, key, owner_id)
            if session.state not in OPEN_STATES:
                raise SessionConflict(f"Upload {upload_id} is {session.state.value}")
            session.mark_activity()
            return session

    async def record_part(self, session: UploadSession, part_number: int, size: int, etag: str):
        """
        Store the tag for a part; the first part moves INIT to UPLOADING.

        Raises:
            SessionConflict: If the session left the open states while the part was in flight
        """
        async with self._lock:
            if session.state not in OPEN_STATES:
                raise SessionConflict(f"Upload {session.upload_id} is {session.state.value}")
            session.record_part(part_number, size, etag)
            if session.state == UploadSessionState.INIT:
                session.state = UploadSessionState.UPLOADING
                logger.info(f"Session {session.upload_id} status: init → uploading")

    async def begin_complete(self, upload_id: str, key: str, owner_id: uuid.UUID) -> UploadSession:
        """
        Move UPLOADING to COMPLETING.

        Raises:
            IncompletePartSet: If no part has been uploaded yet
            SessionConflict: If the session is completing, completed or aborted
        """
        async with self._lock:
            session = self._owned(upload_id, key, owner_id)
            if session.state == UploadSessionState.INIT:
                raise IncompletePartSet(f"Upload {upload_id} has no uploaded parts")
            if session.state != UploadSessionState.UPLOADING:
                raise SessionConflict(f"Upload {upload_id} is {session.state.value}")
            session.state = UploadSessionState.COMPLETING
            session.mark_activity()
            return session

    async def finish_complete(self, session: UploadSession):
        async with self._lock:
            session.state = UploadSessionState.COMPLETED
            session.finished_at = datetime.utcnow()
            self._reserved_keys.discard(session.key)
            logger.info(f"Session {session.upload_id} status: completing → completed")

    async def fail_complete(self, session: UploadSession):
        """Return a COMPLETING session to UPLOADING so the client may retry."""
        async with self._lock:
            if session.state == UploadSessionState.COMPLETING:
                session.state = UploadSessionState.UPLOADING
                session.mark_activity()
                logger.info(f"Session {session.upload_id} status: completing → uploading")

    async def begin_abort(
        self,
        upload_id: str,
        key: str,
        owner_id: uuid.UUID
    ) -> Optional[UploadSession]:
        """
        Move an open session to ABORTING.

        Returns:
            The session to abort, or None if it was already aborted

        Raises:
            SessionConflict: If the session is completing, completed or being aborted,
                or its object is already assembled and only awaits its record
        """
        async with self._lock:
            session = self._owned(upload_id, key, owner_id)
            if session.state == UploadSessionState.ABORTED:
                return None
            if session.state not in OPEN_STATES:
                raise SessionConflict(f"Upload {upload_id} is {session.state.value}")
            if session.store_committed:
                raise SessionConflict(f"Upload {upload_id} is stored; retry completion to record it")
            session.state = UploadSessionState.ABORTING
            return session

    async def finish_abort(self, session: UploadSession):
        async with self._lock:
            session.state = UploadSessionState.ABORTED
            session.finished_at = datetime.utcnow()
            self._reserved_keys.discard(session.key)
            logger.info(f"Session {session.upload_id} status: aborting → aborted")

    # ------------------------------------------------------------------
    # Sweeping
    # ------------------------------------------------------------------

    async def _monitor_sessions_loop(self):
        """Background task to abort stale sessions and purge tombstones."""
        logger.info(f"Starting upload session monitor (interval={settings.SESSION_SWEEP_INTERVAL_SECONDS}s)")

        while True:
            try:
                await asyncio.sleep(settings.SESSION_SWEEP_INTERVAL_SECONDS)
                await self.sweep()
            except asyncio.CancelledError:
                logger.info("Upload session monitor cancelled")
                break
            except Exception as e:
                logger.error(f"Error in upload session monitor: {e}", exc_info=True)

    async def sweep(self, now: Optional[datetime] = None) -> int:
        """
        Abort sessions idle past the TTL and drop old tombstones.

        Sessions whose object was assembled but never recorded are only logged;
        they keep their key until a completion retry records them.

        Args:
            now: Reference time (defaults to utcnow)

        Returns:
            Number of sessions aborted
        """
        now = now or datetime.utcnow()
        stale: List[UploadSession] = []

        async with self._lock:
            for upload_id, session in list(self._sessions.items()):
                if session.is_terminal:
                    finished = session.finished_at or session.last_activity
                    if (now - finished).total_seconds() > settings.SESSION_TOMBSTONE_SECONDS:
                        del self._sessions[upload_id]
                    continue

                if (session.state in OPEN_STATES and
                        session.idle_seconds(now) > settings.UPLOAD_SESSION_TTL_SECONDS):
                    if session.store_committed:
                        logger.warning(
                            f"Stale session {session.upload_id} has a stored object without a record, "
                            f"needs reconciliation (key={session.key})"
                        )
                        continue
                    session.state = UploadSessionState.ABORTING
                    stale.append(session)

        for session in stale:
            logger.info(f"Aborting stale session {session.upload_id} "
                        f"(reason=expired, key={session.key}, uploaded={session.uploaded_bytes} bytes)")
            await self._store.abort_multipart_upload(session.key, session.upload_id)
            await self.finish_abort(session)

        if stale:
            logger.info(f"Aborted {len(stale)} stale upload sessions")

        return len(stale)


# Global upload session registry instance
session_registry = UploadSessionRegistry(s3_client)
