"""
Chunking Orchestrator - Uploads batches of files as multipart uploads.

Handles:
- Size validation and chunk planning before any network call
- Deduplication of files already queued
- Bounded concurrency across files, sequential parts within a file
- Per-part retry of transient failures (same part number)
- Progress tracking per chunk and per file
- Cancellation with best-effort server-side abort
"""

import asyncio
import logging
from typing import Callable, Dict, Iterable, List, Optional

from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from shared_schemas.file_service import FileRecord
from upload_client.chunking import ChunkingError, plan_chunks, validate_file_size
from upload_client.config import ClientSettings, client_settings
from upload_client.content_type import detect_content_type
from upload_client.models import ChunkState, FileStatus, UploadingFile
from upload_client.sources import UploadSource
from upload_client.transport import ApiError, UploadApiClient

logger = logging.getLogger(__name__)


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, ApiError) and exc.is_transient


class ChunkingOrchestrator:
    """
    Drives many files through init -> parts -> complete.
    One file failing never stops the others.
    """

    def __init__(
        self,
        api: UploadApiClient,
        settings: ClientSettings = client_settings,
        on_progress: Optional[Callable[[UploadingFile], None]] = None
    ):
        self.api = api
        self.settings = settings
        self.on_progress = on_progress
        self.files: List[UploadingFile] = []
        self._tasks: Dict[str, asyncio.Task] = {}
        self._semaphore = asyncio.Semaphore(settings.MAX_CONCURRENT_FILES)

    # ------------------------------------------------------------------
    # Queue management
    # ------------------------------------------------------------------

    def _is_duplicate(self, source: UploadSource) -> bool:
        return any(
            f.name == source.name and f.size == source.size
            and f.status not in (FileStatus.COMPLETED, FileStatus.FAILED)
            for f in self.files
        )

    def add_files(self, sources: Iterable[UploadSource]) -> List[UploadingFile]:
        """
        Queue files for upload.

        Files already queued (same name and size, not finished) are skipped.
        Files over the limits are added as FAILED so the caller can show why.

        Returns:
            The newly added entries
        """
        added = []
        for source in sources:
            if self._is_duplicate(source):
                logger.info(f"Skipping duplicate file {source.name} ({source.size} bytes)")
                continue

            entry = UploadingFile(
                name=source.name,
                size=source.size,
                content_type=detect_content_type(source.name, source.content_type),
                source=source,
            )
            try:
                validate_file_size(
                    source.size,
                    self.settings.CHUNK_SIZE,
                    self.settings.MAX_FILE_SIZE,
                    self.settings.MAX_CHUNK_COUNT,
                )
                entry.chunks = plan_chunks(source.size, self.settings.CHUNK_SIZE)
            except ChunkingError as e:
                entry.status = FileStatus.FAILED
                entry.error = str(e)
                logger.warning(f"Rejected {source.name}: {e}")

            self.files.append(entry)
            added.append(entry)
        return added

    def get_file(self, file_id: str) -> Optional[UploadingFile]:
        return next((f for f in self.files if f.id == file_id), None)

    def clear_finished(self):
        """Drop completed, failed and cancelled entries."""
        self.files = [f for f in self.files if not f.is_finished]

    # ------------------------------------------------------------------
    # Uploading
    # ------------------------------------------------------------------

    async def upload_all(self) -> List[FileRecord]:
        """
        Upload every pending file.

        Returns:
            File records of the uploads that completed in this batch
        """
        pending = [f for f in self.files if f.status == FileStatus.PENDING]
        if not pending:
            return []

        logger.info(f"Uploading {len(pending)} files (max {self.settings.MAX_CONCURRENT_FILES} at once)")

        tasks = {}
        for entry in pending:
            task = asyncio.create_task(self._run_file(entry))
            tasks[entry.id] = task
            self._tasks[entry.id] = task

        try:
            await asyncio.gather(*tasks.values(), return_exceptions=True)
        finally:
            for file_id in tasks:
                self._tasks.pop(file_id, None)

        results = [f.result for f in pending if f.status == FileStatus.COMPLETED]
        logger.info(f"Batch finished: {len(results)}/{len(pending)} completed")
        return results

    async def _run_file(self, entry: UploadingFile):
        async with self._semaphore:
            if entry.status != FileStatus.PENDING:
                return
            entry.status = FileStatus.UPLOADING
            self._notify(entry)

            try:
                await self._upload_file(entry)
            except asyncio.CancelledError:
                entry.status = FileStatus.CANCELLED
                self._notify(entry)
                raise
            except (ApiError, OSError) as e:
                entry.status = FileStatus.FAILED
                entry.error = str(e)
                logger.warning(f"Upload of {entry.name} failed: {e}")
                self._notify(entry)

    async def _upload_file(self, entry: UploadingFile):
        started = await self.api.init_upload(entry.name, entry.content_type)
        entry.upload_id = started.upload_id
        entry.key = started.key
        logger.info(f"Started {entry.name} -> {entry.key} ({len(entry.chunks)} parts)")

        for chunk in entry.chunks:
            if not chunk.uploaded:
                await self._upload_chunk(entry, chunk)

        entry.result = await self.api.complete_upload(
            upload_id=entry.upload_id,
            key=entry.key,
            original_name=entry.name,
            content_type=entry.content_type,
            size=entry.size,
            parts=entry.completed_parts(),
        )
        entry.status = FileStatus.COMPLETED
        entry.progress = 100.0
        self._notify(entry)
        logger.info(f"Completed {entry.name} ({entry.size} bytes)")

    async def _upload_chunk(self, entry: UploadingFile, chunk: ChunkState):
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.settings.PART_RETRY_ATTEMPTS),
            wait=wait_exponential(
                multiplier=self.settings.PART_RETRY_MIN_WAIT,
                min=self.settings.PART_RETRY_MIN_WAIT,
                max=self.settings.PART_RETRY_MAX_WAIT,
            ),
            retry=retry_if_exception(_is_transient),
            reraise=True,
        )

        async for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info(f"Retrying part {chunk.part_number} of {entry.name} "
                                f"(attempt {attempt.retry_state.attempt_number})")
                chunk.progress = 0.0
                data = await entry.source.read_range(chunk.offset, chunk.size)
                sent = 0

                def on_bytes_sent(n: int):
                    nonlocal sent
                    sent += n
                    # Capped below 100 until the store acknowledges the part
                    chunk.progress = min(99.0, sent * 100 / chunk.size) if chunk.size else 0.0
                    entry.update_progress()
                    self._notify(entry)

                etag = await self.api.upload_part(
                    entry.upload_id, entry.key, chunk.part_number, data, on_bytes_sent
                )

        chunk.mark_uploaded(etag)
        entry.update_progress()
        self._notify(entry)

    def _notify(self, entry: UploadingFile):
        if self.on_progress:
            self.on_progress(entry)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    async def _abort_quietly(self, entry: UploadingFile):
        try:
            await self.api.abort_upload(entry.upload_id, entry.key)
        except ApiError as e:
            logger.warning(f"Abort of {entry.name} ({entry.upload_id}) failed: {e}")

    async def cancel(self):
        """
        Stop every upload, abort their server sessions and forget all files.
        Completion is never requested for a cancelled file.
        """
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        for entry in self.files:
            if entry.has_open_session:
                await self._abort_quietly(entry)

        logger.info(f"Cancelled {len(tasks)} running uploads, cleared {len(self.files)} files")
        self.files.clear()
        self._tasks.clear()

    async def remove_file(self, file_id: str) -> bool:
        """Cancel and forget one file. Returns False if it was not queued."""
        entry = self.get_file(file_id)
        if entry is None:
            return False

        task = self._tasks.pop(file_id, None)
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        if entry.has_open_session:
            await self._abort_quietly(entry)

        self.files.remove(entry)
        return True
