"""
Client-side upload state.
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from shared_schemas.file_service import CompletedPart, FileRecord


class FileStatus(str, Enum):
    """Lifecycle of one file in a batch."""
    PENDING = "pending"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ChunkState:
    """One byte range of a file and its upload progress."""

    part_number: int
    offset: int
    size: int
    uploaded: bool = False
    progress: float = 0.0      # 0..100
    etag: Optional[str] = None

    @property
    def end(self) -> int:
        return self.offset + self.size

    def mark_uploaded(self, etag: str):
        self.etag = etag
        self.uploaded = True
        self.progress = 100.0


@dataclass
class UploadingFile:
    """A file queued for upload with its chunk inventory."""

    name: str
    size: int
    content_type: str
    source: object
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: FileStatus = FileStatus.PENDING
    progress: float = 0.0      # 0..100
    error: Optional[str] = None
    upload_id: Optional[str] = None
    key: Optional[str] = None
    chunks: List[ChunkState] = field(default_factory=list)
    result: Optional[FileRecord] = None

    @property
    def is_finished(self) -> bool:
        return self.status in (FileStatus.COMPLETED, FileStatus.FAILED, FileStatus.CANCELLED)

    @property
    def has_open_session(self) -> bool:
        """Started at the server but not completed."""
        return self.upload_id is not None and self.status != FileStatus.COMPLETED

    @property
    def uploaded_bytes(self) -> int:
        return sum(int(c.size * c.progress / 100) for c in self.chunks)

    def update_progress(self):
        """Recompute file progress from chunk progress."""
        if self.size == 0:
            self.progress = 100.0 if all(c.uploaded for c in self.chunks) else 0.0
            return
        self.progress = min(100.0, self.uploaded_bytes * 100 / self.size)

    def completed_parts(self) -> List[CompletedPart]:
        """Uploaded parts sorted ascending by part number."""
        return [
            CompletedPart(part_number=c.part_number, etag=c.etag)
            for c in sorted(self.chunks, key=lambda c: c.part_number)
            if c.uploaded
        ]
