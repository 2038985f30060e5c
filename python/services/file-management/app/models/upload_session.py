"""
Upload session data models for internal use.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional

from shared_schemas.file_service import UploadSessionState


TERMINAL_STATES = {UploadSessionState.COMPLETED, UploadSessionState.ABORTED}


@dataclass
class PartRecord:
    """One uploaded part, as acknowledged by the store."""

    part_number: int
    size: int
    etag: str
    uploaded_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class UploadSession:
    """Represents one in-flight multipart upload."""

    upload_id: str
    key: str
    owner_id: uuid.UUID
    original_name: str
    content_type: str

    # Status
    state: UploadSessionState = UploadSessionState.INIT

    # Part inventory keyed by part number (a re-upload replaces the entry)
    parts: Dict[int, PartRecord] = field(default_factory=dict)

    # Set once the store has assembled the object
    store_committed: bool = False

    # Timestamps
    created_at: datetime = field(default_factory=datetime.utcnow)
    last_activity: datetime = field(default_factory=datetime.utcnow)
    finished_at: Optional[datetime] = None

    @classmethod
    def create(
        cls,
        upload_id: str,
        key: str,
        owner_id: uuid.UUID,
        original_name: str,
        content_type: str
    ) -> "UploadSession":
        return cls(
            upload_id=upload_id,
            key=key,
            owner_id=owner_id,
            original_name=original_name,
            content_type=content_type,
        )

    def mark_activity(self):
        """Update last activity timestamp."""
        self.last_activity = datetime.utcnow()

    def record_part(self, part_number: int, size: int, etag: str) -> PartRecord:
        """Store (or replace) the tag for a part number."""
        record = PartRecord(part_number=part_number, size=size, etag=etag)
        self.parts[part_number] = record
        self.mark_activity()
        return record

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def uploaded_bytes(self) -> int:
        return sum(p.size for p in self.parts.values())

    def idle_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.utcnow()
        return (now - self.last_activity).total_seconds()
