"""
File Vault Service API schemas.
Type-safe contracts for the upload lifecycle, file, auth and admin endpoints.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import Field, field_validator

from shared_schemas.common import ByteSize, CamelModel


# Hard limit imposed by the object store on part numbers
MAX_PART_NUMBER = 10000


def normalize_email(value: str) -> str:
    """Lower-case and sanity-check an email address."""
    value = value.strip().lower()
    local, sep, domain = value.partition("@")
    if not sep or not local or "." not in domain:
        raise ValueError("Invalid email address")
    return value


class UploadSessionState(str, Enum):
    """Lifecycle state of a multipart upload session."""
    INIT = "init"
    UPLOADING = "uploading"
    COMPLETING = "completing"
    COMPLETED = "completed"
    ABORTING = "aborting"
    ABORTED = "aborted"


class UploadStatus(str, Enum):
    """Outcome recorded in the upload history."""
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"


class UserRole(str, Enum):
    """User privilege level."""
    USER = "USER"
    ADMIN = "ADMIN"


class FileAction(str, Enum):
    """State transitions available on a stored file."""
    RESTORE = "restore"
    DELETE = "delete"


# ============================================================================
# Common Models
# ============================================================================

class UserInfo(CamelModel):
    """Public user information."""
    id: UUID
    email: str
    name: Optional[str] = None
    role: UserRole
    created_at: Optional[datetime] = None


class FileRecord(CamelModel):
    """Durable record of a completed upload."""
    id: UUID
    name: str
    size: ByteSize
    type: str
    path: str
    user_id: UUID
    is_deleted: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ============================================================================
# Upload Lifecycle Endpoints
# ============================================================================

class InitUploadRequest(CamelModel):
    """Request to start a multipart upload."""
    original_name: str = Field(..., min_length=1, max_length=1024)
    content_type: str = Field(..., min_length=1, max_length=255)


class InitUploadResponse(CamelModel):
    """Identifiers of a freshly created upload session."""
    upload_id: str
    key: str


class UploadPartResponse(CamelModel):
    """Entity tag returned by the store for one part."""
    etag: str
    part_number: int


class CompletedPart(CamelModel):
    """One entry of the part inventory submitted on completion."""
    part_number: int = Field(..., ge=1, le=MAX_PART_NUMBER)
    etag: str = Field(..., min_length=1)


class CompleteUploadRequest(CamelModel):
    """Request to finalize a multipart upload."""
    original_name: str = Field(..., min_length=1, max_length=1024)
    upload_id: str = Field(..., min_length=1)
    parts: list[CompletedPart] = Field(..., min_length=1)
    size: ByteSize
    content_type: str = Field(..., min_length=1, max_length=255)
    key: str = Field(..., min_length=1)


class CompleteUploadResponse(CamelModel):
    """Response from a successful completion."""
    success: bool = True
    message: str = "Upload completed successfully"
    file: FileRecord


class AbortUploadRequest(CamelModel):
    """Request to abort a multipart upload."""
    upload_id: str = Field(..., min_length=1)
    key: str = Field(..., min_length=1)


class AbortUploadResponse(CamelModel):
    """Response from an abort."""
    success: bool = True


# ============================================================================
# File Endpoints
# ============================================================================

class FileListResponse(CamelModel):
    """Paginated list of files."""
    files: list[FileRecord]
    total: int
    offset: int
    limit: int


class FileCountResponse(CamelModel):
    """Number of visible files."""
    count: int


class FileActionRequest(CamelModel):
    """Apply an action to a single file."""
    action: FileAction


class BulkFileActionRequest(CamelModel):
    """Apply an action to several files at once."""
    file_ids: list[UUID] = Field(..., min_length=1)
    action: FileAction


class BulkDeleteRequest(CamelModel):
    """Permanently delete several files."""
    file_ids: list[UUID] = Field(..., min_length=1)


class BulkActionResponse(CamelModel):
    """Number of files affected by a bulk operation."""
    success: bool = True
    affected: int


class DownloadUrlResponse(CamelModel):
    """Short-lived download URL."""
    url: str
    expires_in: int
    filename: str


# ============================================================================
# Upload History Endpoints
# ============================================================================

class UploadHistoryEntry(CamelModel):
    """Immutable audit record of a completion attempt."""
    id: UUID
    file_id: Optional[UUID] = None
    user_id: UUID
    size: ByteSize
    status: UploadStatus
    created_at: Optional[datetime] = None
    file_name: Optional[str] = None
    user_email: Optional[str] = None


class UploadHistoryListResponse(CamelModel):
    """Paginated upload history."""
    items: list[UploadHistoryEntry]
    total: int


# ============================================================================
# Auth Endpoints
# ============================================================================

class RequestCodeRequest(CamelModel):
    """Ask for a one-time verification code by email."""
    email: str = Field(..., min_length=3, max_length=320)

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        return normalize_email(v)


class VerifyCodeRequest(RequestCodeRequest):
    """Exchange a verification code for an access token."""
    code: str = Field(..., min_length=4, max_length=12)


class TokenResponse(CamelModel):
    """Bearer token issued after verification."""
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserInfo


# ============================================================================
# Admin Endpoints
# ============================================================================

class UserListResponse(CamelModel):
    """Paginated list of users."""
    users: list[UserInfo]
    total: int


class CreateUserRequest(CamelModel):
    """Create a user from the admin console."""
    email: str = Field(..., min_length=3, max_length=320)
    name: Optional[str] = Field(None, max_length=255)
    role: UserRole = UserRole.USER

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        return normalize_email(v)


class UpdateUserRequest(CamelModel):
    """Partial update of a user."""
    email: Optional[str] = Field(None, min_length=3, max_length=320)
    name: Optional[str] = Field(None, max_length=255)
    role: Optional[UserRole] = None

    @field_validator("email")
    @classmethod
    def check_email(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return normalize_email(v)


# ============================================================================
# Health Check
# ============================================================================

class HealthCheckResponse(CamelModel):
    """Health check response."""
    status: str
    s3_connection: str
    database: str
    redis: str
