"""
Error hierarchy for the upload pipeline.
Every error carries a kind discriminant, a stable code and an HTTP status.
"""

from fastapi import status

from shared_schemas.common import ErrorKind, ErrorResponse


class VaultError(Exception):
    """Base class for errors rendered as ErrorResponse."""

    kind: ErrorKind = ErrorKind.INTERNAL
    code: str = "internal_error"
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(kind=self.kind, detail=self.detail, error_code=self.code)


# ============================================================================
# Client input (rejected before any storage call)
# ============================================================================

class InvalidRequest(VaultError):
    kind = ErrorKind.CLIENT_INPUT
    code = "invalid_request"
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidKey(VaultError):
    kind = ErrorKind.CLIENT_INPUT
    code = "invalid_key"
    status_code = status.HTTP_400_BAD_REQUEST


# ============================================================================
# Transient (retry the same operation)
# ============================================================================

class StoreUnavailable(VaultError):
    kind = ErrorKind.TRANSIENT
    code = "store_unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class UploadInitFailed(VaultError):
    kind = ErrorKind.TRANSIENT
    code = "upload_init_failed"
    status_code = status.HTTP_502_BAD_GATEWAY


# ============================================================================
# Session (fatal for this upload, restart from init)
# ============================================================================

class SessionExpired(VaultError):
    kind = ErrorKind.SESSION
    code = "session_expired"
    status_code = status.HTTP_401_UNAUTHORIZED


class NotSessionOwner(VaultError):
    kind = ErrorKind.SESSION
    code = "not_session_owner"
    status_code = status.HTTP_403_FORBIDDEN


class UnknownUpload(VaultError):
    kind = ErrorKind.SESSION
    code = "unknown_upload"
    status_code = status.HTTP_404_NOT_FOUND


class SessionConflict(VaultError):
    kind = ErrorKind.SESSION
    code = "session_conflict"
    status_code = status.HTTP_409_CONFLICT


class IncompletePartSet(VaultError):
    kind = ErrorKind.SESSION
    code = "incomplete_part_set"
    status_code = status.HTTP_409_CONFLICT


# ============================================================================
# Inconsistency (object stored but record missing)
# ============================================================================

class ReconciliationError(VaultError):
    kind = ErrorKind.INCONSISTENCY
    code = "reconciliation_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


# ============================================================================
# Auth and lookups
# ============================================================================

class Unauthorized(VaultError):
    kind = ErrorKind.AUTH
    code = "unauthorized"
    status_code = status.HTTP_401_UNAUTHORIZED


class Forbidden(VaultError):
    kind = ErrorKind.AUTH
    code = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(VaultError):
    kind = ErrorKind.NOT_FOUND
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND
