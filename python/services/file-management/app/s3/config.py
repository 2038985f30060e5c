"""
S3 Upload Configuration.
Constants for multipart upload limits.
"""

from app.core.config import settings

# Multipart Upload Settings
MIN_PART_SIZE = 5 * 1024 * 1024          # 5MB (S3 minimum for every part except the last)
MAX_PART_NUMBER = 10000                  # S3 hard limit on parts per upload
MAX_PART_SIZE = settings.max_part_size   # Largest part body accepted by the API

# Error codes returned by the store, grouped by how they are surfaced
MISSING_OBJECT_CODES = {"404", "NoSuchKey", "NotFound"}
UNKNOWN_UPLOAD_CODES = {"NoSuchUpload"}
INCOMPLETE_PART_CODES = {"InvalidPart", "InvalidPartOrder", "EntityTooSmall"}
INVALID_KEY_CODES = {"KeyTooLongError", "KeyTooLong", "InvalidObjectName", "NoSuchBucket"}

# Characters stripped from entity tags before completion
ETAG_QUOTE_CHARS = "\"'"
