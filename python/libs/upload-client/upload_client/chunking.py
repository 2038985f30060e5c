"""
Partitioning of a file into multipart upload chunks.
"""

import math
from typing import List

from upload_client.models import ChunkState


class ChunkingError(ValueError):
    """File cannot be uploaded with the configured limits. Raised before any network call."""


def chunk_count(size: int, chunk_size: int) -> int:
    """Number of parts for a file; an empty file still needs one part."""
    if size == 0:
        return 1
    return math.ceil(size / chunk_size)


def validate_file_size(size: int, chunk_size: int, max_file_size: int, max_chunk_count: int):
    """
    Raises:
        ChunkingError: If the file is too large or needs too many parts
    """
    if size < 0:
        raise ChunkingError("File size cannot be negative")
    if size > max_file_size:
        raise ChunkingError(f"File exceeds maximum size of {max_file_size} bytes")
    count = chunk_count(size, chunk_size)
    if count > max_chunk_count:
        raise ChunkingError(f"File needs {count} parts, maximum is {max_chunk_count}")


def plan_chunks(size: int, chunk_size: int) -> List[ChunkState]:
    """
    Split [0, size) into contiguous, non-overlapping ranges.

    Every chunk is chunk_size bytes except possibly the last.

    Args:
        size: File size in bytes
        chunk_size: Target part size in bytes

    Returns:
        Chunks with 1-based part numbers in ascending order
    """
    if chunk_size <= 0:
        raise ChunkingError("Chunk size must be positive")

    chunks = []
    for index in range(chunk_count(size, chunk_size)):
        offset = index * chunk_size
        chunks.append(ChunkState(
            part_number=index + 1,
            offset=offset,
            size=min(chunk_size, size - offset),
        ))
    return chunks
