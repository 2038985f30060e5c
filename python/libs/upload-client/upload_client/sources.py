"""
Byte sources for uploads.
"""

import os
from typing import Optional

import aiofiles


class UploadSource:
    """Something with a name and a size that can be read by range."""

    name: str
    size: int
    content_type: Optional[str] = None

    async def read_range(self, offset: int, size: int) -> bytes:
        raise NotImplementedError


class FileSource(UploadSource):
    """A file on disk, read one range at a time so memory stays bounded by the chunk size."""

    def __init__(self, path: str, name: Optional[str] = None, content_type: Optional[str] = None):
        self.path = path
        self.name = name or os.path.basename(path)
        self.size = os.path.getsize(path)
        self.content_type = content_type

    async def read_range(self, offset: int, size: int) -> bytes:
        async with aiofiles.open(self.path, "rb") as f:
            await f.seek(offset)
            data = await f.read(size)
        if len(data) != size:
            raise OSError(f"Short read from {self.path}: expected {size} bytes at {offset}, got {len(data)}")
        return data


class BytesSource(UploadSource):
    """In-memory content."""

    def __init__(self, name: str, data: bytes, content_type: Optional[str] = None):
        self.name = name
        self.data = data
        self.size = len(data)
        self.content_type = content_type

    async def read_range(self, offset: int, size: int) -> bytes:
        return self.data[offset:offset + size]
