"""
Client library for chunked multipart uploads to the file-vault service.
"""

__version__ = "0.1.0"

from upload_client.chunking import ChunkingError, plan_chunks  # noqa: F401
from upload_client.config import ClientSettings, client_settings  # noqa: F401
from upload_client.models import ChunkState, FileStatus, UploadingFile  # noqa: F401
from upload_client.orchestrator import ChunkingOrchestrator  # noqa: F401
from upload_client.sources import BytesSource, FileSource, UploadSource  # noqa: F401
from upload_client.transport import ApiError, RateLimitedError, UploadApiClient  # noqa: F401
