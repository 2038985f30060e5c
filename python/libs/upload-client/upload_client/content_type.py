"""
Content-Type detection for files picked for upload.
"""

import mimetypes
import os
from typing import Optional

GENERIC_TYPE = "application/octet-stream"


# Types the platform registry often lacks or gets wrong
EXTRA_MIME_TYPES = {
    # Office and documents
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".xls": "application/vnd.ms-excel",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".ppt": "application/vnd.ms-powerpoint",
    ".pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    ".odt": "application/vnd.oasis.opendocument.text",
    ".ods": "application/vnd.oasis.opendocument.spreadsheet",
    ".odp": "application/vnd.oasis.opendocument.presentation",
    ".rtf": "application/rtf",
    ".md": "text/markdown",

    # Design
    ".psd": "image/vnd.adobe.photoshop",
    ".ai": "application/postscript",
    ".sketch": "application/octet-stream",
    ".fig": "application/octet-stream",
    ".heic": "image/heic",
    ".avif": "image/avif",

    # Archives
    ".7z": "application/x-7z-compressed",
    ".rar": "application/vnd.rar",
    ".xz": "application/x-xz",
    ".bz2": "application/x-bzip2",
    ".tgz": "application/gzip",

    # Code
    ".ts": "application/typescript",
    ".tsx": "text/tsx",
    ".jsx": "text/jsx",
    ".kt": "text/x-kotlin",
    ".rs": "text/x-rust",
    ".go": "text/x-go",
    ".swift": "text/x-swift",
    ".scala": "text/x-scala",
    ".sql": "application/sql",
    ".toml": "application/toml",
    ".yaml": "application/yaml",
    ".yml": "application/yaml",
    ".jsonl": "application/jsonl",

    # Audio and video
    ".flac": "audio/flac",
    ".aac": "audio/aac",
    ".m4a": "audio/mp4",
    ".mkv": "video/x-matroska",
    ".webm": "video/webm",
    ".m4v": "video/x-m4v",
    ".flv": "video/x-flv",
    ".wmv": "video/x-ms-wmv",

    # 3D models
    ".obj": "model/obj",
    ".stl": "model/stl",
    ".gltf": "model/gltf+json",
    ".glb": "model/gltf-binary",

    # Fonts, subtitles, books
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".ttf": "font/ttf",
    ".otf": "font/otf",
    ".srt": "application/x-subrip",
    ".vtt": "text/vtt",
    ".epub": "application/epub+zip",
    ".mobi": "application/x-mobipocket-ebook",

    # Calendar and contacts
    ".ics": "text/calendar",
    ".vcf": "text/vcard",

    # Disk images
    ".iso": "application/x-iso9660-image",
    ".dmg": "application/x-apple-diskimage",
    ".vmdk": "application/octet-stream",
    ".vhd": "application/octet-stream",
}


def detect_content_type(filename: str, provided_type: Optional[str] = None) -> str:
    """
    Pick the Content-Type for an upload.

    A specific type reported by the caller (browser, OS) wins; otherwise the
    extension decides, with 'application/octet-stream' as the last resort.

    Examples:
        >>> detect_content_type("report.docx")
        'application/vnd.openxmlformats-officedocument.wordprocessingml.document'

        >>> detect_content_type("scan.pdf", "application/x-custom")
        'application/x-custom'

        >>> detect_content_type("blob.unknownext")
        'application/octet-stream'
    """
    if provided_type and provided_type != GENERIC_TYPE:
        return provided_type

    ext = os.path.splitext(filename)[1].lower()
    if ext in EXTRA_MIME_TYPES:
        return EXTRA_MIME_TYPES[ext]

    guessed_type, _ = mimetypes.guess_type(filename)
    return guessed_type or provided_type or GENERIC_TYPE
