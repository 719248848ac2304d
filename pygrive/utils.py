"""Utility functions for pygrive."""

import hashlib
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Optional

# =============================================================================
# Constants for file operations
# =============================================================================

# Read/write block size for hashing and transfers (256 KB)
DEFAULT_CHUNK_SIZE: int = 256 * 1024

# Retry configuration for transient errors
DEFAULT_MAX_RETRIES: int = 3
DEFAULT_RETRY_DELAY: float = 1.0  # seconds

# Mime type Google Drive uses for folders
FOLDER_MIME_TYPE: str = "application/vnd.google-apps.folder"

# Prefix of Google-native documents (Docs, Sheets, ...) without binary content
GOOGLE_APPS_MIME_PREFIX: str = "application/vnd.google-apps."


# =============================================================================
# Timestamp utilities
# =============================================================================


def parse_iso_timestamp(timestamp_str: Optional[str]) -> Optional[float]:
    """Parse an RFC 3339 timestamp from the Drive API.

    Args:
        timestamp_str: Timestamp string (e.g., "2025-01-15T10:30:00.000Z")

    Returns:
        Unix timestamp or None if parsing fails

    Examples:
        >>> parse_iso_timestamp("1970-01-01T00:00:10.500Z")
        10.5
    """
    if not timestamp_str:
        return None

    try:
        # The 'Z' suffix indicates UTC time
        if timestamp_str.endswith("Z"):
            timestamp_str = timestamp_str[:-1] + "+00:00"
        dt = datetime.fromisoformat(timestamp_str)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.timestamp()
    except (ValueError, AttributeError):
        return None


def format_iso_timestamp(timestamp: float) -> str:
    """Format a Unix timestamp the way the Drive API expects it.

    Examples:
        >>> format_iso_timestamp(10.5)
        '1970-01-01T00:00:10.500Z'
    """
    dt = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


# =============================================================================
# Size formatting utilities
# =============================================================================


def format_size(size_bytes: int) -> str:
    """Format file size in human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string (e.g., "1.5 MB", "256 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / 1024 / 1024:.1f} MB"
    else:
        return f"{size_bytes / 1024 / 1024 / 1024:.1f} GB"


# =============================================================================
# Checksum and path utilities
# =============================================================================


def md5_file(path: Path, chunk_size: int = DEFAULT_CHUNK_SIZE) -> str:
    """Compute the MD5 hex digest of a file.

    MD5 is what Drive reports as ``md5Checksum``, so local and remote
    checksums are directly comparable.
    """
    digest = hashlib.md5()
    with open(path, "rb") as f:
        while True:
            chunk = f.read(chunk_size)
            if not chunk:
                break
            digest.update(chunk)
    return digest.hexdigest()


def normalize_relative_path(path: str) -> str:
    """Normalize a user supplied relative path to the snapshot key format.

    Examples:
        >>> normalize_relative_path("/docs//reports/")
        'docs/reports'
        >>> normalize_relative_path(".")
        ''
    """
    pure = PurePosixPath(path.replace("\\", "/"))
    parts = [p for p in pure.parts if p not in ("/", ".")]
    if ".." in parts:
        raise ValueError(f"Path must not leave the working copy: {path}")
    return "/".join(parts)


def parent_path(path: str) -> str:
    """Return the parent of a relative path ('' for top-level entries)."""
    head, _, _ = path.rpartition("/")
    return head


def is_within(path: str, ancestor: str) -> bool:
    """Check whether ``path`` equals ``ancestor`` or lies beneath it."""
    if not ancestor:
        return True
    return path == ancestor or path.startswith(ancestor + "/")
