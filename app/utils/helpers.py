"""
Helper utilities for Scriptoria.

Common functions used across domains.
"""

import os
import re
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Optional
from uuid import uuid4


def generate_uuid() -> str:
    """Generate a unique identifier."""
    return str(uuid4())


def utc_now() -> datetime:
    """Get current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_iso_timestamp(ts_str: Optional[str]) -> Optional[datetime]:
    """Parse ISO timestamp string to datetime, returning None for empty input."""
    if not ts_str:
        return None
    return datetime.fromisoformat(ts_str.replace('Z', '+00:00'))


def sanitize_filename(filename: str) -> str:
    """Sanitize filename by removing invalid characters."""
    # Remove invalid filename characters
    sanitized = re.sub(r'[<>:"/\\|?*]', '_', filename)
    # Remove leading/trailing spaces and dots
    sanitized = sanitized.strip('. ')
    # Limit length
    if len(sanitized) > 255:
        sanitized = sanitized[:255]
    return sanitized


def copy_stream_to_file(stream: BinaryIO, path: Path) -> int:
    """
    Copy a binary stream into a file, creating parent folders.

    Args:
        stream: Readable binary stream
        path: Destination file

    Returns:
        Number of bytes written
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        shutil.copyfileobj(stream, f)
        f.flush()
        os.fsync(f.fileno())
        return f.tell()


def is_pdf(path: Path) -> bool:
    """Check if path looks like a PDF by extension."""
    return path.suffix.lower() == ".pdf"


def is_hidden(path: Path) -> bool:
    """Check if path is hidden (starts with dot)."""
    return path.name.startswith('.')
