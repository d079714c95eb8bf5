"""
Utility functions for file system operations and string sanitization.

This module provides helper functions for:
- Sanitizing user-provided strings for safe storage keys and download names
- Ensuring directory creation with proper error handling
- Producing timezone-aware timestamps
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from pathlib import Path

# Pattern to match characters that are not safe for filesystem paths
# Allows: alphanumeric characters, dots, underscores, and hyphens
SANITIZE_PATTERN = re.compile(r"[^a-zA-Z0-9._-]+")

# Download filenames are stricter: anything outside [a-zA-Z0-9] becomes "_"
DOWNLOAD_NAME_PATTERN = re.compile(r"[^a-zA-Z0-9]")


def sanitize_label(label: str, fallback: str) -> str:
    """
    Generate a filesystem-safe label from user input.

    Args:
        label: The original label string to sanitize
        fallback: Default value to return if sanitization results in an empty string

    Returns:
        A lowercase, filesystem-safe label or the fallback value

    Example:
        >>> sanitize_label("Script 42!", "artifact")
        "script-42"
        >>> sanitize_label("@#$", "artifact")
        "artifact"
    """
    # Replace non-safe characters with hyphens and normalize whitespace
    cleaned = SANITIZE_PATTERN.sub("-", label.strip())
    # Remove leading/trailing separators and convert to lowercase
    cleaned = cleaned.strip("-_.").lower()
    return cleaned or fallback


def download_filename(title: str, version_number: int) -> str:
    """
    Build the attachment filename for a rendered script.

    Example:
        >>> download_filename("Mother's Day", 3)
        "Mother_s_Day_v3.pdf"
    """
    stem = DOWNLOAD_NAME_PATTERN.sub("_", title) or "script"
    return f"{stem}_v{version_number}.pdf"


def ensure_directory(path: Path) -> Path:
    """
    Create a directory if it doesn't exist, including parent directories.

    Args:
        path: The directory path to create

    Returns:
        The same path object for chaining

    Raises:
        OSError: If directory creation fails due to permissions or other I/O errors
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def epoch_millis(moment: datetime) -> int:
    """Milliseconds since the epoch; naive datetimes are treated as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)
