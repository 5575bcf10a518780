"""
Utility functions for parameter parsing, text normalization and file handling.

This module provides helper functions for:
- Interpreting loosely-typed boolean request parameters
- Normalizing whitespace in titles and names
- Ensuring directory creation
- Sniffing document mimetypes from content
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Optional

WHITESPACE_PATTERN = re.compile(r"\s+")

# Very loose; the address only needs to look like one
EMAIL_PATTERN = re.compile(r"^[^\s@<>]+@[^\s@<>]+$")

_TRUE_STRINGS = {"1", "yes", "y", "true", "t", "on"}
_FALSE_STRINGS = {"0", "no", "n", "false", "f", "off", ""}


def friendly_boolean(value: Any) -> Optional[bool]:
    """
    Interpret a request parameter as a boolean.

    Args:
        value: Parameter value (string, bool, int or None)

    Returns:
        True or False for recognizable values, None for anything else
        (including a missing parameter)

    Example:
        >>> friendly_boolean("yes")
        True
        >>> friendly_boolean("0")
        False
        >>> friendly_boolean(None) is None
        True
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0 if value in (0, 1) else None
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    return None


def simplify_whitespace(text: str) -> str:
    """Collapse runs of whitespace to single spaces and strip the ends."""
    return WHITESPACE_PATTERN.sub(" ", text).strip()


def valid_email(email: str) -> bool:
    return bool(EMAIL_PATTERN.match(email))


def ensure_directory(path: Path) -> Path:
    """
    Create a directory if it doesn't exist, including parent directories.

    Args:
        path: The directory path to create

    Returns:
        The same path object for chaining
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def sniff_mimetype(content: bytes, fallback: Optional[str] = None) -> str:
    """
    Guess a mimetype from the first bytes of a document.

    Recognized signatures win over the client-supplied fallback; unknown
    binary content falls back to the client's value or octet-stream.
    """
    head = content[:8]
    if head.startswith(b"%PDF-"):
        return "application/pdf"
    if head.startswith(b"PK\x03\x04"):
        return "application/zip"
    if fallback:
        return fallback
    if b"\x00" in content[:4096]:
        return "application/octet-stream"
    return "text/plain"
