"""
Common utility functions and helpers.
"""
from typing import Any, Dict, Mapping
import re

_OWNER_KEY_DISALLOWED = re.compile(r"[^A-Za-z0-9.\-]")
_TITLE_DISALLOWED = re.compile(r"[^A-Za-z0-9\s\-]")
_WHITESPACE_RUN = re.compile(r"\s+")


def sanitize_owner_key(owner_key: str) -> str:
    """
    Make an owner key (email or subject id) safe to use as a directory name.

    Every character outside ``[A-Za-z0-9.-]`` becomes ``_``, so
    ``alice@example.com`` maps to ``alice_example.com``.  Keys made only of
    dots (or empty) would name the parent or current directory and are
    rewritten to underscores.
    """
    sanitized = _OWNER_KEY_DISALLOWED.sub("_", owner_key)
    if not sanitized.strip("."):
        return sanitized.replace(".", "_") or "_"
    return sanitized


def sanitize_title(title: str) -> str:
    """
    Make a document title safe for a file name.

    Strips everything but ASCII letters, digits, whitespace and hyphens, then
    collapses whitespace runs into single underscores.
    """
    stripped = _TITLE_DISALLOWED.sub("", title)
    return _WHITESPACE_RUN.sub("_", stripped)


def truncate_text(text: str, max_length: int = 200, suffix: str = "...") -> str:
    """
    Truncate text to maximum length.

    Args:
        text: Text to truncate
        max_length: Maximum length
        suffix: Suffix to add if truncated

    Returns:
        Truncated text
    """
    if len(text) <= max_length:
        return text
    return text[:max_length - len(suffix)] + suffix


def has_content(sections: Mapping[str, Any]) -> bool:
    """True if at least one string value is non-blank."""
    return any(isinstance(value, str) and value.strip() for value in sections.values())


def text_sections(sections: Mapping[str, Any]) -> Dict[str, str]:
    """Keep only the string-valued entries of a submitted section mapping."""
    return {key: value for key, value in sections.items() if isinstance(value, str)}
