"""
Text normalization helpers shared by record identity and deduplication.
"""

import re

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")
_DOI_PREFIX = re.compile(r"^(?:[a-z][a-z0-9+.-]*://[^/\s]+/|doi:\s*)", re.IGNORECASE)


def normalize_title(title: str) -> str:
    """Lowercase, strip punctuation, collapse whitespace."""
    text = _PUNCTUATION.sub(" ", title.lower())
    return _WHITESPACE.sub(" ", text).strip()


def normalize_author(name: str) -> str:
    """Normalize an author name for set comparison."""
    return normalize_title(name)


def normalize_identifier(identifier: str | None) -> str | None:
    """Normalize an external identifier (DOI-like).

    Case-insensitive, trimmed, resolver URL and ``doi:`` prefixes removed.
    Returns None for missing or blank identifiers.
    """
    if identifier is None:
        return None
    value = _DOI_PREFIX.sub("", identifier.strip()).strip().lower()
    return value or None
