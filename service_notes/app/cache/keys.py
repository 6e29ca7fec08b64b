"""
Cache namespaces and key layout for the notes cache.
"""

from enum import Enum
from typing import Any


KEY_SEPARATOR = "::"


class CacheNamespace(str, Enum):
    """Cached views over notes."""
    NOTE = "note"                  # note id -> Note
    USER_NOTES = "userNotes"       # owner id -> [Note]
    SHARED_NOTES = "sharedNotes"   # grantee id -> [Note]


def make_key(namespace: CacheNamespace, key: Any) -> str:
    """Build the store key, e.g. ``note::42``."""
    return f"{namespace.value}{KEY_SEPARATOR}{key}"


def namespace_pattern(namespace: CacheNamespace) -> str:
    """Glob pattern matching every key of a namespace."""
    return f"{namespace.value}{KEY_SEPARATOR}*"
