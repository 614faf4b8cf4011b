"""
Shared utility functions for the scan_engine package.

Consolidates hashing, timestamps and path helpers into a single module
to keep behavior consistent across analyzers, the store and the cache.
"""

import os
import hashlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

import xxhash


def compute_identity_hash(identity_key: str) -> str:
    """
    Hash an issue identity string ("CATEGORY:file:line:column").

    xxh64 is used because identity hashes are computed for every raw finding
    of every analyzer and never need to be cryptographically strong.

    Examples:
        >>> len(compute_identity_hash("BUFFER_OVERFLOW:f.c:10:3"))
        16
    """
    return xxhash.xxh64(identity_key.encode("utf-8")).hexdigest()


def sha256_hex(text: str) -> str:
    """SHA-256 hex digest of a UTF-8 string."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def utc_now() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def to_iso(moment: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime to ISO-8601, passing None through."""
    return moment.isoformat() if moment is not None else None


def from_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 string produced by to_iso()."""
    if not value:
        return None
    return datetime.fromisoformat(value)


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string (used for merge stamps)."""
    return utc_now().isoformat()


def normalize_file_path(path: str) -> str:
    """
    Normalize a file path for use in issue identity.

    Different analyzers report the same file as "./src/a.c", "src/a.c" or
    an absolute path; all are collapsed to the absolute normalized form.
    """
    if not path:
        return ""
    return os.path.normpath(os.path.abspath(path))


def count_lines(path: Path) -> int:
    """Count lines in a text file, returning 0 when unreadable."""
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            return sum(1 for _ in f)
    except OSError:
        return 0


def dedupe_preserving_order(items: Iterable[str]) -> list:
    """Remove duplicates from an iterable of strings, keeping first appearance."""
    seen = set()
    out = []
    for item in items:
        if item and item not in seen:
            seen.add(item)
            out.append(item)
    return out
