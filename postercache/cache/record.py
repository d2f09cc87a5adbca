"""
Cache record shared by the hot tier and the persistent store.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace

from postercache.cache.errors import InvalidKeyError


@dataclass
class Record:
    """A cached poster lookup.

    Attributes:
        key: Lookup key (movie name). Never empty.
        value: Poster image URL returned by the browser backend.
        access_count: Number of hits, 1 on creation.
        last_accessed: UNIX timestamp of the latest hit; never decreases.
    """

    key: str
    value: str
    access_count: int = 1
    last_accessed: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        if not self.key:
            raise InvalidKeyError(self.key)
        if self.access_count < 1:
            raise ValueError("access_count must be >= 1")

    def touch(self, now: float | None = None) -> None:
        """Record a hit."""
        now = time.time() if now is None else now
        self.access_count += 1
        self.last_accessed = max(self.last_accessed, now)

    def copy(self) -> Record:
        """Detached copy safe to hand out of a critical section."""
        return replace(self)

    def rank(self) -> tuple[int, float]:
        """Eviction rank; lower ranks are evicted first."""
        return (self.access_count, self.last_accessed)


def normalize_key(key: object) -> str:
    """Validate a lookup key and strip surrounding whitespace.

    Raises:
        InvalidKeyError: If the key is not a string or is blank.
    """
    if not isinstance(key, str) or not key.strip():
        raise InvalidKeyError(key)
    return key.strip()
