from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class CacheEntry(Generic[T]):
    value: T
    written_at: datetime


def is_fresh(entry: CacheEntry[object] | None, now: datetime, ttl: timedelta) -> bool:
    """True when ``entry`` was written less than ``ttl`` before ``now``.

    A write time in the future (clock skew) counts as stale.
    """
    if entry is None:
        return False
    age = now - entry.written_at
    return timedelta(0) <= age < ttl
