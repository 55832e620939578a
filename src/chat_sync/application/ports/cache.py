from __future__ import annotations

from typing import Protocol


class CacheStore(Protocol):
    """Raw string key/value storage behind the local cache."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def delete(self, key: str) -> None: ...
