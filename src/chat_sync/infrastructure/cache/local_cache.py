"""Typed, timestamped snapshots on top of a raw CacheStore."""
from __future__ import annotations

import logging
from typing import Any

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from chat_sync.application.ports.cache import CacheStore
from chat_sync.application.ports.clock import Clock, SystemClock
from chat_sync.config import settings
from chat_sync.domain.entities.bubble import Bubble
from chat_sync.domain.entities.cache_entry import CacheEntry
from chat_sync.domain.entities.conversation import Conversation
from chat_sync.domain.entities.profile import Profile
from chat_sync.infrastructure.cache.schemas import (
    ActiveChatSnapshot,
    BubbleSnapshot,
    CacheEnvelope,
    ConversationSnapshot,
    ProfileSnapshot,
)
from chat_sync.infrastructure.mappers import snapshot as mapper

logger = logging.getLogger(__name__)

DIRECTORY_KEY = "directory"
CONVERSATIONS_KEY = "conversations"
BUBBLES_KEY = "bubbles"
ACTIVE_CHAT_KEY = "active_chat"

_profiles = TypeAdapter(list[ProfileSnapshot])
_conversations = TypeAdapter(list[ConversationSnapshot])
_bubbles = TypeAdapter(list[BubbleSnapshot])


class LocalCache:
    def __init__(
        self,
        store: CacheStore,
        *,
        prefix: str | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._prefix = settings.CACHE_KEY_PREFIX if prefix is None else prefix
        self._clock = clock or SystemClock()

    def _key(self, name: str) -> str:
        return f"{self._prefix}:{name}" if self._prefix else name

    async def read(self, name: str) -> CacheEntry[Any] | None:
        raw = await self._store.get(self._key(name))
        if raw is None:
            return None
        try:
            envelope = CacheEnvelope.model_validate_json(raw)
        except PydanticValidationError:
            logger.warning("Discarding unreadable cache entry %s", name)
            await self._store.delete(self._key(name))
            return None
        return CacheEntry(value=envelope.value, written_at=envelope.written_at)

    async def write(self, name: str, value: Any) -> CacheEntry[Any]:
        entry = CacheEntry(value=value, written_at=self._clock.now())
        envelope = CacheEnvelope(value=value, written_at=entry.written_at)
        await self._store.set(self._key(name), envelope.model_dump_json())
        return entry

    async def remove(self, name: str) -> None:
        await self._store.delete(self._key(name))

    async def _read_as(self, name: str, adapter: TypeAdapter[Any]) -> CacheEntry[Any] | None:
        entry = await self.read(name)
        if entry is None:
            return None
        try:
            return CacheEntry(value=adapter.validate_python(entry.value), written_at=entry.written_at)
        except PydanticValidationError:
            logger.warning("Discarding cache entry %s with unexpected shape", name)
            await self.remove(name)
            return None

    # -- counterpart directory ----------------------------------------------

    async def read_directory(self) -> CacheEntry[list[Profile]] | None:
        entry = await self._read_as(DIRECTORY_KEY, _profiles)
        if entry is None:
            return None
        return CacheEntry([mapper.snapshot_to_profile(p) for p in entry.value], entry.written_at)

    async def write_directory(self, profiles: list[Profile]) -> None:
        snapshots = [mapper.profile_to_snapshot(p) for p in profiles]
        await self.write(DIRECTORY_KEY, _profiles.dump_python(snapshots, mode="json"))

    # -- conversation previews ----------------------------------------------

    async def read_conversations(self) -> CacheEntry[list[Conversation]] | None:
        entry = await self._read_as(CONVERSATIONS_KEY, _conversations)
        if entry is None:
            return None
        return CacheEntry([mapper.snapshot_to_conversation(c) for c in entry.value], entry.written_at)

    async def write_conversations(self, conversations: list[Conversation]) -> None:
        snapshots = [mapper.conversation_to_snapshot(c) for c in conversations]
        await self.write(CONVERSATIONS_KEY, _conversations.dump_python(snapshots, mode="json"))

    # -- bubbles (metadata only) --------------------------------------------

    async def read_bubbles(self) -> list[Bubble]:
        entry = await self._read_as(BUBBLES_KEY, _bubbles)
        if entry is None:
            return []
        return [mapper.snapshot_to_bubble(b) for b in entry.value]

    async def write_bubbles(self, bubbles: list[Bubble]) -> None:
        if not bubbles:
            await self.remove(BUBBLES_KEY)
            return
        snapshots = [mapper.bubble_to_snapshot(b) for b in bubbles]
        await self.write(BUBBLES_KEY, _bubbles.dump_python(snapshots, mode="json"))

    # -- active conversation pointer ----------------------------------------

    async def read_active_chat(self) -> ActiveChatSnapshot | None:
        entry = await self.read(ACTIVE_CHAT_KEY)
        if entry is None:
            return None
        try:
            return ActiveChatSnapshot.model_validate(entry.value)
        except PydanticValidationError:
            await self.remove(ACTIVE_CHAT_KEY)
            return None

    async def write_active_chat(
        self,
        counterpart: Profile,
        *,
        is_open: bool = True,
        is_minimized: bool = False,
    ) -> None:
        snapshot = ActiveChatSnapshot(
            counterpart=mapper.profile_to_snapshot(counterpart),
            is_open=is_open,
            is_minimized=is_minimized,
        )
        await self.write(ACTIVE_CHAT_KEY, snapshot.model_dump(mode="json"))

    async def clear_session(self) -> None:
        await self.remove(ACTIVE_CHAT_KEY)
        await self.remove(BUBBLES_KEY)
