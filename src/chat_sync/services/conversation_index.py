"""One preview per counterpart, most recent first."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable

from chat_sync.application.ports.clock import Clock, SystemClock
from chat_sync.config import settings
from chat_sync.domain.entities.cache_entry import is_fresh
from chat_sync.domain.entities.conversation import Conversation
from chat_sync.infrastructure.cache.local_cache import LocalCache
from chat_sync.services.message_store import MessageStore

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _activity(conversation: Conversation) -> datetime:
    return conversation.last_activity or _EPOCH


def _merge(current: Conversation, incoming: Conversation) -> Conversation:
    last = current.last_message
    if incoming.last_message is not None and (
        last is None or incoming.last_message.timestamp >= last.timestamp
    ):
        last = incoming.last_message
    return Conversation(
        counterpart=current.counterpart.merge(incoming.counterpart),
        last_message=last,
        has_unread=current.has_unread or incoming.has_unread,
    )


class ConversationIndex:
    def __init__(
        self,
        store: MessageStore,
        cache: LocalCache,
        *,
        clock: Clock | None = None,
        ttl: float | None = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._clock = clock or SystemClock()
        seconds = settings.CONVERSATION_CACHE_TTL_SECONDS if ttl is None else ttl
        self._ttl = timedelta(seconds=seconds)
        # Insertion order doubles as the tie-break for equal timestamps.
        self._items: list[Conversation] = []

    def list(self) -> list[Conversation]:
        return list(self._items)

    def get(self, counterpart_id: str) -> Conversation | None:
        for item in self._items:
            if item.counterpart_id == counterpart_id:
                return item
        return None

    def _publish(self) -> None:
        # sorted() is stable with reverse=True, so ties keep insertion order.
        self._items = sorted(self._items, key=_activity, reverse=True)
        self._store.set_conversations(self._items)

    async def upsert(self, preview: Conversation) -> Conversation:
        for idx, item in enumerate(self._items):
            if item.counterpart_id == preview.counterpart_id:
                merged = _merge(item, preview)
                self._items[idx] = merged
                break
        else:
            merged = preview
            self._items.append(merged)
        self._publish()
        await self.persist()
        return merged

    async def replace_all(self, previews: Iterable[Conversation]) -> None:
        """Swap in a full server listing, keeping profile details and unread flags we already had."""
        known = {item.counterpart_id: item for item in self._items}
        fresh: list[Conversation] = []
        seen: set[str] = set()
        for preview in previews:
            if preview.counterpart_id in seen:
                continue
            seen.add(preview.counterpart_id)
            previous = known.get(preview.counterpart_id)
            fresh.append(preview if previous is None else _merge(previous, preview))
        self._items = fresh
        self._publish()
        await self.persist()

    async def mark_read(self, counterpart_id: str) -> bool:
        for idx, item in enumerate(self._items):
            if item.counterpart_id == counterpart_id:
                if not item.has_unread:
                    return False
                self._items[idx] = Conversation(
                    counterpart=item.counterpart,
                    last_message=item.last_message,
                    has_unread=False,
                )
                self._publish()
                await self.persist()
                return True
        return False

    async def load_from_cache(self) -> bool:
        """Paint the cached listing if it is still fresh. Returns True if it was used."""
        entry = await self._cache.read_conversations()
        if not is_fresh(entry, self._clock.now(), self._ttl):
            return False
        self._items = list(entry.value)
        self._publish()
        logger.debug("Painted %d cached conversations", len(self._items))
        return True

    async def persist(self) -> None:
        await self._cache.write_conversations(self._items)

    def clear(self) -> None:
        self._items = []
        self._store.set_conversations(())
