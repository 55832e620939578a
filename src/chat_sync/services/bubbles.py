"""Parked conversations ("bubbles") and the active-conversation pointer."""
from __future__ import annotations

import logging

from chat_sync.application.ports.clock import Clock, SystemClock
from chat_sync.domain.entities.bubble import Bubble
from chat_sync.domain.entities.profile import Profile
from chat_sync.infrastructure.cache.local_cache import ACTIVE_CHAT_KEY, LocalCache
from chat_sync.services.history_loader import HistoryLoader
from chat_sync.services.message_store import MessageStore

logger = logging.getLogger(__name__)


class BubbleManager:
    def __init__(
        self,
        store: MessageStore,
        cache: LocalCache,
        history: HistoryLoader,
        *,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._history = history
        self._clock = clock or SystemClock()
        self._bubbles: list[Bubble] = []

    @property
    def bubbles(self) -> list[Bubble]:
        return list(self._bubbles)

    def find(self, counterpart_id: str) -> Bubble | None:
        for bubble in self._bubbles:
            if bubble.counterpart_id == counterpart_id:
                return bubble
        return None

    def _drop(self, counterpart_id: str) -> Bubble | None:
        bubble = self.find(counterpart_id)
        if bubble is not None:
            self._bubbles.remove(bubble)
        return bubble

    def _park_active(self) -> None:
        """Move the visible conversation into the bubble set, replacing a stale copy."""
        state = self._store.state
        active = state.active_counterpart
        if active is None:
            return
        parked = Bubble(counterpart=active, touched_at=self._clock.now(), messages=state.messages)
        for idx, bubble in enumerate(self._bubbles):
            if bubble.counterpart_id == active.id:
                self._bubbles[idx] = parked
                return
        self._bubbles.append(parked)

    def invalidate(self, counterpart_id: str) -> None:
        """Forget the in-memory messages of a parked conversation so restoring it reloads page 0."""
        for idx, bubble in enumerate(self._bubbles):
            if bubble.counterpart_id == counterpart_id and bubble.messages:
                self._bubbles[idx] = Bubble(counterpart=bubble.counterpart, touched_at=bubble.touched_at)
                return

    async def _publish(self) -> None:
        self._store.set_bubbles(self._bubbles)
        await self._cache.write_bubbles(self._bubbles)

    async def open_with(self, counterpart: Profile) -> None:
        state = self._store.state
        active = state.active_counterpart
        if active is not None and active.id != counterpart.id and state.messages:
            self._park_active()
        self._drop(counterpart.id)
        self._store.activate(counterpart)
        await self._publish()
        await self._cache.write_active_chat(counterpart)
        await self._history.load_initial(counterpart)

    async def minimize_active(self) -> Bubble | None:
        state = self._store.state
        active = state.active_counterpart
        if active is None or not state.is_chat_open:
            return None
        self._park_active()
        self._store.deactivate(minimized=True)
        await self._publish()
        await self._cache.write_active_chat(active, is_open=False, is_minimized=True)
        return self.find(active.id)

    async def restore(self, counterpart_id: str) -> bool:
        bubble = self.find(counterpart_id)
        if bubble is None:
            logger.debug("No bubble for %s", counterpart_id)
            return False
        state = self._store.state
        active = state.active_counterpart
        if active is not None and active.id != counterpart_id and state.messages:
            self._park_active()
        self._drop(counterpart_id)
        self._store.activate(bubble.counterpart, bubble.messages)
        await self._publish()
        await self._cache.write_active_chat(bubble.counterpart)
        if not bubble.messages:
            # Bubbles rehydrated from cache carry no messages.
            await self._history.load_initial(bubble.counterpart)
        return True

    async def close_minimized(self, counterpart_id: str) -> bool:
        if self._drop(counterpart_id) is None:
            return False
        state = self._store.state
        if (
            state.is_chat_minimized
            and state.active_counterpart is not None
            and state.active_counterpart.id == counterpart_id
        ):
            self._store.deactivate()
            await self._cache.remove(ACTIVE_CHAT_KEY)
        await self._publish()
        return True

    async def close_active(self) -> None:
        active = self._store.state.active_counterpart
        self._store.deactivate()
        if active is not None:
            self._drop(active.id)
        await self._publish()
        await self._cache.remove(ACTIVE_CHAT_KEY)

    async def load_from_cache(self) -> list[Bubble]:
        self._bubbles = await self._cache.read_bubbles()
        self._store.set_bubbles(self._bubbles)
        return self.bubbles

    async def clear(self) -> None:
        self._bubbles = []
        self._store.set_bubbles(())
        await self._cache.clear_session()
