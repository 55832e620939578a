from __future__ import annotations

import logging

from chat_sync.application.exceptions import ApiError
from chat_sync.application.ports.api import ChatApi
from chat_sync.application.ports.auth import AuthContext
from chat_sync.application.ports.clock import Clock, SystemClock
from chat_sync.config import settings
from chat_sync.domain.entities.message import Message
from chat_sync.domain.entities.profile import Profile
from chat_sync.infrastructure.mappers.message import page_to_entities
from chat_sync.services.directory import Directory
from chat_sync.services.message_store import MessageStore

logger = logging.getLogger(__name__)

LOAD_FAILED = "Failed to load messages"
LOAD_MORE_FAILED = "Failed to load more messages"


class HistoryLoader:
    """Pages conversation history into the store, newest page first."""

    def __init__(
        self,
        store: MessageStore,
        api: ChatApi,
        auth: AuthContext,
        directory: Directory,
        *,
        clock: Clock | None = None,
        page_size: int | None = None,
    ) -> None:
        self._store = store
        self._api = api
        self._auth = auth
        self._directory = directory
        self._clock = clock or SystemClock()
        self._page_size = settings.HISTORY_PAGE_SIZE if page_size is None else page_size

    @property
    def page_size(self) -> int:
        return self._page_size

    def _is_active(self, counterpart: Profile) -> bool:
        active = self._store.state.active_counterpart
        return active is not None and active.id == counterpart.id

    async def _fetch(self, me: str, counterpart: Profile, page: int) -> list[Message]:
        raws = await self._api.get_history(me, counterpart.id, page, self._page_size)
        return page_to_entities(raws, me, now=self._clock.now())

    async def load_initial(self, counterpart: Profile) -> list[Message]:
        """Replace the visible list with page 0 for ``counterpart``."""
        me = self._auth.current_user()
        if me is None:
            logger.debug("No identity, skipping history load for %s", counterpart.id)
            return []

        self._store.set_loading(loading_messages=True)
        try:
            try:
                messages = await self._fetch(me.id, counterpart, 0)
            except ApiError as exc:
                # The counterpart may have been renamed since the directory was loaded.
                logger.warning("History for %s failed (%s), reloading directory", counterpart.id, exc.detail)
                await self._directory.load(me, force=True)
                counterpart = self._directory.resolve(counterpart.id)
                messages = await self._fetch(me.id, counterpart, 0)
        except ApiError as exc:
            logger.warning("History for %s failed again: %s", counterpart.id, exc.detail)
            if self._is_active(counterpart):
                self._store.set_messages(())
                self._store.set_error(LOAD_FAILED)
            else:
                self._store.set_loading(loading_messages=False)
            return []

        if not self._is_active(counterpart):
            # The user switched conversations while the page was in flight.
            self._store.set_loading(loading_messages=False)
            return messages

        # Keep anything sent while page 0 was loading.
        self._store.set_messages(messages, keep_pending=True)
        self._store.set_page(0)
        self._store.set_has_more(bool(messages))
        return messages

    async def load_more(self, counterpart: Profile | None, page: int | None = None) -> int:
        """Prepend the next older page. Returns how many messages were added."""
        state = self._store.state
        if counterpart is None or state.active_counterpart is None:
            return 0
        if state.loading_more or state.loading_messages or not state.has_more:
            return 0
        if state.active_counterpart.id != counterpart.id:
            return 0
        me = self._auth.current_user()
        if me is None:
            return 0

        target = state.current_page + 1 if page is None else page
        self._store.set_loading(loading_more=True)
        try:
            older = await self._fetch(me.id, counterpart, target)
        except ApiError as exc:
            logger.warning("Older history for %s failed: %s", counterpart.id, exc.detail)
            self._store.set_loading(loading_more=False)
            self._store.set_error(LOAD_MORE_FAILED)
            return 0

        if not self._is_active(counterpart):
            self._store.set_loading(loading_more=False)
            return 0
        if not older:
            self._store.set_has_more(False)
            return 0
        self._store.set_page(target)
        return self._store.prepend_history(older)
