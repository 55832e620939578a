"""Optimistic send: pending insert, socket publish or REST fallback, then confirm or fail."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Coroutine

from chat_sync.application.exceptions import ApiError, MalformedFrameError
from chat_sync.application.ports.api import ChatApi
from chat_sync.application.ports.auth import AuthContext
from chat_sync.application.ports.clock import Clock, SystemClock
from chat_sync.application.ports.transport import MessageTransport
from chat_sync.config import settings
from chat_sync.domain.entities.conversation import Conversation, MessagePreview
from chat_sync.domain.entities.message import Message
from chat_sync.domain.entities.profile import Profile
from chat_sync.domain.value_objects.enums import DeliveryState
from chat_sync.domain.value_objects.ids import new_temp_id
from chat_sync.infrastructure.mappers.message import raw_to_entity
from chat_sync.infrastructure.ws.protocol import SendMessagePayload
from chat_sync.services.conversation_index import ConversationIndex
from chat_sync.services.message_store import MessageStore

logger = logging.getLogger(__name__)

RefreshCallback = Callable[[], Coroutine[Any, Any, None]]


class SendPipeline:
    def __init__(
        self,
        store: MessageStore,
        index: ConversationIndex,
        transport: MessageTransport,
        api: ChatApi,
        auth: AuthContext,
        *,
        clock: Clock | None = None,
        refresh_callback: RefreshCallback | None = None,
        refresh_delay: float | None = None,
    ) -> None:
        self._store = store
        self._index = index
        self._transport = transport
        self._api = api
        self._auth = auth
        self._clock = clock or SystemClock()
        self._refresh_callback = refresh_callback
        self._refresh_delay = settings.REFRESH_DELAY_SECONDS if refresh_delay is None else refresh_delay
        self._refresh_task: asyncio.Task[None] | None = None

    @property
    def refresh_task(self) -> asyncio.Task[None] | None:
        return self._refresh_task

    async def send(self, counterpart: Profile | None, content: str) -> Message | None:
        """Send ``content`` to ``counterpart``.

        Returns the message as it stands once this call completes: confirmed,
        pending (socket path, awaiting its echo) or failed. Returns None when
        there was nothing to send.
        """
        text = (content or "").strip()
        me = self._auth.current_user()
        if not text or me is None or counterpart is None or not counterpart.id:
            logger.debug("Nothing to send (empty content, no identity or no counterpart)")
            return None

        pending = Message(
            id=new_temp_id(),
            content=text,
            timestamp=self._clock.now(),
            sender_id=me.id,
            receiver_id=counterpart.id,
            is_own=True,
            state=DeliveryState.PENDING,
        )
        self._store.add_pending(pending)
        await self._index.upsert(
            Conversation(counterpart=counterpart, last_message=MessagePreview.of(pending)),
        )

        payload = SendMessagePayload(
            sender_id=me.id, receiver_id=counterpart.id, content=text,
        ).to_wire()

        if self._transport.is_connected and self._transport.publish(payload):
            logger.debug("Published %s over the socket", pending.id)
            self.schedule_refresh()
            return pending

        try:
            reply = await self._api.send_message(payload)
        except ApiError as exc:
            logger.warning("Send to %s failed: %s", counterpart.id, exc.detail)
            self._store.mark_failed(pending.id)
            return self._store.get(pending.id)

        self.schedule_refresh()
        if not reply:
            # Nothing to confirm with; the inbox echo reconciles it later.
            return pending
        try:
            confirmed = raw_to_entity(reply, me.id, now=self._clock.now())
        except MalformedFrameError as exc:
            logger.warning("Unreadable send reply: %s", exc.detail)
            return pending
        self._store.replace(pending.id, confirmed)
        return self._store.get(confirmed.id) or confirmed

    def schedule_refresh(self) -> None:
        if self._refresh_callback is None:
            return
        self.cancel_refresh()
        self._refresh_task = asyncio.create_task(self._deferred_refresh())

    def cancel_refresh(self) -> None:
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_task.cancel()
        self._refresh_task = None

    async def aclose(self) -> None:
        task = self._refresh_task
        self.cancel_refresh()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _deferred_refresh(self) -> None:
        await self._clock.sleep(self._refresh_delay)
        try:
            await self._refresh_callback()
        except Exception:
            logger.exception("Deferred conversation refresh failed")
