"""Engine facade: the action surface a UI layer drives, plus inbound frame handling."""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Callable, Coroutine

from chat_sync.application.dto.identity import CurrentUser
from chat_sync.application.exceptions import ApiError, MalformedFrameError, TransportError, ValidationError
from chat_sync.application.policies.dedup import matches_preview
from chat_sync.application.ports.api import ChatApi
from chat_sync.application.ports.auth import AuthContext
from chat_sync.application.ports.clock import Clock, SystemClock
from chat_sync.application.ports.transport import MessageTransport, SubscriptionHandle
from chat_sync.domain.entities.conversation import Conversation, MessagePreview
from chat_sync.domain.entities.message import Message
from chat_sync.domain.entities.profile import Profile
from chat_sync.domain.value_objects.enums import ConnectionState
from chat_sync.infrastructure.cache.local_cache import LocalCache
from chat_sync.infrastructure.mappers.message import messages_to_previews, page_to_entities, raw_to_entity
from chat_sync.services.bubbles import BubbleManager
from chat_sync.services.conversation_index import ConversationIndex
from chat_sync.services.directory import Directory
from chat_sync.services.history_loader import HistoryLoader
from chat_sync.services.message_store import ChatState, MessageStore, StateListener
from chat_sync.services.send_pipeline import SendPipeline

logger = logging.getLogger(__name__)

SEEN_INBOUND_LIMIT = 500


class ChatEngine:
    """Wires the store, index, directory, history, bubbles and send path to one transport.

    The current user is re-read from the auth collaborator on every action so
    a refreshed token is honoured without a restart.
    """

    def __init__(
        self,
        *,
        auth: AuthContext,
        transport: MessageTransport,
        api: ChatApi,
        cache: LocalCache,
        clock: Clock | None = None,
        store: MessageStore | None = None,
    ) -> None:
        self._auth = auth
        self._transport = transport
        self._api = api
        self._cache = cache
        self._clock = clock or SystemClock()

        self.store = store or MessageStore()
        self.directory = Directory(api, cache, self.store, clock=self._clock)
        self.index = ConversationIndex(self.store, cache, clock=self._clock)
        self.history = HistoryLoader(self.store, api, auth, self.directory, clock=self._clock)
        self.bubbles = BubbleManager(self.store, cache, self.history, clock=self._clock)
        self.pipeline = SendPipeline(
            self.store,
            self.index,
            transport,
            api,
            auth,
            clock=self._clock,
            refresh_callback=self.load_conversations,
        )

        self._inbox: SubscriptionHandle | None = None
        self._background: set[asyncio.Task[Any]] = set()
        self._seen_inbound: deque[str] = deque(maxlen=SEEN_INBOUND_LIMIT)
        transport.on_connected(self._sync_connection_state)
        transport.on_disconnected(self._sync_connection_state)

    # -- state --------------------------------------------------------------

    @property
    def state(self) -> ChatState:
        return self.store.state

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        return self.store.subscribe(listener)

    def _me(self) -> CurrentUser | None:
        user = self._auth.current_user()
        self.store.set_current_user(user)
        return user

    def _require_me(self) -> CurrentUser:
        user = self._me()
        if user is None:
            raise ValidationError("No signed-in user")
        return user

    def _sync_connection_state(self) -> None:
        self.store.set_connection_state(self._transport.state)

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background task %s failed", task.get_name(), exc_info=task.exception())

    # -- lifecycle ----------------------------------------------------------

    async def start(self) -> bool:
        """Paint cached state, connect, then refresh previews and the directory in the background."""
        me = self._me()
        if me is None:
            logger.debug("No identity, chat engine not started")
            return False

        await self.index.load_from_cache()
        await self.bubbles.load_from_cache()
        await self.connect()
        self._spawn(self.load_conversations(), "chat-load-conversations")
        self._spawn(self.load_all_users(), "chat-load-directory")
        await self.restore_session()
        return True

    async def stop(self) -> None:
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._background.clear()
        await self.pipeline.aclose()
        await self.disconnect()

    async def handle_auth_change(self) -> None:
        """Re-read the identity: logout clears everything, a new identity restarts."""
        user = self._auth.current_user()
        previous = self.store.state.current_user
        if user is None:
            if previous is not None or self._transport.identity is not None:
                logger.info("Signed out, clearing chat state")
                await self._clear_session()
            return
        if previous is not None and previous.id == user.id:
            self.store.set_current_user(user)
            return
        if previous is not None:
            await self._clear_session()
        await self.start()

    async def _clear_session(self) -> None:
        await self.stop()
        self._inbox = None
        await self.bubbles.clear()
        self.index.clear()
        self.directory.clear()
        self._seen_inbound.clear()
        self.store.reset()

    async def connect(self) -> bool:
        me = self._require_me()
        self.store.set_connection_state(ConnectionState.CONNECTING)
        try:
            await self._transport.connect(me.id)
        except TransportError as exc:
            logger.warning("Socket unavailable, continuing over REST: %s", exc.detail)
            self.store.set_socket_available(False)
            self.store.set_connection_state(self._transport.state)
            return False

        self._inbox = self._transport.subscribe(me.id, self._on_frame)
        self.store.set_socket_available(self._inbox is not None)
        self.store.set_connection_state(self._transport.state)
        return self._inbox is not None

    async def disconnect(self) -> None:
        if self._inbox is not None:
            self._inbox.unsubscribe()
            self._inbox = None
        await self._transport.disconnect()
        self.store.set_connection_state(ConnectionState.DISCONNECTED)

    # -- inbound ------------------------------------------------------------

    async def _on_frame(self, body: dict[str, Any]) -> None:
        me = self._me()
        if me is None:
            return
        try:
            message = raw_to_entity(body, me.id, now=self._clock.now())
        except MalformedFrameError as exc:
            logger.warning("Dropping inbound frame: %s", exc.detail)
            return
        await self.handle_inbound(message)

    def _already_seen(self, message: Message) -> bool:
        """Redelivery check for conversations whose messages are not in memory."""
        if message.id in self._seen_inbound:
            return True
        conversation = self.index.get(message.counterpart_id)
        return conversation is not None and matches_preview(
            conversation.last_message, message, self.store.duplicate_window,
        )

    async def handle_inbound(self, message: Message) -> None:
        state = self.store.state
        active = state.active_counterpart
        counterpart = self.directory.resolve(message.counterpart_id)

        is_active = active is not None and active.id == message.counterpart_id
        viewing = is_active and state.is_chat_open
        if message.is_own and self.store.find_pending_match(message) is not None:
            self.store.reconcile(message)
        elif is_active:
            if not self.store.insert(message):
                return
        elif self._already_seen(message):
            logger.debug("Ignoring redelivered message id=%s", message.id)
            return
        else:
            self.store.note_inbound(message)
            self.bubbles.invalidate(message.counterpart_id)
        self._seen_inbound.append(message.id)

        await self.index.upsert(
            Conversation(
                counterpart=counterpart,
                last_message=MessagePreview.of(message),
                has_unread=not message.is_own and not viewing,
            ),
        )

    # -- conversation view --------------------------------------------------

    async def open_chat_with_user(self, counterpart: Profile | str) -> None:
        self._require_me()
        if isinstance(counterpart, str):
            profile = self.directory.resolve(counterpart)
        else:
            profile = self.directory.learn(counterpart)
        await self.bubbles.open_with(profile)
        await self.index.mark_read(profile.id)

    async def send_message(self, content: str) -> Message | None:
        return await self.pipeline.send(self.store.state.active_counterpart, content)

    async def load_more_messages(self) -> int:
        return await self.history.load_more(self.store.state.active_counterpart)

    async def minimize_chat_box(self) -> None:
        await self.bubbles.minimize_active()

    async def restore_chat_from_bubble(self, counterpart_id: str) -> bool:
        restored = await self.bubbles.restore(counterpart_id)
        if restored:
            await self.index.mark_read(counterpart_id)
        return restored

    async def close_minimized_chat(self, counterpart_id: str) -> bool:
        return await self.bubbles.close_minimized(counterpart_id)

    async def close_chat_box(self) -> None:
        await self.bubbles.close_active()

    async def restore_session(self) -> bool:
        """Reopen the conversation that was open before a reload."""
        snapshot = await self._cache.read_active_chat()
        if snapshot is None or not snapshot.is_open:
            return False
        profile = self.directory.learn(
            Profile(
                id=snapshot.counterpart.id,
                display_name=snapshot.counterpart.display_name,
                avatar=snapshot.counterpart.avatar,
                email=snapshot.counterpart.email,
            ),
        )
        await self.bubbles.open_with(profile)
        return True

    # -- lists --------------------------------------------------------------

    async def load_conversations(self) -> list[Conversation]:
        me = self._me()
        if me is None:
            return []
        self.store.set_loading(loading_conversations=True)
        try:
            raws = await self._api.get_all_messages(me.id)
        except ApiError as exc:
            logger.warning("Conversation refresh failed, keeping current list: %s", exc.detail)
            self.store.set_loading(loading_conversations=False)
            return self.index.list()
        messages = page_to_entities(raws, me.id, now=self._clock.now())
        await self.index.replace_all(messages_to_previews(messages, self.directory.resolve))
        return self.index.list()

    async def load_all_users(self, *, force: bool = False) -> list[Profile]:
        me = self._me()
        if me is None:
            return []
        return await self.directory.load(me, force=force)

    def toggle_conversation_list(self) -> bool:
        is_open = not self.store.state.is_list_open
        self.store.set_list_open(is_open)
        if is_open:
            self._spawn(self.load_conversations(), "chat-load-conversations")
        return is_open

    def close_conversation_list(self) -> None:
        self.store.set_list_open(False)

    def clear_error(self) -> None:
        self.store.set_error(None)


class DisabledChat:
    """Stands in for :class:`ChatEngine` where chat is unavailable.

    Every action is a no-op and the state stays at its defaults.
    """

    _state = ChatState()

    @property
    def state(self) -> ChatState:
        return self._state

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        return lambda: None

    async def start(self) -> bool:
        return False

    async def stop(self) -> None:
        return None

    async def handle_auth_change(self) -> None:
        return None

    async def connect(self) -> bool:
        return False

    async def disconnect(self) -> None:
        return None

    async def open_chat_with_user(self, counterpart: Profile | str) -> None:
        return None

    async def send_message(self, content: str) -> Message | None:
        return None

    async def load_more_messages(self) -> int:
        return 0

    async def minimize_chat_box(self) -> None:
        return None

    async def restore_chat_from_bubble(self, counterpart_id: str) -> bool:
        return False

    async def close_minimized_chat(self, counterpart_id: str) -> bool:
        return False

    async def close_chat_box(self) -> None:
        return None

    async def restore_session(self) -> bool:
        return False

    async def load_conversations(self) -> list[Conversation]:
        return []

    async def load_all_users(self, *, force: bool = False) -> list[Profile]:
        return []

    def toggle_conversation_list(self) -> bool:
        return False

    def close_conversation_list(self) -> None:
        return None

    def clear_error(self) -> None:
        return None
