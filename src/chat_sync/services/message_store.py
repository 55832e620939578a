"""State container for the chat core.

Every mutation goes through a synchronous method on :class:`MessageStore`, so
under the single-threaded event loop each one is applied atomically relative
to socket frames, REST completions and timers interleaving around it.
"""
from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass, replace
from datetime import timedelta
from typing import Any, Callable, Iterable

from chat_sync.application.dto.identity import CurrentUser
from chat_sync.application.policies.dedup import (
    by_timestamp,
    find_near_duplicate,
    find_pending_match,
    sort_messages,
)
from chat_sync.config import settings
from chat_sync.domain.entities.bubble import Bubble
from chat_sync.domain.entities.conversation import Conversation
from chat_sync.domain.entities.message import Message
from chat_sync.domain.entities.profile import Profile
from chat_sync.domain.value_objects.enums import ConnectionState

logger = logging.getLogger(__name__)

FAILED_MARKER = "Failed to send"

StateListener = Callable[["ChatState"], None]


@dataclass(frozen=True, slots=True)
class ChatState:
    connection_state: ConnectionState = ConnectionState.DISCONNECTED
    socket_available: bool = True
    current_user: CurrentUser | None = None

    active_counterpart: Profile | None = None
    messages: tuple[Message, ...] = ()
    conversations: tuple[Conversation, ...] = ()
    directory: tuple[Profile, ...] = ()
    bubbles: tuple[Bubble, ...] = ()

    current_page: int = 0
    has_more: bool = True

    is_chat_open: bool = False
    is_chat_minimized: bool = False
    is_list_open: bool = False

    loading_messages: bool = False
    loading_more: bool = False
    loading_conversations: bool = False
    loading_users: bool = False

    has_unread: bool = False
    error: str | None = None

    @property
    def is_connected(self) -> bool:
        return self.connection_state == ConnectionState.CONNECTED


class MessageStore:
    def __init__(self, *, duplicate_window: float | None = None) -> None:
        seconds = settings.DUPLICATE_WINDOW_SECONDS if duplicate_window is None else duplicate_window
        self._window = timedelta(seconds=seconds)
        self._state = ChatState()
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> ChatState:
        return self._state

    @property
    def duplicate_window(self) -> timedelta:
        return self._window

    @property
    def messages(self) -> tuple[Message, ...]:
        return self._state.messages

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _commit(self, **changes: Any) -> None:
        self._state = replace(self._state, **changes)
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception:
                logger.exception("State listener failed")

    # -- messages -----------------------------------------------------------

    def contains(self, message_id: str) -> bool:
        return any(m.id == message_id for m in self._state.messages)

    def get(self, message_id: str) -> Message | None:
        for m in self._state.messages:
            if m.id == message_id:
                return m
        return None

    def insert(self, message: Message) -> bool:
        """Insert ``message`` unless it is already known. Returns True if accepted."""
        current = self._state.messages
        if self.contains(message.id):
            logger.debug("Dropping known message id=%s", message.id)
            return False
        if find_near_duplicate(current, message, self._window) is not None:
            logger.debug("Dropping near-duplicate of message id=%s", message.id)
            return False
        self._place(message)
        return True

    def add_pending(self, message: Message) -> None:
        """Show an optimistic send. Each send gets its own item, even for repeated text."""
        if not self.contains(message.id):
            self._place(message)

    def _place(self, message: Message) -> None:
        messages = list(self._state.messages)
        idx = bisect.bisect_right(messages, message.timestamp, key=by_timestamp)
        messages.insert(idx, message)
        changes: dict[str, Any] = {"messages": tuple(messages)}
        if self._should_flag_unread(message):
            changes["has_unread"] = True
        self._commit(**changes)

    def replace(self, old_id: str, message: Message) -> bool:
        """Swap the item ``old_id`` for ``message``, usually pending -> confirmed."""
        current = self._state.messages
        if message.id != old_id and self.contains(message.id):
            # The confirmation already landed through another path.
            remaining = tuple(m for m in current if m.id != old_id)
            if len(remaining) != len(current):
                self._commit(messages=remaining)
            return False
        if not self.contains(old_id):
            return self.insert(message)
        swapped = [message if m.id == old_id else m for m in current]
        self._commit(messages=tuple(sort_messages(swapped)))
        return True

    def find_pending_match(self, message: Message) -> Message | None:
        return find_pending_match(self._state.messages, message, self._window)

    def reconcile(self, message: Message) -> bool:
        """Route a confirmed message: replace its pending twin if there is one, else insert."""
        pending = self.find_pending_match(message)
        if pending is not None:
            return self.replace(pending.id, message)
        return self.insert(message)

    def prepend_history(self, older: Iterable[Message]) -> int:
        """Merge an older page into the visible list. Returns the number of accepted items."""
        existing = list(self._state.messages)
        accepted: list[Message] = []
        for message in older:
            if any(m.id == message.id for m in existing + accepted):
                continue
            pending = find_pending_match(existing, message, self._window)
            if pending is not None:
                existing = [message if m.id == pending.id else m for m in existing]
                continue
            if find_near_duplicate(existing, message, self._window) is not None:
                continue
            accepted.append(message)
        self._commit(
            messages=tuple(sort_messages(accepted + existing)),
            loading_more=False,
        )
        return len(accepted)

    def set_messages(self, messages: Iterable[Message], *, keep_pending: bool = False) -> None:
        """Replace the visible list.

        With ``keep_pending`` the in-flight sends survive unless ``messages``
        already holds their confirmation.
        """
        fresh = list(messages)
        if keep_pending:
            in_flight = [m for m in self._state.messages if m.is_pending_id]
            confirmed = {
                match.id
                for match in (find_pending_match(in_flight, m, self._window) for m in fresh)
                if match is not None
            }
            fresh.extend(m for m in in_flight if m.id not in confirmed)
        self._commit(messages=tuple(sort_messages(fresh)), loading_messages=False)

    def sort_by_timestamp(self) -> None:
        self._commit(messages=tuple(sort_messages(self._state.messages)))

    def mark_failed(self, message_id: str, marker: str = FAILED_MARKER) -> bool:
        target = self.get(message_id)
        if target is None:
            return False
        failed = target.failed(marker)
        self._commit(
            messages=tuple(failed if m.id == message_id else m for m in self._state.messages),
        )
        return True

    def note_inbound(self, message: Message) -> None:
        """Apply the unread rule for a message that does not belong to the visible list."""
        if self._should_flag_unread(message):
            self._commit(has_unread=True)

    def _should_flag_unread(self, message: Message) -> bool:
        if message.is_own:
            return False
        s = self._state
        viewing = (
            s.is_chat_open
            and s.active_counterpart is not None
            and s.active_counterpart.id == message.counterpart_id
        )
        return not viewing and not s.is_list_open

    # -- session / connection flags ------------------------------------------

    def set_connection_state(self, state: ConnectionState) -> None:
        changes: dict[str, Any] = {"connection_state": state}
        if state == ConnectionState.CONNECTED:
            changes["error"] = None
        self._commit(**changes)

    def set_socket_available(self, available: bool) -> None:
        self._commit(socket_available=available)

    def set_current_user(self, user: CurrentUser | None) -> None:
        if user != self._state.current_user:
            self._commit(current_user=user)

    def activate(self, counterpart: Profile, messages: Iterable[Message] = ()) -> None:
        """Make ``counterpart`` the active conversation with a fresh pagination window."""
        self._commit(
            active_counterpart=counterpart,
            messages=tuple(sort_messages(messages)),
            current_page=0,
            has_more=True,
            loading_more=False,
            is_chat_open=True,
            is_chat_minimized=False,
            is_list_open=False,
            has_unread=False,
        )

    def deactivate(self, *, minimized: bool = False) -> None:
        if minimized:
            self._commit(is_chat_open=False, is_chat_minimized=True)
        else:
            self._commit(
                active_counterpart=None,
                messages=(),
                is_chat_open=False,
                is_chat_minimized=False,
            )

    def set_list_open(self, is_open: bool) -> None:
        changes: dict[str, Any] = {"is_list_open": is_open}
        if is_open:
            changes["has_unread"] = False
        self._commit(**changes)

    def set_page(self, page: int) -> None:
        self._commit(current_page=page)

    def set_has_more(self, has_more: bool) -> None:
        self._commit(has_more=has_more, loading_more=False)

    def set_loading(self, **flags: bool) -> None:
        unknown = set(flags) - {
            "loading_messages", "loading_more", "loading_conversations", "loading_users",
        }
        if unknown:
            raise ValueError(f"Unknown loading flags: {sorted(unknown)}")
        self._commit(**flags)

    def set_error(self, error: str | None) -> None:
        self._commit(error=error)

    def set_conversations(self, conversations: Iterable[Conversation]) -> None:
        self._commit(conversations=tuple(conversations), loading_conversations=False)

    def set_directory(self, profiles: Iterable[Profile]) -> None:
        self._commit(directory=tuple(profiles), loading_users=False)

    def set_bubbles(self, bubbles: Iterable[Bubble]) -> None:
        self._commit(bubbles=tuple(bubbles))

    def reset(self) -> None:
        """Drop everything tied to the signed-in identity."""
        self._state = ChatState()
        self._notify()
