"""Near-duplicate detection and ordering rules for the message store.

Sockets redeliver frames after reconnects and optimistic sends race with their
own echo. With no shared idempotency key, two messages are considered the
same when direction, trimmed content and sender/receiver pair match and their
timestamps fall within a tolerance window.
"""
from __future__ import annotations

from datetime import timedelta
from operator import attrgetter
from typing import Iterable

from chat_sync.domain.entities.conversation import MessagePreview
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import DeliveryState

by_timestamp = attrgetter("timestamp")


def same_signature(a: Message, b: Message, window: timedelta) -> bool:
    return (
        a.is_own == b.is_own
        and a.content.strip() == b.content.strip()
        and a.sender_id == b.sender_id
        and a.receiver_id == b.receiver_id
        and abs(a.timestamp - b.timestamp) <= window
    )


def find_near_duplicate(
    existing: Iterable[Message],
    incoming: Message,
    window: timedelta,
) -> Message | None:
    """Return an existing confirmed item that shadows ``incoming``.

    Pending items are replacement targets, never duplicate sources.
    """
    for candidate in existing:
        if candidate.is_pending_id:
            continue
        if same_signature(candidate, incoming, window):
            return candidate
    return None


def find_pending_match(
    existing: Iterable[Message],
    incoming: Message,
    window: timedelta,
) -> Message | None:
    """Return the in-flight item that ``incoming`` confirms, closest in time first."""
    if not incoming.is_own or incoming.is_pending_id:
        return None
    matches = [
        m for m in existing
        if m.is_pending_id
        and m.state == DeliveryState.PENDING
        and same_signature(m, incoming, window)
    ]
    if not matches:
        return None
    return min(matches, key=lambda m: abs(m.timestamp - incoming.timestamp))


def sort_messages(messages: Iterable[Message]) -> list[Message]:
    """Stable ascending sort by timestamp."""
    return sorted(messages, key=by_timestamp)


def matches_preview(preview: MessagePreview | None, incoming: Message, window: timedelta) -> bool:
    """True when ``incoming`` is the message a conversation preview already shows."""
    if preview is None:
        return False
    return (
        preview.is_own == incoming.is_own
        and preview.content.strip() == incoming.content.strip()
        and preview.sender_id == incoming.sender_id
        and preview.receiver_id == incoming.receiver_id
        and abs(preview.timestamp - incoming.timestamp) <= window
    )
