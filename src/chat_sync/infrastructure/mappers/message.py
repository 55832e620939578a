"""Ingestion boundary: raw frames, pages and replies → canonical entities.

Applied exactly once, right after a fetch or a socket frame.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping

from pydantic import ValidationError as PydanticValidationError

from chat_sync.application.exceptions import MalformedFrameError
from chat_sync.domain.entities.conversation import Conversation, MessagePreview
from chat_sync.domain.entities.message import Message
from chat_sync.domain.entities.profile import Profile
from chat_sync.domain.value_objects.enums import DeliveryState
from chat_sync.domain.value_objects.ids import new_local_id
from chat_sync.infrastructure.ws.protocol import RawMessage, RawProfile

logger = logging.getLogger(__name__)

ProfileResolver = Callable[[str], Profile]


def _as_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def raw_to_entity(raw: Mapping[str, Any], current_user_id: str, *, now: datetime) -> Message:
    try:
        model = RawMessage.model_validate(raw)
    except PydanticValidationError as exc:
        raise MalformedFrameError(f"Unreadable message: {exc.error_count()} error(s)") from exc

    sender_id = model.sender_id
    receiver_id = model.receiver_id
    if not receiver_id:
        # Inbox frames may omit the receiver: it is us.
        if sender_id == current_user_id:
            raise MalformedFrameError("Own message without receiver")
        receiver_id = current_user_id

    return Message(
        id=model.message_id or new_local_id(),
        content=model.content or "",
        timestamp=_as_utc(model.timestamp or now),
        sender_id=sender_id,
        receiver_id=receiver_id,
        is_own=sender_id == current_user_id,
        state=DeliveryState.CONFIRMED,
    )


def page_to_entities(
    raws: Iterable[Mapping[str, Any]],
    current_user_id: str,
    *,
    now: datetime,
) -> list[Message]:
    """Map a history page, skipping entries that cannot be read."""
    messages: list[Message] = []
    for raw in raws:
        try:
            messages.append(raw_to_entity(raw, current_user_id, now=now))
        except MalformedFrameError as exc:
            logger.warning("Skipping history entry: %s", exc.detail)
    return messages


def raw_to_profile(raw: Mapping[str, Any]) -> Profile | None:
    try:
        model = RawProfile.model_validate(raw)
    except PydanticValidationError:
        return None
    return Profile(
        id=model.id,
        display_name=model.display_name or model.username or "",
        avatar=model.avatar,
        email=model.email,
    )


def messages_to_previews(
    messages: Iterable[Message],
    resolve: ProfileResolver,
) -> list[Conversation]:
    """Group messages by counterpart, keeping the most recent one as the preview."""
    latest: dict[str, Message] = {}
    for message in messages:
        key = message.counterpart_id
        seen = latest.get(key)
        if seen is None or message.timestamp > seen.timestamp:
            latest[key] = message
    return [
        Conversation(counterpart=resolve(key), last_message=MessagePreview.of(message))
        for key, message in latest.items()
    ]
