from __future__ import annotations

from chat_sync.domain.entities.bubble import Bubble
from chat_sync.domain.entities.conversation import Conversation, MessagePreview
from chat_sync.domain.entities.profile import Profile
from chat_sync.infrastructure.cache.schemas import (
    BubbleSnapshot,
    ConversationSnapshot,
    PreviewSnapshot,
    ProfileSnapshot,
)


def profile_to_snapshot(entity: Profile) -> ProfileSnapshot:
    return ProfileSnapshot(
        id=entity.id,
        display_name=entity.display_name,
        avatar=entity.avatar,
        email=entity.email,
    )


def snapshot_to_profile(model: ProfileSnapshot) -> Profile:
    return Profile(
        id=model.id,
        display_name=model.display_name,
        avatar=model.avatar,
        email=model.email,
    )


def conversation_to_snapshot(entity: Conversation) -> ConversationSnapshot:
    last = entity.last_message
    return ConversationSnapshot(
        counterpart=profile_to_snapshot(entity.counterpart),
        last_message=PreviewSnapshot(
            content=last.content,
            timestamp=last.timestamp,
            is_own=last.is_own,
            sender_id=last.sender_id,
            receiver_id=last.receiver_id,
        ) if last else None,
        has_unread=entity.has_unread,
    )


def snapshot_to_conversation(model: ConversationSnapshot) -> Conversation:
    last = model.last_message
    return Conversation(
        counterpart=snapshot_to_profile(model.counterpart),
        last_message=MessagePreview(
            content=last.content,
            timestamp=last.timestamp,
            is_own=last.is_own,
            sender_id=last.sender_id,
            receiver_id=last.receiver_id,
        ) if last else None,
        has_unread=model.has_unread,
    )


def bubble_to_snapshot(entity: Bubble) -> BubbleSnapshot:
    return BubbleSnapshot(
        counterpart=profile_to_snapshot(entity.counterpart),
        touched_at=entity.touched_at,
    )


def snapshot_to_bubble(model: BubbleSnapshot) -> Bubble:
    return Bubble(counterpart=snapshot_to_profile(model.counterpart), touched_at=model.touched_at)
