from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from chat_sync.domain.entities.message import Message
from chat_sync.domain.entities.profile import Profile


@dataclass(frozen=True, slots=True)
class MessagePreview:
    content: str
    timestamp: datetime
    is_own: bool
    sender_id: str
    receiver_id: str

    @classmethod
    def of(cls, message: Message) -> MessagePreview:
        return cls(
            content=message.content,
            timestamp=message.timestamp,
            is_own=message.is_own,
            sender_id=message.sender_id,
            receiver_id=message.receiver_id,
        )


@dataclass(frozen=True, slots=True)
class Conversation:
    counterpart: Profile
    last_message: MessagePreview | None = None
    has_unread: bool = False

    @property
    def counterpart_id(self) -> str:
        return self.counterpart.id

    @property
    def last_activity(self) -> datetime | None:
        return self.last_message.timestamp if self.last_message else None
