from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from chat_sync.domain.entities.message import Message
from chat_sync.domain.entities.profile import Profile


@dataclass(frozen=True, slots=True)
class Bubble:
    """A parked conversation.

    ``messages`` lives in memory only; the persisted projection carries the
    counterpart and the touch time.
    """

    counterpart: Profile
    touched_at: datetime
    messages: tuple[Message, ...] = ()

    @property
    def counterpart_id(self) -> str:
        return self.counterpart.id
