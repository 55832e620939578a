from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime

from chat_sync.domain.value_objects.enums import DeliveryState
from chat_sync.domain.value_objects.ids import is_temp_id


@dataclass(frozen=True, slots=True)
class Message:
    id: str
    content: str
    timestamp: datetime
    sender_id: str
    receiver_id: str
    is_own: bool
    state: DeliveryState = DeliveryState.CONFIRMED

    @property
    def is_pending_id(self) -> bool:
        return is_temp_id(self.id)

    @property
    def counterpart_id(self) -> str:
        return self.receiver_id if self.is_own else self.sender_id

    def failed(self, marker: str) -> Message:
        return replace(self, content=marker, state=DeliveryState.FAILED)
