from __future__ import annotations

import uuid
from typing import NewType

MessageId = NewType("MessageId", str)

TEMP_ID_PREFIX = "temp-"
LOCAL_ID_PREFIX = "local-"


def new_temp_id() -> MessageId:
    """Id for an optimistic message that has not reached the server yet."""
    return MessageId(f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}")


def new_local_id() -> MessageId:
    """Id for a confirmed message whose frame carried no server id."""
    return MessageId(f"{LOCAL_ID_PREFIX}{uuid.uuid4().hex}")


def is_temp_id(message_id: str | None) -> bool:
    return bool(message_id) and message_id.startswith(TEMP_ID_PREFIX)
