"""Persisted cache shapes. Message bodies never appear in these."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel


class CacheEnvelope(BaseModel):
    value: Any
    written_at: datetime


class ProfileSnapshot(BaseModel):
    id: str
    display_name: str = ""
    avatar: str | None = None
    email: str | None = None


class PreviewSnapshot(BaseModel):
    content: str
    timestamp: datetime
    is_own: bool
    sender_id: str
    receiver_id: str


class ConversationSnapshot(BaseModel):
    counterpart: ProfileSnapshot
    last_message: PreviewSnapshot | None = None
    has_unread: bool = False


class BubbleSnapshot(BaseModel):
    counterpart: ProfileSnapshot
    touched_at: datetime


class ActiveChatSnapshot(BaseModel):
    counterpart: ProfileSnapshot
    is_open: bool = True
    is_minimized: bool = False
