"""JSON payloads carried in STOMP frame bodies and REST responses."""
from __future__ import annotations

from datetime import datetime

from pydantic import AliasChoices, AliasPath, BaseModel, ConfigDict, Field


class RawMessage(BaseModel):
    """Server → client message as seen on the socket, in history pages and in send replies.

    The backend is inconsistent about field names; every variant is accepted
    here so nothing past the ingestion boundary has to care.
    """

    model_config = ConfigDict(coerce_numbers_to_str=True, extra="ignore")

    message_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("messageId", "id", "message_id"),
    )
    content: str | None = None
    timestamp: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("timestamp", "createdAt", "created_at"),
    )
    sender_id: str = Field(
        validation_alias=AliasChoices(
            "senderId",
            "senderName",
            AliasPath("sender", "userId"),
            AliasPath("sender", "userName"),
            AliasPath("sender", "username"),
        ),
    )
    receiver_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "receiverId",
            "receiverName",
            AliasPath("receiver", "userId"),
            AliasPath("receiver", "userName"),
            AliasPath("receiver", "username"),
        ),
    )
    sender_avatar: str | None = Field(
        default=None,
        validation_alias=AliasChoices("senderAvatar", AliasPath("sender", "avatar")),
    )


class RawProfile(BaseModel):
    """Directory entry from ``GET /api/users``."""

    model_config = ConfigDict(coerce_numbers_to_str=True, extra="ignore")

    id: str = Field(validation_alias=AliasChoices("userId", "id", "userName", "username"))
    username: str | None = Field(default=None, validation_alias=AliasChoices("userName", "username"))
    display_name: str | None = Field(
        default=None,
        validation_alias=AliasChoices("fullName", "displayName", "name", "userFullName"),
    )
    avatar: str | None = Field(default=None, validation_alias=AliasChoices("avatar", "avatarUrl"))
    email: str | None = Field(default=None, validation_alias=AliasChoices("email", "userEmail"))


class SendMessagePayload(BaseModel):
    """Client → server body for both the socket send destination and ``POST /api/chat/send``."""

    model_config = ConfigDict(populate_by_name=True)

    sender_id: str = Field(alias="senderId")
    receiver_id: str = Field(alias="receiverId")
    content: str

    def to_wire(self) -> dict[str, str]:
        return self.model_dump(by_alias=True)
