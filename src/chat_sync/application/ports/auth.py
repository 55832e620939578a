from __future__ import annotations

from typing import Protocol

from chat_sync.application.dto.identity import CurrentUser


class AuthContext(Protocol):
    def current_user(self) -> CurrentUser | None: ...

    def token(self) -> str | None: ...
