from __future__ import annotations

import logging
from typing import Any, Callable

import jwt

from chat_sync.application.dto.identity import CurrentUser

logger = logging.getLogger(__name__)

TokenSource = Callable[[], str | None]


def claims_to_user(payload: dict[str, Any]) -> CurrentUser:
    subject = payload.get("userId", payload.get("sub"))
    if subject in (None, ""):
        raise jwt.InvalidTokenError("Token has no subject")
    return CurrentUser(
        id=str(subject),
        display_name=str(
            payload.get("username")
            or payload.get("preferred_username")
            or payload.get("name")
            or subject
        ),
        email=payload.get("email"),
        role=str(payload.get("role", "USER")),
    )


class JwtAuthContext:
    """Identity read from the bearer token on every call.

    The token source is consulted each time, so a refreshed token (new
    display name after a profile edit) is picked up without restarting.
    With a secret the signature is verified HS256-style; without one the
    claims are trusted as issued to this client.
    """

    def __init__(
        self,
        token_source: TokenSource | str,
        *,
        secret: str = "",
        algorithm: str = "HS256",
    ) -> None:
        if isinstance(token_source, str):
            static = token_source
            self._token_source: TokenSource = lambda: static
        else:
            self._token_source = token_source
        self._secret = secret
        self._algorithm = algorithm

    def token(self) -> str | None:
        return self._token_source() or None

    def current_user(self) -> CurrentUser | None:
        token = self.token()
        if not token:
            return None
        try:
            if self._secret:
                payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
            else:
                payload = jwt.decode(token, options={"verify_signature": False})
            return claims_to_user(payload)
        except jwt.PyJWTError:
            logger.debug("Auth token rejected", exc_info=True)
            return None


class StaticAuthContext:
    """Fixed identity, for embedding the engine where auth is handled elsewhere."""

    def __init__(self, user: CurrentUser | None, token: str | None = None) -> None:
        self.user = user
        self._token = token

    def current_user(self) -> CurrentUser | None:
        return self.user

    def token(self) -> str | None:
        return self._token
