from __future__ import annotations

from dataclasses import dataclass

from chat_sync.domain.entities.profile import Profile


@dataclass(frozen=True, slots=True)
class CurrentUser:
    """Authenticated identity supplied by the auth collaborator."""

    id: str
    display_name: str = ""
    email: str | None = None
    role: str = "USER"

    @property
    def profile(self) -> Profile:
        return Profile(id=self.id, display_name=self.display_name, email=self.email)
