from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Profile:
    """Snapshot of a counterpart as shown in lists and bubbles."""

    id: str
    display_name: str = ""
    avatar: str | None = None
    email: str | None = None

    @property
    def label(self) -> str:
        return self.display_name or self.id

    def merge(self, other: Profile) -> Profile:
        """Overlay ``other`` on top of this profile without losing known fields."""
        return Profile(
            id=self.id,
            display_name=other.display_name or self.display_name,
            avatar=other.avatar or self.avatar,
            email=other.email or self.email,
        )
