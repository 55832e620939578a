from __future__ import annotations

from typing import Any, Protocol


class ChatApi(Protocol):
    """REST surface of the chat backend. Returns raw JSON; mapping happens at the ingestion boundary."""

    async def get_history(
        self,
        user_a: str,
        user_b: str,
        page: int,
        size: int,
    ) -> list[dict[str, Any]]: ...

    async def send_message(self, payload: dict[str, Any]) -> dict[str, Any] | None: ...

    async def get_directory(self) -> list[dict[str, Any]]: ...

    async def get_all_messages(self, identity: str) -> list[dict[str, Any]]: ...
