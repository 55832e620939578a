"""REST client for the chat backend."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable
from urllib.parse import quote

import aiohttp

from chat_sync.application.exceptions import ApiError
from chat_sync.config import settings

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], str | None]


def _segment(value: str) -> str:
    return quote(str(value), safe="")


class AiohttpChatApi:
    """Implements application.ports.api.ChatApi."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        token_provider: TokenProvider | None = None,
        timeout: float | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self._token_provider = token_provider
        seconds = settings.HTTP_TIMEOUT_SECONDS if timeout is None else timeout
        self._timeout = aiohttp.ClientTimeout(total=seconds)
        self._session = session
        self._owns_session = session is None

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        token = self._token_provider() if self._token_provider else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self._base_url}{path}"
        logger.debug("%s %s", method, url)
        session = self._get_session()
        try:
            async with session.request(
                method, url, headers=self._headers(), timeout=self._timeout, **kwargs,
            ) as resp:
                if resp.status >= 400:
                    detail = await resp.text()
                    raise ApiError(
                        f"{method} {path} failed with HTTP {resp.status}: {detail[:200]}",
                        status=resp.status,
                    )
                if resp.status == 204:
                    return None
                return await resp.json(content_type=None)
        except asyncio.TimeoutError as exc:
            raise ApiError(f"{method} {path} timed out") from exc
        except aiohttp.ClientError as exc:
            raise ApiError(f"{method} {path} failed: {exc}") from exc
        except ValueError as exc:
            raise ApiError(f"{method} {path} returned invalid JSON") from exc

    async def get_history(
        self,
        user_a: str,
        user_b: str,
        page: int,
        size: int,
    ) -> list[dict[str, Any]]:
        data = await self._request(
            "GET",
            f"/api/chat/conversation/{_segment(user_a)}/{_segment(user_b)}",
            params={"page": str(page), "size": str(size)},
        )
        return _as_list(data)

    async def send_message(self, payload: dict[str, Any]) -> dict[str, Any] | None:
        data = await self._request("POST", "/api/chat/send", json=payload)
        if not isinstance(data, dict):
            return None
        result = data.get("result")
        return result if isinstance(result, dict) else data

    async def get_directory(self) -> list[dict[str, Any]]:
        data = await self._request("GET", "/api/users")
        return _as_list(data)

    async def get_all_messages(self, identity: str) -> list[dict[str, Any]]:
        data = await self._request("GET", f"/api/chat/all/{_segment(identity)}")
        return _as_list(data)

    async def aclose(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None


def _as_list(data: Any) -> list[dict[str, Any]]:
    """Accept a bare list or a ``{"result": [...]}`` envelope."""
    if isinstance(data, dict):
        data = data.get("result", data.get("content", []))
    if not isinstance(data, list):
        return []
    return [item for item in data if isinstance(item, dict)]
