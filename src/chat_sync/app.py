from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from chat_sync.application.ports.auth import AuthContext
from chat_sync.application.ports.cache import CacheStore
from chat_sync.config import Settings, settings as default_settings
from chat_sync.infrastructure.auth.jwt_context import JwtAuthContext
from chat_sync.infrastructure.cache.local_cache import LocalCache
from chat_sync.infrastructure.cache.memory import InMemoryCacheStore
from chat_sync.infrastructure.cache.redis_store import RedisCacheStore
from chat_sync.infrastructure.http.chat_api import AiohttpChatApi
from chat_sync.infrastructure.ws.manager import ConnectionManager
from chat_sync.services.chat import ChatEngine, DisabledChat
from chat_sync.services.message_store import MessageStore

logger = logging.getLogger(__name__)


def create_cache_store(cfg: Settings) -> CacheStore:
    if cfg.CACHE_BACKEND == "redis":
        logger.info("Using Redis cache at %s", cfg.REDIS_URL)
        return RedisCacheStore.from_url(cfg.REDIS_URL)
    return InMemoryCacheStore()


def create_auth(cfg: Settings) -> JwtAuthContext:
    return JwtAuthContext(cfg.AUTH_TOKEN, secret=cfg.JWT_SECRET, algorithm=cfg.JWT_ALGORITHM)


@asynccontextmanager
async def chat_engine(
    cfg: Settings | None = None,
    *,
    auth: AuthContext | None = None,
) -> AsyncIterator[ChatEngine | DisabledChat]:
    """Build, start and finally stop an engine for the configured identity.

    Yields :class:`DisabledChat` when no identity can be resolved.
    """
    cfg = cfg or default_settings
    auth = auth or create_auth(cfg)
    if auth.current_user() is None:
        logger.warning("No usable auth token, chat is disabled")
        yield DisabledChat()
        return

    store = create_cache_store(cfg)
    api = AiohttpChatApi(
        cfg.API_BASE_URL, token_provider=auth.token, timeout=cfg.HTTP_TIMEOUT_SECONDS,
    )
    transport = ConnectionManager(
        cfg.WS_URL,
        token_provider=auth.token,
        connect_timeout=cfg.CONNECT_TIMEOUT_SECONDS,
        heartbeat_ms=cfg.STOMP_HEARTBEAT_MS,
        send_destination=cfg.SEND_DESTINATION,
        inbox_template=cfg.INBOX_DESTINATION_TEMPLATE,
    )
    engine = ChatEngine(
        auth=auth,
        transport=transport,
        api=api,
        cache=LocalCache(store, prefix=cfg.CACHE_KEY_PREFIX),
        store=MessageStore(duplicate_window=cfg.DUPLICATE_WINDOW_SECONDS),
    )
    await engine.start()
    try:
        yield engine
    finally:
        await engine.stop()
        await api.aclose()
        if isinstance(store, RedisCacheStore):
            await store.aclose()
        logger.info("Chat engine stopped")
