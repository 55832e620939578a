from __future__ import annotations

from typing import Literal

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    API_BASE_URL: str = "http://localhost:8080"
    WS_URL: str = "ws://localhost:8080/ws/websocket"

    SEND_DESTINATION: str = "/app/chat.send"
    INBOX_DESTINATION_TEMPLATE: str = "/user/{identity}/queue/messages"

    CONNECT_TIMEOUT_SECONDS: float = 10.0
    STOMP_HEARTBEAT_MS: int = 15000
    HTTP_TIMEOUT_SECONDS: float = 15.0

    HISTORY_PAGE_SIZE: int = 25
    DUPLICATE_WINDOW_SECONDS: float = 5.0

    DIRECTORY_CACHE_TTL_SECONDS: int = 300
    CONVERSATION_CACHE_TTL_SECONDS: int = 120
    DIRECTORY_MAX_ATTEMPTS: int = 3
    DIRECTORY_RETRY_BASE_DELAY: float = 0.5
    DIRECTORY_LIMIT: int = 50

    REFRESH_DELAY_SECONDS: float = 0.5

    CACHE_BACKEND: Literal["memory", "redis"] = "memory"
    REDIS_URL: str = "redis://localhost:6379/0"
    CACHE_KEY_PREFIX: str = "chat_sync"

    AUTH_TOKEN: str = ""
    JWT_SECRET: str = ""
    JWT_ALGORITHM: str = "HS256"

    LOG_LEVEL: str = "INFO"

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
