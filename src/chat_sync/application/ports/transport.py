from __future__ import annotations

from typing import Any, Callable, Coroutine, Protocol

from chat_sync.domain.value_objects.enums import ConnectionState

OnFrameCallback = Callable[[dict[str, Any]], Coroutine[Any, Any, None]]
StateCallback = Callable[[], None]


class SubscriptionHandle(Protocol):
    destination: str

    @property
    def active(self) -> bool: ...

    def unsubscribe(self) -> None: ...


class MessageTransport(Protocol):
    """Implemented by infrastructure.ws.manager.ConnectionManager."""

    @property
    def state(self) -> ConnectionState: ...

    @property
    def is_connected(self) -> bool: ...

    @property
    def identity(self) -> str | None: ...

    async def connect(self, identity: str) -> None: ...

    async def disconnect(self) -> None: ...

    def publish(self, payload: dict[str, Any]) -> bool: ...

    def subscribe(self, identity: str, on_message: OnFrameCallback) -> SubscriptionHandle | None: ...

    def on_connected(self, callback: StateCallback) -> Callable[[], None]: ...

    def on_disconnected(self, callback: StateCallback) -> Callable[[], None]: ...
