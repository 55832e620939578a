"""Shared test fixtures."""
from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest

from chat_sync.application.dto.identity import CurrentUser
from chat_sync.application.exceptions import ApiError, TransportError
from chat_sync.application.ports.transport import OnFrameCallback
from chat_sync.domain.entities.message import Message
from chat_sync.domain.entities.profile import Profile
from chat_sync.domain.value_objects.enums import ConnectionState, DeliveryState
from chat_sync.domain.value_objects.ids import new_temp_id
from chat_sync.infrastructure.auth.jwt_context import StaticAuthContext
from chat_sync.infrastructure.cache.local_cache import LocalCache
from chat_sync.infrastructure.cache.memory import InMemoryCacheStore
from chat_sync.services.message_store import MessageStore

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)

_ids = itertools.count(1000)


@pytest.fixture
def current_user() -> CurrentUser:
    return CurrentUser(id="u1", display_name="Alice", email="alice@example.com")


@pytest.fixture
def auth(current_user) -> StaticAuthContext:
    return StaticAuthContext(current_user, token="test-token")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache_store() -> InMemoryCacheStore:
    return InMemoryCacheStore()


@pytest.fixture
def cache(cache_store, clock) -> LocalCache:
    return LocalCache(cache_store, prefix="test", clock=clock)


@pytest.fixture
def store() -> MessageStore:
    return MessageStore(duplicate_window=5)


@pytest.fixture
def api() -> FakeChatApi:
    return FakeChatApi()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


def make_profile(identity: str = "u2", name: str | None = None) -> Profile:
    return Profile(id=identity, display_name=name if name is not None else identity.upper())


def make_message(
    *,
    message_id: str | None = None,
    content: str = "hello",
    at: datetime | float = 0,
    sender: str = "u2",
    receiver: str = "u1",
    me: str = "u1",
    state: DeliveryState = DeliveryState.CONFIRMED,
    pending: bool = False,
) -> Message:
    """``at`` is either a datetime or seconds after T0."""
    timestamp = at if isinstance(at, datetime) else T0 + timedelta(seconds=at)
    if pending:
        message_id = message_id or new_temp_id()
        state = DeliveryState.PENDING
    return Message(
        id=message_id or str(next(_ids)),
        content=content,
        timestamp=timestamp,
        sender_id=sender,
        receiver_id=receiver,
        is_own=sender == me,
        state=state,
    )


def raw_message(
    *,
    message_id: Any = None,
    content: str = "hello",
    at: float = 0,
    sender: str = "u2",
    receiver: str | None = "u1",
) -> dict[str, Any]:
    raw: dict[str, Any] = {
        "content": content,
        "timestamp": (T0 + timedelta(seconds=at)).isoformat(),
        "senderId": sender,
    }
    if message_id is not None:
        raw["id"] = message_id
    if receiver is not None:
        raw["receiverId"] = receiver
    return raw


@dataclass
class FakeClock:
    current: datetime = T0
    sleeps: list[float] = field(default_factory=list)

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)
        await asyncio.sleep(0)


@dataclass
class FakeChatApi:
    history: dict[tuple[str, int], list[dict[str, Any]]] = field(default_factory=dict)
    directory: list[dict[str, Any]] = field(default_factory=list)
    all_messages: list[dict[str, Any]] = field(default_factory=list)
    send_reply: dict[str, Any] | None = None

    history_failures: int = 0
    directory_failures: int = 0
    fail_send: bool = False
    fail_all_messages: bool = False

    history_calls: list[tuple[str, str, int, int]] = field(default_factory=list)
    sent: list[dict[str, Any]] = field(default_factory=list)
    directory_calls: int = 0
    all_messages_calls: int = 0
    on_send: Callable[[dict[str, Any]], None] | None = None

    async def get_history(self, user_a: str, user_b: str, page: int, size: int) -> list[dict[str, Any]]:
        self.history_calls.append((user_a, user_b, page, size))
        if self.history_failures:
            self.history_failures -= 1
            raise ApiError("history unavailable", status=500)
        return list(self.history.get((user_b, page), []))

    async def send_message(self, payload: dict[str, Any]) -> dict[str, Any] | None:
        self.sent.append(payload)
        if self.on_send is not None:
            self.on_send(payload)
        if self.fail_send:
            raise ApiError("send failed", status=503)
        return self.send_reply

    async def get_directory(self) -> list[dict[str, Any]]:
        self.directory_calls += 1
        if self.directory_failures:
            self.directory_failures -= 1
            raise ApiError("directory unavailable", status=502)
        return list(self.directory)

    async def get_all_messages(self, identity: str) -> list[dict[str, Any]]:
        self.all_messages_calls += 1
        if self.fail_all_messages:
            raise ApiError("listing unavailable", status=500)
        return list(self.all_messages)


@dataclass
class FakeSubscription:
    destination: str
    callback: OnFrameCallback
    _active: bool = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        self._active = False


@dataclass
class FakeTransport:
    fail_connect: bool = False
    accept_publish: bool = True

    state: ConnectionState = ConnectionState.DISCONNECTED
    identity: str | None = None
    published: list[dict[str, Any]] = field(default_factory=list)
    subscriptions: list[FakeSubscription] = field(default_factory=list)
    connect_calls: int = 0
    _connected_handlers: list[Callable[[], None]] = field(default_factory=list)
    _disconnected_handlers: list[Callable[[], None]] = field(default_factory=list)

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    async def connect(self, identity: str) -> None:
        self.connect_calls += 1
        if self.fail_connect:
            self.state = ConnectionState.DISCONNECTED
            for cb in list(self._disconnected_handlers):
                cb()
            raise TransportError("Connection timed out after 10s")
        self.state = ConnectionState.CONNECTED
        self.identity = identity
        for cb in list(self._connected_handlers):
            cb()

    async def disconnect(self) -> None:
        was_active = self.state != ConnectionState.DISCONNECTED
        for sub in self.subscriptions:
            sub.unsubscribe()
        self.state = ConnectionState.DISCONNECTED
        self.identity = None
        if was_active:
            for cb in list(self._disconnected_handlers):
                cb()

    def drop(self) -> None:
        """Simulate the server closing the socket."""
        for sub in self.subscriptions:
            sub.unsubscribe()
        self.state = ConnectionState.DISCONNECTED
        for cb in list(self._disconnected_handlers):
            cb()

    def publish(self, payload: dict[str, Any]) -> bool:
        if not self.is_connected or not self.accept_publish:
            return False
        self.published.append(payload)
        return True

    def subscribe(self, identity: str, on_message: OnFrameCallback) -> FakeSubscription | None:
        if not self.is_connected:
            return None
        sub = FakeSubscription(f"/user/{identity}/queue/messages", on_message)
        self.subscriptions.append(sub)
        return sub

    async def deliver(self, body: dict[str, Any]) -> None:
        for sub in self.subscriptions:
            if sub.active:
                await sub.callback(body)

    def on_connected(self, callback: Callable[[], None]) -> Callable[[], None]:
        self._connected_handlers.append(callback)
        return lambda: self._connected_handlers.remove(callback)

    def on_disconnected(self, callback: Callable[[], None]) -> Callable[[], None]:
        self._disconnected_handlers.append(callback)
        return lambda: self._disconnected_handlers.remove(callback)
