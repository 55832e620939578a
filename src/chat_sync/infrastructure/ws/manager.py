"""STOMP-over-WebSocket session owned by one authenticated identity."""
from __future__ import annotations

import asyncio
import itertools
import json
import logging
from typing import Any, Callable
from urllib.parse import urlparse

import aiohttp

from chat_sync.application.exceptions import TransportError
from chat_sync.application.ports.transport import OnFrameCallback, StateCallback
from chat_sync.config import settings
from chat_sync.domain.value_objects.enums import ConnectionState
from chat_sync.infrastructure.ws.stomp import Frame, FrameDecodeError, decode_frames, encode_frame

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], str | None]

HEARTBEAT_FRAME = "\n"


class Subscription:
    """One inbox subscription. Frames are handed to the callback one at a time, in arrival order."""

    def __init__(
        self,
        sub_id: str,
        destination: str,
        callback: OnFrameCallback,
        manager: ConnectionManager,
    ) -> None:
        self.id = sub_id
        self.destination = destination
        self._callback = callback
        self._manager = manager
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._active = True
        self._task = asyncio.create_task(self._dispatch(), name=f"stomp-{sub_id}")

    @property
    def active(self) -> bool:
        return self._active

    def feed(self, body: str) -> None:
        if self._active:
            self._queue.put_nowait(body)

    def unsubscribe(self) -> None:
        if self._active:
            self._manager.release(self)

    def release(self) -> None:
        """Stop delivery immediately; queued frames are discarded."""
        self._active = False
        self._task.cancel()

    async def _dispatch(self) -> None:
        while True:
            body = await self._queue.get()
            try:
                data = json.loads(body)
            except json.JSONDecodeError:
                logger.warning("Dropping malformed frame on %s", self.destination)
                continue
            if not isinstance(data, dict):
                logger.warning("Dropping non-object frame on %s", self.destination)
                continue
            if not self._active:
                return
            try:
                await self._callback(data)
            except Exception:
                logger.exception("Error handling frame on %s", self.destination)


class ConnectionManager:
    """Owns the socket, its subscriptions and connection-state observers.

    No reconnect loop lives here: after a drop the owner decides when to
    call :meth:`connect` again.
    """

    def __init__(
        self,
        url: str | None = None,
        *,
        token_provider: TokenProvider | None = None,
        connect_timeout: float | None = None,
        heartbeat_ms: int | None = None,
        send_destination: str | None = None,
        inbox_template: str | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._url = url or settings.WS_URL
        self._token_provider = token_provider
        self._connect_timeout = (
            settings.CONNECT_TIMEOUT_SECONDS if connect_timeout is None else connect_timeout
        )
        self._heartbeat_ms = settings.STOMP_HEARTBEAT_MS if heartbeat_ms is None else heartbeat_ms
        self._send_destination = send_destination or settings.SEND_DESTINATION
        self._inbox_template = inbox_template or settings.INBOX_DESTINATION_TEMPLATE

        self._session = session
        self._owns_session = False
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._state = ConnectionState.DISCONNECTED
        self._identity: str | None = None
        self._closing = False

        self._connecting: asyncio.Task[None] | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._writer_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._outbound: asyncio.Queue[str] | None = None

        self._subscriptions: dict[str, Subscription] = {}
        self._sub_ids = itertools.count()
        self._connected_handlers: list[StateCallback] = []
        self._disconnected_handlers: list[StateCallback] = []

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def identity(self) -> str | None:
        return self._identity

    @property
    def subscriptions(self) -> list[Subscription]:
        return list(self._subscriptions.values())

    # -- lifecycle ------------------------------------------------------------

    async def connect(self, identity: str) -> None:
        if self.is_connected and self._identity == identity:
            return
        if self._connecting is not None:
            if self._identity != identity:
                raise TransportError(f"Connect for {self._identity} already in progress")
            await asyncio.shield(self._connecting)
            return
        if self._state != ConnectionState.DISCONNECTED:
            await self.disconnect()

        task = asyncio.create_task(self._connect(identity), name=f"stomp-connect-{identity}")
        self._connecting = task
        try:
            await task
        finally:
            if self._connecting is task:
                self._connecting = None

    async def _connect(self, identity: str) -> None:
        self._state = ConnectionState.CONNECTING
        self._identity = identity
        try:
            server_heartbeat = await asyncio.wait_for(
                self._handshake(identity), timeout=self._connect_timeout,
            )
        except asyncio.TimeoutError as exc:
            await self._fail()
            raise TransportError(
                f"Connection timed out after {self._connect_timeout:g}s"
            ) from exc
        except TransportError:
            await self._fail()
            raise
        except (aiohttp.ClientError, FrameDecodeError, OSError) as exc:
            await self._fail()
            raise TransportError(f"Connection failed: {exc}") from exc

        ws = self._ws
        if ws is None:
            await self._fail()
            raise TransportError("Socket closed during handshake")
        self._outbound = asyncio.Queue()
        self._writer_task = asyncio.create_task(self._write_loop(ws, self._outbound), name="stomp-writer")
        self._reader_task = asyncio.create_task(self._read_loop(ws), name="stomp-reader")
        interval = self._negotiate_heartbeat(server_heartbeat)
        if interval:
            self._heartbeat_task = asyncio.create_task(
                self._heartbeat_loop(self._outbound, interval), name="stomp-heartbeat",
            )

        self._state = ConnectionState.CONNECTED
        logger.info("STOMP session connected for %s", identity)
        self._notify(self._connected_handlers)

    async def _handshake(self, identity: str) -> str:
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        self._ws = await self._session.ws_connect(self._url, protocols=("v12.stomp",))

        headers = {
            "accept-version": "1.2",
            "host": urlparse(self._url).hostname or "/",
            "heart-beat": f"{self._heartbeat_ms},{self._heartbeat_ms}",
            "login": identity,
        }
        token = self._token_provider() if self._token_provider else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        await self._ws.send_str(encode_frame(Frame("CONNECT", headers)))

        while True:
            msg = await self._ws.receive()
            if msg.type == aiohttp.WSMsgType.TEXT:
                for frame in decode_frames(msg.data):
                    if frame.command == "CONNECTED":
                        return frame.headers.get("heart-beat", "0,0")
                    if frame.command == "ERROR":
                        raise TransportError(
                            "STOMP error: " + frame.headers.get("message", "unknown error")
                        )
            elif msg.type in (
                aiohttp.WSMsgType.CLOSE,
                aiohttp.WSMsgType.CLOSING,
                aiohttp.WSMsgType.CLOSED,
                aiohttp.WSMsgType.ERROR,
            ):
                raise TransportError("Socket closed during handshake")

    def _negotiate_heartbeat(self, server_header: str) -> float:
        """Outgoing heart-beat interval in seconds, 0 when disabled."""
        try:
            _sx, sy = (int(part) for part in server_header.split(",", 1))
        except ValueError:
            return 0.0
        if not self._heartbeat_ms or not sy:
            return 0.0
        return max(self._heartbeat_ms, sy) / 1000

    async def disconnect(self) -> None:
        """Release every subscription, then tear the transport down."""
        if self._connecting is not None and self._connecting is not asyncio.current_task():
            self._connecting.cancel()
        was_active = self._state != ConnectionState.DISCONNECTED
        self._release_subscriptions()

        self._closing = True
        try:
            ws = self._ws
            if ws is not None and not ws.closed and self._state == ConnectionState.CONNECTED:
                try:
                    await ws.send_str(encode_frame(Frame("DISCONNECT")))
                except Exception:
                    logger.debug("DISCONNECT frame not delivered", exc_info=True)
            await self._teardown()
        finally:
            self._closing = False

        self._identity = None
        if was_active:
            self._mark_disconnected()

    async def _fail(self) -> None:
        await self._teardown()
        self._identity = None
        self._mark_disconnected()

    async def _teardown(self) -> None:
        current = asyncio.current_task()
        tasks = [
            t for t in (self._reader_task, self._writer_task, self._heartbeat_task)
            if t is not None and t is not current
        ]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._reader_task = self._writer_task = self._heartbeat_task = None
        self._outbound = None

        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
            self._owns_session = False

    def _mark_disconnected(self) -> None:
        self._state = ConnectionState.DISCONNECTED
        logger.debug("STOMP session disconnected")
        self._notify(self._disconnected_handlers)

    # -- publish / subscribe --------------------------------------------------

    def publish(self, payload: dict[str, Any]) -> bool:
        """Queue a SEND frame. False (never an exception) when it cannot be sent."""
        if not self.is_connected or self._outbound is None:
            return False
        try:
            body = json.dumps(payload)
        except (TypeError, ValueError):
            logger.warning("Refusing to publish unserializable payload")
            return False
        frame = Frame(
            "SEND",
            {"destination": self._send_destination, "content-type": "application/json"},
            body,
        )
        self._outbound.put_nowait(encode_frame(frame))
        return True

    def subscribe(self, identity: str, on_message: OnFrameCallback) -> Subscription | None:
        if not self.is_connected or self._outbound is None:
            return None
        destination = self._inbox_template.format(identity=identity)
        existing = self._subscriptions.get(destination)
        if existing is not None:
            self.release(existing)

        sub = Subscription(f"sub-{next(self._sub_ids)}", destination, on_message, self)
        self._subscriptions[destination] = sub
        self._outbound.put_nowait(encode_frame(Frame(
            "SUBSCRIBE",
            {"id": sub.id, "destination": destination, "ack": "auto"},
        )))
        logger.debug("Subscribed %s to %s", sub.id, destination)
        return sub

    def release(self, sub: Subscription) -> None:
        sub.release()
        if self._subscriptions.get(sub.destination) is sub:
            del self._subscriptions[sub.destination]
        if self.is_connected and self._outbound is not None:
            self._outbound.put_nowait(encode_frame(Frame("UNSUBSCRIBE", {"id": sub.id})))

    def _release_subscriptions(self) -> None:
        for sub in list(self._subscriptions.values()):
            sub.release()
        self._subscriptions.clear()

    # -- observers ------------------------------------------------------------

    def on_connected(self, callback: StateCallback) -> Callable[[], None]:
        return self._register(self._connected_handlers, callback)

    def on_disconnected(self, callback: StateCallback) -> Callable[[], None]:
        return self._register(self._disconnected_handlers, callback)

    @staticmethod
    def _register(handlers: list[StateCallback], callback: StateCallback) -> Callable[[], None]:
        handlers.append(callback)

        def _unregister() -> None:
            if callback in handlers:
                handlers.remove(callback)

        return _unregister

    @staticmethod
    def _notify(handlers: list[StateCallback]) -> None:
        for handler in list(handlers):
            try:
                handler()
            except Exception:
                logger.exception("Connection observer failed")

    # -- background loops -----------------------------------------------------

    def _route(self, frame: Frame) -> None:
        if frame.command == "MESSAGE":
            sub_id = frame.headers.get("subscription")
            destination = frame.headers.get("destination")
            for sub in self._subscriptions.values():
                if sub.id == sub_id or (sub_id is None and sub.destination == destination):
                    sub.feed(frame.body)
                    return
            logger.debug("MESSAGE for unknown subscription %s", sub_id)
        elif frame.command == "ERROR":
            logger.warning("STOMP ERROR frame: %s", frame.headers.get("message", frame.body))

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    try:
                        frames = decode_frames(msg.data)
                    except FrameDecodeError:
                        logger.warning("Dropping undecodable STOMP payload")
                        continue
                    for frame in frames:
                        self._route(frame)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.warning("Socket error: %s", ws.exception())
                    break
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Socket reader failed")

        if self._closing:
            return
        logger.info("STOMP session lost for %s", self._identity)
        self._release_subscriptions()
        await self._teardown()
        self._mark_disconnected()

    async def _write_loop(self, ws: aiohttp.ClientWebSocketResponse, queue: asyncio.Queue[str]) -> None:
        while True:
            data = await queue.get()
            try:
                await ws.send_str(data)
            except Exception:
                logger.exception("Failed to write STOMP frame")

    async def _heartbeat_loop(self, queue: asyncio.Queue[str], interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            queue.put_nowait(HEARTBEAT_FRAME)
