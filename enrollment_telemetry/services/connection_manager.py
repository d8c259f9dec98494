"""Lifecycle of the single live streaming subscription.

State transitions::

    disconnected --connect()--> connecting --open--> connected
    connected --close/error--> disconnected --retry--> reconnecting --delay--> connecting

Retries are linear (``attempt * 3s``) and capped at five; after the cap the
manager stays ``disconnected`` until an explicit ``connect()``.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable, Optional, Protocol

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from enrollment_telemetry.domain.messages import (
    InboundMessage,
    MalformedMessageError,
    UnknownMessage,
    decode_message,
    subscribe_message,
)
from enrollment_telemetry.domain.models import ConnectionState
from enrollment_telemetry.utils.logger import get_logger


logger = get_logger(__name__)

MAX_RECONNECT_ATTEMPTS = 5
RECONNECT_DELAY_STEP_SECONDS = 3.0
DEFAULT_CHANNELS = ("center_updates", "demand_updates", "alerts")


class Transport(Protocol):
    async def send(self, message: str) -> None: ...

    async def close(self) -> None: ...

    def __aiter__(self): ...


TransportFactory = Callable[[str], Awaitable[Transport]]
SleepFunc = Callable[[float], Awaitable[Any]]

TRANSPORT_ERRORS = (OSError, asyncio.TimeoutError, WebSocketException)


async def open_websocket(url: str) -> Transport:
    return await websockets.connect(url)


class ConnectionManager:
    """Owns connect, subscribe, dispatch, loss detection and linear-backoff retry."""

    def __init__(
        self,
        url: str,
        token: Optional[str],
        on_message: Callable[[InboundMessage], None],
        on_status_change: Callable[[bool], None],
        *,
        on_exhausted: Optional[Callable[[], None]] = None,
        on_state_change: Optional[Callable[[ConnectionState], None]] = None,
        transport_factory: Optional[TransportFactory] = None,
        sleep: Optional[SleepFunc] = None,
        max_attempts: int = MAX_RECONNECT_ATTEMPTS,
        delay_step: float = RECONNECT_DELAY_STEP_SECONDS,
        channels: tuple[str, ...] = DEFAULT_CHANNELS,
    ) -> None:
        if max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")
        if delay_step < 0:
            raise ValueError("delay_step must be >= 0")
        self._url = f"{url}?token={token}" if token else url
        self._on_message = on_message
        self._on_status_change = on_status_change
        self._on_exhausted = on_exhausted
        self._on_state_change = on_state_change
        self._transport_factory = transport_factory or open_websocket
        self._sleep = sleep or asyncio.sleep
        self._max_attempts = max_attempts
        self._delay_step = delay_step
        self._channels = channels

        self._state = ConnectionState.DISCONNECTED
        self._transport: Optional[Transport] = None
        self._session_task: Optional[asyncio.Task] = None
        self._retry_task: Optional[asyncio.Task] = None
        self._reconnect_attempts = 0
        self._reconnect_exhausted = False
        self._stopped = True

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def reconnect_exhausted(self) -> bool:
        return self._reconnect_exhausted

    def _set_state(self, new_state: ConnectionState) -> None:
        was_connected = self.is_connected
        if new_state is self._state:
            return
        logger.info(
            "Connection state changed | from=%s | to=%s | attempts=%s",
            self._state.value,
            new_state.value,
            self._reconnect_attempts,
        )
        self._state = new_state
        if was_connected != self.is_connected:
            self._on_status_change(self.is_connected)
        if self._on_state_change is not None:
            self._on_state_change(new_state)

    async def connect(self) -> None:
        """Start a session unless one is already open or opening."""
        if self._state in (ConnectionState.CONNECTED, ConnectionState.CONNECTING):
            return
        self._cancel_retry()
        self._stopped = False
        self._reconnect_attempts = 0
        self._reconnect_exhausted = False
        self._open_session()

    def _open_session(self) -> None:
        self._set_state(ConnectionState.CONNECTING)
        self._session_task = asyncio.create_task(self._run_session())

    async def _run_session(self) -> None:
        try:
            transport = await self._transport_factory(self._url)
        except TRANSPORT_ERRORS as exc:
            logger.warning("Streaming connection failed to open | error=%s", exc)
            self._handle_loss()
            return

        if self._stopped:
            await transport.close()
            return

        self._transport = transport
        self._reconnect_attempts = 0
        self._set_state(ConnectionState.CONNECTED)
        await self.send(subscribe_message(list(self._channels)))

        try:
            async for raw in transport:
                self._dispatch(raw)
        except ConnectionClosed as exc:
            logger.warning("Streaming connection closed | code=%s", exc.rcvd.code if exc.rcvd else None)
        except TRANSPORT_ERRORS as exc:
            logger.warning("Streaming connection error | error=%s", exc)
        finally:
            self._transport = None

        if not self._stopped:
            self._handle_loss()

    def _dispatch(self, raw: str | bytes) -> None:
        try:
            message = decode_message(raw)
        except MalformedMessageError as exc:
            logger.warning("Dropped malformed streaming message | reason=%s", exc)
            return
        if isinstance(message, UnknownMessage):
            logger.info("Ignored unknown streaming message | type=%s", message.type)
            return
        try:
            self._on_message(message)
        except Exception:
            logger.exception(
                "Dropped streaming message after handler failure | type=%s",
                type(message).__name__,
            )

    def _handle_loss(self) -> None:
        self._set_state(ConnectionState.DISCONNECTED)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._stopped:
            return
        if self._reconnect_attempts >= self._max_attempts:
            self._reconnect_exhausted = True
            logger.warning(
                "Reconnect attempts exhausted | attempts=%s | state=%s",
                self._reconnect_attempts,
                self._state.value,
            )
            if self._on_exhausted is not None:
                self._on_exhausted()
            return

        self._reconnect_attempts += 1
        delay = self._reconnect_attempts * self._delay_step
        self._set_state(ConnectionState.RECONNECTING)
        logger.info(
            "Reconnect scheduled | attempt=%s | delay_seconds=%.1f",
            self._reconnect_attempts,
            delay,
        )
        self._retry_task = asyncio.create_task(self._retry_after(delay))

    async def _retry_after(self, delay: float) -> None:
        await self._sleep(delay)
        self._retry_task = None
        if self._stopped:
            return
        self._open_session()

    def _cancel_retry(self) -> None:
        if self._retry_task is not None:
            self._retry_task.cancel()
            self._retry_task = None

    async def send(self, message: dict[str, Any]) -> bool:
        """Send ``message`` if connected; otherwise drop it."""
        if self._state is not ConnectionState.CONNECTED or self._transport is None:
            logger.debug("Dropped outbound message while %s", self._state.value)
            return False
        try:
            await self._transport.send(json.dumps(message))
        except TRANSPORT_ERRORS as exc:
            logger.warning("Outbound message failed | error=%s", exc)
            return False
        return True

    async def disconnect(self) -> None:
        """Close from any state; no reconnect follows."""
        self._stopped = True
        self._cancel_retry()

        transport = self._transport
        self._transport = None
        session_task = self._session_task
        self._session_task = None
        self._set_state(ConnectionState.DISCONNECTED)

        if transport is not None:
            try:
                await transport.close()
            except TRANSPORT_ERRORS as exc:
                logger.debug("Transport close raised | error=%s", exc)
        current = asyncio.current_task()
        if session_task is not None and session_task is not current and not session_task.done():
            session_task.cancel()
            try:
                await session_task
            except asyncio.CancelledError:
                pass
