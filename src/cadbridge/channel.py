"""
Command Channel - persistent, correlated request/reply link to the CAD host.

This module owns the single transport connection to the host and matches
asynchronous replies to the callers waiting for them.

Features:
- Lazy connect on first send, reused across calls, transparent reconnect
- Monotonic request ids tracked in a pending request table
- Per-request timeouts; late replies are dropped
- All pending requests rejected on disconnect
- Serialized writes so concurrent callers never interleave frames

The channel never retries. A caller that wants a retry sends a new request
(with a new id) and must know the host operation is safe to repeat.

Known gap: a request that times out is only cancelled on the caller's side.
The host may still complete the work, and its late reply is discarded.
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from .config import BridgeConfig
from .logger import log_connection, log_exception
from .transport import MessageDecodeError, Transport, TransportClosed, open_transport

logger = logging.getLogger(__name__)


class ChannelError(Exception):
    """Base class for channel-level faults. The whole call failed."""

    pass


class ChannelTimeout(ChannelError):
    """No reply arrived before the request's deadline."""

    pass


class ChannelDisconnected(ChannelError):
    """The connection could not be made or was lost while waiting."""

    pass


class HostRejected(ChannelError):
    """The host replied with an error for the whole request."""

    pass


class ConnectionState(str, Enum):
    """Channel connection state."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass
class PendingRequest:
    request_id: int
    method: str
    future: "asyncio.Future[Any]"
    deadline: float


def _error_message(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("message") or error)
    return str(error)


class PendingRequests:
    """Pending request table: request id -> single-resolution waiter.

    Every entry leaves the table exactly once, through pop(), resolve() or
    fail_all(). Only the event loop thread touches it.
    """

    def __init__(self):
        self._entries: Dict[int, PendingRequest] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._entries

    def ids(self) -> List[int]:
        return list(self._entries)

    def add(self, request_id: int, method: str, deadline: float) -> "asyncio.Future[Any]":
        if request_id in self._entries:
            raise KeyError(f"Request id {request_id} is already pending")
        future = asyncio.get_running_loop().create_future()
        self._entries[request_id] = PendingRequest(request_id, method, future, deadline)
        return future

    def pop(self, request_id: int) -> Optional[PendingRequest]:
        return self._entries.pop(request_id, None)

    def resolve(self, message: Dict[str, Any]) -> bool:
        """Complete the waiter matching a reply.

        Returns:
            False if no live entry matches (stray or late reply)
        """
        request_id = message.get("id")
        if not isinstance(request_id, (int, str)):
            return False
        entry = self._entries.pop(request_id, None)
        if entry is None or entry.future.done():
            return False
        error = message.get("error")
        if error is not None:
            entry.future.set_exception(HostRejected(_error_message(error)))
        else:
            entry.future.set_result(message.get("result"))
        return True

    def fail_all(self, make_error: Callable[[PendingRequest], BaseException]) -> int:
        """Reject and remove every entry. Returns the number removed."""
        entries = list(self._entries.values())
        self._entries.clear()
        for entry in entries:
            if not entry.future.done():
                entry.future.set_exception(make_error(entry))
        return len(entries)


TransportFactory = Callable[[], Awaitable[Transport]]


class CommandChannel:
    """Single connection to the host with request/reply correlation.

    Usage:
        async with CommandChannel(BridgeConfig(endpoint="tcp://127.0.0.1:8080")) as channel:
            result = await channel.send("health_check")
    """

    def __init__(
        self,
        config: Optional[BridgeConfig] = None,
        transport_factory: Optional[TransportFactory] = None,
    ):
        """Initialize the channel. No connection is made until the first send.

        Args:
            config: Endpoint, timeouts and credentials
            transport_factory: Coroutine function returning a connected Transport
                (defaults to opening config.endpoint)
        """
        self.config = config or BridgeConfig()
        self._transport_factory = transport_factory or (lambda: open_transport(self.config))

        self._transport: Optional[Transport] = None
        self._reader_task: Optional["asyncio.Task[None]"] = None
        self._state = ConnectionState.DISCONNECTED
        self._pending = PendingRequests()
        self._ids = itertools.count(1)

        self._connect_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()

    @property
    def state(self) -> ConnectionState:
        """Get current connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED and self._transport is not None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def pending_ids(self) -> List[int]:
        return self._pending.ids()

    async def __aenter__(self) -> "CommandChannel":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def connect(self) -> None:
        """Connect now instead of on the first send.

        Raises:
            ChannelDisconnected: If the host cannot be reached
        """
        await self._ensure_connected()

    async def _ensure_connected(self) -> Transport:
        transport = self._transport
        if transport is not None:
            return transport

        async with self._connect_lock:
            if self._transport is not None:
                return self._transport

            self._state = ConnectionState.CONNECTING
            try:
                transport = await self._transport_factory()
            except (TransportClosed, OSError, asyncio.TimeoutError) as e:
                self._state = ConnectionState.DISCONNECTED
                log_connection("channel", "failed", str(e))
                raise ChannelDisconnected(str(e)) from e
            except Exception:
                self._state = ConnectionState.DISCONNECTED
                raise

            self._transport = transport
            self._state = ConnectionState.CONNECTED
            self._reader_task = asyncio.create_task(self._read_loop(transport))
            log_connection("channel", "open", self.config.endpoint)
            return transport

    def _allocate_id(self) -> int:
        request_id = next(self._ids)
        while request_id in self._pending:
            request_id = next(self._ids)
        return request_id

    async def send(self, method: str, params: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None) -> Any:
        """Send one request and wait for its reply.

        Args:
            method: Host command name
            params: Already unit-converted parameters
            timeout: Seconds to wait for the reply (defaults to config.timeout)

        Returns:
            The reply's result document

        Raises:
            ChannelTimeout: If no reply arrives in time
            ChannelDisconnected: If the connection fails or drops while waiting
            HostRejected: If the host answers with an error
        """
        timeout = self.config.timeout if timeout is None else timeout
        transport = await self._ensure_connected()

        loop = asyncio.get_running_loop()
        request_id = self._allocate_id()
        deadline = loop.time() + timeout
        future = self._pending.add(request_id, method, deadline)
        request = {"id": request_id, "method": method, "params": params or {}}
        writing: List[bool] = []

        try:
            try:
                await asyncio.wait_for(self._write(transport, request, writing), timeout)
            except asyncio.TimeoutError as e:
                self._pending.pop(request_id)
                if writing:
                    # The frame may be half written; the stream can't be trusted
                    await self._drop_connection(transport, f"write of '{method}' stalled")
                raise ChannelTimeout(f"Could not send '{method}' (id {request_id}) within {timeout}s") from e
            except TransportClosed as e:
                self._pending.pop(request_id)
                await self._drop_connection(transport, e)
                raise ChannelDisconnected(str(e)) from e

            logger.debug(f"-> {method} (id {request_id})")
            try:
                return await asyncio.wait_for(future, max(0.0, deadline - loop.time()))
            except asyncio.TimeoutError as e:
                raise ChannelTimeout(f"No reply to '{method}' (id {request_id}) within {timeout}s") from e
        finally:
            self._pending.pop(request_id)
            if not future.done():
                future.cancel()
            elif not future.cancelled():
                # Mark a rejection from fail_all() as retrieved
                future.exception()

    async def _write(self, transport: Transport, request: Dict[str, Any], writing: List[bool]) -> None:
        async with self._write_lock:
            if self._transport is not transport:
                raise ChannelDisconnected(f"Connection lost before '{request['method']}' was sent")
            writing.append(True)
            await transport.send(request)
            writing.clear()

    async def _read_loop(self, transport: Transport) -> None:
        """Deliver replies to waiting callers until the transport drops."""
        try:
            while True:
                try:
                    message = await transport.receive()
                except MessageDecodeError as e:
                    logger.warning(f"Dropping malformed message from host: {e}")
                    continue

                if not self._pending.resolve(message):
                    logger.debug(f"Dropping stray reply for id {message.get('id')!r}")
        except TransportClosed as e:
            await self._drop_connection(transport, e)
        except Exception as e:
            log_exception("channel read loop", e)
            await self._drop_connection(transport, e)

    async def _drop_connection(self, transport: Transport, reason: Union[BaseException, str]) -> None:
        """Tear down a transport and reject everything waiting on it."""
        if self._transport is not transport:
            return

        self._transport = None
        self._state = ConnectionState.DISCONNECTED
        reader, self._reader_task = self._reader_task, None
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()

        failed = self._pending.fail_all(
            lambda entry: ChannelDisconnected(
                f"Connection lost while waiting for '{entry.method}' (id {entry.request_id}): {reason}"
            )
        )
        log_connection("channel", "closed", f"{reason} ({failed} pending request(s) rejected)")
        await transport.close()

    async def close(self) -> None:
        """Disconnect. Pending requests are rejected; a later send reconnects."""
        transport = self._transport
        if transport is None:
            return
        reader = self._reader_task
        await self._drop_connection(transport, "channel closed")
        if reader is not None:
            await asyncio.wait([reader])
