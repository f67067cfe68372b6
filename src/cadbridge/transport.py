"""
Transports

Message transports used by the command channel. A transport delivers whole
JSON documents in both directions; framing is its own concern.

- TcpTransport: newline-delimited JSON over a TCP stream (the host server's
  native protocol)
- WebSocketTransport: one JSON document per WebSocket text frame, with an
  optional bearer token, for hosts reached through a relay
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from .config import DEFAULT_PORT, BridgeConfig

logger = logging.getLogger(__name__)

# Large query replies (model statistics, warnings) arrive as one line
STREAM_LIMIT = 64 * 1024 * 1024


class TransportClosed(ConnectionError):
    """Raised when the underlying connection is gone."""

    pass


class MessageDecodeError(ValueError):
    """Raised when an incoming message is not a JSON object."""

    pass


def encode_message(message: Dict[str, Any]) -> str:
    return json.dumps(message, separators=(",", ":"))


def decode_message(raw: Any) -> Dict[str, Any]:
    """Parse one incoming message.

    Raises:
        MessageDecodeError: If the payload is not valid JSON or not an object
    """
    try:
        message = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MessageDecodeError(f"Invalid JSON message: {e}") from e
    if not isinstance(message, dict):
        raise MessageDecodeError(f"Expected a JSON object, got {type(message).__name__}")
    return message


class Transport(ABC):
    """Interface every transport implements."""

    @abstractmethod
    async def send(self, message: Dict[str, Any]) -> None:
        """Write one message.

        Raises:
            TransportClosed: If the connection is gone
        """

    @abstractmethod
    async def receive(self) -> Dict[str, Any]:
        """Wait for the next whole message.

        Raises:
            TransportClosed: If the connection is gone
            MessageDecodeError: If a message could not be parsed (the stream stays usable)
        """

    @abstractmethod
    async def close(self) -> None:
        """Close the connection. Idempotent."""


class TcpTransport(Transport):
    """Newline-delimited JSON over asyncio streams."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self._reader = reader
        self._writer = writer

    @classmethod
    async def connect(cls, host: str, port: int, timeout: float = 5.0) -> "TcpTransport":
        """Open a TCP connection to the host server.

        Raises:
            TransportClosed: If the connection cannot be established
        """
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port, limit=STREAM_LIMIT),
                timeout=timeout,
            )
        except ConnectionRefusedError as e:
            raise TransportClosed(
                f"Cannot connect to host at {host}:{port} (connection refused). Is the host running?"
            ) from e
        except asyncio.TimeoutError as e:
            raise TransportClosed(f"Connection to host at {host}:{port} timed out after {timeout}s") from e
        except OSError as e:
            raise TransportClosed(f"Failed to connect to host at {host}:{port}: {e}") from e
        return cls(reader, writer)

    async def send(self, message: Dict[str, Any]) -> None:
        try:
            self._writer.write((encode_message(message) + "\n").encode("utf-8"))
            await self._writer.drain()
        except (ConnectionError, OSError) as e:
            raise TransportClosed(f"Failed to send to host: {e}") from e

    async def receive(self) -> Dict[str, Any]:
        while True:
            try:
                line = await self._reader.readline()
            except ValueError as e:
                # Oversized line; the reader has discarded it
                raise MessageDecodeError(f"Message exceeds {STREAM_LIMIT} bytes") from e
            except (ConnectionError, OSError) as e:
                raise TransportClosed(f"Connection to host lost: {e}") from e
            if not line:
                raise TransportClosed("Host closed the connection")
            if line.strip():
                return decode_message(line)

    async def close(self) -> None:
        if self._writer.is_closing():
            return
        self._writer.close()
        try:
            await asyncio.wait_for(self._writer.wait_closed(), timeout=1.0)
        except asyncio.TimeoutError:
            # Peer stopped reading; discard the unsent buffer
            self._writer.transport.abort()
        except (ConnectionError, OSError) as e:
            logger.debug(f"Error while closing TCP transport: {e}")


class WebSocketTransport(Transport):
    """JSON documents over a WebSocket connection."""

    def __init__(self, ws: ClientConnection):
        self._ws = ws

    @classmethod
    async def connect(
        cls,
        url: str,
        api_key: Optional[str] = None,
        timeout: float = 5.0,
        heartbeat_interval: Optional[float] = 30.0,
    ) -> "WebSocketTransport":
        """Open a WebSocket connection.

        Raises:
            TransportClosed: If the connection cannot be established
        """
        # Build headers with authentication
        headers = {}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        try:
            ws = await asyncio.wait_for(
                connect(
                    url,
                    additional_headers=headers,
                    ping_interval=heartbeat_interval,
                    max_size=None,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise TransportClosed(f"Connection to {url} timed out after {timeout}s") from e
        except (OSError, WebSocketException) as e:
            raise TransportClosed(f"Failed to connect to {url}: {e}") from e
        return cls(ws)

    async def send(self, message: Dict[str, Any]) -> None:
        try:
            await self._ws.send(encode_message(message))
        except ConnectionClosed as e:
            raise TransportClosed(f"WebSocket closed: {e}") from e

    async def receive(self) -> Dict[str, Any]:
        try:
            raw = await self._ws.recv()
        except ConnectionClosed as e:
            raise TransportClosed(f"WebSocket closed: {e}") from e
        return decode_message(raw)

    async def close(self) -> None:
        await self._ws.close()


async def open_transport(config: BridgeConfig) -> Transport:
    """Open the transport named by config.endpoint.

    Supported schemes: tcp://host:port, ws://..., wss://...

    Raises:
        ValueError: If the endpoint scheme is not supported
        TransportClosed: If the connection cannot be established
    """
    parsed = urlparse(config.endpoint)
    if parsed.scheme == "tcp":
        return await TcpTransport.connect(
            parsed.hostname or "127.0.0.1",
            parsed.port or DEFAULT_PORT,
            timeout=config.connect_timeout,
        )
    if parsed.scheme in ("ws", "wss"):
        return await WebSocketTransport.connect(
            config.endpoint,
            api_key=config.api_key,
            timeout=config.connect_timeout,
            heartbeat_interval=config.heartbeat_interval,
        )
    raise ValueError(f"Unsupported endpoint scheme: {config.endpoint!r} (expected tcp://, ws:// or wss://)")
