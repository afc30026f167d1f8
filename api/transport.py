"""WebSocket transport used by the protocol session."""

import websockets
from config import OPEN_TIMEOUT
from core.errors import TransportError
from core.logging import log_protocol_event, start_action, transport_logger
from typing import Protocol
from websockets.exceptions import ConnectionClosed, WebSocketException


class Transport(Protocol):
    """Ordered, message-based duplex channel carrying text frames."""

    async def send(self, text: str) -> None: ...

    async def recv(self) -> str | bytes: ...

    async def close(self) -> None: ...


def build_url(host: str, port: int) -> str:
    return f"ws://{host}:{port}"


class WebSocketTransport:
    """Adapter from a websockets client connection to Transport.

    Every failure of the underlying connection is raised as TransportError.
    """

    def __init__(self, connection, url: str = ''):
        self._connection = connection
        self.url = url

    @classmethod
    async def open(cls, host: str, port: int, open_timeout: float | None = OPEN_TIMEOUT) -> 'WebSocketTransport':
        """Connect to the player server.

        Args:
            host: Server hostname
            port: Server port
            open_timeout: Seconds allowed for the TCP connect and WebSocket handshake

        Returns:
            Connected transport

        Raises:
            TransportError: If the server cannot be reached or refuses the handshake
        """
        url = build_url(host, port)
        with start_action(transport_logger, "transport_open", url=url):
            try:
                connection = await websockets.connect(url, open_timeout=open_timeout)
            except TimeoutError as e:
                raise TransportError(f"Timeout: could not connect to {url} within {open_timeout}s") from e
            except (OSError, WebSocketException) as e:
                raise TransportError(f"Could not connect to {url}: {e}") from e
            log_protocol_event("transport_connected", level="DEBUG", url=url)
        return cls(connection, url)

    async def send(self, text: str) -> None:
        try:
            await self._connection.send(text)
        except (ConnectionClosed, OSError) as e:
            raise TransportError(f"Send failed: {e}") from e

    async def recv(self) -> str | bytes:
        try:
            return await self._connection.recv()
        except ConnectionClosed as e:
            raise TransportError(f"Connection closed before a response arrived: {e}") from e
        except OSError as e:
            raise TransportError(f"Receive failed: {e}") from e

    async def close(self) -> None:
        try:
            await self._connection.close()
        except OSError as e:
            raise TransportError(f"Close failed: {e}") from e
        log_protocol_event("transport_closed", level="DEBUG", url=self.url)
