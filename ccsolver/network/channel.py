"""
Channel - full-duplex text connection to the auction feed.
"""

import asyncio
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

import aiohttp

from ccsolver.core.errors import ProtocolError
from ccsolver.utils.logger import get_logger


logger = get_logger("channel")


class ChannelError(ProtocolError, ConnectionError):
    """Opening or using the feed connection failed."""


class ChannelState(Enum):
    """Connection state of a channel."""
    CLOSED = "closed"
    CONNECTING = "connecting"
    OPEN = "open"


class MessageChannel(ABC):
    """
    Text message transport used by the auction session.

    ``receive`` returns None once the remote side has closed the channel.
    """

    state: ChannelState = ChannelState.CLOSED

    @abstractmethod
    async def open(self) -> None:
        ...

    @abstractmethod
    async def send(self, text: str) -> None:
        ...

    @abstractmethod
    async def receive(self) -> Optional[str]:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    @property
    def is_open(self) -> bool:
        return self.state == ChannelState.OPEN


class WebSocketChannel(MessageChannel):
    """
    WebSocket connection to the feed over aiohttp.

    Args:
        url: ws:// or wss:// endpoint
        connect_timeout: Seconds allowed for the handshake
        heartbeat: Ping interval in seconds (None disables)
    """

    def __init__(
        self,
        url: str,
        connect_timeout: float = 10.0,
        heartbeat: Optional[float] = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.url = url
        self.connect_timeout = connect_timeout
        self.heartbeat = heartbeat
        self._session = session
        self._owns_session = session is None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self.state = ChannelState.CLOSED

    async def open(self) -> None:
        """
        Connect to the feed.

        Raises:
            ChannelError: if the handshake fails or times out
        """
        if self.state == ChannelState.OPEN:
            return

        self.state = ChannelState.CONNECTING
        if self._session is None:
            self._session = aiohttp.ClientSession()

        try:
            self._ws = await asyncio.wait_for(
                self._session.ws_connect(self.url, heartbeat=self.heartbeat),
                timeout=self.connect_timeout,
            )
        except asyncio.TimeoutError as e:
            await self._release_session()
            self.state = ChannelState.CLOSED
            raise ChannelError(f"Connection timeout to {self.url}") from e
        except aiohttp.ClientError as e:
            await self._release_session()
            self.state = ChannelState.CLOSED
            raise ChannelError(f"Connection error to {self.url}: {e}") from e

        self.state = ChannelState.OPEN
        logger.info(f"Connected to auction feed {self.url}")

    async def send(self, text: str) -> None:
        if self._ws is None or self.state != ChannelState.OPEN:
            raise ChannelError("Channel is not open")
        try:
            await self._ws.send_str(text)
        except (aiohttp.ClientError, ConnectionResetError) as e:
            raise ChannelError(f"Send error to {self.url}: {e}") from e

    async def receive(self) -> Optional[str]:
        """
        Next text frame, or None when the feed closed the connection.

        Raises:
            ChannelError: on a transport error frame
        """
        if self._ws is None or self.state != ChannelState.OPEN:
            return None

        while True:
            frame = await self._ws.receive()

            if frame.type == aiohttp.WSMsgType.TEXT:
                return frame.data
            if frame.type == aiohttp.WSMsgType.BINARY:
                return frame.data.decode("utf-8", errors="replace")
            if frame.type in (
                aiohttp.WSMsgType.CLOSE,
                aiohttp.WSMsgType.CLOSING,
                aiohttp.WSMsgType.CLOSED,
            ):
                logger.info(f"Auction feed closed the connection ({self._ws.close_code})")
                self.state = ChannelState.CLOSED
                return None
            if frame.type == aiohttp.WSMsgType.ERROR:
                self.state = ChannelState.CLOSED
                raise ChannelError(f"Receive error from {self.url}: {self._ws.exception()}")
            # PING/PONG are answered by aiohttp

    async def close(self) -> None:
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        self._ws = None
        await self._release_session()
        if self.state != ChannelState.CLOSED:
            logger.info(f"Disconnected from {self.url}")
        self.state = ChannelState.CLOSED

    async def _release_session(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
