"""Delivery channels for the dispatcher.

A channel is one open, authenticated socket to the notification hub.
:class:`WebSocketConnector` opens them with the ``websockets`` library;
tests substitute any object with the same four members.
"""

import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Optional, Protocol, Union
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import websockets

from src.notify_client.exceptions import ChannelClosed

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Union[str, Awaitable[str]]]


class Channel(Protocol):
    @property
    def is_open(self) -> bool: ...

    async def send(self, text: str) -> None: ...

    async def recv(self) -> str: ...

    async def close(self) -> None: ...


class WebSocketChannel:
    """Wraps a ``websockets`` client connection as a :class:`Channel`."""

    def __init__(self, ws: Any, session: Optional[dict] = None):
        self._ws = ws
        self._closed = False
        self.session = session or {}

    @property
    def is_open(self) -> bool:
        return not self._closed

    async def send(self, text: str) -> None:
        if self._closed:
            raise ChannelClosed("Channel is closed")
        try:
            await self._ws.send(text)
        except websockets.ConnectionClosed as e:
            self._closed = True
            raise ChannelClosed(f"Connection closed during send: {e}") from e

    async def recv(self) -> str:
        try:
            data = await self._ws.recv()
        except websockets.ConnectionClosed as e:
            self._closed = True
            code = e.rcvd.code if e.rcvd is not None else 1006
            raise ChannelClosed(f"Connection closed: {e}", code=code) from e
        if isinstance(data, bytes):
            return data.decode("utf-8")
        return data

    async def close(self) -> None:
        self._closed = True
        await self._ws.close()


def with_token(url: str, token: str) -> str:
    """Return *url* with ``token`` set in its query string."""
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query) if k != "token"]
    query.append(("token", token))
    return urlunsplit(parts._replace(query=urlencode(query)))


class WebSocketConnector:
    """Opens an authenticated channel to the hub.

    The hub answers a valid credential with an ``authenticated`` frame and
    an invalid one with close code 1008; anything other than the former is
    reported as :class:`ChannelClosed`.
    """

    def __init__(
        self,
        url: str,
        token_provider: TokenProvider,
        open_timeout: float = 10.0,
    ):
        self.url = url
        self._token_provider = token_provider
        self.open_timeout = open_timeout

    async def _token(self) -> str:
        token = self._token_provider()
        if inspect.isawaitable(token):
            token = await token
        return token

    async def __call__(self) -> WebSocketChannel:
        uri = with_token(self.url, await self._token())
        ws = await websockets.connect(
            uri,
            open_timeout=self.open_timeout,
            ping_interval=30,
            ping_timeout=10,
        )

        try:
            raw = await ws.recv()
        except websockets.ConnectionClosed as e:
            code = e.rcvd.code if e.rcvd is not None else 1006
            raise ChannelClosed(f"Handshake rejected: {e}", code=code) from e

        try:
            frame = json.loads(raw)
        except json.JSONDecodeError:
            frame = {}
        if not isinstance(frame, dict) or frame.get("type") != "authenticated":
            await ws.close()
            raise ChannelClosed(f"Unexpected handshake reply: {raw!r}")

        logger.info("Connected to notification hub as %s", frame.get("connection_id"))
        return WebSocketChannel(ws, session=frame)
