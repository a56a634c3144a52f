"""Pytest configuration and shared fixtures."""

import asyncio
import json
import sys
import time
from pathlib import Path
from typing import Optional

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.notify_client.exceptions import ChannelClosed  # noqa: E402
from src.realtime.auth import TokenVerifier  # noqa: E402

TEST_SECRET = "test-secret"


class FakeSocket:
    """Records frames written by the hub; can be told to fail writes."""

    def __init__(self, fail: bool = False):
        self.sent: list[str] = []
        self.fail = fail
        self.closed = False
        self.close_code: Optional[int] = None
        self.close_reason: Optional[str] = None

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise ConnectionResetError("socket is gone")
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        self.closed = True
        self.close_code = code
        self.close_reason = reason

    def frames(self) -> list[dict]:
        return [json.loads(s) for s in self.sent]


class FakeChannel:
    """In-memory client channel for dispatcher tests."""

    def __init__(self, fail_sends: bool = False):
        self.sent: list[str] = []
        self.fail_sends = fail_sends
        self.open = True
        self.closed_by_client = False
        self._inbox = None

    @property
    def is_open(self) -> bool:
        return self.open

    async def send(self, text: str) -> None:
        if not self.open:
            raise ChannelClosed("Channel is closed")
        if self.fail_sends:
            raise ChannelClosed("write failed")
        self.sent.append(text)

    async def recv(self) -> str:
        if self._inbox is None:
            self._inbox = asyncio.Queue()
        item = await self._inbox.get()
        if isinstance(item, BaseException):
            self.open = False
            raise item
        return item

    def feed(self, text: str) -> None:
        if self._inbox is None:
            self._inbox = asyncio.Queue()
        self._inbox.put_nowait(text)

    def drop(self, code: int = 1006) -> None:
        """Simulate the server going away."""
        self.feed_error(ChannelClosed("dropped", code=code))

    def feed_error(self, error: BaseException) -> None:
        if self._inbox is None:
            self._inbox = asyncio.Queue()
        self._inbox.put_nowait(error)

    async def close(self) -> None:
        self.open = False
        self.closed_by_client = True

    def messages(self) -> list[dict]:
        return [json.loads(s) for s in self.sent]


@pytest.fixture
def verifier() -> TokenVerifier:
    return TokenVerifier(TEST_SECRET)


@pytest.fixture
def make_token(verifier):
    """Factory: ``make_token("u1", "staff", "village-a")``."""

    def _make(user_id="user-1", role="staff", scope_key=None, expires_in=3600, **extra):
        claims = {"id": user_id, "role": role, "exp": int(time.time()) + expires_in}
        if scope_key is not None:
            claims["village_key"] = scope_key
        claims.update(extra)
        return verifier.issue(claims)

    return _make
