import asyncio
from dataclasses import replace
from typing import Any, Optional

import pytest

from sttbridge.internal_core.config import BridgeConfig, load_config
from sttbridge.internal_core.errors import StreamError


class FakeClientTransport:
    """Scriptable stand-in for the client websocket."""

    def __init__(self, *, fail_send: bool = False) -> None:
        self._inbox: asyncio.Queue[Any] = asyncio.Queue()
        self.sent: list[dict[str, Any]] = []
        self.fail_send = fail_send
        self.closed_with: Optional[int] = None
        self.close_calls = 0

    def push(self, frame: Any) -> None:
        self._inbox.put_nowait(frame)

    def disconnect(self) -> None:
        self._inbox.put_nowait(None)

    async def receive_frame(self) -> Optional[bytes]:
        item = await self._inbox.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def send_json(self, payload: dict[str, Any]) -> None:
        if self.fail_send:
            raise StreamError("client went away")
        self.sent.append(payload)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.close_calls += 1
        if self.closed_with is None:
            self.closed_with = code


@pytest.fixture
def make_transport():
    return FakeClientTransport


@pytest.fixture
def bridge_config() -> BridgeConfig:
    return replace(
        load_config(),
        STT_PROVIDER="mock",
        STT_MAX_FRAME_BYTES=8192,
        STT_IDLE_TIMEOUT_SECONDS=5.0,
        STT_SHUTDOWN_GRACE_SECONDS=0.5,
        STT_SESSION_TTL_SECONDS=60,
    )
