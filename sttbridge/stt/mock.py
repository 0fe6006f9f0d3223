from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator, Optional, Sequence

from sttbridge.internal_core.contracts import AudioChunk, ProviderConfig, TranscriptEvent
from sttbridge.internal_core.errors import BackpressureExceeded, ConnectError, NotConnected

from .base import ProviderAdapter

_END = object()


class MockSTTProvider(ProviderAdapter):
    """In-process provider for local runs and tests.

    ``script`` holds raw upstream payloads (dicts, JSON strings or junk) that
    are released once ``emit_after_chunks`` audio chunks have arrived.
    """

    def __init__(
        self,
        script: Sequence[Any] = (),
        *,
        emit_after_chunks: int = 0,
        end_after_script: bool = False,
        echo: bool = False,
        fail_connect: Optional[str] = None,
        fail_send_after: Optional[int] = None,
    ) -> None:
        super().__init__()
        self._script = list(script)
        self._emit_after_chunks = emit_after_chunks
        self._end_after_script = end_after_script
        self._echo = echo
        self._fail_connect = fail_connect
        self._fail_send_after = fail_send_after
        self._upstream: asyncio.Queue[Any] = asyncio.Queue()
        self.config: Optional[ProviderConfig] = None
        self.received: list[AudioChunk] = []
        self.connected = False
        self.closed = False
        self.connect_calls = 0
        self.close_calls = 0

    async def connect(self, config: ProviderConfig) -> None:
        self.connect_calls += 1
        if self.connected or self.closed:
            raise ConnectError("mock provider cannot be reused", provider_name=self.name())
        if self._fail_connect:
            raise ConnectError(self._fail_connect, provider_name=self.name())
        self.config = config
        self.connected = True
        if self._emit_after_chunks <= 0:
            self._release_script()

    async def send_audio(self, chunk: AudioChunk) -> None:
        if not self.connected:
            raise NotConnected("mock provider is not connected")
        if self._fail_send_after is not None and len(self.received) >= self._fail_send_after:
            raise BackpressureExceeded(
                f"mock send queue full after {self._fail_send_after} chunks"
            )
        self.received.append(chunk)
        if self._echo:
            self.feed(
                {
                    "transcript": f"(mock) simulated transcript for chunk {chunk.seq + 1}.",
                    "is_final": True,
                }
            )
        if self._emit_after_chunks > 0 and len(self.received) == self._emit_after_chunks:
            self._release_script()

    def feed(self, payload: Any) -> None:
        self._upstream.put_nowait(payload)

    def finish(self) -> None:
        self._upstream.put_nowait(_END)

    async def events(self) -> AsyncIterator[TranscriptEvent]:
        if not self.connected:
            raise NotConnected("mock provider is not connected")
        while True:
            item = await self._upstream.get()
            if item is _END:
                return
            raw = json.dumps(item) if isinstance(item, dict) else item
            event = self._parse_or_drop(raw)
            if event is not None:
                yield event

    async def close(self) -> None:
        self.close_calls += 1
        if self.closed:
            return
        self.closed = True
        self.connected = False
        self._upstream.put_nowait(_END)

    def name(self) -> str:
        return "mock"

    def _release_script(self) -> None:
        for payload in self._script:
            self._upstream.put_nowait(payload)
        if self._end_after_script:
            self._upstream.put_nowait(_END)
