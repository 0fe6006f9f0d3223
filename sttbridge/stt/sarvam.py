from __future__ import annotations

import asyncio
import base64
import json
import logging
from typing import Any, AsyncIterator, Callable, Optional, Union
from urllib.parse import urlencode

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException

from sttbridge.internal_core.contracts import AudioChunk, ProviderConfig, TranscriptEvent
from sttbridge.internal_core.errors import BackpressureExceeded, ConnectError, NotConnected

from .base import ProviderAdapter

logger = logging.getLogger(__name__)

_STOP = None


def _flag(value: bool) -> str:
    return "true" if value else "false"


def build_stream_url(base_url: str, config: ProviderConfig) -> str:
    params = {
        "language-code": config.language_code,
        "model": config.model,
        "sample_rate": str(config.sample_rate),
        "input_audio_codec": config.encoding,
        "high_vad_sensitivity": _flag(config.high_vad_sensitivity),
        "vad_signals": _flag(config.vad_signals),
    }
    separator = "&" if "?" in base_url else "?"
    return f"{base_url}{separator}{urlencode(params)}"


def encode_audio_message(chunk: AudioChunk, config: ProviderConfig) -> Union[bytes, str]:
    if config.audio_framing == "raw":
        return chunk.payload
    return json.dumps(
        {
            "audio": {
                "data": base64.b64encode(chunk.payload).decode("ascii"),
                "sample_rate": config.sample_rate,
                "encoding": config.encoding,
            }
        }
    )


class SarvamProvider(ProviderAdapter):
    """Sarvam streaming speech-to-text over a websocket.

    Audio goes through a bounded queue drained by a writer task so a slow
    upstream shows up as ``BackpressureExceeded`` instead of unbounded
    buffering. ``close()`` flushes whatever is still queued, bounded by
    ``flush_timeout_sec``, before closing the socket.
    """

    def __init__(
        self,
        api_key: str,
        *,
        url: str,
        queue_size: int = 64,
        send_timeout_sec: float = 0.5,
        connect_timeout_sec: float = 10.0,
        flush_timeout_sec: float = 2.0,
        connector: Optional[Callable[..., Any]] = None,
    ) -> None:
        super().__init__()
        self._api_key = api_key
        self._url = url
        self._send_timeout_sec = max(0.0, float(send_timeout_sec))
        self._connect_timeout_sec = connect_timeout_sec
        self._flush_timeout_sec = max(0.0, float(flush_timeout_sec))
        self._connector = connector or connect
        self._queue: asyncio.Queue[Optional[AudioChunk]] = asyncio.Queue(maxsize=max(1, queue_size))
        self._ws: Any = None
        self._writer_task: Optional[asyncio.Task[None]] = None
        self._writer_error: Optional[BaseException] = None
        self._connected = False
        self._closed = False

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self, config: ProviderConfig) -> None:
        if self._ws is not None or self._closed:
            raise ConnectError("provider connection cannot be reused", provider_name=self.name())
        if not self._api_key:
            raise ConnectError("SARVAM_API_KEY is not set", provider_name=self.name())

        url = build_stream_url(self._url, config)
        try:
            self._ws = await self._connector(
                url,
                additional_headers={"api-subscription-key": self._api_key},
                open_timeout=self._connect_timeout_sec,
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            raise ConnectError(
                f"failed to connect to Sarvam: {exc}", provider_name=self.name()
            ) from exc

        if self._closed:
            # close() ran while the handshake was in flight.
            await self._release_socket()
            raise ConnectError("provider closed during connect", provider_name=self.name())

        self._connected = True
        self._writer_task = asyncio.create_task(self._write_loop(config), name="sarvam-writer")
        logger.info(
            "provider_connected provider=%s language=%s model=%s framing=%s",
            self.name(),
            config.language_code,
            config.model,
            config.audio_framing,
        )

    async def send_audio(self, chunk: AudioChunk) -> None:
        if not self._connected:
            if self._writer_error is not None:
                raise NotConnected(f"provider connection lost: {self._writer_error}")
            raise NotConnected("provider is not connected")
        try:
            self._queue.put_nowait(chunk)
            return
        except asyncio.QueueFull:
            if self._send_timeout_sec <= 0:
                raise BackpressureExceeded(
                    f"provider send queue full ({self._queue.maxsize} chunks)"
                ) from None
        try:
            await asyncio.wait_for(self._queue.put(chunk), timeout=self._send_timeout_sec)
        except asyncio.TimeoutError:
            raise BackpressureExceeded(
                f"provider send queue full ({self._queue.maxsize} chunks) "
                f"for {self._send_timeout_sec}s"
            ) from None

    async def events(self) -> AsyncIterator[TranscriptEvent]:
        if self._ws is None:
            raise NotConnected("provider is not connected")
        try:
            async for message in self._ws:
                event = self._parse_or_drop(message)
                if event is not None:
                    yield event
        except ConnectionClosedOK:
            pass
        except ConnectionClosed as exc:
            logger.warning("provider_stream_closed provider=%s error=%s", self.name(), exc)
        finally:
            self._connected = False

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._connected = False

        writer = self._writer_task
        if writer is not None and not writer.done():
            loop = asyncio.get_running_loop()
            deadline = loop.time() + self._flush_timeout_sec
            try:
                await asyncio.wait_for(self._queue.put(_STOP), timeout=self._flush_timeout_sec)
                await asyncio.wait_for(writer, timeout=max(0.0, deadline - loop.time()))
            except asyncio.TimeoutError:
                logger.warning(
                    "provider_flush_timeout provider=%s queued_chunks=%s",
                    self.name(),
                    self._queue.qsize(),
                )
                writer.cancel()
                await asyncio.gather(writer, return_exceptions=True)

        await self._release_socket()
        logger.info("provider_released provider=%s dropped_payloads=%s", self.name(), self.dropped_payloads)

    def name(self) -> str:
        return "sarvam"

    async def _release_socket(self) -> None:
        if self._ws is None:
            return
        try:
            await self._ws.close()
        except (OSError, WebSocketException) as exc:
            logger.warning("provider_close_failed provider=%s error=%s", self.name(), exc)

    async def _write_loop(self, config: ProviderConfig) -> None:
        while True:
            chunk = await self._queue.get()
            if chunk is _STOP:
                return
            try:
                await self._ws.send(encode_audio_message(chunk, config))
            except (OSError, WebSocketException) as exc:
                self._writer_error = exc
                self._connected = False
                logger.warning(
                    "provider_send_failed provider=%s seq=%s error=%s", self.name(), chunk.seq, exc
                )
                return
