from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional

from sttbridge.internal_core.contracts import AudioChunk
from sttbridge.internal_core.errors import (
    BridgeError,
    ProtocolError,
    SessionStopped,
    StreamError,
)
from sttbridge.stt.base import ProviderAdapter

from .lifecycle import LifecycleController
from .transport import ClientTransport

logger = logging.getLogger(__name__)

_CLIENT_UNREACHABLE = {"client_closed", "client_gone"}


class InboundForwarder:
    """Client audio frames -> provider, in receipt order."""

    def __init__(
        self,
        transport: ClientTransport,
        provider: ProviderAdapter,
        lifecycle: LifecycleController,
        *,
        max_frame_bytes: int,
        session_id: str = "",
        on_progress: Optional[Callable[[], None]] = None,
    ) -> None:
        self._transport = transport
        self._provider = provider
        self._lifecycle = lifecycle
        self._max_frame_bytes = max_frame_bytes
        self._session_id = session_id
        self._on_progress = on_progress
        self.next_seq = 0
        self.chunks_forwarded = 0
        self.bytes_forwarded = 0

    async def run(self) -> None:
        try:
            while True:
                frame = await self._lifecycle.guard(self._transport.receive_frame())
                if frame is None:
                    self._lifecycle.request_stop("client_closed")
                    return
                if len(frame) > self._max_frame_bytes:
                    raise ProtocolError(
                        f"frame of {len(frame)} bytes exceeds limit of {self._max_frame_bytes}"
                    )
                if not frame:
                    continue

                chunk = AudioChunk(seq=self.next_seq, payload=frame, captured_at=time.time())
                self.next_seq += 1
                self._lifecycle.touch()
                try:
                    await self._lifecycle.guard(self._provider.send_audio(chunk))
                except BridgeError as exc:
                    if isinstance(exc, StreamError):
                        raise
                    raise StreamError(f"send_audio failed ({exc.code}): {exc.message}") from exc
                self.chunks_forwarded += 1
                self.bytes_forwarded += len(frame)
                if self._on_progress is not None:
                    self._on_progress()
        except SessionStopped:
            return
        except ProtocolError as exc:
            logger.warning("inbound_protocol_error session_id=%s error=%s", self._session_id, exc)
            self._lifecycle.request_stop("protocol_error", exc)
        except StreamError as exc:
            logger.warning("inbound_stream_error session_id=%s error=%s", self._session_id, exc)
            self._lifecycle.request_stop("stream_error", exc)


class OutboundForwarder:
    """Provider transcript events -> client text frames, in emission order."""

    def __init__(
        self,
        transport: ClientTransport,
        provider: ProviderAdapter,
        lifecycle: LifecycleController,
        *,
        session_id: str = "",
        on_progress: Optional[Callable[[], None]] = None,
    ) -> None:
        self._transport = transport
        self._provider = provider
        self._lifecycle = lifecycle
        self._session_id = session_id
        self._on_progress = on_progress
        self.events_delivered = 0
        self.utterances_closed = 0

    async def run(self) -> None:
        events = self._provider.events()
        try:
            while True:
                try:
                    event = await self._lifecycle.guard(events.__anext__())
                except StopAsyncIteration:
                    self._lifecycle.request_stop("provider_closed")
                    return
                except BridgeError as exc:
                    logger.warning(
                        "outbound_provider_error session_id=%s error=%s", self._session_id, exc
                    )
                    self._lifecycle.request_stop("stream_error", exc)
                    return

                try:
                    await self._deliver(event.to_client_frame())
                except StreamError as exc:
                    logger.info("outbound_client_gone session_id=%s error=%s", self._session_id, exc)
                    self._lifecycle.request_stop("client_gone", exc)
                    return
                self.events_delivered += 1
                if event.is_final:
                    self.utterances_closed += 1
                if self._on_progress is not None:
                    self._on_progress()
        except SessionStopped:
            return
        finally:
            aclose = getattr(events, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _deliver(self, frame: dict[str, Any]) -> None:
        if self._lifecycle.stopped:
            # An event already taken from the provider is still delivered
            # unless the client can no longer receive it.
            if self._lifecycle.cause in _CLIENT_UNREACHABLE:
                raise SessionStopped()
            await self._transport.send_json(frame)
            return
        await self._lifecycle.guard(self._transport.send_json(frame))
