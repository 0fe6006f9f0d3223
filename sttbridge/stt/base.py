from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Optional

from sttbridge.internal_core.contracts import AudioChunk, ProviderConfig, TranscriptEvent

logger = logging.getLogger(__name__)

_FINAL_KEYS = ("is_final", "isFinal", "final")


class ProviderAdapter(ABC):
    """One upstream speech-recognition connection.

    An instance is the connection handle: it is connected once, used by
    exactly one session, and closed once.
    """

    def __init__(self) -> None:
        self.dropped_payloads = 0

    @abstractmethod
    async def connect(self, config: ProviderConfig) -> None: ...

    @abstractmethod
    async def send_audio(self, chunk: AudioChunk) -> None: ...

    @abstractmethod
    def events(self) -> AsyncIterator[TranscriptEvent]: ...

    @abstractmethod
    async def close(self) -> None: ...

    @abstractmethod
    def name(self) -> str: ...

    def _parse_or_drop(self, raw: Any) -> Optional[TranscriptEvent]:
        event = parse_transcript_payload(raw)
        if event is None:
            self.dropped_payloads += 1
            size = len(raw) if isinstance(raw, (str, bytes)) else 0
            logger.debug("provider_payload_dropped provider=%s size=%s", self.name(), size)
        return event


def _first_bool(body: dict[str, Any]) -> Optional[bool]:
    for key in _FINAL_KEYS:
        value = body.get(key)
        if isinstance(value, bool):
            return value
    return None


def _confidence(body: dict[str, Any]) -> Optional[float]:
    value = body.get("confidence")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    value = float(value)
    if value < 0.0 or value > 1.0:
        return None
    return value


def parse_transcript_payload(raw: Any, *, received_at: Optional[float] = None) -> Optional[TranscriptEvent]:
    """Turn one upstream message into a TranscriptEvent, or None if unrecognised.

    Accepts a flat ``{"transcript": ...}`` object or the enveloped form
    ``{"type": "data", "data": {"transcript": ...}}``. Heartbeats, VAD signal
    frames, binary frames and anything that is not JSON return None.
    """
    if isinstance(raw, dict):
        payload: Any = raw
    else:
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError):
            return None
    if not isinstance(payload, dict):
        return None

    body = payload
    nested = payload.get("data")
    if "transcript" not in payload and isinstance(nested, dict):
        body = nested

    transcript = body.get("transcript")
    if not isinstance(transcript, str):
        return None

    return TranscriptEvent(
        transcript=transcript,
        is_final=_first_bool(body),
        confidence=_confidence(body),
        received_at=time.time() if received_at is None else received_at,
    )
