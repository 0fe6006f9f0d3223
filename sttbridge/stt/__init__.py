"""
Upstream speech-recognition adapters.

Design intent:
- Keep every provider-specific wire detail (auth headers, framing, config
  negotiation) behind one ProviderAdapter contract.
- Speak only AudioChunk / TranscriptEvent / ProviderConfig to the bridge.
"""
from __future__ import annotations

from sttbridge.internal_core.config import BridgeConfig

from .base import ProviderAdapter, parse_transcript_payload
from .mock import MockSTTProvider
from .sarvam import SarvamProvider


def build_provider(cfg: BridgeConfig) -> ProviderAdapter:
    """Create a fresh, unconnected provider for one session."""
    if cfg.STT_PROVIDER == "sarvam":
        return SarvamProvider(
            cfg.SARVAM_API_KEY,
            url=cfg.SARVAM_WS_URL,
            queue_size=cfg.STT_SEND_QUEUE_SIZE,
            send_timeout_sec=cfg.STT_SEND_TIMEOUT_SECONDS,
            connect_timeout_sec=cfg.STT_CONNECT_TIMEOUT_SECONDS,
            flush_timeout_sec=cfg.STT_SHUTDOWN_GRACE_SECONDS,
        )
    if cfg.STT_PROVIDER == "mock":
        return MockSTTProvider(echo=True)
    raise ValueError(f"Unknown STT_PROVIDER: {cfg.STT_PROVIDER!r}")


__all__ = [
    "MockSTTProvider",
    "ProviderAdapter",
    "SarvamProvider",
    "build_provider",
    "parse_transcript_payload",
]
