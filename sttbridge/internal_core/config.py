from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from .contracts import ProviderConfig

_FRAMINGS = {"raw", "base64_json"}
_PROVIDERS = {"sarvam", "mock"}


def _getenv_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return default if value is None else value


def _getenv_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _getenv_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _getenv_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _getenv_opt_str(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return None
    return value.strip()


@dataclass(frozen=True)
class BridgeConfig:
    STT_PROVIDER: str
    SARVAM_API_KEY: str
    SARVAM_WS_URL: str
    STT_LANGUAGE_CODE: str
    STT_MODEL: str
    STT_SAMPLE_RATE: int
    STT_ENCODING: str
    STT_HIGH_VAD_SENSITIVITY: bool
    STT_VAD_SIGNALS: bool
    STT_AUDIO_FRAMING: str
    STT_MAX_FRAME_BYTES: int
    STT_SEND_QUEUE_SIZE: int
    STT_SEND_TIMEOUT_SECONDS: float
    STT_IDLE_TIMEOUT_SECONDS: float
    STT_SHUTDOWN_GRACE_SECONDS: float
    STT_CONNECT_TIMEOUT_SECONDS: float
    STT_SESSION_TTL_SECONDS: int
    STT_LOG_LEVEL: str
    SUMMARY_LLAMA_CPP_MODEL: str
    SUMMARY_MAX_TOKENS: int
    SUMMARY_TIMEOUT_SECONDS: float

    def provider_config(self, **overrides: object) -> ProviderConfig:
        values = {
            "language_code": self.STT_LANGUAGE_CODE,
            "model": self.STT_MODEL,
            "sample_rate": self.STT_SAMPLE_RATE,
            "encoding": self.STT_ENCODING,
            "high_vad_sensitivity": self.STT_HIGH_VAD_SENSITIVITY,
            "vad_signals": self.STT_VAD_SIGNALS,
            "audio_framing": self.STT_AUDIO_FRAMING,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return ProviderConfig.model_validate(values)


def load_config() -> BridgeConfig:
    api_key = _getenv_str("SARVAM_API_KEY", "")
    # Without a key the only provider that can connect is the mock one.
    provider = (_getenv_opt_str("STT_PROVIDER") or ("sarvam" if api_key else "mock")).lower()
    if provider not in _PROVIDERS:
        raise ValueError(f"STT_PROVIDER must be one of {sorted(_PROVIDERS)}, got {provider!r}")

    framing = _getenv_str("STT_AUDIO_FRAMING", "base64_json").strip().lower()
    if framing not in _FRAMINGS:
        raise ValueError(f"STT_AUDIO_FRAMING must be one of {sorted(_FRAMINGS)}, got {framing!r}")

    return BridgeConfig(
        STT_PROVIDER=provider,
        SARVAM_API_KEY=api_key,
        SARVAM_WS_URL=_getenv_str(
            "SARVAM_WS_URL", "wss://api.sarvam.ai/speech-to-text-streaming/v1"
        ),
        STT_LANGUAGE_CODE=_getenv_str("STT_LANGUAGE_CODE", "en-IN"),
        STT_MODEL=_getenv_str("STT_MODEL", "saarika:v2.5"),
        STT_SAMPLE_RATE=_getenv_int("STT_SAMPLE_RATE", 16000),
        STT_ENCODING=_getenv_str("STT_ENCODING", "audio/wav"),
        STT_HIGH_VAD_SENSITIVITY=_getenv_bool("STT_HIGH_VAD_SENSITIVITY", False),
        STT_VAD_SIGNALS=_getenv_bool("STT_VAD_SIGNALS", False),
        STT_AUDIO_FRAMING=framing,
        STT_MAX_FRAME_BYTES=_getenv_int("STT_MAX_FRAME_BYTES", 65536),
        STT_SEND_QUEUE_SIZE=max(1, _getenv_int("STT_SEND_QUEUE_SIZE", 64)),
        STT_SEND_TIMEOUT_SECONDS=_getenv_float("STT_SEND_TIMEOUT_SECONDS", 0.5),
        STT_IDLE_TIMEOUT_SECONDS=_getenv_float("STT_IDLE_TIMEOUT_SECONDS", 30.0),
        STT_SHUTDOWN_GRACE_SECONDS=_getenv_float("STT_SHUTDOWN_GRACE_SECONDS", 2.0),
        STT_CONNECT_TIMEOUT_SECONDS=_getenv_float("STT_CONNECT_TIMEOUT_SECONDS", 10.0),
        STT_SESSION_TTL_SECONDS=_getenv_int("STT_SESSION_TTL_SECONDS", 600),
        STT_LOG_LEVEL=_getenv_str("STT_LOG_LEVEL", "INFO"),
        SUMMARY_LLAMA_CPP_MODEL=_getenv_str("SUMMARY_LLAMA_CPP_MODEL", ""),
        SUMMARY_MAX_TOKENS=_getenv_int("SUMMARY_MAX_TOKENS", 512),
        SUMMARY_TIMEOUT_SECONDS=_getenv_float("SUMMARY_TIMEOUT_SECONDS", 30.0),
    )
