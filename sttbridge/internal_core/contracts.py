from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

SessionState = Literal["connecting", "streaming", "draining", "closed"]

CloseCause = Literal[
    "client_closed",
    "provider_closed",
    "protocol_error",
    "stream_error",
    "client_gone",
    "timeout",
    "connect_failed",
    "shutdown",
]

AudioFraming = Literal["raw", "base64_json"]


class AudioChunk(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    seq: int = Field(ge=0)
    payload: bytes
    captured_at: float


class TranscriptEvent(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    transcript: str
    is_final: Optional[bool] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    received_at: float

    def to_client_frame(self) -> Dict[str, Any]:
        return ClientTranscriptFrame(
            transcript=self.transcript, isFinal=self.is_final
        ).model_dump(exclude_none=True)


class ClientTranscriptFrame(BaseModel):
    model_config = ConfigDict(extra="forbid")

    transcript: str
    isFinal: Optional[bool] = None


class ClientErrorFrame(BaseModel):
    model_config = ConfigDict(extra="forbid")

    error: str
    detail: str = ""


class ProviderConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    language_code: str = Field(default="en-IN", min_length=2, max_length=16)
    model: str = Field(default="saarika:v2.5", min_length=1)
    sample_rate: int = Field(default=16000, gt=0)
    encoding: str = Field(default="audio/wav", min_length=1)
    high_vad_sensitivity: bool = False
    vad_signals: bool = False
    audio_framing: AudioFraming = "base64_json"


AuditEventType = Literal[
    "SESSION_CREATED",
    "PROVIDER_CONNECTED",
    "CONNECT_FAILED",
    "STATE_CHANGED",
    "STREAM_ERROR",
    "SESSION_CLOSED",
]


class AuditEvent(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ts_iso: str
    session_id: str
    type: AuditEventType
    code: str
    detail: str


class SessionSnapshot(BaseModel):
    model_config = ConfigDict(extra="forbid")

    session_id: str
    provider: str
    state: SessionState
    created_at: float
    last_activity_at: float
    chunks_forwarded: int = 0
    bytes_forwarded: int = 0
    events_delivered: int = 0
    events_dropped: int = 0
    utterances_closed: int = 0
    close_cause: Optional[CloseCause] = None
    error: Optional[str] = None
    audit_events: List[AuditEvent] = Field(default_factory=list)
