from __future__ import annotations

"""
API surface for the transcription bridge service.

Design intent:
- Keep endpoints thin: the WebSocket handler hands the connection to a
  SessionBridge and returns when the session is closed.
- Resolve collaborators (config, provider factory, summarizer) from app.state
  so tests and deployments inject them without process-wide globals.
"""

import asyncio
import logging
import uuid
from typing import Any, Callable

from fastapi import FastAPI, HTTPException, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ValidationError

from sttbridge.bridge import WebSocketClientTransport, run_session
from sttbridge.internal_core.config import BridgeConfig, load_config
from sttbridge.internal_core.contracts import ClientErrorFrame, ProviderConfig, SessionSnapshot
from sttbridge.internal_core.session_store import InMemorySessionStore
from sttbridge.stt import ProviderAdapter, build_provider
from sttbridge.summary import SummaryAdapterError, summarize_with_llama_cpp


class SummaryRequest(BaseModel):
    transcript: str = ""


class SummaryResponse(BaseModel):
    summary: str


app = FastAPI(title="sttbridge transcription service")
logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, str(level or "INFO").upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def _get_config() -> BridgeConfig:
    existing = getattr(app.state, "bridge_config", None)
    if isinstance(existing, BridgeConfig):
        return existing
    created = load_config()
    setattr(app.state, "bridge_config", created)
    return created


def _get_session_store() -> InMemorySessionStore:
    existing = getattr(app.state, "stt_session_store", None)
    if isinstance(existing, InMemorySessionStore):
        return existing
    created = InMemorySessionStore(ttl_seconds=_get_config().STT_SESSION_TTL_SECONDS)
    setattr(app.state, "stt_session_store", created)
    return created


def _build_session_provider(cfg: BridgeConfig) -> ProviderAdapter:
    factory = getattr(app.state, "stt_provider_factory", None)
    if callable(factory):
        return factory(cfg)
    return build_provider(cfg)


def _resolve_summary_callable(cfg: BridgeConfig) -> Callable[[str], str]:
    injected = getattr(app.state, "summary_callable", None)
    if callable(injected):
        return injected

    def _default(transcript: str) -> str:
        return summarize_with_llama_cpp(
            transcript,
            model_path=cfg.SUMMARY_LLAMA_CPP_MODEL,
            max_tokens=cfg.SUMMARY_MAX_TOKENS,
        )

    return _default


def _provider_overrides(websocket: WebSocket) -> dict[str, Any]:
    params = websocket.query_params
    overrides: dict[str, Any] = {}
    for key in ("language_code", "model", "sample_rate", "encoding"):
        raw = str(params.get(key, "") or "").strip()
        if raw:
            overrides[key] = raw
    return overrides


_configure_logging(_get_config().STT_LOG_LEVEL)


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.websocket("/v1/stt/ws")
async def stt_stream_ws(websocket: WebSocket) -> None:
    await websocket.accept()
    cfg = _get_config()
    session_id = str(websocket.query_params.get("session_id", "") or "").strip()[:128] or uuid.uuid4().hex

    try:
        provider_config: ProviderConfig = cfg.provider_config(**_provider_overrides(websocket))
    except ValidationError as exc:
        logger.warning("stt_ws_invalid_config session_id=%s errors=%s", session_id, exc.error_count())
        await websocket.send_json(
            ClientErrorFrame(error="protocol_error", detail="Invalid provider configuration").model_dump()
        )
        await websocket.close(code=1008)
        return

    try:
        provider = _build_session_provider(cfg)
    except ValueError as exc:
        logger.error("stt_ws_provider_unavailable session_id=%s error=%s", session_id, exc)
        await websocket.send_json(
            ClientErrorFrame(error="connect_error", detail="Failed to connect to STT provider").model_dump()
        )
        await websocket.close(code=1011)
        return

    store = _get_session_store()
    store.cleanup_expired_sessions()
    session = await run_session(
        WebSocketClientTransport(websocket),
        provider,
        provider_config,
        cfg,
        store=store,
        session_id=session_id,
    )
    logger.info(
        "stt_ws_finished session_id=%s state=%s cause=%s",
        session.session_id,
        session.state,
        session.close_cause,
    )


@app.get("/v1/stt/sessions/{session_id}", response_model=SessionSnapshot)
async def stt_session_status(session_id: str) -> SessionSnapshot:
    normalized_session = str(session_id or "").strip()
    if not normalized_session:
        raise HTTPException(status_code=400, detail="session_id is required.")
    try:
        return _get_session_store().get_session(normalized_session)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Session not found: {normalized_session}") from exc


@app.post("/v1/summary", response_model=SummaryResponse)
async def summary(request: Request) -> SummaryResponse:
    try:
        payload = SummaryRequest.model_validate_json(await request.body())
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail="Invalid request body") from exc
    transcript = payload.transcript.strip()
    if not transcript:
        raise HTTPException(status_code=400, detail="Transcript is required")

    cfg = _get_config()
    summarize = _resolve_summary_callable(cfg)
    try:
        text = await asyncio.wait_for(
            asyncio.to_thread(summarize, transcript),
            timeout=cfg.SUMMARY_TIMEOUT_SECONDS,
        )
    except SummaryAdapterError as exc:
        logger.warning("summary_failed error=%s", exc)
        raise HTTPException(status_code=500, detail="Failed to generate summary") from exc
    except asyncio.TimeoutError as exc:
        logger.warning("summary_timeout timeout_sec=%s", cfg.SUMMARY_TIMEOUT_SECONDS)
        raise HTTPException(status_code=500, detail="Failed to generate summary") from exc

    return SummaryResponse(summary=text)
