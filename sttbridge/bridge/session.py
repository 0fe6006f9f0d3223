from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

from sttbridge.internal_core import audit
from sttbridge.internal_core.config import BridgeConfig
from sttbridge.internal_core.contracts import (
    ClientErrorFrame,
    CloseCause,
    ProviderConfig,
    SessionSnapshot,
    SessionState,
)
from sttbridge.internal_core.errors import BridgeError, ConnectError, InvalidTransition, StreamError
from sttbridge.internal_core.session_store import InMemorySessionStore
from sttbridge.stt.base import ProviderAdapter

from .forwarders import InboundForwarder, OutboundForwarder
from .lifecycle import LifecycleController
from .transport import ClientTransport

logger = logging.getLogger(__name__)

_TRANSITIONS: dict[str, frozenset[str]] = {
    "connecting": frozenset({"streaming", "closed"}),
    "streaming": frozenset({"draining"}),
    "draining": frozenset({"closed"}),
    "closed": frozenset(),
}

# Causes that end with a terminal error frame to the client before close.
_ERROR_FRAME_CAUSES = {"connect_failed", "protocol_error", "stream_error", "timeout"}

_CLOSE_CODES: dict[str, int] = {
    "connect_failed": 1011,
    "stream_error": 1011,
    "protocol_error": 1008,
}


@dataclass
class Session:
    session_id: str
    transport: ClientTransport
    provider: ProviderAdapter
    config: ProviderConfig
    state: SessionState = "connecting"
    created_at: float = field(default_factory=time.time)
    last_activity_at: float = field(default_factory=time.time)
    chunks_forwarded: int = 0
    bytes_forwarded: int = 0
    events_delivered: int = 0
    utterances_closed: int = 0
    close_cause: Optional[CloseCause] = None
    error: Optional[str] = None

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=self.session_id,
            provider=self.provider.name(),
            state=self.state,
            created_at=self.created_at,
            last_activity_at=self.last_activity_at,
            chunks_forwarded=self.chunks_forwarded,
            bytes_forwarded=self.bytes_forwarded,
            events_delivered=self.events_delivered,
            events_dropped=self.provider.dropped_payloads,
            utterances_closed=self.utterances_closed,
            close_cause=self.close_cause,
            error=self.error,
        )


class SessionBridge:
    """Relay between one client connection and one provider connection.

    Lifecycle: ``start`` (connecting -> streaming, or connecting -> closed on
    handshake failure), ``serve`` (streaming -> draining once either
    direction stops), ``close`` (draining -> closed after both directions
    exited and both handles are released).
    """

    def __init__(
        self,
        provider: ProviderAdapter,
        *,
        max_frame_bytes: int,
        idle_timeout_sec: float,
        shutdown_grace_sec: float,
        store: Optional[InMemorySessionStore] = None,
        session_id: Optional[str] = None,
    ) -> None:
        self._provider = provider
        self._max_frame_bytes = max_frame_bytes
        self._idle_timeout_sec = idle_timeout_sec
        self._shutdown_grace_sec = shutdown_grace_sec
        self._store = store
        self._session_id = session_id or uuid.uuid4().hex
        self._session: Optional[Session] = None
        self._lifecycle: Optional[LifecycleController] = None
        self._joined = asyncio.Event()
        self._close_task: Optional[asyncio.Task[None]] = None

    @classmethod
    def from_config(
        cls,
        provider: ProviderAdapter,
        cfg: BridgeConfig,
        *,
        store: Optional[InMemorySessionStore] = None,
        session_id: Optional[str] = None,
    ) -> "SessionBridge":
        return cls(
            provider,
            max_frame_bytes=cfg.STT_MAX_FRAME_BYTES,
            idle_timeout_sec=cfg.STT_IDLE_TIMEOUT_SECONDS,
            shutdown_grace_sec=cfg.STT_SHUTDOWN_GRACE_SECONDS,
            store=store,
            session_id=session_id,
        )

    @property
    def session(self) -> Optional[Session]:
        return self._session

    async def start(self, transport: ClientTransport, config: ProviderConfig) -> Session:
        if self._session is not None:
            raise InvalidTransition("SessionBridge.start may only be called once")
        session = Session(
            session_id=self._session_id,
            transport=transport,
            provider=self._provider,
            config=config,
        )
        self._session = session
        if self._store is not None:
            self._store.register(session.snapshot())
        audit.log_event(
            self._store, session.session_id, "SESSION_CREATED", "CREATED",
            f"provider={self._provider.name()} language={config.language_code}",
        )

        try:
            await self._provider.connect(config)
        except ConnectError as exc:
            logger.warning(
                "provider_connect_failed session_id=%s provider=%s error=%s",
                session.session_id,
                self._provider.name(),
                exc.message,
            )
            if self._close_task is None:
                session.close_cause = "connect_failed"
                session.error = exc.message
            audit.log_event(self._store, session.session_id, "CONNECT_FAILED", exc.code, exc.message)
            await self.close()
            raise

        if self._close_task is not None or session.state == "closed":
            # close() won the race against the handshake.
            await self._provider.close()
            await self.close()
            raise ConnectError("session closed during connect", provider_name=self._provider.name())

        audit.log_event(
            self._store, session.session_id, "PROVIDER_CONNECTED", "CONNECTED", self._provider.name()
        )
        self._transition("streaming")
        return session

    async def serve(self) -> CloseCause:
        session = self._require_session()
        if session.state != "streaming":
            raise InvalidTransition(f"cannot serve a session in state {session.state!r}")

        lifecycle = LifecycleController(
            idle_timeout_sec=self._idle_timeout_sec,
            shutdown_grace_sec=self._shutdown_grace_sec,
            session_id=session.session_id,
        )
        self._lifecycle = lifecycle

        def publish_progress() -> None:
            self._record_progress(inbound, outbound)

        inbound = InboundForwarder(
            session.transport,
            self._provider,
            lifecycle,
            max_frame_bytes=self._max_frame_bytes,
            session_id=session.session_id,
            on_progress=publish_progress,
        )
        outbound = OutboundForwarder(
            session.transport,
            self._provider,
            lifecycle,
            session_id=session.session_id,
            on_progress=publish_progress,
        )

        try:
            await lifecycle.supervise(
                {"inbound": inbound.run(), "outbound": outbound.run()},
                on_stop=lambda: self._begin_draining(lifecycle),
            )
        finally:
            self._joined.set()
            self._record_progress(inbound, outbound)
            self._begin_draining(lifecycle)
            await self.close()
        return session.close_cause or "shutdown"

    async def close(self) -> None:
        """Release both handles. Idempotent; every caller waits for completion."""
        if self._close_task is None:
            self._close_task = asyncio.create_task(self._close_once())
        await asyncio.shield(self._close_task)

    def _record_progress(self, inbound: InboundForwarder, outbound: OutboundForwarder) -> None:
        session = self._require_session()
        session.chunks_forwarded = inbound.chunks_forwarded
        session.bytes_forwarded = inbound.bytes_forwarded
        session.events_delivered = outbound.events_delivered
        session.utterances_closed = outbound.utterances_closed
        session.last_activity_at = time.time()
        if self._store is not None:
            self._store.update(session.snapshot())

    def _begin_draining(self, lifecycle: LifecycleController) -> None:
        session = self._require_session()
        if session.close_cause is None:
            session.close_cause = lifecycle.cause or "shutdown"
            if lifecycle.error is not None:
                session.error = str(lifecycle.error)
        session.last_activity_at = time.time()
        if session.state == "streaming":
            self._transition("draining")

    async def _close_once(self) -> None:
        session = self._session
        if session is None:
            await self._provider.close()
            return

        lifecycle = self._lifecycle
        if lifecycle is not None and not self._joined.is_set():
            lifecycle.request_stop("shutdown")
            await self._joined.wait()
        elif session.state == "streaming":
            # Started but never served.
            session.close_cause = session.close_cause or "shutdown"
            self._transition("draining")

        try:
            await self._provider.close()
        except BridgeError as exc:
            logger.warning(
                "provider_release_failed session_id=%s error=%s", session.session_id, exc
            )

        cause = session.close_cause or "shutdown"
        if cause in _ERROR_FRAME_CAUSES:
            frame = ClientErrorFrame(error=_error_code(cause), detail=_error_detail(cause, session))
            try:
                await session.transport.send_json(frame.model_dump())
            except StreamError as exc:
                logger.debug(
                    "error_frame_not_delivered session_id=%s error=%s", session.session_id, exc
                )
        await session.transport.close(code=_CLOSE_CODES.get(cause, 1000), reason=cause)

        if cause in {"protocol_error", "stream_error", "timeout"}:
            audit.log_event(self._store, session.session_id, "STREAM_ERROR", cause, session.error or "")
        self._transition("closed")
        audit.log_event(
            self._store, session.session_id, "SESSION_CLOSED", cause,
            f"chunks={session.chunks_forwarded} events={session.events_delivered}",
        )
        logger.info(
            "session_closed session_id=%s cause=%s chunks=%s events=%s dropped=%s",
            session.session_id,
            cause,
            session.chunks_forwarded,
            session.events_delivered,
            self._provider.dropped_payloads,
        )

    def _transition(self, new_state: SessionState) -> None:
        session = self._require_session()
        if new_state not in _TRANSITIONS[session.state]:
            raise InvalidTransition(f"illegal transition {session.state} -> {new_state}")
        previous = session.state
        session.state = new_state
        session.last_activity_at = time.time()
        logger.info(
            "session_state session_id=%s from=%s to=%s", session.session_id, previous, new_state
        )
        if self._store is not None:
            self._store.update(session.snapshot())
        audit.log_event(
            self._store, session.session_id, "STATE_CHANGED", new_state.upper(), f"{previous}->{new_state}"
        )

    def _require_session(self) -> Session:
        if self._session is None:
            raise InvalidTransition("session has not been started")
        return self._session


def _error_code(cause: str) -> str:
    if cause == "connect_failed":
        return ConnectError.code
    return cause


def _error_detail(cause: str, session: Session) -> str:
    if cause == "connect_failed":
        return "Failed to connect to STT provider"
    if cause == "timeout":
        return "No audio received before the idle timeout"
    if cause == "protocol_error":
        return session.error or "Malformed client frame"
    return "Transcription stream failed"


async def run_session(
    transport: ClientTransport,
    provider: ProviderAdapter,
    config: ProviderConfig,
    cfg: BridgeConfig,
    *,
    store: Optional[InMemorySessionStore] = None,
    session_id: Optional[str] = None,
) -> Session:
    """Start, serve and close one session; errors stay inside the session."""
    bridge = SessionBridge.from_config(provider, cfg, store=store, session_id=session_id)
    try:
        try:
            await bridge.start(transport, config)
        except ConnectError:
            # start() already logged it and sent the terminal error frame.
            pass
        else:
            await bridge.serve()
    finally:
        await bridge.close()
    session = bridge.session
    if session is None:
        raise InvalidTransition("session was never started")
    return session
