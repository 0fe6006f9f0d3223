from __future__ import annotations

import time
from threading import RLock
from typing import Any, Dict

from .contracts import AuditEvent, SessionSnapshot


class InMemorySessionStore:
    """Read-only view of bridge sessions for status lookups.

    Holds counters and lifecycle state only. Live sessions never expire;
    closed ones are dropped ``ttl_seconds`` after they closed.
    """

    def __init__(self, ttl_seconds: int):
        self._ttl_seconds = ttl_seconds
        self._lock = RLock()
        self._sessions: Dict[str, Dict[str, Any]] = {}

    def register(self, snapshot: SessionSnapshot) -> None:
        with self._lock:
            self._sessions[snapshot.session_id] = {
                "snapshot": snapshot,
                "audit_events": [],
                "expires_at": None,
            }

    def update(self, snapshot: SessionSnapshot) -> None:
        with self._lock:
            entry = self._sessions.get(snapshot.session_id)
            if entry is None:
                return
            entry["snapshot"] = snapshot
            if snapshot.state == "closed" and entry["expires_at"] is None:
                entry["expires_at"] = time.time() + self._ttl_seconds

    def append_audit_event(self, session_id: str, event: AuditEvent) -> None:
        with self._lock:
            entry = self._sessions.get(session_id)
            if entry is not None:
                entry["audit_events"].append(event)

    def get_session(self, session_id: str) -> SessionSnapshot:
        with self._lock:
            entry = self._sessions.get(session_id)
            if entry is None:
                raise KeyError(f"Unknown session_id: {session_id}")
            return entry["snapshot"].model_copy(
                update={"audit_events": list(entry["audit_events"])}
            )

    def active_count(self) -> int:
        with self._lock:
            return sum(
                1 for entry in self._sessions.values() if entry["snapshot"].state != "closed"
            )

    def cleanup_expired_sessions(self) -> int:
        now = time.time()
        with self._lock:
            expired = [
                session_id
                for session_id, entry in self._sessions.items()
                if entry["expires_at"] is not None and entry["expires_at"] <= now
            ]
            for session_id in expired:
                self._sessions.pop(session_id, None)
        return len(expired)
