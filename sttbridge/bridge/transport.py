from __future__ import annotations

import json
import logging
from typing import Any, Optional, Protocol

from fastapi import WebSocket, WebSocketDisconnect

from sttbridge.internal_core.errors import ProtocolError, StreamError

logger = logging.getLogger(__name__)


class ClientTransport(Protocol):
    async def receive_frame(self) -> Optional[bytes]:
        """Next binary frame, or None once the client closed the connection."""
        ...

    async def send_json(self, payload: dict[str, Any]) -> None: ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...


class WebSocketClientTransport:
    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket
        self._peer_closed = False
        self._closed = False

    async def receive_frame(self) -> Optional[bytes]:
        if self._peer_closed:
            return None
        try:
            message = await self._websocket.receive()
        except (RuntimeError, OSError) as exc:
            raise StreamError(f"client receive failed: {exc}") from exc

        if message["type"] == "websocket.disconnect":
            self._peer_closed = True
            return None
        data = message.get("bytes")
        if data is not None:
            return data
        if message.get("text") is not None:
            raise ProtocolError("text frames are not accepted; send binary audio frames")
        raise ProtocolError(f"unexpected websocket message type: {message['type']}")

    async def send_json(self, payload: dict[str, Any]) -> None:
        if self._peer_closed or self._closed:
            raise StreamError("client connection is closed")
        try:
            await self._websocket.send_text(json.dumps(payload))
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            self._peer_closed = True
            raise StreamError(f"client send failed: {exc}") from exc

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self._closed:
            return
        self._closed = True
        if self._peer_closed:
            return
        try:
            await self._websocket.close(code=code, reason=reason)
        except (RuntimeError, OSError) as exc:
            # Already closed by the server stack or the peer went away mid-close.
            logger.debug("client_close_skipped code=%s error=%s", code, exc)
