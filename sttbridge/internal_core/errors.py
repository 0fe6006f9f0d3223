from __future__ import annotations


class BridgeError(RuntimeError):
    code = "bridge_error"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ConnectError(BridgeError):
    """Provider handshake failed. Fatal for the session, never retried."""

    code = "connect_error"

    def __init__(self, message: str, provider_name: str = ""):
        super().__init__(message)
        self.provider_name = provider_name


class BackpressureExceeded(BridgeError):
    code = "backpressure"


class NotConnected(BridgeError):
    code = "not_connected"


class ProtocolError(BridgeError):
    code = "protocol_error"


class StreamError(BridgeError):
    code = "stream_error"


class IdleTimeout(BridgeError):
    code = "timeout"


class InvalidTransition(BridgeError):
    code = "invalid_transition"


class SessionStopped(Exception):
    """Raised out of a guarded blocking call once the session stop signal fires."""
