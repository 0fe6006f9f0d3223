"""
Session bridge between one client connection and one upstream STT provider.

Design intent:
- Run the two relay directions concurrently and independently.
- Contain mid-stream failures inside the session; never leak a connection.
- Keep teardown ordered: both directions exit, then provider, then client.
"""
from .forwarders import InboundForwarder, OutboundForwarder
from .lifecycle import LifecycleController
from .session import Session, SessionBridge, run_session
from .transport import ClientTransport, WebSocketClientTransport

__all__ = [
    "ClientTransport",
    "InboundForwarder",
    "LifecycleController",
    "OutboundForwarder",
    "Session",
    "SessionBridge",
    "WebSocketClientTransport",
    "run_session",
]
