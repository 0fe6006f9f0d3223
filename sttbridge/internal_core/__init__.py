from .config import BridgeConfig, load_config
from .session_store import InMemorySessionStore

__all__ = ["BridgeConfig", "load_config", "InMemorySessionStore"]
