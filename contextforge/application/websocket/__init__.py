from .connection_manager import ConnectionManager
from .ws_server import router

__all__ = ["ConnectionManager", "router"]
