"""HTTP/WebSocket status bridge and its polling client."""
from .app import create_app
from .poller import StatusPoller

__all__ = ["create_app", "StatusPoller"]
