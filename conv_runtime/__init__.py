"""conv-runtime: WebSocket conversational relay with TTL-backed sessions."""

__version__ = "0.1.0"
