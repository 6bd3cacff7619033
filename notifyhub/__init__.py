"""Real-time notification hub: SSE and WebSocket fan-out behind a gRPC bridge."""

__version__ = "0.1.0"
