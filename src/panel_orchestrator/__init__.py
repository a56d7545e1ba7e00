"""Container Session Orchestrator: container lifecycle and interactive console sessions."""

__version__ = "0.1.0"
