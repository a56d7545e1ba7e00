"""Utility helpers for the panel orchestrator."""

from .logging import get_logger, setup_logging

__all__ = ["get_logger", "setup_logging"]
