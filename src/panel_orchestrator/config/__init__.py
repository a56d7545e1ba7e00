"""Configuration module for the panel orchestrator."""

from .settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
