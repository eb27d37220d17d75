"""Configuration for the humdata orchestrator."""

from humdata.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
