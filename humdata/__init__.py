"""Multi-source humanitarian data orchestration."""

__version__ = "0.1.0"
