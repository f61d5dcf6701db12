"""flowhub - orchestrator for isolated n8n instances."""

__version__ = "0.1.0"
