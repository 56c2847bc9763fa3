"""Workflow node engine: runs linear workflows of trigger and action nodes."""

__version__ = "1.0.0"
