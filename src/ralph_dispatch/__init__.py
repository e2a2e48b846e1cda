"""Dispatch coding-agent jobs into Docker sandboxes."""

__version__ = "0.1.0"
