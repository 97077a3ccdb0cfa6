"""Campool Chat - Real-time per-ride chat service."""

__version__ = "1.0.0"
