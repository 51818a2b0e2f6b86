"""Command-line interface for VoxGate Recorder."""

from .commands import app

__all__ = ["app"]
