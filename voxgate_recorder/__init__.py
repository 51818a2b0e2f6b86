"""VoxGate Recorder - voice-activated audio capture with pluggable storage.

This package monitors an audio input, records high-fidelity audio only while
speech is present, and delivers recordings (plus optional screenshots and
webcam frames) to S3-compatible object storage or a local directory.
"""

from .cli.commands import app

__version__ = "1.0.0"
__author__ = "VoxGate Team"

__all__ = ["app", "__version__"]
