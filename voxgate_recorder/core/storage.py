"""Artifact storage for VoxGate Recorder.

This module defines the storage contract used by the upload queue, the
artifact naming convention shared by every backend, and the local
filesystem backend.  The S3-compatible backend lives in
:mod:`voxgate_recorder.core.s3_upload`.

Artifact names
--------------

==============  ======================================
Kind            Name
==============  ======================================
``audio``       ``recording-{timestamp}.wav``
``screenshot``  ``screenshot-{timestamp}.png``
``webcam``      ``webcam-{timestamp}.jpg``
==============  ======================================

Timestamps are ISO 8601 UTC with millisecond precision and ``:`` replaced
by ``-`` so they are safe on every filesystem, e.g.
``recording-2024-01-01T00-00-00.000Z.wav``.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, TYPE_CHECKING

from loguru import logger

from .errors import ConfigurationError

if TYPE_CHECKING:
    from .upload_queue import UploadTask


class ArtifactKind(str, Enum):
    """Kind of captured artifact."""

    AUDIO = "audio"
    SCREENSHOT = "screenshot"
    WEBCAM = "webcam"


_NAME_PREFIX = {
    ArtifactKind.AUDIO: "recording",
    ArtifactKind.SCREENSHOT: "screenshot",
    ArtifactKind.WEBCAM: "webcam",
}

_EXTENSION = {
    ArtifactKind.AUDIO: ".wav",
    ArtifactKind.SCREENSHOT: ".png",
    ArtifactKind.WEBCAM: ".jpg",
}

CONTENT_TYPES = {
    ArtifactKind.AUDIO: "audio/wav",
    ArtifactKind.SCREENSHOT: "image/png",
    ArtifactKind.WEBCAM: "image/jpeg",
}


def format_timestamp(dt: Optional[datetime] = None) -> str:
    """Return a filename-safe ISO 8601 UTC timestamp with milliseconds.

    Args:
        dt: Datetime to format.  Naive values are taken as UTC.  Defaults to now.

    Returns:
        Timestamp such as ``'2024-01-01T00-00-00.000Z'``
    """
    if dt is None:
        dt = datetime.now(timezone.utc)
    elif dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    else:
        dt = dt.astimezone(timezone.utc)
    return f"{dt.strftime('%Y-%m-%dT%H-%M-%S')}.{dt.microsecond // 1000:03d}Z"


def build_artifact_name(kind: ArtifactKind, timestamp: str) -> str:
    """Build the file name / object key for an artifact."""
    kind = ArtifactKind(kind)
    safe_timestamp = timestamp.replace(":", "-")
    return f"{_NAME_PREFIX[kind]}-{safe_timestamp}{_EXTENSION[kind]}"


def _image_kind(kind: Any) -> ArtifactKind:
    kind = ArtifactKind(kind)
    if kind is ArtifactKind.AUDIO:
        raise ValueError("Audio must be stored with store_audio()")
    return kind


class StorageAdapter(ABC):
    """Uniform store contract used by :class:`~voxgate_recorder.core.upload_queue.UploadQueue`.

    Implementations are called from one worker at a time and need no
    internal locking.
    """

    @abstractmethod
    def store_audio(self, buffer: bytes, timestamp: str) -> str:
        """Persist a finished recording and return its location."""

    @abstractmethod
    def store_image(self, buffer: bytes, kind: ArtifactKind, timestamp: str) -> str:
        """Persist a screenshot or webcam frame and return its location."""

    def store(self, task: "UploadTask") -> str:
        """Dispatch *task* to the matching store operation."""
        if task.kind is ArtifactKind.AUDIO:
            return self.store_audio(task.payload, task.timestamp)
        return self.store_image(task.payload, task.kind, task.timestamp)

    def describe(self) -> str:
        """Short human-readable description of the backend."""
        return type(self).__name__

    def check(self) -> bool:
        """Return True when the backend looks usable."""
        return True


class LocalStorageAdapter(StorageAdapter):
    """Writes artifacts into a directory on the local filesystem."""

    def __init__(self, directory: Optional[str], create: bool = True) -> None:
        """Initialize the filesystem backend.

        Args:
            directory: Target directory
            create: Create the directory when missing; ``False`` leaves the
                filesystem untouched (used by read-only checks)

        Raises:
            ConfigurationError: If no directory is given or the path is not a directory
        """
        if not directory:
            raise ConfigurationError("Local directory path is required for local mode")
        self.directory = Path(directory)
        if self.directory.exists() and not self.directory.is_dir():
            raise ConfigurationError(f"Local storage path is not a directory: {self.directory}")
        if create:
            self.directory.mkdir(parents=True, exist_ok=True)

    def store_audio(self, buffer: bytes, timestamp: str) -> str:
        return self._write(ArtifactKind.AUDIO, buffer, timestamp)

    def store_image(self, buffer: bytes, kind: ArtifactKind, timestamp: str) -> str:
        return self._write(_image_kind(kind), buffer, timestamp)

    def describe(self) -> str:
        return f"local directory {self.directory}"

    def check(self) -> bool:
        """Return True when the target directory exists and is writable."""
        if not self.directory.is_dir():
            logger.debug(f"Local storage directory does not exist: {self.directory}")
            return False
        probe = self.directory / ".voxgate-write-check"
        try:
            probe.write_bytes(b"")
            probe.unlink()
            return True
        except OSError as e:
            logger.debug(f"Local storage not writable: {e}")
            return False

    def _write(self, kind: ArtifactKind, buffer: bytes, timestamp: str) -> str:
        file_path = self.directory / build_artifact_name(kind, timestamp)
        file_path.write_bytes(buffer)
        logger.debug(f"Wrote {len(buffer)} bytes to {file_path}")
        return str(file_path)


def create_storage_adapter(
    mode: str,
    local_directory: Optional[str] = None,
    s3_config: Optional[Dict[str, Any]] = None,
    create_directory: bool = True,
) -> StorageAdapter:
    """Build the storage backend selected at startup.

    Args:
        mode: ``'s3'`` or ``'local'``
        local_directory: Target directory for local mode
        s3_config: Mapping accepted by :meth:`S3Config.from_dict` for s3 mode
        create_directory: Whether local mode may create a missing directory

    Raises:
        ConfigurationError: On an unknown mode or incomplete settings
    """
    if mode == "s3":
        from .s3_upload import S3StorageAdapter

        return S3StorageAdapter.from_dict(s3_config or {})
    if mode == "local":
        return LocalStorageAdapter(local_directory, create=create_directory)
    raise ConfigurationError(f"Invalid storage mode {mode!r}. Use 's3' or 'local'.")
