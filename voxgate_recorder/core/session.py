"""Chunk accumulation for one continuous speech episode."""

import tempfile
import threading
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from loguru import logger

from .config import SPOOL_MAX_MEMORY
from .errors import SessionError, SessionFinalizeError


class RecordingSession:
    """Collects high-fidelity chunks between :meth:`begin` and :meth:`finalize`.

    A session is single-use: once finalized it stays closed and further
    :meth:`append` calls are ignored.  ``append`` and ``finalize`` share a
    lock so a capture thread and the finalizer never interleave.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._open = False
        self._finalized = False
        self._chunk_count = 0
        self._byte_count = 0
        self.started_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def chunk_count(self) -> int:
        return self._chunk_count

    @property
    def byte_count(self) -> int:
        return self._byte_count

    def begin(self, started_at: Optional[datetime] = None) -> None:
        """Open the session and record its start time (UTC now by default)."""
        with self._lock:
            if self._open or self._finalized:
                raise SessionError("Recording session has already been started")
            self.started_at = started_at or datetime.now(timezone.utc)
            self._open = True
            self._reset_buffer()

    def append(self, chunk: bytes) -> bool:
        """Append a chunk in arrival order.

        Returns:
            False (and nothing is stored) when the session is not open.
        """
        with self._lock:
            if not self._open:
                logger.debug(f"Dropping {len(chunk)} byte chunk, session is not open")
                return False
            self._write(chunk)
            self._chunk_count += 1
            self._byte_count += len(chunk)
            return True

    def finalize(self) -> Tuple[bytes, datetime]:
        """Close the session and return the concatenated audio and start time.

        Raises:
            SessionFinalizeError: If the session is not open or the buffer
                cannot be read back.
        """
        with self._lock:
            if not self._open:
                raise SessionFinalizeError("Cannot finalize a session that is not open")
            self._open = False
            self._finalized = True
            try:
                payload = self._read_all()
            except OSError as error:
                raise SessionFinalizeError(f"Reading session buffer failed: {error}") from error
            finally:
                self._release_buffer()
            return payload, self.started_at

    # ------------------------------------------------------------------
    # Buffer strategy
    # ------------------------------------------------------------------

    def _reset_buffer(self) -> None:
        self._chunks: List[bytes] = []

    def _write(self, chunk: bytes) -> None:
        self._chunks.append(chunk)

    def _read_all(self) -> bytes:
        return b"".join(self._chunks)

    def _release_buffer(self) -> None:
        self._chunks = []


class SpooledRecordingSession(RecordingSession):
    """Session that keeps audio in memory up to *max_memory* bytes, then on disk.

    Long episodes at 44.1 kHz stereo grow by roughly 10 MB a minute; spooling
    keeps the resident size bounded.
    """

    def __init__(self, max_memory: int = SPOOL_MAX_MEMORY) -> None:
        super().__init__()
        self._max_memory = max_memory
        self._spool = None
        self._spooled_bytes = 0

    @property
    def rolled_to_disk(self) -> bool:
        """True once the buffer has outgrown *max_memory* and moved to a temp file."""
        return bool(self._max_memory) and self._spooled_bytes > self._max_memory

    def _reset_buffer(self) -> None:
        self._spool = tempfile.SpooledTemporaryFile(max_size=self._max_memory)
        self._spooled_bytes = 0

    def _write(self, chunk: bytes) -> None:
        self._spool.write(chunk)
        self._spooled_bytes += len(chunk)

    def _read_all(self) -> bytes:
        self._spool.seek(0)
        return self._spool.read()

    def _release_buffer(self) -> None:
        if self._spool is not None:
            self._spool.close()
        self._spool = None


def create_session(session_buffer: str = 'memory') -> RecordingSession:
    """Build a session for the configured buffering strategy."""
    if session_buffer == 'spool':
        return SpooledRecordingSession()
    return RecordingSession()
