"""Local JSONL recording log for VoxGate Recorder.

Appends structured JSON Lines entries describing every voice-activated
session and every delivery attempt made by the upload queue.

Record types
------------
``session`` (event=``"start"``)
    Written when the activity detector opens a recording session.

``session`` (event=``"end"``)
    Written when the session is finalized, with its duration and size.

``delivery``
    Written once per upload task with the artifact kind, the location
    returned by the storage backend and whether the store succeeded.

Example log lines::

    {"type":"session","event":"start","session_id":"2026-02-23T14-30-22.120Z","started_at":"2026-02-23T14:30:22+00:00","sample_rate":44100,"channels":2}
    {"type":"session","event":"end","session_id":"2026-02-23T14-30-22.120Z","ended_at":"2026-02-23T14:30:31+00:00","duration_sec":9.38,"size_bytes":1654832,"chunk_count":404}
    {"type":"delivery","kind":"audio","timestamp":"2026-02-23T14-30-22.120Z","location":"recording-2026-02-23T14-30-22.120Z.wav","delivered":true,"attempts":1,"size_bytes":1654876,"error":null}
"""

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class RecordingLogger:
    """Appends JSONL log entries for recording sessions and deliveries.

    Thread-safe: the upload worker and the event loop may both write.  A
    single :class:`threading.Lock` serialises file writes.

    Args:
        log_path: Path to the ``.jsonl`` log file.  Parent directories are
            created automatically.
    """

    def __init__(self, log_path: Path) -> None:
        log_path = Path(log_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        self._log_path = log_path
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._log_path

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def write_session_start(
        self,
        session_id: str,
        sample_rate: int,
        channels: int,
        started_at: Optional[datetime] = None,
    ) -> None:
        """Append a session-start record.

        Args:
            session_id: Session identifier (the artifact timestamp).
            sample_rate: Sample rate of the high-fidelity feed (Hz).
            channels: Number of recorded channels.
            started_at: Session start time.  Defaults to now.
        """
        self._append({
            "type": "session",
            "event": "start",
            "session_id": session_id,
            "started_at": _iso(started_at),
            "sample_rate": sample_rate,
            "channels": channels,
        })

    def write_session_end(
        self,
        session_id: str,
        ended_at: Optional[datetime] = None,
        duration_sec: float = 0.0,
        size_bytes: int = 0,
        chunk_count: int = 0,
    ) -> None:
        """Append a session-end record.

        Args:
            session_id: Session identifier matching the earlier start record.
            ended_at: Finalize time.  Defaults to now.
            duration_sec: Wall-clock length of the session in seconds.
            size_bytes: Size of the concatenated audio.
            chunk_count: Number of high-fidelity chunks collected.
        """
        self._append({
            "type": "session",
            "event": "end",
            "session_id": session_id,
            "ended_at": _iso(ended_at),
            "duration_sec": round(duration_sec, 3),
            "size_bytes": size_bytes,
            "chunk_count": chunk_count,
        })

    def write_delivery(
        self,
        kind: str,
        timestamp: str,
        size_bytes: int,
        location: Optional[str] = None,
        delivered: bool = False,
        attempts: int = 1,
        error: Optional[str] = None,
    ) -> None:
        """Append a delivery record.

        Args:
            kind: Artifact kind (``audio``, ``screenshot`` or ``webcam``).
            timestamp: Artifact timestamp used in its name.
            size_bytes: Payload size.
            location: Path or object key returned by the backend.
            delivered: ``True`` if the store call succeeded.
            attempts: Number of store calls made for this task.
            error: Last error message when the delivery failed.
        """
        self._append({
            "type": "delivery",
            "kind": kind,
            "timestamp": timestamp,
            "location": location,
            "delivered": delivered,
            "attempts": attempts,
            "size_bytes": size_bytes,
            "error": error,
        })

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _append(self, record: dict) -> None:
        """Serialise *record* as JSON and append it to the log file."""
        line = json.dumps(record, ensure_ascii=False) + "\n"
        with self._lock:
            with self._log_path.open("a", encoding="utf-8") as fh:
                fh.write(line)


def _iso(dt: Optional[datetime]) -> str:
    """Return a compact ISO 8601 string for *dt*, defaulting to now."""
    if dt is None:
        dt = datetime.now(timezone.utc)
    return dt.replace(microsecond=0).isoformat()
