"""Voice-activated capture pipeline.

:class:`CapturePipeline` owns every piece of mutable state the recorder
has: the activity detector, the single open recording session, and the
upload queue.  Two consumer tasks read the audio feeds:

* the monitor consumer turns each chunk into a loudness value and feeds the
  detector, which calls back into the pipeline on START and STOP;
* the high-fidelity consumer appends chunks to the open session, if any.

On STOP the session stays open for ``drain_delay`` seconds to collect the
trailing chunks, then it is finalized, wrapped as WAV and queued for
upload.  Screenshot and webcam producers enqueue into the same queue.

Everything runs on one event loop, so the session is only ever touched from
the loop thread.  Lifecycle is explicit::

    pipeline = build_pipeline(config, storage)
    loop.add_signal_handler(signal.SIGINT, pipeline.request_stop)
    await pipeline.run()   # start(), wait for request_stop(), shutdown()
"""

import asyncio
from datetime import datetime, timezone
from typing import Callable, Coroutine, List, Optional, Set

from loguru import logger

from .capture import ImageProducer, WebcamCamera, grab_screenshot
from .config import PipelineConfig
from .detector import ActivityDetector, ActivityState
from .errors import SessionFinalizeError
from .log import RecordingLogger
from .processing import calculate_db_level, encode_wav
from .recording import AudioFeed, PyAudioFeed
from .session import RecordingSession, create_session
from .storage import ArtifactKind, StorageAdapter, format_timestamp
from .upload_queue import UploadQueue, UploadTask

# Time allowed for the feed consumers to process chunks already received
_CONSUMER_GRACE = 1.0


class CapturePipeline:
    """Owns detector, session and upload queue for one recorder process.

    Args:
        config: Validated pipeline settings.
        storage: Backend that receives every artifact.
        monitor_feed: Coarse feed used only for loudness detection.
        hifi_feed: Fine feed whose chunks are recorded.
        recording_logger: Optional JSONL session/delivery log.
    """

    def __init__(
        self,
        config: PipelineConfig,
        storage: StorageAdapter,
        monitor_feed: AudioFeed,
        hifi_feed: AudioFeed,
        recording_logger: Optional[RecordingLogger] = None,
    ) -> None:
        self.config = config
        self.storage = storage
        self._monitor_feed = monitor_feed
        self._hifi_feed = hifi_feed
        self._recording_logger = recording_logger

        self.detector = ActivityDetector(
            threshold=config.threshold,
            release_grace=config.release_grace,
            on_start=self._on_voice_start,
            on_stop=self._on_voice_stop,
        )
        self.upload_queue = UploadQueue(
            storage,
            max_retries=config.max_retries,
            recording_logger=recording_logger,
        )
        self._producers: List[ImageProducer] = []
        self._session: Optional[RecordingSession] = None
        self._consumers: Set[asyncio.Task] = set()
        self._draining: Set[asyncio.Task] = set()
        self._stop_event = asyncio.Event()
        self._error: Optional[BaseException] = None
        self._started = False
        self._stopping = False
        self._shut_down = False

        self.current_level = float('-inf')
        self.sessions_recorded = 0

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> ActivityState:
        return self.detector.state

    @property
    def session(self) -> Optional[RecordingSession]:
        """The open recording session, if any."""
        return self._session

    @property
    def stopping(self) -> bool:
        return self._stopping

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def add_image_source(
        self,
        kind: ArtifactKind,
        interval: float,
        grab: Callable[[], bytes],
        on_close: Optional[Callable[[], None]] = None,
    ) -> ImageProducer:
        """Register a periodic image producer feeding the upload queue."""
        producer = ImageProducer(kind, interval, grab, self.upload_queue.enqueue, on_close)
        self._producers.append(producer)
        return producer

    async def start(self) -> None:
        """Start the upload worker, both audio feeds and the image producers."""
        if self._started:
            return
        self._started = True
        logger.info(
            f"Starting voice-activated recorder (threshold {self.config.threshold} dB, "
            f"release grace {self.config.release_grace}s, storage: {self.storage.describe()})"
        )
        self.upload_queue.start()
        await self._monitor_feed.start()
        await self._hifi_feed.start()
        self._spawn(self._consume_monitor(), "monitor-consumer", self._consumers)
        self._spawn(self._consume_hifi(), "hifi-consumer", self._consumers)
        for producer in self._producers:
            producer.start()

    def request_stop(self) -> None:
        """Ask :meth:`run` to shut the pipeline down.  Safe to call repeatedly."""
        self._stop_event.set()

    async def run(self) -> None:
        """Run until :meth:`request_stop` is called or a pipeline task fails.

        The shutdown sequence always runs.  An error that escaped a pipeline
        task is re-raised afterwards.
        """
        try:
            await self.start()
            await self._stop_event.wait()
        finally:
            await self.shutdown()
        if self._error is not None:
            raise self._error

    async def shutdown(self, timeout: Optional[float] = None) -> bool:
        """Stop capturing, save the open session and drain the upload queue.

        Args:
            timeout: Seconds to wait for pending uploads.  Defaults to
                ``config.shutdown_timeout``.

        Returns:
            True when every queued artifact was attempted before the timeout.
        """
        if self._shut_down:
            return True
        self._shut_down = True
        self._stopping = True
        logger.info("Cleaning up...")

        for producer in self._producers:
            await producer.stop()
        for feed in (self._monitor_feed, self._hifi_feed):
            try:
                await feed.stop()
            except Exception as error:
                logger.warning(f"Error stopping {feed.name} feed: {error}")

        if self._consumers:
            _, still_running = await asyncio.wait(set(self._consumers), timeout=_CONSUMER_GRACE)
            for task in still_running:
                task.cancel()
            if still_running:
                await asyncio.gather(*still_running, return_exceptions=True)

        self.detector.reset()
        for task in list(self._draining):
            task.cancel()
        if self._draining:
            await asyncio.gather(*self._draining, return_exceptions=True)
        if self._session is not None and self._session.is_open:
            self._finish_session(self._session)

        drained = await self.upload_queue.drain(
            timeout if timeout is not None else self.config.shutdown_timeout
        )
        await self.upload_queue.close()
        logger.info(
            f"Recorder stopped: {self.sessions_recorded} session(s), "
            f"{self.upload_queue.delivered} delivered, {self.upload_queue.failed} failed"
        )
        return drained

    # ------------------------------------------------------------------
    # Feed consumers
    # ------------------------------------------------------------------

    async def _consume_monitor(self) -> None:
        async for chunk in self._monitor_feed:
            level = calculate_db_level(chunk)
            self.current_level = level
            self.detector.update(level)
        if not self._stopping:
            logger.warning("Monitor feed ended unexpectedly")
            self.request_stop()

    async def _consume_hifi(self) -> None:
        async for chunk in self._hifi_feed:
            if self._session is not None:
                self._session.append(chunk)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def _on_voice_start(self) -> None:
        if self._session is not None and self._session.is_open:
            # New episode during the previous one's drain delay
            self._finish_session(self._session)

        session = create_session(self.config.session_buffer)
        session.begin()
        self._session = session
        session_id = format_timestamp(session.started_at)
        logger.info(f"Starting high-quality recording {session_id}")
        self._write_session_log(
            "start",
            session_id=session_id,
            sample_rate=self.config.hifi_rate,
            channels=self.config.hifi_channels,
            started_at=session.started_at,
        )

    def _on_voice_stop(self) -> None:
        session = self._session
        if session is None:
            return
        self._spawn(self._drain_session(session), "session-drain", self._draining)

    async def _drain_session(self, session: RecordingSession) -> None:
        await asyncio.sleep(self.config.drain_delay)
        if session.is_open:
            self._finish_session(session)

    def _finish_session(self, session: RecordingSession) -> Optional[UploadTask]:
        """Finalize *session* and queue it.  Returns the queued task, if any."""
        if self._session is session:
            self._session = None

        chunk_count = session.chunk_count
        try:
            pcm, started_at = session.finalize()
        except SessionFinalizeError as error:
            logger.error(f"Recording lost: {error}")
            return None

        ended_at = datetime.now(timezone.utc)
        duration = (ended_at - started_at).total_seconds()
        session_id = format_timestamp(started_at)
        logger.info(f"Stopping recording... Duration: {duration:.2f} seconds, {len(pcm)} bytes")

        task = self._queue_recording(pcm, session_id)
        self._write_session_log(
            "end",
            session_id=session_id,
            ended_at=ended_at,
            duration_sec=duration,
            size_bytes=len(pcm),
            chunk_count=chunk_count,
        )
        return task

    def _queue_recording(self, pcm: bytes, session_id: str) -> Optional[UploadTask]:
        if not pcm and self.config.skip_empty_recordings:
            logger.info(f"Skipping empty recording {session_id}")
            return None

        try:
            payload = self._package_audio(pcm)
        except (RuntimeError, ValueError) as error:
            logger.error(str(SessionFinalizeError(f"Recording {session_id} lost: {error}")))
            return None

        task = UploadTask(payload=payload, kind=ArtifactKind.AUDIO, timestamp=session_id)
        self.upload_queue.enqueue(task)
        self.sessions_recorded += 1
        return task

    def _write_session_log(self, event: str, **fields) -> None:
        if self._recording_logger is None:
            return
        write = getattr(self._recording_logger, f"write_session_{event}")
        try:
            write(**fields)
        except OSError as e:
            logger.warning(f"Could not write session {event} log entry: {e}")

    def _package_audio(self, pcm: bytes) -> bytes:
        if self.config.audio_format == 'wav':
            return encode_wav(pcm, self.config.hifi_rate, self.config.hifi_channels)
        return pcm

    # ------------------------------------------------------------------
    # Task bookkeeping
    # ------------------------------------------------------------------

    def _spawn(self, coro: Coroutine, name: str, bucket: Set[asyncio.Task]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=f"voxgate-{name}")
        bucket.add(task)
        task.add_done_callback(lambda done: self._task_done(done, bucket))
        return task

    def _task_done(self, task: asyncio.Task, bucket: Set[asyncio.Task]) -> None:
        bucket.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            return
        logger.opt(exception=error).error(f"Pipeline task {task.get_name()} failed, shutting down")
        if self._error is None:
            self._error = error
        self.request_stop()


def build_pipeline(
    config: PipelineConfig,
    storage: StorageAdapter,
    recording_logger: Optional[RecordingLogger] = None,
    monitor_device: Optional[int] = None,
    hifi_device: Optional[int] = None,
) -> CapturePipeline:
    """Assemble a pipeline reading from PyAudio devices.

    Screenshot and webcam producers are added when enabled in *config*.
    """
    monitor_feed = PyAudioFeed(
        name="monitor",
        rate=config.monitor_rate,
        channels=config.monitor_channels,
        frames_per_buffer=config.frames_per_buffer,
        device_id=monitor_device,
    )
    hifi_feed = PyAudioFeed(
        name="hifi",
        rate=config.hifi_rate,
        channels=config.hifi_channels,
        frames_per_buffer=config.frames_per_buffer,
        device_id=hifi_device,
    )
    pipeline = CapturePipeline(config, storage, monitor_feed, hifi_feed, recording_logger)

    if config.enable_screenshot:
        pipeline.add_image_source(ArtifactKind.SCREENSHOT, config.screenshot_interval, grab_screenshot)
    if config.enable_webcam:
        camera = WebcamCamera(device=config.webcam_device, quality=config.image_quality)
        pipeline.add_image_source(ArtifactKind.WEBCAM, config.webcam_interval, camera.grab, camera.close)
    return pipeline
