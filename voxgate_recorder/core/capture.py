"""Periodic screenshot and webcam producers.

Each :class:`ImageProducer` calls a blocking ``grab`` function every
``interval`` seconds in a worker thread and hands the encoded image to a
sink (normally :meth:`UploadQueue.enqueue`).  A failed grab is logged and
the producer carries on with the next tick.
"""

import asyncio
from datetime import datetime, timezone
from typing import Callable, Optional

from loguru import logger

from .config import IMAGE_QUALITY, WEBCAM_HEIGHT, WEBCAM_WIDTH
from .errors import CaptureError
from .storage import ArtifactKind
from .upload_queue import UploadTask


def grab_screenshot() -> bytes:
    """Capture every monitor as one PNG image.

    Raises:
        CaptureError: If the screen cannot be grabbed.
    """
    import mss
    import mss.tools
    from mss.exception import ScreenShotError

    try:
        with mss.mss() as sct:
            shot = sct.grab(sct.monitors[0])
            return mss.tools.to_png(shot.rgb, shot.size)
    except ScreenShotError as error:
        raise CaptureError(f"Screenshot failed: {error}") from error


class WebcamCamera:
    """Grabs single JPEG frames from a webcam with OpenCV.

    Args:
        device: Camera index or device path; ``None`` opens camera 0.
        quality: JPEG quality from 1 to 100.
        width: Requested frame width.
        height: Requested frame height.
    """

    def __init__(
        self,
        device: Optional[str] = None,
        quality: int = IMAGE_QUALITY,
        width: int = WEBCAM_WIDTH,
        height: int = WEBCAM_HEIGHT,
    ) -> None:
        self._device = device
        self._quality = quality
        self._width = width
        self._height = height
        self._capture = None

    def _source(self):
        if self._device is None:
            return 0
        return int(self._device) if str(self._device).isdigit() else self._device

    def open(self) -> None:
        import cv2

        capture = cv2.VideoCapture(self._source())
        if not capture.isOpened():
            capture.release()
            raise CaptureError(f"Could not open webcam {self._device or 0}")
        capture.set(cv2.CAP_PROP_FRAME_WIDTH, self._width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self._height)
        self._capture = capture

    def grab(self) -> bytes:
        """Read one frame and encode it as JPEG.

        Raises:
            CaptureError: If no frame could be read or encoded.
        """
        import cv2

        if self._capture is None:
            self.open()
        ok, frame = self._capture.read()
        if not ok:
            raise CaptureError("Webcam returned no frame")
        ok, buf = cv2.imencode('.jpg', frame, [int(cv2.IMWRITE_JPEG_QUALITY), self._quality])
        if not ok:
            raise CaptureError("JPEG encoding of webcam frame failed")
        return buf.tobytes()

    def close(self) -> None:
        if self._capture is not None:
            self._capture.release()
            self._capture = None


class ImageProducer:
    """Runs ``grab`` every ``interval`` seconds and forwards the result.

    Args:
        kind: Artifact kind of the produced images.
        interval: Seconds between grabs.
        grab: Blocking callable returning encoded image bytes.
        sink: Receives each :class:`UploadTask`.
        on_close: Optional cleanup run when the producer stops.
    """

    def __init__(
        self,
        kind: ArtifactKind,
        interval: float,
        grab: Callable[[], bytes],
        sink: Callable[[UploadTask], None],
        on_close: Optional[Callable[[], None]] = None,
    ) -> None:
        self.kind = ArtifactKind(kind)
        self.interval = interval
        self._grab = grab
        self._sink = sink
        self._on_close = on_close
        self._task: Optional[asyncio.Task] = None
        self.captured = 0
        self.errors = 0

    def start(self) -> None:
        logger.info(f"Starting {self.kind.value} capture with interval: {self.interval}s")
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"voxgate-{self.kind.value}-producer"
        )

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._on_close is not None:
            await asyncio.to_thread(self._on_close)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.capture_once()

    async def capture_once(self) -> bool:
        """Grab one image and forward it.  Returns False when the grab failed."""
        captured_at = datetime.now(timezone.utc)
        try:
            image = await asyncio.to_thread(self._grab)
        except Exception as error:
            self.errors += 1
            logger.error(f"Error capturing {self.kind.value}: {error}")
            return False
        self.captured += 1
        self._sink(UploadTask.create(image, self.kind, captured_at))
        return True
