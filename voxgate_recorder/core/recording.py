"""Live audio feeds for VoxGate Recorder.

The pipeline reads two independent feeds:

* a coarse **monitor** feed (8 kHz mono by default) whose chunks are only used
  to estimate loudness, and
* a **high-fidelity** feed (44.1 kHz stereo by default) whose chunks are kept
  while a recording session is open.

Main public classes
-------------------
:class:`AudioFeed`
    Async iterable of raw PCM chunks with explicit ``start``/``stop``.

:class:`QueueFeed`
    Feed backed by an :class:`asyncio.Queue`.  :meth:`QueueFeed.push` is safe
    to call from any thread, which is how device callbacks hand chunks to
    the event loop.

:class:`PyAudioFeed`
    Feed that opens a PyAudio input stream in callback mode.  PortAudio runs
    the callback on its own thread; every chunk is forwarded to the event
    loop with ``call_soon_threadsafe``.

:class:`RecordingEngine`
    Static helpers for enumerating available input devices.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import AsyncIterator, List, Optional

from loguru import logger

from .config import FRAMES_PER_BUFFER, HIFI_CHANNELS, HIFI_RATE
from .errors import CaptureError

_END_OF_FEED = None


class AudioFeed(ABC):
    """Lazy, unbounded, non-restartable sequence of audio chunks."""

    name = "feed"

    async def start(self) -> None:
        """Open the underlying device."""

    async def stop(self) -> None:
        """Close the underlying device and end iteration."""

    @abstractmethod
    def __aiter__(self) -> AsyncIterator[bytes]:
        """Yield chunks until the feed is stopped."""


class QueueFeed(AudioFeed):
    """Feed whose chunks are pushed in by a producer.

    Args:
        name: Label used in log messages.
    """

    def __init__(self, name: str = "feed") -> None:
        self.name = name
        self._queue: "asyncio.Queue[Optional[bytes]]" = asyncio.Queue()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._closed = False
        self.chunks_received = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        """Remember the loop that consumes this feed (needed by :meth:`push`)."""
        self._loop = loop

    async def start(self) -> None:
        self.bind(asyncio.get_running_loop())

    async def stop(self) -> None:
        self.close()

    def push(self, chunk: bytes) -> None:
        """Hand one chunk to the consumer.  Safe to call from any thread."""
        if self._closed:
            return
        if self._loop is not None and not _on_loop_thread(self._loop):
            self._loop.call_soon_threadsafe(self._queue.put_nowait, chunk)
        else:
            self._queue.put_nowait(chunk)

    def close(self) -> None:
        """End iteration once the chunks already pushed have been consumed."""
        if self._closed:
            return
        self._closed = True
        if self._loop is not None and not _on_loop_thread(self._loop):
            self._loop.call_soon_threadsafe(self._queue.put_nowait, _END_OF_FEED)
        else:
            self._queue.put_nowait(_END_OF_FEED)

    async def __aiter__(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self._queue.get()
            if chunk is _END_OF_FEED:
                return
            self.chunks_received += 1
            yield chunk


def _on_loop_thread(loop: asyncio.AbstractEventLoop) -> bool:
    try:
        return asyncio.get_running_loop() is loop
    except RuntimeError:
        return False


class PyAudioFeed(QueueFeed):
    """Feed reading 16-bit PCM from a PyAudio input device.

    Args:
        name: Label used in log messages (``'monitor'`` or ``'hifi'``).
        rate: Sample rate in Hz.
        channels: Number of input channels.
        frames_per_buffer: Frames delivered per callback.
        device_id: PyAudio device index; ``None`` uses the default input.
    """

    def __init__(
        self,
        name: str = "hifi",
        rate: int = HIFI_RATE,
        channels: int = HIFI_CHANNELS,
        frames_per_buffer: int = FRAMES_PER_BUFFER,
        device_id: Optional[int] = None,
    ) -> None:
        super().__init__(name)
        self._rate = rate
        self._channels = channels
        self._frames_per_buffer = frames_per_buffer
        self._device_id = device_id
        self._audio_interface = None
        self._audio_stream = None

    async def start(self) -> None:
        """Open the input stream.

        Raises:
            CaptureError: If the device cannot be opened.
        """
        await super().start()
        import pyaudio

        try:
            self._audio_interface = pyaudio.PyAudio()
            self._audio_stream = self._audio_interface.open(
                format=pyaudio.paInt16,
                channels=self._channels,
                rate=self._rate,
                input=True,
                input_device_index=self._device_id,
                frames_per_buffer=self._frames_per_buffer,
                stream_callback=self._fill_buffer,
            )
        except (OSError, ValueError) as error:
            self._terminate()
            raise CaptureError(f"Could not open {self.name} input (device {self._device_id}): {error}") from error

        logger.info(
            f"{self.name} feed started: {self._rate} Hz, {self._channels} ch, "
            f"device {self._device_id if self._device_id is not None else 'default'}"
        )

    async def stop(self) -> None:
        """Close the input stream and end iteration."""
        if self._audio_stream is not None:
            try:
                self._audio_stream.stop_stream()
                self._audio_stream.close()
            except OSError as error:
                logger.warning(f"Error closing {self.name} stream: {error}")
            self._audio_stream = None
        self._terminate()
        await super().stop()
        logger.info(f"{self.name} feed has been closed")

    def _terminate(self) -> None:
        if self._audio_interface is not None:
            self._audio_interface.terminate()
            self._audio_interface = None

    def _fill_buffer(
        self,
        in_data: bytes,
        frame_count: int,
        time_info: object,
        status_flags: int,
    ) -> tuple:
        """Forward data from the PortAudio thread to the event loop.

        Args:
            in_data: The audio data as a bytes object
            frame_count: The number of frames captured
            time_info: The time information
            status_flags: The status flags

        Returns:
            Tuple of (data, status_flag)
        """
        import pyaudio

        if status_flags:
            logger.warning(f"{self.name} input status flags: {status_flags:#x}")
        try:
            self.push(in_data)
        except RuntimeError as error:
            # Loop already closed during shutdown
            logger.debug(f"{self.name} chunk dropped: {error}")
            return None, pyaudio.paComplete
        return None, pyaudio.paContinue


class RecordingEngine:
    """Input device discovery."""

    @staticmethod
    def list_devices(driver_filter: Optional[str] = None) -> List[dict]:
        """List all available input audio devices.

        Args:
            driver_filter: Optional driver type to filter by ('pulse', 'alsa', 'jack', 'usb', 'default')

        Returns:
            List of dicts with keys: id, name, driver, channels, rate, is_default
        """
        import pyaudio

        from .processing import detect_driver_type

        audio = pyaudio.PyAudio()
        try:
            try:
                default_device = audio.get_default_input_device_info()
                default_device_id = int(default_device['index'])
            except OSError:
                default_device_id = -1

            input_devices = []
            for i in range(audio.get_device_count()):
                device_info = audio.get_device_info_by_index(i)
                if device_info.get('maxInputChannels', 0) <= 0:
                    continue
                device_name = device_info.get('name', 'Unknown')
                driver_type = detect_driver_type(device_name)

                # Skip if driver filter is specified and doesn't match
                if driver_filter and driver_type != driver_filter.lower():
                    continue

                input_devices.append({
                    'id': i,
                    'name': device_name,
                    'driver': driver_type,
                    'channels': int(device_info.get('maxInputChannels', 0)),
                    'rate': int(device_info.get('defaultSampleRate', 0)),
                    'is_default': i == default_device_id,
                })
        finally:
            audio.terminate()
        return input_devices
