"""Voice activity gate with release hysteresis.

:class:`ActivityDetector` turns the stream of per-chunk loudness values from
the monitor feed into "start recording" / "stop recording" events.  A dip
below the threshold does not end an episode immediately: the detector moves
to ``RELEASING`` and arms a one-shot timer on the running event loop.  If the
voice comes back before the timer fires the episode simply continues.

State machine (``L`` = loudness, ``T`` = threshold)::

    IDLE      --L > T-->   ACTIVE      emit START
    ACTIVE    --L <= T-->  RELEASING   arm timer(release_grace)
    RELEASING --L > T-->   ACTIVE      cancel timer
    RELEASING --timer-->   IDLE        emit STOP
"""

import asyncio
import math
from enum import Enum
from typing import Callable, Optional

from loguru import logger

from .config import RELEASE_GRACE, THRESHOLD_DB


class ActivityState(Enum):
    """Detector state."""

    IDLE = "idle"
    ACTIVE = "active"
    RELEASING = "releasing"


class ActivityEvent(Enum):
    """Event emitted on an episode boundary."""

    START = "start"
    STOP = "stop"


class ActivityDetector:
    """Hysteresis gate over loudness values.

    Args:
        threshold: Loudness (dB) that must be strictly exceeded to count as voice.
        release_grace: Seconds the level must stay at or below the threshold
            before the episode ends.
        on_start: Called synchronously on the IDLE -> ACTIVE transition.
        on_stop: Called synchronously when the release timer fires.
        loop: Event loop for the release timer.  Defaults to the running loop
            at the time the timer is armed.
    """

    def __init__(
        self,
        threshold: float = THRESHOLD_DB,
        release_grace: float = RELEASE_GRACE,
        on_start: Optional[Callable[[], None]] = None,
        on_stop: Optional[Callable[[], None]] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self.threshold = threshold
        self.release_grace = release_grace
        self._on_start = on_start
        self._on_stop = on_stop
        self._loop = loop
        self._state = ActivityState.IDLE
        self._release_timer: Optional[asyncio.TimerHandle] = None
        self._release_deadline: Optional[float] = None

    @property
    def state(self) -> ActivityState:
        return self._state

    @property
    def release_deadline(self) -> Optional[float]:
        """Event-loop time at which a pending release fires, while RELEASING."""
        return self._release_deadline

    def is_voice(self, level: float) -> bool:
        """Return True when *level* counts as voice; non-finite values never do."""
        return math.isfinite(level) and level > self.threshold

    def update(self, level: float) -> Optional[ActivityEvent]:
        """Feed the loudness of one monitor chunk.

        Returns:
            ``ActivityEvent.START`` when an episode begins, otherwise ``None``.
            The STOP event is only emitted from the release timer.
        """
        voice = self.is_voice(level)

        if self._state is ActivityState.IDLE:
            if voice:
                self._state = ActivityState.ACTIVE
                logger.debug(f"Voice detected ({level:.1f} dB > {self.threshold:.1f} dB)")
                if self._on_start is not None:
                    self._on_start()
                return ActivityEvent.START
            return None

        if self._state is ActivityState.ACTIVE:
            if not voice:
                self._arm_release()
            return None

        # RELEASING
        if voice:
            self._cancel_release()
            self._state = ActivityState.ACTIVE
            logger.debug("Voice resumed before release grace expired")
        return None

    def reset(self) -> None:
        """Return to IDLE without emitting STOP, cancelling any armed timer."""
        self._cancel_release()
        self._state = ActivityState.IDLE

    def _arm_release(self) -> None:
        loop = self._loop or asyncio.get_running_loop()
        self._state = ActivityState.RELEASING
        self._release_deadline = loop.time() + self.release_grace
        self._release_timer = loop.call_later(self.release_grace, self._release_expired)

    def _cancel_release(self) -> None:
        if self._release_timer is not None:
            self._release_timer.cancel()
        self._release_timer = None
        self._release_deadline = None

    def _release_expired(self) -> None:
        self._release_timer = None
        self._release_deadline = None
        if self._state is not ActivityState.RELEASING:
            return
        self._state = ActivityState.IDLE
        logger.debug(f"Silence for {self.release_grace:.2f}s, ending episode")
        if self._on_stop is not None:
            self._on_stop()
