import math
import time
from enum import Enum
from functools import partial
import logging
from typing import Callable, Optional


logger = logging.getLogger(__name__)


class CountdownContext(str, Enum):
    GAME_START = 'gameStart'
    PER_GUESS = 'perGuess'


class TimerHandle:
    """Cancellation handle returned by a scheduler."""

    def __init__(self):
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class BackgroundScheduler:
    """Fire a callback after ``delay`` seconds on a Socket.IO background task.

    The worker sleeps through the socketio async layer so it cooperates with
    eventlet/gevent as well as plain threads. Optional heartbeat logging
    mirrors the long sleeps in small steps.
    """

    def __init__(self, socketio, heartbeat_sec: int = 0):
        self.socketio = socketio
        self.heartbeat_sec = heartbeat_sec

    def schedule(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle()

        def _worker():
            if self.heartbeat_sec and self.heartbeat_sec > 0:
                slept = 0.0
                while slept < delay and not handle.cancelled:
                    step = min(self.heartbeat_sec, delay - slept)
                    self.socketio.sleep(step)
                    slept += step
                    logger.info(f"[timer-heartbeat] remaining={max(0, delay - slept)}s")
            else:
                self.socketio.sleep(delay)
            if handle.cancelled:
                return
            callback()

        self.socketio.start_background_task(_worker)
        return handle


class Countdown:
    """Single-slot countdown for one session.

    Holds a wall-clock deadline so the remaining time is always
    ``deadline - now`` regardless of how late the worker wakes up. Arming over
    an armed countdown is refused; callers must ``cancel`` or use ``rearm``.
    Expiry runs under the session lock and is dropped when the slot was
    cancelled or replaced in the meantime.
    """

    def __init__(self, scheduler, lock, clock: Callable[[], float] = time.time, label: str = ''):
        self.scheduler = scheduler
        self.lock = lock
        self.clock = clock
        self.label = label
        self.deadline: Optional[float] = None
        self.duration: int = 0
        self.context: Optional[CountdownContext] = None
        self._token = None
        self._handle: Optional[TimerHandle] = None
        self._on_expiry: Optional[Callable[[], None]] = None

    @property
    def armed(self) -> bool:
        return self._token is not None

    def arm(self, duration: int, context: CountdownContext, on_expiry: Callable[[], None]) -> float:
        if self.armed:
            raise RuntimeError(f"countdown for {self.label} is already armed")
        token = object()
        self._token = token
        self._on_expiry = on_expiry
        self.duration = int(duration)
        self.context = CountdownContext(context)
        self.deadline = self.clock() + duration
        self._handle = self.scheduler.schedule(duration, partial(self._fire, token))
        logger.info(
            f"[timer-set] session={self.label} context={self.context.value} duration={self.duration}s deadline={self.deadline}"
        )
        return self.deadline

    def rearm(self, duration: int, context: CountdownContext, on_expiry: Callable[[], None]) -> float:
        self.cancel()
        return self.arm(duration, context, on_expiry)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            logger.info(f"[timer-cancel] session={self.label} context={self.context.value if self.context else None}")
        self._clear()

    def remaining(self) -> int:
        if self.deadline is None:
            return 0
        return max(0, math.ceil(self.deadline - self.clock()))

    def info(self) -> dict:
        remaining = self.remaining()
        if not self.armed or remaining <= 0:
            return {'inCountdown': False}
        return {
            'inCountdown': True,
            'secondsRemaining': remaining,
            'totalDuration': self.duration,
            'context': self.context.value,
        }

    def _clear(self) -> None:
        self._token = None
        self._handle = None
        self._on_expiry = None
        self.deadline = None
        self.context = None

    def _fire(self, token) -> None:
        with self.lock:
            if self._token is not token:
                logger.info(f"[timer-abort] session={self.label} slot was cancelled or replaced")
                return
            callback = self._on_expiry
            context = self.context
            self._clear()
            logger.info(f"[timer-fire] session={self.label} context={context.value}")
            callback()
