"""
Replay Scheduling for Circuit Position Replay

This module provides the single replay transport shared by every view that
plays back a timeline: a small state machine (idle / paused / playing) over a
frame index, plus an asyncio timer that drives it one tick at a time.

Observers subscribe to state changes instead of running their own interval
logic. A tick is complete only after every observer has returned, and the
timer schedules the next sleep after that, so two ticks are never in flight
at once.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from . import constants
from . import utils
from .models import ReplayState, ReplayStatus

logger = logging.getLogger(__name__)

# Called with the new state and whether the index moved by exactly +1
ReplayObserver = Callable[[ReplayState, bool], None]


class ReplayScheduler:
    """
    Virtual clock over an indexed timeline.

    Transitions:
    - load(n): index 0, Paused if n > 0 else Idle
    - reconfigure(n, i): keep position and status across a timeline change
    - play(): Paused -> Playing (no-op when Idle or already Playing)
    - pause(): Playing -> Paused
    - step(d), seek(i): clamp the index into range, status unchanged
    - tick(): Playing only; advances one frame, pausing at the last frame
    """

    def __init__(self, base_interval: float = constants.BASE_INTERVAL_S,
                 speed_multiplier: float = 1.0):
        if base_interval <= 0:
            raise ValueError(f"base_interval must be positive, got {base_interval}")
        self.base_interval = float(base_interval)
        self._status = ReplayStatus.IDLE
        self._index = 0
        self._frame_count = 0
        self._speed = 1.0
        self._observers: List[ReplayObserver] = []
        self.set_speed(speed_multiplier)

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def status(self) -> ReplayStatus:
        return self._status

    @property
    def current_frame_index(self) -> int:
        return self._index

    @property
    def frame_count(self) -> int:
        return self._frame_count

    @property
    def speed_multiplier(self) -> float:
        return self._speed

    @property
    def interval(self) -> float:
        """Seconds between ticks at the current speed."""
        return self.base_interval / self._speed

    @property
    def is_playing(self) -> bool:
        return self._status is ReplayStatus.PLAYING

    def snapshot(self) -> ReplayState:
        return ReplayState(
            status=self._status,
            current_frame_index=self._index,
            frame_count=self._frame_count,
            speed_multiplier=self._speed,
        )

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, observer: ReplayObserver) -> Callable[[], None]:
        """Register an observer; returns a callable that removes it."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _notify(self, sequential: bool) -> None:
        state = self.snapshot()
        for observer in list(self._observers):
            observer(state, sequential)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _clamp(self, index: int) -> int:
        return utils.clamp(int(index), 0, self._frame_count - 1)

    def load(self, frame_count: int) -> None:
        self._frame_count = max(0, int(frame_count))
        self._index = 0
        self._status = ReplayStatus.PAUSED if self._frame_count > 0 else ReplayStatus.IDLE
        logger.debug("Replay loaded %d frames", self._frame_count)
        self._notify(sequential=False)

    def reconfigure(self, frame_count: int, index: Optional[int] = None, keep_playing: bool = True) -> None:
        """
        Resize the timeline under the current position with a single notification.

        Args:
            frame_count: New number of frames.
            index: Frame to stand on, clamped; defaults to the current index.
            keep_playing: If False, a playing replay is paused.
        """
        self._frame_count = max(0, int(frame_count))
        if self._frame_count == 0:
            self._index = 0
            self._status = ReplayStatus.IDLE
        else:
            self._index = self._clamp(self._index if index is None else index)
            if self._status is ReplayStatus.IDLE or (not keep_playing and self.is_playing):
                self._status = ReplayStatus.PAUSED
        self._notify(sequential=False)

    def play(self) -> None:
        if self._status is not ReplayStatus.PAUSED:
            return
        self._status = ReplayStatus.PLAYING
        self._notify(sequential=False)

    def pause(self) -> None:
        if self._status is not ReplayStatus.PLAYING:
            return
        self._status = ReplayStatus.PAUSED
        self._notify(sequential=False)

    def toggle(self) -> None:
        if self._status is ReplayStatus.PLAYING:
            self.pause()
        else:
            self.play()

    def step(self, delta: int = 1) -> None:
        """Move the index by delta frames, clamped to the timeline."""
        if self._status is ReplayStatus.IDLE:
            return
        previous = self._index
        self._index = self._clamp(previous + delta)
        if self._index != previous:
            self._notify(sequential=self._index == previous + 1)

    def seek(self, index: int) -> None:
        """Jump to a frame; observers must rebuild rather than extend."""
        if self._status is ReplayStatus.IDLE:
            return
        self._index = self._clamp(index)
        self._notify(sequential=False)

    def set_speed(self, multiplier: float) -> None:
        """Change playback speed; the new interval applies from the next tick."""
        if multiplier is None or not multiplier > 0:
            raise ValueError(f"speed multiplier must be positive, got {multiplier}")
        self._speed = float(multiplier)

    def tick(self) -> bool:
        """
        Advance one frame while playing.

        Returns:
            True if the index advanced. At the last frame the scheduler
            pauses instead; replay never wraps around.
        """
        if self._status is not ReplayStatus.PLAYING:
            return False

        if self._index + 1 > self._frame_count - 1:
            self._index = self._frame_count - 1
            self._status = ReplayStatus.PAUSED
            logger.debug("Replay reached last frame %d", self._index)
            self._notify(sequential=False)
            return False

        self._index += 1
        self._notify(sequential=True)
        return True


class ReplayTimer:
    """
    Recurring asyncio timer driving a ReplayScheduler.

    The loop sleeps for the scheduler's current interval, ticks, and only then
    sleeps again, so a speed change is picked up on the next tick and ticks
    never overlap. stop() cancels the task; nothing runs after it.
    """

    def __init__(self, scheduler: ReplayScheduler,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.scheduler = scheduler
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run(self) -> None:
        """Tick until the scheduler leaves the Playing state."""
        while self.scheduler.is_playing:
            await self._sleep(self.scheduler.interval)
            if not self.scheduler.is_playing:
                break
            self.scheduler.tick()

    def start(self) -> asyncio.Task:
        """Start ticking on the running event loop (idempotent)."""
        if not self.running:
            self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
