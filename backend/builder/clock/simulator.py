"""
Local match clock simulation between authoritative detail fetches.

The snapshot is never mutated: display values are snapshot + ticks, and
the tick counter resets to zero whenever a fresh snapshot is applied.
"""
from __future__ import annotations

import asyncio
from typing import Optional

from shared.config import Settings, get_settings
from shared.models.domain import ClockState, PenaltyRecord
from shared.models.enums import ClockReason
from shared.utils.logging import get_logger

logger = get_logger(__name__)


def format_clock(total_seconds: int) -> str:
    """Seconds as MM:SS; minutes are not capped at 59."""
    total_seconds = max(0, total_seconds)
    minutes, seconds = divmod(total_seconds, 60)
    return f"{minutes:02d}:{seconds:02d}"


class ClockSimulator:
    """Derives display clock, timeout countdown and penalty countdowns."""

    def __init__(
        self,
        snapshot: Optional[ClockState] = None,
        penalties: Optional[list[PenaltyRecord]] = None,
    ) -> None:
        self._snapshot = snapshot
        self._penalties = list(penalties or [])
        self._ticks = 0

    @property
    def snapshot(self) -> Optional[ClockState]:
        return self._snapshot

    @property
    def ticks(self) -> int:
        return self._ticks

    @property
    def should_tick(self) -> bool:
        if self._snapshot is None:
            return False
        return self._snapshot.running or self._snapshot.reason == ClockReason.TIMEOUT

    def tick(self, count: int = 1) -> None:
        self._ticks += count

    def apply_snapshot(
        self,
        snapshot: Optional[ClockState],
        penalties: Optional[list[PenaltyRecord]] = None,
    ) -> None:
        """Replace the authoritative state; elapsed ticks restart from zero."""
        self._snapshot = snapshot
        if penalties is not None:
            self._penalties = list(penalties)
        self._ticks = 0

    # ── Game clock ──────────────────────────────────────────────────────

    @property
    def display_seconds(self) -> Optional[int]:
        if self._snapshot is None:
            return None
        if self._snapshot.running:
            return self._snapshot.current_seconds + self._ticks
        return self._snapshot.current_seconds

    @property
    def display_clock(self) -> Optional[str]:
        seconds = self.display_seconds
        return None if seconds is None else format_clock(seconds)

    # ── Timeout ─────────────────────────────────────────────────────────

    @property
    def timeout_seconds_left(self) -> Optional[int]:
        snap = self._snapshot
        if snap is None or snap.reason != ClockReason.TIMEOUT or snap.timeout is None:
            return None
        return max(0, snap.timeout.timeout_seconds_left - self._ticks)

    @property
    def timeout_display(self) -> Optional[str]:
        left = self.timeout_seconds_left
        return None if left is None else format_clock(left)

    # ── Penalties ───────────────────────────────────────────────────────

    def active_penalties(self) -> list[PenaltyRecord]:
        """
        Penalties still running as of the current tick.

        Every tick since the snapshot counts, timeouts included. A penalty is
        dropped once the elapsed ticks exceed its snapshot remaining time, and
        penalties from another period are hidden when both periods are known.
        """
        ticks = self._ticks
        clock_period = self._snapshot.period if self._snapshot is not None else 0

        active: list[PenaltyRecord] = []
        for penalty in self._penalties:
            if not penalty.active:
                continue
            if ticks > penalty.remaining_seconds:
                continue
            if clock_period > 0 and penalty.period > 0 and penalty.period != clock_period:
                continue
            remaining = max(0, penalty.remaining_seconds - ticks)
            active.append(penalty.model_copy(update={"remaining_seconds": remaining}))
        return active


class ClockTicker:
    """Drives `ClockSimulator.tick()` on a fixed interval while the clock should move."""

    def __init__(
        self,
        simulator: ClockSimulator,
        settings: Settings | None = None,
        interval_s: float | None = None,
    ) -> None:
        self._simulator = simulator
        settings = settings or get_settings()
        self._interval = interval_s if interval_s is not None else settings.clock_tick_interval_s
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def simulator(self) -> ClockSimulator:
        return self._simulator

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start ticking if the snapshot calls for it; no-op otherwise."""
        if self.is_running or not self._simulator.should_tick:
            return
        self._task = asyncio.create_task(self._run(), name="clock-ticker")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def reset(
        self,
        snapshot: Optional[ClockState],
        penalties: Optional[list[PenaltyRecord]] = None,
    ) -> None:
        """Apply a fresh snapshot and restart or stop the timer to match it."""
        await self.stop()
        self._simulator.apply_snapshot(snapshot, penalties)
        self.start()

    async def _run(self) -> None:
        while self._simulator.should_tick:
            await asyncio.sleep(self._interval)
            self._simulator.tick()
