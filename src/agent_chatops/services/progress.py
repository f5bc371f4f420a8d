"""Debounced progress messages for a running agent job.

Two sources feed the same sink:
  1. Activity signals extracted from the agent output. One is emitted only if
     the debounce interval has passed since the previous emission and its
     summary differs from the previously emitted one.
  2. A heartbeat that fires every ``heartbeat_interval_sec``. When nothing was
     emitted for ``heartbeat_quiet_sec`` it posts a "still working" line with
     the last known activity, so the requester always sees a sign of life.

One notifier lives exactly as long as one job. Nothing is posted once
``is_live`` turns false, and the controller cancels the heartbeat task before
the final result is posted.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from agent_chatops.domain.jobs import ActivitySignal
from agent_chatops.util import format_elapsed

logger = logging.getLogger(__name__)

PROGRESS_DEBOUNCE_SEC = 15.0
HEARTBEAT_INTERVAL_SEC = 60.0
HEARTBEAT_QUIET_SEC = 45.0

Sink = Callable[[str], Awaitable[None]]


class ProgressNotifier:
    def __init__(
        self,
        sink: Sink,
        started_at: float,
        last_activity: Callable[[], str] = lambda: "",
        clock: Callable[[], float] = time.monotonic,
        debounce_sec: float = PROGRESS_DEBOUNCE_SEC,
        heartbeat_interval_sec: float = HEARTBEAT_INTERVAL_SEC,
        heartbeat_quiet_sec: float = HEARTBEAT_QUIET_SEC,
        is_live: Callable[[], bool] = lambda: True,
    ) -> None:
        self._sink = sink
        self._started_at = started_at
        self._last_activity = last_activity
        self._clock = clock
        self._debounce_sec = debounce_sec
        self._heartbeat_interval_sec = heartbeat_interval_sec
        self._heartbeat_quiet_sec = heartbeat_quiet_sec
        self._is_live = is_live
        self.last_emitted_at: Optional[float] = None
        self.last_emitted_summary = ""
        self.activity_count = 0

    def consider(self, signal: ActivitySignal) -> Optional[str]:
        """Return the progress message to post for ``signal``, or ``None``."""
        now = self._clock()
        if self.last_emitted_at is not None and now - self.last_emitted_at < self._debounce_sec:
            return None
        if signal.summary == self.last_emitted_summary:
            return None
        self.last_emitted_at = now
        self.last_emitted_summary = signal.summary
        self.activity_count += 1
        message = f"⚙️ {signal.summary} ({self._elapsed(now)})"
        if signal.detail:
            message += f"\n`{signal.detail}`"
        return message

    def heartbeat_due(self) -> Optional[str]:
        now = self._clock()
        if self.last_emitted_at is not None and now - self.last_emitted_at < self._heartbeat_quiet_sec:
            return None
        self.last_emitted_at = now
        activity = self._last_activity()
        suffix = f" Last: {activity}" if activity else ""
        return f"⏳ Still working... ({self._elapsed(now)}){suffix}"

    async def offer(self, signal: ActivitySignal) -> bool:
        if not self._is_live():
            return False
        message = self.consider(signal)
        if message is None:
            return False
        await self._deliver(message)
        return True

    async def run_heartbeat(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval_sec)
            if not self._is_live():
                return
            message = self.heartbeat_due()
            if message is not None:
                await self._deliver(message)

    def _elapsed(self, now: float) -> str:
        return format_elapsed(now - self._started_at)

    async def _deliver(self, message: str) -> None:
        try:
            await self._sink(message)
        except Exception as exc:
            logger.debug("Progress delivery failed: %s", exc)
