from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Callable, Optional, Union

from agent_chatops.domain.contracts import JobProcess
from agent_chatops.domain.jobs import Busy, Job
from agent_chatops.observability.structured_log import log_json

logger = logging.getLogger(__name__)

KILL_GRACE_SEC = 3.0


class JobSlot:
    """Holds at most one running agent job.

    ``try_acquire`` is a non-blocking check-and-set. Every other mutation takes
    the same lock, so the zero-or-one invariant also holds when callers run on
    worker threads rather than the event loop.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        kill_grace_sec: float = KILL_GRACE_SEC,
    ) -> None:
        self._clock = clock
        self._kill_grace_sec = kill_grace_sec
        self._lock = threading.RLock()
        self._job: Optional[Job] = None

    @property
    def busy(self) -> bool:
        with self._lock:
            return self._job is not None

    @property
    def current(self) -> Optional[Job]:
        with self._lock:
            return self._job

    def owns(self, job: Job) -> bool:
        with self._lock:
            return self._job is job

    def elapsed(self, job: Optional[Job] = None) -> float:
        with self._lock:
            target = job or self._job
        if target is None:
            return 0.0
        return max(0.0, self._clock() - target.started_at)

    def try_acquire(self, label: str, prompt: str) -> Union[Job, Busy]:
        with self._lock:
            if self._job is not None:
                return Busy(label=self._job.label, elapsed_sec=self.elapsed(self._job))
            job = Job(label=label, prompt=prompt, started_at=self._clock())
            self._job = job
        log_json(logger, "slot.acquired", job_id=job.job_id, label=label)
        return job

    def attach_process(self, job: Job, process: JobProcess) -> bool:
        with self._lock:
            if self._job is not job:
                return False
            job.process = process
            return True

    def record_output(self, job: Job, chunk: str) -> bool:
        with self._lock:
            if self._job is not job:
                return False
            job.partial_output += chunk
            return True

    def record_activity(self, job: Job, summary: str) -> bool:
        with self._lock:
            if self._job is not job:
                return False
            job.last_activity = summary
            return True

    def release(self, job: Optional[Job] = None) -> Optional[Job]:
        """Clear the slot. Safe to call repeatedly.

        With ``job`` given, only clears the slot while that job still owns it
        and returns ``None`` otherwise.
        """
        with self._lock:
            current = self._job
            if current is None or (job is not None and current is not job):
                return None
            self._job = None
            current.process = None
        log_json(logger, "slot.released", job_id=current.job_id, label=current.label)
        return current

    def force_terminate(self, job: Optional[Job] = None) -> Optional[Job]:
        """Detach and stop the running process, freeing the slot right away.

        Sends SIGTERM now and SIGKILL after the grace period if the process is
        still alive. Does not wait for the process to exit.
        """
        with self._lock:
            current = self._job
            if current is None or (job is not None and current is not job):
                return None
            process = current.process
            self.release(current)
        if process is not None:
            self._terminate(process)
        return current

    def _terminate(self, process: JobProcess) -> None:
        try:
            process.terminate()
        except Exception as exc:
            logger.warning("Failed to send SIGTERM to agent process: %s", exc)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            _kill_if_running(process)
            return
        loop.call_later(self._kill_grace_sec, _kill_if_running, process)


def _kill_if_running(process: JobProcess) -> None:
    if process.returncode is not None:
        return
    try:
        process.kill()
    except Exception as exc:
        logger.warning("Failed to send SIGKILL to agent process: %s", exc)
