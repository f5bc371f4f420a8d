"""Routes chat commands onto the single agent job slot.

Inbound text falls into one of four kinds:
  - control commands (``abort``/``stop``/``cancel``, ``focus <instruction>``)
    act on the slot immediately and are never queued;
  - parallel-safe commands run as quick shell commands, whatever the slot state;
  - slot commands start an agent job, or wait in the pending queue while
    another job holds the slot;
  - everything else is rejected with the classifier's reason.

The running job is a background task. It streams agent output through the
activity extractor into a per-job ``ProgressNotifier`` and, when it ends,
frees the slot, posts the result and re-dispatches one pending request.
"""
from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Callable, Dict, Optional, Set, Union

from agent_chatops.domain.contracts import (
    CommandClassifier,
    CommandHandler,
    InboundRequest,
    JobProcess,
    JobSpawner,
    ParallelExecutor,
)
from agent_chatops.domain.errors import JobError, ProcessExitNonZero, ShellCommandError, TimeoutExceeded
from agent_chatops.domain.jobs import (
    CONTEXT_TAIL_CHARS,
    STATE_BUSY,
    STATE_IDLE,
    Busy,
    Job,
    JobLimits,
    PendingRequest,
    build_focus_prompt,
    make_focus_label,
    make_label,
)
from agent_chatops.observability.structured_log import log_json
from agent_chatops.presentation.formatter import format_error, format_response, format_result
from agent_chatops.services.activity import extract_activity
from agent_chatops.services.error_codes import error_code_for
from agent_chatops.services.job_slot import JobSlot
from agent_chatops.services.pending_queue import PendingQueue
from agent_chatops.services.progress import ProgressNotifier
from agent_chatops.util import format_elapsed

logger = logging.getLogger(__name__)

ABORT_RE = re.compile(r"^(abort|stop|cancel)\b", re.I)
FOCUS_RE = re.compile(r"^focus\s+(.+)", re.I | re.S)
HELP_RE = re.compile(r"^help$", re.I)

REACT_WORKING = "⏳"
REACT_DONE = "✅"
REACT_FAILED = "❌"
ERROR_TAIL_CHARS = 500


class JobController:
    def __init__(
        self,
        classifier: CommandClassifier,
        spawner: JobSpawner,
        executor: ParallelExecutor,
        limits: Optional[JobLimits] = None,
        slot: Optional[JobSlot] = None,
        queue: Optional[PendingQueue] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._classifier = classifier
        self._spawner = spawner
        self._executor = executor
        self._limits = limits or JobLimits()
        self._clock = clock
        self._slot = slot or JobSlot(clock=clock, kill_grace_sec=self._limits.kill_grace_sec)
        self._queue = queue or PendingQueue()
        self._tasks: Set[asyncio.Task] = set()
        self._job_tasks: Dict[str, asyncio.Task] = {}
        self._heartbeats: Dict[str, asyncio.Task] = {}

    @property
    def slot(self) -> JobSlot:
        return self._slot

    @property
    def queue(self) -> PendingQueue:
        return self._queue

    @property
    def state(self) -> str:
        return STATE_BUSY if self._slot.busy else STATE_IDLE

    def status_text(self) -> str:
        job = self._slot.current
        if job is None:
            return f"Idle. Queued commands: {len(self._queue)}."
        activity = job.last_activity or "unknown"
        return (
            f"Running `{job.label}` ({format_elapsed(self._slot.elapsed(job))}).\n"
            f"Last activity: {activity}\n"
            f"Queued commands: {len(self._queue)}"
        )

    async def handle(self, request: InboundRequest) -> None:
        text = (request.text or "").strip()
        if not text:
            return

        if HELP_RE.match(text):
            await _safe_reply(request, self._classifier.help_text())
            return
        if ABORT_RE.match(text):
            await self.abort(request)
            return
        focus = FOCUS_RE.match(text)
        if focus:
            await self.focus(request, focus.group(1).strip())
            return

        classification = self._classifier.classify(text)
        if not classification.accepted or classification.handler is None:
            log_json(logger, "command.rejected", text=text[:80], reason=classification.rejection_reason)
            await _safe_reply(request, f"❌ {classification.rejection_reason}")
            return

        handler = classification.handler
        if handler.is_parallel_safe:
            await self._run_parallel(request, handler, text)
            return

        outcome = await self.run_exclusive(request, handler.to_prompt(text), make_label(text))
        if isinstance(outcome, Busy):
            position = self._queue.enqueue(PendingRequest(request=request, raw_text=text))
            await _safe_reply(
                request,
                f"⏳ Agent is running `{outcome.label}` ({format_elapsed(outcome.elapsed_sec)}). "
                f"Your command is queued (position {position}). Shell commands still work.\n"
                "Use `abort` to cancel, or `focus <new instruction>` to redirect.",
            )

    async def run_exclusive(self, request: InboundRequest, prompt: str, label: str) -> Union[Job, Busy]:
        """Start ``prompt`` as the agent job without classifying it.

        Returns the new job, or ``Busy`` when another job holds the slot.
        """
        acquired = self._slot.try_acquire(label, prompt)
        if isinstance(acquired, Busy):
            return acquired
        await self._launch(request, acquired)
        return acquired

    async def abort(self, request: InboundRequest) -> None:
        job = self._slot.current
        if job is None:
            await _safe_reply(request, "Nothing running to abort.")
            return
        elapsed = format_elapsed(self._slot.elapsed(job))
        last_activity = job.last_activity or "unknown"
        if self._stop_job(job) is None:
            await _safe_reply(request, "Nothing running to abort.")
            return
        log_json(logger, "job.aborted", job_id=job.job_id, label=job.label, elapsed=elapsed)
        await _safe_reply(request, f"🛑 Aborted `{job.label}` after {elapsed}. Last activity: {last_activity}.")
        await self._drain_pending()

    async def focus(self, request: InboundRequest, instruction: str) -> None:
        reason = self._classifier.blocked_reason(instruction)
        if reason:
            await _safe_reply(request, f"❌ {reason}")
            return
        label = make_focus_label(instruction)
        previous = self._slot.current
        if previous is None or self._stop_job(previous) is None:
            outcome = await self.run_exclusive(request, instruction, label)
            if isinstance(outcome, Busy):
                await _safe_reply(
                    request,
                    f"⏳ Agent is running `{outcome.label}` ({format_elapsed(outcome.elapsed_sec)}). "
                    "Try `focus` again.",
                )
            return

        # The slot is re-taken before the next await.
        prompt = build_focus_prompt(previous.output_tail(CONTEXT_TAIL_CHARS), instruction)
        acquired = self._slot.try_acquire(label, prompt)
        log_json(logger, "job.focused", job_id=previous.job_id, label=previous.label, instruction=instruction[:80])
        await _safe_reply(request, "🔄 Aborted previous run. Restarting with new focus...")
        if isinstance(acquired, Job):
            await self._launch(request, acquired)

    async def join(self) -> None:
        """Wait until no job task is left running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        job = self._slot.current
        if job is not None and self._stop_job(job) is not None:
            log_json(logger, "job.aborted", job_id=job.job_id, label=job.label, reason="shutdown")
        self._queue.clear()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _stop_job(self, job: Job) -> Optional[Job]:
        """Free the slot held by ``job`` and silence its heartbeat at once."""
        stopped = self._slot.force_terminate(job)
        if stopped is not None:
            heartbeat = self._heartbeats.pop(job.job_id, None)
            if heartbeat is not None:
                heartbeat.cancel()
        return stopped

    async def _launch(self, request: InboundRequest, job: Job) -> None:
        log_json(logger, "job.started", job_id=job.job_id, label=job.label, prompt=job.prompt[:80])
        await _safe_react(request, REACT_WORKING)
        await _safe_reply(
            request,
            f"⏳ Starting `{job.label}`. I'll post progress updates as it works.\n"
            "Shell commands still work. Use `abort` to cancel.",
        )
        task = asyncio.create_task(self._run_job(job, request), name=f"agent-job-{job.job_id}")
        self._track(task)
        self._job_tasks[job.job_id] = task
        task.add_done_callback(lambda _, job_id=job.job_id: self._job_tasks.pop(job_id, None))

    async def _run_parallel(self, request: InboundRequest, handler: CommandHandler, text: str) -> None:
        command = handler.to_command(text)
        if not command:
            await _safe_reply(request, "❌ Could not resolve command (missing PR number?).")
            return
        await _safe_react(request, REACT_WORKING)
        log_json(logger, "shell.started", command=command[:80], slot_busy=self._slot.busy)
        try:
            output = await self._executor.run(command, timeout_sec=self._limits.shell_timeout_sec)
        except ShellCommandError as exc:
            await _safe_react(request, REACT_FAILED)
            await _safe_reply(request, format_error(exc))
            return
        await _safe_react(request, REACT_DONE)
        await _safe_reply(request, format_response(output, self._limits.max_output_chars))

    async def _run_job(self, job: Job, request: InboundRequest) -> None:
        notifier = ProgressNotifier(
            sink=request.reply,
            started_at=job.started_at,
            last_activity=lambda: job.last_activity,
            clock=self._clock,
            debounce_sec=self._limits.progress_debounce_sec,
            heartbeat_interval_sec=self._limits.heartbeat_interval_sec,
            heartbeat_quiet_sec=self._limits.heartbeat_quiet_sec,
            is_live=lambda: self._slot.owns(job),
        )
        heartbeat = asyncio.create_task(notifier.run_heartbeat(), name=f"agent-heartbeat-{job.job_id}")
        self._heartbeats[job.job_id] = heartbeat
        failsafe = asyncio.get_running_loop().call_later(self._limits.failsafe_sec, self._failsafe_release, job)
        output: Optional[str] = None
        error: Optional[BaseException] = None
        try:
            output = await self._execute(job, notifier)
        except JobError as exc:
            error = exc
        except Exception as exc:
            logger.exception("Agent job %s failed unexpectedly", job.job_id)
            error = exc
        finally:
            heartbeat.cancel()
            failsafe.cancel()
            self._heartbeats.pop(job.job_id, None)
            await asyncio.gather(heartbeat, return_exceptions=True)
            released = self._slot.release(job)

        elapsed = format_elapsed(self._clock() - job.started_at)
        if released is None:
            log_json(logger, "job.discarded", job_id=job.job_id, label=job.label)
            return

        if error is None:
            log_json(logger, "job.finished", job_id=job.job_id, label=job.label, elapsed=elapsed)
            await _safe_react(request, REACT_DONE)
            for part in format_result(output or "", elapsed, self._limits.max_output_chars):
                await _safe_reply(request, part)
        else:
            log_json(
                logger,
                "job.failed",
                level=logging.WARNING,
                job_id=job.job_id,
                label=job.label,
                elapsed=elapsed,
                code=error_code_for(error),
            )
            await _safe_react(request, REACT_FAILED)
            await _safe_reply(request, format_error(error))

        await self._drain_pending()

    async def _execute(self, job: Job, notifier: ProgressNotifier) -> str:
        async def on_output(chunk: str) -> None:
            if not self._slot.record_output(job, chunk):
                return
            signal = extract_activity(chunk)
            if signal is None:
                return
            self._slot.record_activity(job, signal.summary)
            await notifier.offer(signal)

        process = await self._spawner.spawn(job.prompt, on_output)
        if not self._slot.attach_process(job, process):
            # Aborted while the process was starting.
            process.kill()
            return ""

        # The ceiling counts from acquisition, so spawn time is included.
        remaining = max(0.0, self._limits.job_timeout_sec - (self._clock() - job.started_at))
        try:
            returncode = await asyncio.wait_for(process.wait(), timeout=remaining)
        except asyncio.TimeoutError:
            _kill_quietly(process)
            raise TimeoutExceeded(self._limits.job_timeout_sec, job.output_tail(ERROR_TAIL_CHARS))

        if returncode != 0:
            tail = (process.stderr.strip() or job.partial_output.strip())[-ERROR_TAIL_CHARS:]
            raise ProcessExitNonZero(returncode, tail)
        return job.partial_output or process.stderr or "(no output)"

    def _failsafe_release(self, job: Job) -> None:
        if self._stop_job(job) is None:
            return
        log_json(logger, "job.failsafe", level=logging.WARNING, job_id=job.job_id, label=job.label)
        stuck = self._job_tasks.pop(job.job_id, None)
        if stuck is not None:
            stuck.cancel()
        self._track(asyncio.create_task(self._drain_pending(), name=f"agent-drain-{job.job_id}"))

    def _track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _drain_pending(self) -> None:
        pending = self._queue.drain_one()
        if pending is None:
            return
        await _safe_reply(pending.request, f"📤 Processing your queued command: `{pending.raw_text[:40]}`")
        await self.handle(pending.request)


def _kill_quietly(process: JobProcess) -> None:
    try:
        process.kill()
    except Exception as exc:
        logger.warning("Failed to kill timed out agent process: %s", exc)


async def _safe_reply(request: InboundRequest, text: str) -> None:
    try:
        await request.reply(text)
    except Exception as exc:
        logger.warning("Reply delivery failed: %s", exc)


async def _safe_react(request: InboundRequest, emoji: str) -> None:
    try:
        await request.react(emoji)
    except Exception as exc:
        logger.debug("Reaction failed: %s", exc)
