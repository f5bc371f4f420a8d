import asyncio
import threading
import unittest

from agent_chatops.domain.jobs import Busy, Job
from agent_chatops.services.job_slot import JobSlot


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingProcess:
    def __init__(self, exits_on_term: bool = True):
        self.exits_on_term = exits_on_term
        self.returncode = None
        self.stderr = ""
        self.signals = []

    async def wait(self) -> int:
        return self.returncode or 0

    def terminate(self) -> None:
        self.signals.append("TERM")
        if self.exits_on_term:
            self.returncode = -15

    def kill(self) -> None:
        self.signals.append("KILL")
        self.returncode = -9


class TestJobSlot(unittest.TestCase):
    def test_acquire_then_busy_reports_running_job(self):
        clock = FakeClock()
        slot = JobSlot(clock=clock)
        job = slot.try_acquire("build X", "prompt X")
        self.assertIsInstance(job, Job)
        self.assertTrue(slot.busy)

        clock.advance(12)
        busy = slot.try_acquire("build Y", "prompt Y")
        self.assertEqual(busy, Busy(label="build X", elapsed_sec=12))
        self.assertIs(slot.current, job)

    def test_release_is_idempotent(self):
        slot = JobSlot()
        job = slot.try_acquire("a", "a")
        self.assertIs(slot.release(), job)
        self.assertIsNone(slot.release())
        self.assertIsNone(slot.release(job))
        self.assertFalse(slot.busy)

    def test_release_ignores_stale_job(self):
        slot = JobSlot()
        old = slot.try_acquire("old", "old")
        slot.release(old)
        new = slot.try_acquire("new", "new")
        self.assertIsNone(slot.release(old))
        self.assertIs(slot.current, new)

    def test_updates_only_apply_to_current_job(self):
        slot = JobSlot()
        job = slot.try_acquire("a", "a")
        self.assertTrue(slot.record_output(job, "hello "))
        self.assertTrue(slot.record_activity(job, "Reading `a.py`"))
        slot.release(job)
        self.assertFalse(slot.record_output(job, "late"))
        self.assertFalse(slot.record_activity(job, "late"))
        self.assertFalse(slot.attach_process(job, RecordingProcess()))
        self.assertEqual(job.partial_output, "hello ")
        self.assertEqual(job.last_activity, "Reading `a.py`")

    def test_force_terminate_without_loop_kills_at_once(self):
        slot = JobSlot()
        job = slot.try_acquire("a", "a")
        process = RecordingProcess(exits_on_term=False)
        slot.attach_process(job, process)
        self.assertIs(slot.force_terminate(), job)
        self.assertEqual(process.signals, ["TERM", "KILL"])
        self.assertFalse(slot.busy)
        self.assertIsNone(slot.force_terminate())

    def test_concurrent_acquire_grants_single_job(self):
        slot = JobSlot()
        results = []
        barrier = threading.Barrier(8)

        def worker(i: int) -> None:
            barrier.wait()
            results.append(slot.try_acquire(f"job {i}", "p"))

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(sum(isinstance(r, Job) for r in results), 1)
        self.assertEqual(sum(isinstance(r, Busy) for r in results), 7)


class TestJobSlotTermination(unittest.IsolatedAsyncioTestCase):
    async def test_kill_follows_grace_period(self):
        slot = JobSlot(kill_grace_sec=0.05)
        job = slot.try_acquire("a", "a")
        process = RecordingProcess(exits_on_term=False)
        slot.attach_process(job, process)
        slot.force_terminate(job)
        self.assertEqual(process.signals, ["TERM"])
        self.assertFalse(slot.busy)
        await asyncio.sleep(0.15)
        self.assertEqual(process.signals, ["TERM", "KILL"])

    async def test_no_kill_when_process_exits(self):
        slot = JobSlot(kill_grace_sec=0.05)
        job = slot.try_acquire("a", "a")
        process = RecordingProcess(exits_on_term=True)
        slot.attach_process(job, process)
        slot.force_terminate(job)
        await asyncio.sleep(0.15)
        self.assertEqual(process.signals, ["TERM"])


if __name__ == "__main__":
    unittest.main()
