import tempfile
import unittest
from pathlib import Path

from agent_chatops.domain.errors import ShellCommandError
from agent_chatops.execution.local_shell import LocalShellExecutor


class TestLocalShellExecutor(unittest.IsolatedAsyncioTestCase):
    async def test_returns_stdout(self):
        self.assertEqual(await LocalShellExecutor().run("echo hello"), "hello\n")

    async def test_falls_back_to_stderr(self):
        out = await LocalShellExecutor().run("echo oops 1>&2; exit 2")
        self.assertEqual(out, "oops\n")

    async def test_silent_failure_raises(self):
        with self.assertRaises(ShellCommandError) as ctx:
            await LocalShellExecutor().run("exit 3")
        self.assertIn("code 3", str(ctx.exception))

    async def test_timeout_kills_command(self):
        with self.assertRaises(ShellCommandError) as ctx:
            await LocalShellExecutor().run("sleep 5", timeout_sec=0.2)
        self.assertIn("timed out", str(ctx.exception))

    async def test_runs_in_working_dir(self):
        with tempfile.TemporaryDirectory() as tmp:
            out = await LocalShellExecutor(working_dir=Path(tmp)).run("pwd")
            self.assertEqual(Path(out.strip()).resolve(), Path(tmp).resolve())


if __name__ == "__main__":
    unittest.main()
