import io
import os
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest.mock import patch

from agent_chatops.app_container import build_controller
from agent_chatops.cli import main
from agent_chatops.config import TOKEN_KEY, build_config, get_env_int, load_env_file
from agent_chatops.domain.jobs import STATE_IDLE, JobLimits


class TestBuildConfig(unittest.TestCase):
    def test_defaults(self):
        with tempfile.TemporaryDirectory() as tmp, patch.dict(os.environ, {}, clear=True):
            config = build_config({TOKEN_KEY: "t"}, Path(tmp), working_dir=Path(tmp))
        self.assertEqual(config.token, "t")
        self.assertIsNone(config.allowlist)
        self.assertIsNone(config.chat_ids)
        self.assertEqual(config.agent_path, "claude")
        self.assertEqual(config.agent_args, ["-p", "--dangerously-skip-permissions"])
        self.assertEqual(config.job_timeout_sec, 600)
        self.assertEqual(config.working_dir, Path(tmp).resolve())
        self.assertEqual(JobLimits.from_config(config).failsafe_sec, 630)

    def test_env_file_overrides(self):
        env_file = {
            TOKEN_KEY: "t",
            "AGENT_JOB_TIMEOUT_SEC": "120",
            "AGENT_CLI_ARGS": "--print",
            "CHATOPS_CHAT_IDS": "1, 2",
            "SHELL_TIMEOUT_SEC": "bad",
            "KILL_GRACE_SEC": "0",
        }
        with tempfile.TemporaryDirectory() as tmp, patch.dict(os.environ, {}, clear=True):
            config = build_config(env_file, Path(tmp), working_dir=Path(tmp))
        self.assertEqual(config.job_timeout_sec, 120)
        self.assertEqual(config.agent_args, ["--print"])
        self.assertEqual(config.chat_ids, [1, 2])
        self.assertEqual(config.shell_timeout_sec, 30)
        self.assertEqual(config.kill_grace_sec, 1)

    def test_process_env_wins(self):
        with tempfile.TemporaryDirectory() as tmp, patch.dict(
            os.environ, {TOKEN_KEY: "from-env", "CHATOPS_WORKING_DIR": tmp}, clear=True
        ):
            config = build_config({TOKEN_KEY: "from-file"}, Path(tmp))
        self.assertEqual(config.token, "from-env")
        self.assertEqual(config.working_dir, Path(tmp).resolve())

    def test_get_env_int_minimum(self):
        with patch.dict(os.environ, {}, clear=True):
            self.assertEqual(get_env_int("X", {"X": "-5"}, 10), 1)
            self.assertEqual(get_env_int("X", {}, 10), 10)

    def test_load_env_file_skips_comments(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / ".env"
            path.write_text("# comment\nA=1\n\nnot a pair\nB = two\n", encoding="utf-8")
            self.assertEqual(load_env_file(path), {"A": "1", "B": "two"})


class TestWiring(unittest.TestCase):
    def test_build_controller_starts_idle(self):
        with tempfile.TemporaryDirectory() as tmp, patch.dict(os.environ, {}, clear=True):
            config = build_config({TOKEN_KEY: "t"}, Path(tmp), working_dir=Path(tmp))
        controller = build_controller(config)
        self.assertEqual(controller.state, STATE_IDLE)
        self.assertEqual(controller.status_text(), "Idle. Queued commands: 0.")


class TestCli(unittest.TestCase):
    def test_print_config(self):
        with tempfile.TemporaryDirectory() as tmp:
            (Path(tmp) / ".env").write_text(f"{TOKEN_KEY}=abc\nALLOWLIST=1\n", encoding="utf-8")
            argv = ["agent-chatops", "--config-dir", tmp, "--working-dir", tmp, "--print-config"]
            out = io.StringIO()
            with patch("sys.argv", argv), patch.dict(os.environ, {}, clear=True), redirect_stdout(out):
                main()
        text = out.getvalue()
        self.assertIn("Token present: yes", text)
        self.assertIn("Allowlist active: yes", text)
        self.assertIn("Job timeout: 600s", text)


if __name__ == "__main__":
    unittest.main()
