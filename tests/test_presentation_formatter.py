import unittest

from agent_chatops.domain.errors import AgentNotFound, ProcessExitNonZero, ProcessSpawnFailure, TimeoutExceeded
from agent_chatops.presentation import clean_output, format_error, format_response, format_result
from agent_chatops.services.error_codes import error_code_for, get_catalog_entry


class TestFormatResult(unittest.TestCase):
    def test_short_output_is_one_message(self):
        self.assertEqual(format_result("hello", "5s"), ["✅ Done in 5s.\n\nhello"])

    def test_empty_output_placeholder(self):
        self.assertEqual(format_result("", "5s"), ["✅ Done in 5s.\n\n(no output)"])

    def test_medium_output_is_split_in_order(self):
        output = "".join(str(i % 10) for i in range(250))
        parts = format_result(output, "5s", max_chars=100)
        prefix = "✅ Done in 5s.\n\n"
        self.assertEqual(len(parts), 3)
        self.assertTrue(all(len(p) <= 100 for p in parts))
        self.assertTrue(parts[0].startswith(prefix))
        self.assertEqual(parts[0][len(prefix):] + "".join(parts[1:]), output)

    def test_three_times_cap_still_splits(self):
        parts = format_result("x" * 300, max_chars=100)
        self.assertEqual(parts, ["x" * 100] * 3)

    def test_large_output_is_excerpted(self):
        output = "a" * 6000 + "b" * 6000
        parts = format_result(output, "2m 05s")
        self.assertEqual(len(parts), 1)
        message = parts[0]
        self.assertTrue(message.startswith("✅ Done in 2m 05s.\n\n" + "a" * 600 + "\n\n"))
        self.assertIn("... (12KB output truncated) ...", message)
        self.assertTrue(message.endswith("\n\n" + "b" * 1000))
        self.assertLessEqual(len(message), 3800)

    def test_output_is_redacted_and_stripped(self):
        cleaned = clean_output("\x1b[32mok\x1b[0m token=abc123")
        self.assertEqual(cleaned, "ok token=REDACTED")


class TestFormatResponse(unittest.TestCase):
    def test_truncates_to_cap(self):
        message = format_response("y" * 500, max_chars=100)
        self.assertEqual(len(message), 100)
        self.assertTrue(message.endswith("... (truncated)"))


class TestFormatError(unittest.TestCase):
    def test_timeout_includes_hint(self):
        message = format_error(TimeoutExceeded(600, "last lines"))
        self.assertTrue(message.startswith("❌ Error: Agent timed out after 600s. Partial output:\nlast lines"))
        self.assertTrue(message.endswith(get_catalog_entry("ERR_JOB_TIMEOUT").hint))

    def test_long_message_is_truncated(self):
        message = format_error(ProcessExitNonZero(1, "z" * 2000))
        first_line = message.split("\n")[0]
        self.assertLessEqual(len(first_line), len("❌ Error: ") + 500)

    def test_unknown_error(self):
        self.assertEqual(error_code_for(ValueError("x")), "ERR_UNKNOWN")
        self.assertEqual(format_error(ValueError("x")), "❌ Error: x\nCheck the bot logs for details.")
        self.assertEqual(get_catalog_entry("nope").code, "ERR_UNKNOWN")

    def test_spawn_failures_get_distinct_hints(self):
        missing = format_error(AgentNotFound("/usr/bin/claude not found"))
        self.assertTrue(missing.endswith("Check AGENT_CLI_PATH on the host."))
        denied = format_error(ProcessSpawnFailure("[Errno 13] Permission denied"))
        self.assertEqual(error_code_for(ProcessSpawnFailure("x")), "ERR_AGENT_SPAWN_FAILED")
        self.assertTrue(denied.endswith(get_catalog_entry("ERR_AGENT_SPAWN_FAILED").hint))
        self.assertNotEqual(missing.split("\n")[-1], denied.split("\n")[-1])


if __name__ == "__main__":
    unittest.main()
