from __future__ import annotations

from pathlib import Path
import sys
import tempfile
import unittest

from core.command_runner import CommandError, RecordingCommandRunner, SubprocessCommandRunner


class SubprocessCommandRunnerTests(unittest.TestCase):
    def test_captures_output(self) -> None:
        with tempfile.TemporaryDirectory() as temp:
            result = SubprocessCommandRunner().run(
                [sys.executable, "-c", "import os; print(os.getcwd()); print(os.environ['STAGE'])"],
                cwd=Path(temp),
                env={"STAGE": "2"},
            )
        self.assertEqual(result.returncode, 0)
        self.assertEqual(result.stdout.splitlines()[1], "2")

    def test_failure_raises_with_note(self) -> None:
        runner = SubprocessCommandRunner()
        with self.assertRaises(CommandError) as caught:
            runner.run([sys.executable, "-c", "import sys; sys.exit(3)"], note="compile/stage1")
        self.assertEqual(caught.exception.returncode, 3)
        self.assertTrue(str(caught.exception).startswith("compile/stage1: Command failed with exit code 3"))

        result = runner.run([sys.executable, "-c", "import sys; sys.exit(3)"], check=False)
        self.assertEqual(result.returncode, 3)


class RecordingCommandRunnerTests(unittest.TestCase):
    def test_formats_recorded_commands(self) -> None:
        runner = RecordingCommandRunner()
        runner.run(["cp", "a b", "c"], note="promote")
        runner.run(["true"], cwd=Path("/build"))
        self.assertEqual(
            list(runner.iter_formatted(workspace=Path("/ws"))),
            [
                "[dry-run] promote (cwd=/ws) cp 'a b' c",
                "[dry-run] (cwd=/build) true",
            ],
        )

    def test_configured_return_codes(self) -> None:
        runner = RecordingCommandRunner(returncodes={"check": 101})
        with self.assertRaises(CommandError):
            runner.run(["run-tests"], note="check")
        self.assertEqual(runner.run(["run-tests"], note="check", check=False).returncode, 101)
        self.assertEqual(len(runner.commands), 2)


if __name__ == "__main__":
    unittest.main()
