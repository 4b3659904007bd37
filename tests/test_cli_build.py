from __future__ import annotations

from contextlib import redirect_stdout
from pathlib import Path
from unittest.mock import patch
import io
import os
import tempfile
import unittest

from stagebuild import cli

from helpers import CROSS, HOST, write_workspace


class CommandLineTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.workspace = Path(self.temp_dir.name)
        write_workspace(self.workspace, targets=(HOST, CROSS))
        environment = patch.dict(os.environ, {"CFG_DISABLE_MANAGE_SUBMODULES": "1"})
        environment.start()
        self.addCleanup(environment.stop)

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _run(self, *argv: str) -> tuple[int, str]:
        buffer = io.StringIO()
        with redirect_stdout(buffer):
            code = cli.main(["-C", str(self.workspace), "--log-level", "none", *argv])
        return code, buffer.getvalue()

    def test_build_dry_run_outputs_formatted_commands(self) -> None:
        code, output = self._run("build", "--dry-run")
        self.assertEqual(code, 0)
        self.assertIn("[dry-run]", output)
        self.assertIn(f"compile/stage2/{HOST}/{CROSS}/std-library", output)
        self.assertNotIn(f"compile/stage1/{HOST}/{CROSS}/std-library", output)
        self.assertFalse((self.workspace / HOST).exists())

    def test_build_dry_run_of_clean(self) -> None:
        code, output = self._run("build", "-n", "clean")
        self.assertEqual(code, 0)
        self.assertIn("rm -rf", output)
        self.assertNotIn("compile/", output)

    def test_build_console_follows_configured_log_level(self) -> None:
        write_workspace(self.workspace, targets=(HOST, CROSS), log_level="info")
        buffer = io.StringIO()
        with redirect_stdout(buffer):
            code = cli.main(["-C", str(self.workspace), "build", "-n", "clean"])
        self.assertEqual(code, 0)
        self.assertIn("[INFO]", buffer.getvalue())

    def test_build_console_stays_quiet_when_configured(self) -> None:
        buffer = io.StringIO()
        with redirect_stdout(buffer):
            code = cli.main(["-C", str(self.workspace), "build", "-n", "clean"])
        self.assertEqual(code, 0)
        self.assertNotIn("[INFO]", buffer.getvalue())

    def test_unknown_goal(self) -> None:
        code, output = self._run("build", "-n", "stage7")
        self.assertEqual(code, 2)
        self.assertIn("Error: Unknown goal 'stage7'", output)

    def test_rejects_zero_jobs(self) -> None:
        code, output = self._run("build", "-j", "0")
        self.assertEqual(code, 2)
        self.assertIn("--jobs", output)

    def test_goals_lists_aggregates_and_modules(self) -> None:
        code, output = self._run("goals")
        self.assertEqual(code, 0)
        lines = output.splitlines()
        self.assertTrue(any(line.startswith("all ") for line in lines))
        self.assertTrue(any(line.startswith(f"toolchain-H-{HOST} ") for line in lines))
        self.assertIn(f"(alias of stage2-H-{HOST})", output)
        self.assertIn("clean: clean", output)

    def test_paths_for_host_and_target(self) -> None:
        code, output = self._run("paths", "--stage", "1", "--host", HOST)
        self.assertEqual(code, 0)
        self.assertIn(f"{HOST}/stage1/bin/rustc", output)
        self.assertNotIn("link-support", output)

        code, output = self._run("paths", "--stage", "2", "--host", HOST, "--target", CROSS)
        self.assertEqual(code, 0)
        self.assertIn(f"{HOST}/stage2/lib/toolchain/{CROSS}/lib/libstd.so", output)
        self.assertIn("link-support", output)

    def test_paths_out_of_domain(self) -> None:
        code, output = self._run("paths", "--stage", "9", "--host", HOST)
        self.assertEqual(code, 2)
        self.assertTrue(output.startswith("Error: "))

    def test_validate(self) -> None:
        code, output = self._run("validate")
        self.assertEqual(code, 0)
        self.assertIn("Configuration OK: 4 stage(s), 1 host(s), 2 target(s)", output)

    def test_validate_reports_bad_configuration(self) -> None:
        write_workspace(self.workspace, toolchain_extra='stages = ["zero"]\n')
        code, output = self._run("validate")
        self.assertEqual(code, 2)
        self.assertIn("toolchain.stages", output)

    def test_validate_rejects_path_like_triple(self) -> None:
        write_workspace(self.workspace, targets=(HOST, "../escape"))
        code, output = self._run("validate")
        self.assertEqual(code, 2)
        self.assertIn("Error: Triple '../escape'", output)


if __name__ == "__main__":
    unittest.main()
