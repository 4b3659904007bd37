from __future__ import annotations

from contextlib import redirect_stderr, redirect_stdout
import io
import unittest

from stagebuild.console import Console


class ConsoleTests(unittest.TestCase):
    def _capture(self, console: Console) -> tuple[str, str]:
        out, err = io.StringIO(), io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            console.info("building")
            console.debug("cc -o x")
            console.error("failed")
        return out.getvalue(), err.getvalue()

    def test_levels(self) -> None:
        self.assertEqual(self._capture(Console("none")), ("", ""))
        self.assertEqual(self._capture(Console("error")), ("", "[ERROR] failed\n"))
        self.assertEqual(self._capture(Console("info")), ("[INFO] building\n", "[ERROR] failed\n"))
        out, _ = self._capture(Console("debug"))
        self.assertEqual(out, "[INFO] building\n[DEBUG] cc -o x\n")

    def test_verbose_forces_debug(self) -> None:
        console = Console.for_verbosity("none", verbose=True)
        self.assertTrue(console.verbose)
        self.assertFalse(Console.for_verbosity("info", verbose=False).verbose)

    def test_unknown_level(self) -> None:
        with self.assertRaisesRegex(ValueError, "Unknown log level"):
            Console("trace")


if __name__ == "__main__":
    unittest.main()
