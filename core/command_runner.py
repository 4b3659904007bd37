"""Runners that execute build actions, or record them for a dry run."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Sequence
import os
import shlex
import subprocess
import threading


@dataclass
class CommandResult:
    """Outcome of one external command."""

    command: Sequence[str]
    returncode: int
    stdout: str
    stderr: str
    streamed: bool = False


class CommandError(RuntimeError):
    """Raised when a checked command exits with a non-zero status."""

    def __init__(self, result: CommandResult, *, note: str | None = None):
        message = f"Command failed with exit code {result.returncode}: {' '.join(map(shlex.quote, result.command))}"
        if note:
            message = f"{note}: {message}"
        if not result.streamed and (result.stdout or result.stderr):
            message = f"{message}\nstdout: {result.stdout}\nstderr: {result.stderr}"
        super().__init__(message)
        self.result = result
        self.note = note

    @property
    def returncode(self) -> int:
        return self.result.returncode


class CommandRunner:
    """Abstract command runner interface."""

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        note: str | None = None,
        stream: bool = False,
    ) -> CommandResult:
        raise NotImplementedError

    def format_command(self, command: Sequence[str]) -> str:
        return " ".join(shlex.quote(str(part)) for part in command)


class SubprocessCommandRunner(CommandRunner):
    """Runs commands through :mod:`subprocess`; safe to share between worker threads."""

    @staticmethod
    def _merge_environment(env: Mapping[str, str] | None) -> Dict[str, str] | None:
        if env is None:
            return None
        merged = os.environ.copy()
        merged.update(env)
        return merged

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        note: str | None = None,
        stream: bool = False,
    ) -> CommandResult:
        argv = [str(part) for part in command]
        process = subprocess.run(
            argv,
            cwd=str(cwd) if cwd else None,
            env=self._merge_environment(env),
            capture_output=not stream,
            text=True,
            check=False,
        )
        result = CommandResult(
            command=argv,
            returncode=process.returncode,
            stdout=process.stdout or "",
            stderr=process.stderr or "",
            streamed=stream,
        )
        if check and result.returncode != 0:
            raise CommandError(result, note=note)
        return result


@dataclass(slots=True)
class RecordedCommand:
    command: List[str]
    cwd: str | None
    env: Dict[str, str]
    note: str | None


class RecordingCommandRunner(CommandRunner):
    """Records commands instead of executing them.

    ``returncodes`` maps a note to the exit status reported for commands
    recorded under that note; everything else "succeeds".
    """

    def __init__(self, returncodes: Mapping[str, int] | None = None) -> None:
        self.commands: List[RecordedCommand] = []
        self._returncodes = dict(returncodes or {})
        self._lock = threading.Lock()

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        note: str | None = None,
        stream: bool = False,
    ) -> CommandResult:
        record = RecordedCommand(
            command=[str(part) for part in command],
            cwd=str(cwd) if cwd else None,
            env=dict(env) if env else {},
            note=note,
        )
        with self._lock:
            self.commands.append(record)
        returncode = self._returncodes.get(note or "", 0)
        result = CommandResult(command=record.command, returncode=returncode, stdout="", stderr="")
        if check and returncode != 0:
            raise CommandError(result, note=note)
        return result

    def iter_formatted(self, *, workspace: Path | None = None) -> Iterable[str]:
        default_cwd = str(workspace) if workspace else None
        for record in list(self.commands):
            parts: List[str] = ["[dry-run]"]
            if record.note:
                parts.append(record.note)
            cwd = record.cwd or default_cwd
            if cwd:
                parts.append(f"(cwd={cwd})")
            parts.append(self.format_command(record.command))
            yield " ".join(parts)


__all__ = [
    "CommandError",
    "CommandResult",
    "CommandRunner",
    "RecordedCommand",
    "RecordingCommandRunner",
    "SubprocessCommandRunner",
]
