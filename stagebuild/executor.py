"""Parallel execution of a finalized build graph."""
from __future__ import annotations

from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path, PurePath
from typing import Dict, Iterable, List, Set
import hashlib
import os
import shutil
import tempfile

from core.command_runner import CommandError, CommandRunner

from .console import Console
from .graph import ActionKind, BuildGraph, BuildNode, MissingArtifactError

BUILT = "built"
UP_TO_DATE = "up-to-date"
PHONY = "phony"


class ReproducibilityError(RuntimeError):
    """Two artifacts that must be byte-identical differ."""


@dataclass(slots=True)
class NodeFailure:
    node: str
    message: str
    returncode: int | None = None
    context: Dict[str, str] = field(default_factory=dict)

    def describe(self) -> str:
        parts = [self.node]
        if self.context:
            parts.append("[" + " ".join(f"{key}={value}" for key, value in self.context.items()) + "]")
        if self.returncode is not None:
            parts.append(f"(exit status {self.returncode})")
        return f"{' '.join(parts)}: {self.message}"


class BuildFailedError(RuntimeError):
    def __init__(self, failures: List[NodeFailure]):
        super().__init__("; ".join(failure.describe() for failure in failures))
        self.failures = failures


@dataclass(slots=True)
class ExecutionReport:
    built: List[str] = field(default_factory=list)
    up_to_date: List[str] = field(default_factory=list)
    failures: List[NodeFailure] = field(default_factory=list)
    reproducibility: List[NodeFailure] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures and not self.reproducibility

    def raise_for_failures(self) -> None:
        if not self.ok:
            raise BuildFailedError([*self.failures, *self.reproducibility])


def file_digest(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _mtime(path: Path) -> float | None:
    try:
        return path.stat().st_mtime
    except FileNotFoundError:
        return None


class GraphExecutor:
    def __init__(
        self,
        root: Path,
        runner: CommandRunner,
        console: Console,
        *,
        jobs: int = 1,
        keep_going: bool = False,
        dry_run: bool = False,
    ) -> None:
        if jobs < 1:
            raise ValueError("jobs must be at least 1")
        self._root = root
        self._runner = runner
        self._console = console
        self._jobs = jobs
        self._keep_going = keep_going
        self._dry_run = dry_run

    def locate(self, path: PurePath) -> Path:
        return self._root / Path(path)

    def run(self, graph: BuildGraph, goals: Iterable[str]) -> ExecutionReport:
        """Run every node the goals depend on, each exactly once, dependencies first."""
        selected = graph.closure(goals)
        selected_set = set(selected)
        waiting: Dict[str, Set[str]] = {
            name: {dep for dep in graph.get(name).deps if dep in selected_set} for name in selected
        }
        dependents: Dict[str, List[str]] = {name: [] for name in selected}
        for name, deps in waiting.items():
            for dep in deps:
                dependents[dep].append(name)

        report = ExecutionReport()
        rebuilt: Set[str] = set()
        done: Set[str] = set()
        blocked: Set[str] = set()
        aborted = False
        fatal: MissingArtifactError | None = None
        position = {name: index for index, name in enumerate(selected)}
        ready = [name for name in selected if not waiting[name]]

        with ThreadPoolExecutor(max_workers=self._jobs) as pool:
            running: Dict[Future[str], str] = {}
            while ready or running:
                while ready and not aborted and len(running) < self._jobs:
                    name = ready.pop(0)
                    node = graph.get(name)
                    dirty = any(dep in rebuilt for dep in node.deps)
                    running[pool.submit(self._execute, node, dirty)] = name
                if not running:
                    break
                finished, _ = wait(list(running), return_when=FIRST_COMPLETED)
                for future in sorted(finished, key=lambda item: position[running[item]]):
                    name = running.pop(future)
                    node = graph.get(name)
                    try:
                        outcome = future.result()
                    except MissingArtifactError as exc:
                        fatal = fatal or exc
                        aborted = True
                        blocked.add(name)
                        continue
                    except ReproducibilityError as exc:
                        report.reproducibility.append(NodeFailure(name, str(exc), context=dict(node.context)))
                        self._console.error(f"{node.describe()}: {exc}")
                        blocked.add(name)
                        continue
                    except CommandError as exc:
                        report.failures.append(
                            NodeFailure(name, str(exc), returncode=exc.returncode, context=dict(node.context))
                        )
                        self._console.error(f"{node.describe()} failed with exit status {exc.returncode}")
                        blocked.add(name)
                        aborted = aborted or not self._keep_going
                        continue
                    except OSError as exc:
                        report.failures.append(NodeFailure(name, str(exc), context=dict(node.context)))
                        self._console.error(f"{node.describe()}: {exc}")
                        blocked.add(name)
                        aborted = aborted or not self._keep_going
                        continue

                    done.add(name)
                    if outcome == BUILT:
                        rebuilt.add(name)
                        report.built.append(name)
                    elif outcome == UP_TO_DATE:
                        report.up_to_date.append(name)
                    for dependent in dependents[name]:
                        waiting[dependent].discard(name)
                        if not waiting[dependent] and not any(dep in blocked for dep in graph.get(dependent).deps):
                            ready.append(dependent)
                ready.sort(key=position.__getitem__)

        report.skipped = [name for name in selected if name not in done and name not in blocked]
        if fatal is not None:
            raise fatal
        return report

    def _execute(self, node: BuildNode, dirty: bool) -> str:
        if node.kind is ActionKind.PHONY:
            return PHONY
        self._check_inputs(node)
        if not self._is_stale(node, dirty):
            self._console.debug(f"{node.name} is up to date")
            return UP_TO_DATE

        self._console.info(node.describe())
        if node.kind is ActionKind.COMMAND:
            self._run_commands(node)
        elif node.kind is ActionKind.COPY:
            for source, destination in node.pairs:
                self._copy(node, self.locate(source), self.locate(destination))
        elif node.kind is ActionKind.REMOVE:
            for target in node.targets:
                self._remove(node, self.locate(target))
        elif node.kind is ActionKind.VERIFY:
            self._verify(node)
        return BUILT

    def _check_inputs(self, node: BuildNode) -> None:
        if self._dry_run:
            return
        for source in node.sources:
            if not source.exists():
                raise MissingArtifactError(source, node=node.name, detail="declared source does not exist")
        for artifact in node.requires:
            if not self.locate(artifact.path).exists():
                raise MissingArtifactError(
                    artifact.path,
                    node=node.name,
                    detail=f"{artifact.describe()} was not produced",
                )

    def _input_files(self, node: BuildNode) -> List[Path]:
        files = [self.locate(artifact.path) for artifact in node.requires]
        files.extend(node.sources)
        files.extend(node.inputs)
        files.extend(self.locate(source) for source, _ in node.pairs)
        return files

    def _is_stale(self, node: BuildNode, dirty: bool) -> bool:
        if node.force or node.always or dirty or not node.outputs:
            return True
        if node.kind in (ActionKind.REMOVE, ActionKind.VERIFY):
            return True
        output_times = [_mtime(self.locate(output)) for output in node.outputs]
        if any(value is None for value in output_times):
            return True
        oldest = min(value for value in output_times if value is not None)
        for path in self._input_files(node):
            mtime = _mtime(path)
            if mtime is not None and mtime > oldest:
                return True
        for path in node.discovered:
            mtime = _mtime(path)
            # A recorded input that vanished must be rediscovered by recompiling.
            if mtime is None or mtime > oldest:
                return True
        return False

    def _run_commands(self, node: BuildNode) -> None:
        if not self._dry_run:
            for output in node.outputs:
                self.locate(output).parent.mkdir(parents=True, exist_ok=True)
        for command in node.commands:
            self._console.debug(self._runner.format_command(command))
            self._runner.run(list(command), cwd=self._root, note=node.name)

    def _copy(self, node: BuildNode, source: Path, destination: Path) -> None:
        if self._dry_run:
            self._runner.run(["cp", str(source), str(destination)], cwd=self._root, note=node.name)
            return
        self._console.debug(f"copy {source} -> {destination}")
        destination.parent.mkdir(parents=True, exist_ok=True)
        expected = file_digest(source)
        with tempfile.NamedTemporaryFile(dir=destination.parent, prefix=f".{destination.name}.", delete=False) as handle:
            temp_path = Path(handle.name)
            with source.open("rb") as reader:
                shutil.copyfileobj(reader, handle)
        try:
            shutil.copymode(source, temp_path)
            if file_digest(temp_path) != expected:
                raise ReproducibilityError(f"Copy of '{source}' to '{destination}' does not match its source")
            os.replace(temp_path, destination)
        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise

    def _remove(self, node: BuildNode, target: Path) -> None:
        if self._dry_run:
            self._runner.run(["rm", "-rf", str(target)], cwd=self._root, note=node.name)
            return
        self._console.debug(f"remove {target}")
        if target.is_dir() and not target.is_symlink():
            shutil.rmtree(target)
        else:
            target.unlink(missing_ok=True)

    def _verify(self, node: BuildNode) -> None:
        mismatches: List[str] = []
        for first, second in node.pairs:
            left, right = self.locate(first), self.locate(second)
            if self._dry_run:
                self._runner.run(["cmp", str(left), str(right)], cwd=self._root, note=node.name)
                continue
            if file_digest(left) != file_digest(right):
                mismatches.append(f"{first} != {second}")
        if mismatches:
            raise ReproducibilityError(f"Artifacts differ: {', '.join(mismatches)}")
