"""Staleness check and bounded regeneration of the persisted configuration."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Sequence

from core.command_runner import CommandRunner

from .config_loader import ConfigurationStore
from .console import Console
from .git_manager import probe_modified_submodules

SubmoduleProbe = Callable[[Path], Sequence[str]]


class ConfigurationLoopError(RuntimeError):
    """Regeneration kept producing a stale configuration."""


@dataclass(slots=True)
class ReconfigState:
    stale: bool = False
    reasons: List[str] = field(default_factory=list)

    def mark(self, reason: str) -> None:
        self.stale = True
        self.reasons.append(reason)


class ReconfigurationTrigger:
    def __init__(
        self,
        root: Path,
        runner: CommandRunner,
        console: Console,
        *,
        probe: SubmoduleProbe | None = None,
        check_submodules: bool = True,
    ) -> None:
        self._root = root
        self._runner = runner
        self._console = console
        self._probe = probe or probe_modified_submodules
        self._check_submodules = check_submodules

    def declared_inputs(self, store: ConfigurationStore) -> List[Path]:
        return [self._root / item for item in store.configure.declared_inputs()]

    def evaluate(self, store: ConfigurationStore) -> ReconfigState:
        state = ReconfigState()
        # Modified submodules keep the configuration stale whatever the timestamps say.
        if self._check_submodules:
            for reason in self._probe(store.source_dir):
                state.mark(reason)

        stamp = store.stamp_path
        try:
            stamp_mtime = stamp.stat().st_mtime
        except FileNotFoundError:
            state.mark(f"{stamp.name} is missing")
            return state
        for path in self.declared_inputs(store):
            try:
                mtime = path.stat().st_mtime
            except FileNotFoundError:
                continue
            if mtime > stamp_mtime:
                state.mark(f"{path.name} is newer than {stamp.name}")
        return state

    def regenerate(self, store: ConfigurationStore) -> None:
        script = store.configure.script
        if not script:
            raise ConfigurationLoopError(
                "Configuration is stale but no configure script is recorded in [configure].script"
            )
        self._runner.run(
            [str(self._root / script), *store.configure.args],
            cwd=self._root,
            note="configure",
            stream=True,
        )


def ensure_fresh_configuration(
    load: Callable[[], ConfigurationStore],
    trigger: ReconfigurationTrigger,
    console: Console,
    *,
    limit: int | None = None,
    dry_run: bool = False,
) -> ConfigurationStore:
    """Load, and regenerate while stale; every pass reloads from scratch."""
    regenerations = 0
    while True:
        store = load()
        bound = store.global_config.max_reconfigure if limit is None else limit
        state = trigger.evaluate(store)
        if not state.stale:
            return store
        if dry_run and regenerations > 0:
            return store
        if regenerations >= bound:
            raise ConfigurationLoopError(
                f"Configuration still stale after {regenerations} regeneration(s): {'; '.join(state.reasons)}"
            )
        for reason in state.reasons:
            console.info(f"Reconfiguring: {reason}")
        trigger.regenerate(store)
        regenerations += 1
