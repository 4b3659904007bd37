"""Read-only inspection of the source repository's submodules (pygit2)."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import pygit2

UNBORN = "0" * 40


@dataclass
class SubmoduleStatus:
    """Recorded versus checked-out commit of one submodule."""

    path: str
    recorded_commit: str
    current_commit: str

    @property
    def initialized(self) -> bool:
        return self.current_commit != UNBORN

    @property
    def modified(self) -> bool:
        return not self.initialized or self.current_commit != self.recorded_commit

    def describe(self) -> str:
        if not self.initialized:
            return f"submodule '{self.path}' is not initialized"
        return (
            f"submodule '{self.path}' is at {self.current_commit[:12]}, "
            f"expected {self.recorded_commit[:12]}"
        )


class GitManager:
    def __init__(self, repo_path: Path) -> None:
        self.path = Path(repo_path).resolve()
        self._repo: Optional[pygit2.Repository] = None

    @property
    def repo(self) -> pygit2.Repository:
        if self._repo is None:
            self._repo = pygit2.Repository(str(self.path))
        return self._repo

    def _recorded_commit(self, path: str) -> str:
        try:
            return str(self.repo.index[path].id)
        except KeyError:
            return UNBORN

    def _current_commit(self, path: str) -> str:
        submodule_dir = self.path / path
        if not submodule_dir.exists():
            return UNBORN
        try:
            sub_repo = pygit2.Repository(str(submodule_dir))
        except pygit2.GitError:
            return UNBORN
        if sub_repo.head_is_unborn:
            return UNBORN
        return str(sub_repo.head.target)

    def submodule_status(self) -> List[SubmoduleStatus]:
        """Status of every submodule; an empty list when the path is not a repository."""
        try:
            paths = self.repo.listall_submodules()
        except pygit2.GitError:
            return []
        return [
            SubmoduleStatus(
                path=path,
                recorded_commit=self._recorded_commit(path),
                current_commit=self._current_commit(path),
            )
            for path in sorted(paths)
        ]

    def modified_submodules(self) -> List[SubmoduleStatus]:
        return [status for status in self.submodule_status() if status.modified]


def probe_modified_submodules(repo_path: Path) -> List[str]:
    """Descriptions of submodules that differ from the recorded commit."""
    if not repo_path.exists():
        return []
    try:
        manager = GitManager(repo_path)
        return [status.describe() for status in manager.modified_submodules()]
    except pygit2.GitError:
        return []
