"""Lazy directory walks used by the optional modules."""
from __future__ import annotations

from pathlib import Path
from typing import Iterable, Iterator
import os

SKIPPED_DIRS = {".git", "__pycache__"}


def walk_sources(root: Path, suffixes: Iterable[str]) -> Iterator[Path]:
    """Yield files under ``root`` whose suffix is one of ``suffixes``, in sorted order.

    Every call walks the tree again; nothing is cached between invocations.
    """
    wanted = {suffix if suffix.startswith(".") else f".{suffix}" for suffix in suffixes}
    if not root.is_dir():
        return
    for current, dirs, files in os.walk(root):
        dirs[:] = sorted(name for name in dirs if name not in SKIPPED_DIRS)
        for name in sorted(files):
            path = Path(current) / name
            if path.suffix in wanted:
                yield path
