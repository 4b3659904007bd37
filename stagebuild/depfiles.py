"""Folding compiler-written dependency records back into the graph."""
from __future__ import annotations

from pathlib import Path
from typing import Dict, List

from .console import Console
from .graph import BuildGraph


def parse_depfile(text: str) -> Dict[str, List[str]]:
    """Parse make-style ``target: deps`` rules.

    Handles backslash line continuations and backslash-escaped spaces.
    Rules naming the same target accumulate.
    """
    joined = text.replace("\\\r\n", " ").replace("\\\n", " ")
    rules: Dict[str, List[str]] = {}
    for line in joined.splitlines():
        if not line.strip() or line.lstrip().startswith("#"):
            continue
        words = _split_words(line)
        if not words:
            continue
        try:
            colon = next(index for index, word in enumerate(words) if word.endswith(":"))
        except StopIteration:
            continue
        targets = [*words[:colon], words[colon][:-1]]
        deps = words[colon + 1 :]
        for target in targets:
            if not target:
                continue
            bucket = rules.setdefault(target, [])
            for dep in deps:
                if dep not in bucket:
                    bucket.append(dep)
    return rules


def _split_words(line: str) -> List[str]:
    words: List[str] = []
    current: List[str] = []
    index = 0
    while index < len(line):
        char = line[index]
        if char == "\\" and index + 1 < len(line) and line[index + 1] == " ":
            current.append(" ")
            index += 2
            continue
        if char in " \t":
            if current:
                words.append("".join(current))
                current = []
        else:
            current.append(char)
        index += 1
    if current:
        words.append("".join(current))
    return words


class DependencyFileMerger:
    def __init__(self, root: Path, console: Console | None = None) -> None:
        self._root = root
        self._console = console or Console("none")

    def merge(self, graph: BuildGraph) -> int:
        """Attach recorded inputs to every node that declares a dependency record.

        Returns the number of nodes forced to run because their record is
        missing or unreadable.
        """
        forced = 0
        for node in graph.nodes():
            if node.depfile is None:
                continue
            path = self._root / node.depfile
            try:
                text = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                node.force = True
                forced += 1
                self._console.debug(f"{node.name}: no dependency record ({exc.__class__.__name__}); forcing rebuild")
                continue
            discovered: List[Path] = []
            for deps in parse_depfile(text).values():
                for dep in deps:
                    candidate = Path(dep)
                    discovered.append(candidate if candidate.is_absolute() else self._root / candidate)
            node.discovered = tuple(dict.fromkeys([*node.discovered, *discovered]))
            self._console.debug(f"{node.name}: {len(discovered)} recorded input(s)")
        return forced
