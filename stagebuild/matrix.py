"""Enumeration of the configured stages and triples."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator, Tuple

Triple = str
"""Opaque architecture/OS/ABI identifier, used both as host and as target."""

MAX_STAGE = 3
PRODUCT_STAGE = 2


class OutOfDomainError(ValueError):
    """Raised when a stage or triple outside the configured matrix is requested."""


@dataclass(frozen=True, slots=True)
class TripleStageMatrix:
    """The fixed {stage x target x host} domain of one configuration."""

    stages: Tuple[int, ...]
    host_triples: Tuple[Triple, ...]
    target_triples: Tuple[Triple, ...]

    @classmethod
    def create(
        cls,
        *,
        stages: Iterable[int],
        host_triples: Iterable[Triple],
        target_triples: Iterable[Triple],
    ) -> "TripleStageMatrix":
        stage_tuple = tuple(sorted(set(stages)))
        if not stage_tuple:
            raise ValueError("At least one stage must be configured")
        if stage_tuple[0] != 0 or stage_tuple != tuple(range(stage_tuple[-1] + 1)):
            raise ValueError(f"Stages must form a contiguous range starting at 0, got {list(stage_tuple)}")
        if stage_tuple[-1] > MAX_STAGE:
            raise ValueError(f"Stage {stage_tuple[-1]} exceeds the maximum stage {MAX_STAGE}")
        hosts = _unique(host_triples)
        targets = _unique(target_triples)
        if not hosts:
            raise ValueError("At least one host triple must be configured")
        if not targets:
            raise ValueError("At least one target triple must be configured")
        missing = [host for host in hosts if host not in targets]
        if missing:
            # A host toolchain is promoted from the previous stage's build for that same triple.
            raise ValueError(f"Host triples must also be target triples: {', '.join(missing)}")
        return cls(stages=stage_tuple, host_triples=hosts, target_triples=targets)

    @property
    def max_stage(self) -> int:
        return self.stages[-1]

    @property
    def built_stages(self) -> Tuple[int, ...]:
        """Stages compiled from source (everything except the stage-0 seed)."""
        return tuple(stage for stage in self.stages if stage > 0)

    def check_stage(self, stage: int) -> None:
        if isinstance(stage, bool) or not isinstance(stage, int) or stage not in self.stages:
            raise OutOfDomainError(f"Stage {stage!r} is outside the configured stages {list(self.stages)}")

    def check_host(self, host: Triple) -> None:
        if host not in self.host_triples:
            raise OutOfDomainError(
                f"Host triple '{host}' is not configured. Available hosts: {', '.join(self.host_triples)}"
            )

    def check_target(self, target: Triple) -> None:
        if target not in self.target_triples:
            raise OutOfDomainError(
                f"Target triple '{target}' is not configured. Available targets: {', '.join(self.target_triples)}"
            )

    def check(self, stage: int, host: Triple, target: Triple | None = None) -> None:
        self.check_stage(stage)
        self.check_host(host)
        if target is not None:
            self.check_target(target)

    def __iter__(self) -> Iterator[Tuple[int, Triple, Triple]]:
        """Yield every ``(stage, target, host)`` tuple, hosts outermost."""
        for host in self.host_triples:
            for target in self.target_triples:
                for stage in self.stages:
                    yield stage, target, host

    def host_stages(self) -> Iterator[Tuple[int, Triple]]:
        for host in self.host_triples:
            for stage in self.stages:
                yield stage, host


def _unique(values: Iterable[Triple]) -> Tuple[Triple, ...]:
    ordered: list[Triple] = []
    for value in values:
        text = str(value).strip()
        if not text or text in ordered:
            continue
        # Triples name build directories.
        if "/" in text or "\\" in text or ".." in text or text == ".":
            raise ValueError(f"Triple '{text}' cannot be used as a directory name")
        ordered.append(text)
    return tuple(ordered)
