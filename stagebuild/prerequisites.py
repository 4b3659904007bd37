"""Layered prerequisite sets and stage promotion.

For every ``(stage, target, host)`` there are three nested sets:

* host-usable: what it takes to run the stage-N compiler on ``host``;
* target-cross-usable: host-usable plus the target runtime and link support,
  enough to build crates for ``target``;
* target-complete: cross-usable plus the target libraries and driver.

Promotion copies the target-complete artifacts of ``(N, host, host)`` into the
host slots of stage N+1.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, List, Sequence, Tuple

from .artifacts import ArtifactKind, ArtifactPath, ArtifactResolver
from .matrix import OutOfDomainError, Triple

HOST_KINDS: Tuple[ArtifactKind, ...] = (
    ArtifactKind.COMPILER_DRIVER,
    ArtifactKind.RUNTIME,
    ArtifactKind.BACKEND_INTEROP,
    ArtifactKind.CORE_LIBRARY,
    ArtifactKind.STD_LIBRARY,
    ArtifactKind.COMPILER_LIBRARY,
)
CROSS_KINDS: Tuple[ArtifactKind, ...] = (
    ArtifactKind.RUNTIME,
    ArtifactKind.LINK_SUPPORT,
)
COMPLETE_KINDS: Tuple[ArtifactKind, ...] = (
    ArtifactKind.CORE_LIBRARY,
    ArtifactKind.STD_LIBRARY,
    ArtifactKind.BACKEND_INTEROP,
    ArtifactKind.COMPILER_LIBRARY,
    ArtifactKind.COMPILER_DRIVER,
)
PROMOTED_KINDS = HOST_KINDS


class PrerequisiteSet:
    """Ordered, de-duplicated artifacts plus non-artifact inputs."""

    __slots__ = ("_artifacts", "_artifact_index", "_inputs", "_input_index")

    def __init__(self, artifacts: Iterable[ArtifactPath] = (), inputs: Iterable[Path] = ()) -> None:
        self._artifacts: List[ArtifactPath] = []
        self._artifact_index: set[ArtifactPath] = set()
        self._inputs: List[Path] = []
        self._input_index: set[Path] = set()
        self.extend(artifacts)
        self.extend_inputs(inputs)

    def add(self, artifact: ArtifactPath) -> None:
        if artifact not in self._artifact_index:
            self._artifact_index.add(artifact)
            self._artifacts.append(artifact)

    def extend(self, artifacts: Iterable[ArtifactPath]) -> None:
        for artifact in artifacts:
            self.add(artifact)

    def extend_inputs(self, inputs: Iterable[Path]) -> None:
        for path in inputs:
            if path not in self._input_index:
                self._input_index.add(path)
                self._inputs.append(path)

    def union(self, other: "PrerequisiteSet") -> "PrerequisiteSet":
        merged = self.copy()
        merged.extend(other.artifacts)
        merged.extend_inputs(other.inputs)
        return merged

    def copy(self) -> "PrerequisiteSet":
        return PrerequisiteSet(self._artifacts, self._inputs)

    def issuperset(self, other: "PrerequisiteSet") -> bool:
        return self._artifact_index >= other._artifact_index and self._input_index >= other._input_index

    @property
    def artifacts(self) -> Tuple[ArtifactPath, ...]:
        return tuple(self._artifacts)

    @property
    def inputs(self) -> Tuple[Path, ...]:
        return tuple(self._inputs)

    def stages(self) -> set[int]:
        return {artifact.stage for artifact in self._artifacts}

    def __contains__(self, item: object) -> bool:
        return item in self._artifact_index or item in self._input_index

    def __iter__(self) -> Iterator[ArtifactPath]:
        return iter(list(self._artifacts))

    def __len__(self) -> int:
        return len(self._artifacts)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PrerequisiteSet):
            return NotImplemented
        return self._artifacts == other._artifacts and self._inputs == other._inputs

    def __repr__(self) -> str:
        return f"PrerequisiteSet({len(self._artifacts)} artifacts, {len(self._inputs)} inputs)"


@dataclass(frozen=True, slots=True)
class PromotionEdge:
    """Stage-N target-for-own-host artifact copied verbatim into a stage-N+1 host slot."""

    source: ArtifactPath
    destination: ArtifactPath

    @property
    def kind(self) -> ArtifactKind:
        return self.destination.kind


class PromotionEngine:
    def __init__(self, resolver: ArtifactResolver, *, inputs: Sequence[Path] = ()) -> None:
        self._resolver = resolver
        self._inputs = tuple(inputs)

    @property
    def resolver(self) -> ArtifactResolver:
        return self._resolver

    @property
    def max_stage(self) -> int:
        return self._resolver.matrix.max_stage

    def host_requirements(self, stage: int, host: Triple) -> PrerequisiteSet:
        self._resolver.matrix.check(stage, host)
        return PrerequisiteSet(
            (self._resolver.resolve(stage, host, kind) for kind in HOST_KINDS),
            self._inputs,
        )

    def target_artifacts(self, stage: int, target: Triple, host: Triple, kinds: Iterable[ArtifactKind]) -> List[ArtifactPath]:
        return [self._resolver.resolve(stage, host, kind, target) for kind in kinds]

    def target_cross_requirements(self, stage: int, target: Triple, host: Triple) -> PrerequisiteSet:
        self._resolver.matrix.check(stage, host, target)
        requirements = self.host_requirements(stage, host)
        requirements.extend(self.target_artifacts(stage, target, host, CROSS_KINDS))
        return requirements

    def target_complete_requirements(self, stage: int, target: Triple, host: Triple) -> PrerequisiteSet:
        requirements = self.target_cross_requirements(stage, target, host)
        requirements.extend(self.target_artifacts(stage, target, host, COMPLETE_KINDS))
        return requirements

    def promotion_edges(self, stage: int, host: Triple) -> List[PromotionEdge]:
        """Edges feeding ``stage + 1``'s host toolchain from ``stage``'s own-host build."""
        self._resolver.matrix.check(stage, host)
        if stage >= self.max_stage:
            raise OutOfDomainError(f"Stage {stage} is the last configured stage; nothing is promoted from it")
        return [
            PromotionEdge(
                source=self._resolver.resolve(stage, host, kind, host),
                destination=self._resolver.resolve(stage + 1, host, kind),
            )
            for kind in PROMOTED_KINDS
        ]

    def promotion_source(self, artifact: ArtifactPath) -> ArtifactPath | None:
        """The artifact a stage-N+1 host artifact is copied from, if it is promoted at all."""
        if artifact.target is not None or artifact.stage == 0 or artifact.kind not in PROMOTED_KINDS:
            return None
        return self._resolver.resolve(artifact.stage - 1, artifact.host, artifact.kind, artifact.host)

    def transitive_requirements(self, stage: int, target: Triple, host: Triple) -> PrerequisiteSet:
        """Target-complete set plus everything lower stages must build to produce its host toolchain."""
        requirements = self.target_complete_requirements(stage, target, host)
        for lower in range(stage - 1, -1, -1):
            requirements.extend(self.target_complete_requirements(lower, host, host).artifacts)
        return requirements
