"""Named goals over the stage/host matrix."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Sequence, Tuple

from .artifacts import ArtifactKind
from .matrix import PRODUCT_STAGE, Triple
from .prerequisites import PrerequisiteSet, PromotionEngine

DEFAULT_GOAL = "all"
TRANSITION_NOTICE = (
    "Toolchain is in transition: the default goal only builds the stage-1 host "
    "toolchain and generated outputs"
)


@dataclass(slots=True)
class Goal:
    """A requestable name.

    ``requirements`` are artifacts that must exist afterwards; ``steps`` are
    graph nodes (generated outputs, checks, other goals) that must run.
    """

    name: str
    requirements: PrerequisiteSet = field(default_factory=PrerequisiteSet)
    steps: Tuple[str, ...] = ()
    alias_of: str | None = None
    description: str = ""


def stage_goal_name(stage: int, host: Triple) -> str:
    return f"stage{stage}-H-{host}"


def toolchain_goal_name(host: Triple) -> str:
    return f"toolchain-H-{host}"


def verify_goal_name(host: Triple) -> str:
    return f"verify-stage3-H-{host}"


def verify_node_name(host: Triple) -> str:
    return f"verify/stage3/{host}"


class StageGoalAggregator:
    def __init__(
        self,
        engine: PromotionEngine,
        *,
        primary_host: Triple,
        tools: Sequence[ArtifactKind] = (),
        generated_steps: Sequence[str] = (),
        in_transition: bool = False,
    ) -> None:
        self._engine = engine
        self._matrix = engine.resolver.matrix
        self._matrix.check_host(primary_host)
        self._primary = primary_host
        self._tools = tuple(tools)
        self._generated_steps = tuple(generated_steps)
        self._in_transition = in_transition
        self._goals: Dict[str, Goal] = {}
        self.notices: List[str] = []
        self._populate()

    @property
    def primary_host(self) -> Triple:
        return self._primary

    @property
    def product_stage(self) -> int:
        return min(PRODUCT_STAGE, self._matrix.max_stage)

    def _populate(self) -> None:
        for host in self._matrix.host_triples:
            for stage in self._matrix.built_stages:
                self.add(
                    Goal(
                        name=stage_goal_name(stage, host),
                        requirements=self.stage_requirements(stage, host),
                        description=f"Build the stage-{stage} toolchain on {host} for every target",
                    )
                )
            product = self.product_stage
            if product > 0:
                toolchain = Goal(
                    name=toolchain_goal_name(host),
                    requirements=self.stage_requirements(product, host),
                    alias_of=stage_goal_name(product, host),
                    description=f"Build the product toolchain (stage {product}) on {host}",
                )
            else:
                toolchain = Goal(
                    name=toolchain_goal_name(host),
                    requirements=self._engine.host_requirements(0, host),
                    description=f"Fetch the stage-0 snapshot on {host}",
                )
            self.add(toolchain)
            if self._matrix.max_stage >= 3:
                self.add(
                    Goal(
                        name=verify_goal_name(host),
                        requirements=self._engine.target_complete_requirements(3, host, host),
                        steps=(verify_node_name(host),),
                        description=f"Compare stage-2 and stage-3 artifacts built on {host}",
                    )
                )

        for stage in self._matrix.built_stages:
            self.add(
                Goal(
                    name=f"stage{stage}",
                    requirements=self.stage_requirements(stage, self._primary),
                    alias_of=stage_goal_name(stage, self._primary),
                    description=f"Build the stage-{stage} toolchain on the primary host",
                )
            )
        primary_toolchain = self._goals[toolchain_goal_name(self._primary)]
        self.add(
            Goal(
                name="toolchain",
                requirements=primary_toolchain.requirements,
                alias_of=primary_toolchain.name,
                description="Build the product toolchain on the primary host",
            )
        )
        everything = PrerequisiteSet()
        for host in self._matrix.host_triples:
            everything = everything.union(self._goals[toolchain_goal_name(host)].requirements)
        self.add(
            Goal(
                name="toolchain-H-all",
                requirements=everything,
                description="Build the product toolchain on every configured host",
            )
        )
        if self._matrix.max_stage >= 3:
            primary_verify = self._goals[verify_goal_name(self._primary)]
            self.add(
                Goal(
                    name="verify-stage3",
                    requirements=primary_verify.requirements,
                    steps=primary_verify.steps,
                    alias_of=primary_verify.name,
                    description="Compare stage-2 and stage-3 artifacts on the primary host",
                )
            )
        self.add(self._default_goal())

    def _default_goal(self) -> Goal:
        if self._in_transition:
            self.notices.append(TRANSITION_NOTICE)
            stage = min(1, self._matrix.max_stage)
            return Goal(
                name=DEFAULT_GOAL,
                requirements=self._engine.host_requirements(stage, self._primary),
                steps=self._generated_steps,
                description="Default goal (truncated while the toolchain is in transition)",
            )

        requirements = self._goals[toolchain_goal_name(self._primary)].requirements.copy()
        if self.product_stage > 0:
            for tool in self._tools:
                requirements.add(self._engine.resolver.resolve(self.product_stage, self._primary, tool))
        return Goal(
            name=DEFAULT_GOAL,
            requirements=requirements,
            steps=(toolchain_goal_name(self._primary), *self._generated_steps),
            description="Product toolchain, auxiliary tools and generated outputs",
        )

    def stage_requirements(self, stage: int, host: Triple) -> PrerequisiteSet:
        """Union over every target of the transitive requirements of ``(stage, target, host)``."""
        self._matrix.check(stage, host)
        requirements = PrerequisiteSet()
        for target in self._matrix.target_triples:
            requirements = requirements.union(self._engine.transitive_requirements(stage, target, host))
        return requirements

    def add(self, goal: Goal) -> None:
        if goal.name in self._goals:
            raise ValueError(f"Goal '{goal.name}' is defined twice")
        self._goals[goal.name] = goal

    def get(self, name: str) -> Goal:
        try:
            return self._goals[name]
        except KeyError:
            available = ", ".join(sorted(self._goals))
            raise KeyError(f"Unknown goal '{name}'. Available goals: {available}") from None

    def requirements(self, name: str) -> PrerequisiteSet:
        return self.get(name).requirements

    def names(self) -> List[str]:
        return sorted(self._goals)

    def __contains__(self, name: object) -> bool:
        return name in self._goals

    def __iter__(self) -> Iterator[Goal]:
        return iter([self._goals[name] for name in sorted(self._goals)])


__all__ = [
    "DEFAULT_GOAL",
    "Goal",
    "StageGoalAggregator",
    "stage_goal_name",
    "toolchain_goal_name",
    "verify_goal_name",
    "verify_node_name",
]
