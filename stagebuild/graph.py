"""Typed build graph constructed from the stage/host/target matrix."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePath, PurePosixPath
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Sequence, Tuple
import heapq

from core.template import TemplateResolver

from .artifacts import ArtifactKind, ArtifactPath, ArtifactResolver
from .config_loader import ConfigurationStore
from .console import Console
from .goals import StageGoalAggregator, verify_node_name
from .matrix import Triple, TripleStageMatrix
from .prerequisites import COMPLETE_KINDS, CROSS_KINDS, PromotionEngine
from .sources import walk_sources
from .toolchain import CompilerOptions, StageToolchain

NATIVE_KINDS: Tuple[ArtifactKind, ...] = (
    ArtifactKind.RUNTIME,
    ArtifactKind.LINK_SUPPORT,
    ArtifactKind.BACKEND_INTEROP,
)
CRATE_KINDS: Tuple[ArtifactKind, ...] = (
    ArtifactKind.CORE_LIBRARY,
    ArtifactKind.STD_LIBRARY,
    ArtifactKind.COMPILER_LIBRARY,
    ArtifactKind.COMPILER_DRIVER,
)
CRATE_DEPENDENCIES: Dict[ArtifactKind, Tuple[ArtifactKind, ...]] = {
    ArtifactKind.CORE_LIBRARY: (),
    ArtifactKind.STD_LIBRARY: (ArtifactKind.CORE_LIBRARY,),
    ArtifactKind.COMPILER_LIBRARY: (
        ArtifactKind.CORE_LIBRARY,
        ArtifactKind.STD_LIBRARY,
        ArtifactKind.BACKEND_INTEROP,
    ),
    ArtifactKind.COMPILER_DRIVER: (
        ArtifactKind.CORE_LIBRARY,
        ArtifactKind.STD_LIBRARY,
        ArtifactKind.COMPILER_LIBRARY,
    ),
}


class MissingArtifactError(FileNotFoundError):
    """A required file has no producer, or a declared source is absent."""

    def __init__(self, path: PurePath | str, *, node: str | None = None, detail: str = "") -> None:
        message = f"Missing artifact '{path}'"
        if node:
            message = f"{message} required by '{node}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.path = path
        self.node = node


class ActionKind(str, Enum):
    PHONY = "phony"
    COMMAND = "command"
    COPY = "copy"
    REMOVE = "remove"
    VERIFY = "verify"


@dataclass(slots=True)
class BuildNode:
    name: str
    kind: ActionKind
    description: str = ""
    outputs: Tuple[PurePath, ...] = ()
    requires: Tuple[ArtifactPath, ...] = ()
    deps: Tuple[str, ...] = ()
    sources: Tuple[Path, ...] = ()
    inputs: Tuple[Path, ...] = ()
    commands: Tuple[Tuple[str, ...], ...] = ()
    pairs: Tuple[Tuple[PurePath, PurePath], ...] = ()
    targets: Tuple[PurePath, ...] = ()
    depfile: PurePath | None = None
    discovered: Tuple[Path, ...] = ()
    force: bool = False
    always: bool = False
    context: Dict[str, str] = field(default_factory=dict)

    def describe(self) -> str:
        return self.description or self.name


def artifact_context(artifact: ArtifactPath) -> Dict[str, str]:
    context = {"stage": str(artifact.stage), "host": artifact.host}
    if artifact.target is not None:
        context["target"] = artifact.target
    context["kind"] = artifact.kind.value
    return context


class BuildGraph:
    def __init__(self) -> None:
        self._nodes: Dict[str, BuildNode] = {}
        self._producers: Dict[PurePath, str] = {}
        self._order: List[str] | None = None

    def add(self, node: BuildNode) -> BuildNode:
        if node.name in self._nodes:
            raise ValueError(f"Build node '{node.name}' is defined twice")
        for output in node.outputs:
            owner = self._producers.get(output)
            if owner is not None:
                raise ValueError(f"Output '{output}' is produced by both '{owner}' and '{node.name}'")
        for output in node.outputs:
            self._producers[output] = node.name
        self._nodes[node.name] = node
        self._order = None
        return node

    def get(self, name: str) -> BuildNode:
        return self._nodes[name]

    def producer(self, path: PurePath) -> BuildNode | None:
        name = self._producers.get(path)
        return self._nodes[name] if name is not None else None

    def nodes(self) -> Iterator[BuildNode]:
        return iter(list(self._nodes.values()))

    def __contains__(self, name: object) -> bool:
        return name in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def finalize(self) -> List[str]:
        """Resolve artifact requirements into node edges and check for cycles."""
        for node in self._nodes.values():
            deps: List[str] = []
            for dep in node.deps:
                if dep not in self._nodes:
                    raise KeyError(f"Build node '{node.name}' depends on unknown node '{dep}'")
                deps.append(dep)
            for artifact in node.requires:
                producer = self._producers.get(artifact.path)
                if producer is None:
                    raise MissingArtifactError(artifact.path, node=node.name, detail=artifact.describe())
                deps.append(producer)
            node.deps = tuple(dict.fromkeys(dep for dep in deps if dep != node.name))
        self._order = topological_order({name: node.deps for name, node in self._nodes.items()})
        return list(self._order)

    def topological_order(self) -> List[str]:
        if self._order is None:
            return self.finalize()
        return list(self._order)

    def closure(self, names: Iterable[str]) -> List[str]:
        """Names reachable from ``names`` through dependencies, in build order."""
        selected: set[str] = set()
        stack = list(names)
        while stack:
            name = stack.pop()
            if name in selected:
                continue
            if name not in self._nodes:
                raise KeyError(f"Unknown build node '{name}'")
            selected.add(name)
            stack.extend(self._nodes[name].deps)
        return [name for name in self.topological_order() if name in selected]


def _find_cycle(dependency_map: Mapping[str, Sequence[str]]) -> List[str]:
    visited: set[str] = set()
    active: set[str] = set()
    path: List[str] = []

    def _dfs(node: str) -> List[str] | None:
        visited.add(node)
        active.add(node)
        path.append(node)
        for dep in dependency_map.get(node, ()):
            if dep not in dependency_map:
                continue
            if dep in active:
                return path[path.index(dep) :] + [dep]
            if dep not in visited:
                result = _dfs(dep)
                if result:
                    return result
        active.remove(node)
        path.pop()
        return None

    for node in dependency_map:
        if node not in visited:
            cycle = _dfs(node)
            if cycle:
                return cycle
    return []


def topological_order(dependency_map: Mapping[str, Sequence[str]]) -> List[str]:
    """Return a deterministic topological ordering or raise ValueError on cycles."""

    dependents: Dict[str, List[str]] = {node: [] for node in dependency_map}
    indegree: Dict[str, int] = {}
    for node, deps in dependency_map.items():
        filtered = [dep for dep in deps if dep in dependency_map]
        indegree[node] = len(filtered)
        for dep in filtered:
            dependents[dep].append(node)

    ready = [node for node, degree in indegree.items() if degree == 0]
    heapq.heapify(ready)
    order: List[str] = []
    while ready:
        node = heapq.heappop(ready)
        order.append(node)
        for dependent in dependents[node]:
            indegree[dependent] -= 1
            if indegree[dependent] == 0:
                heapq.heappush(ready, dependent)

    if len(order) != len(dependency_map):
        cycle = _find_cycle(dependency_map)
        if cycle:
            raise ValueError(f"Dependency cycle detected: {' -> '.join(cycle)}")
        raise ValueError("Dependency cycle detected")
    return order


@dataclass(slots=True)
class GraphContext:
    """Everything graph construction reads, plus what it accumulates."""

    store: ConfigurationStore
    matrix: TripleStageMatrix
    resolver: ArtifactResolver
    engine: PromotionEngine
    toolchain: StageToolchain
    aggregator: StageGoalAggregator
    console: Console
    env: Mapping[str, str] = field(default_factory=dict)
    graph: BuildGraph = field(default_factory=BuildGraph)
    compile_units: List[str] = field(default_factory=list)
    generated: List[str] = field(default_factory=list)
    scans: List[Tuple[Path, Tuple[str, ...]]] = field(default_factory=list)
    notices: List[str] = field(default_factory=list)

    @classmethod
    def create(
        cls,
        store: ConfigurationStore,
        *,
        options: CompilerOptions,
        console: Console,
        env: Mapping[str, str] | None = None,
    ) -> "GraphContext":
        settings = store.toolchain
        matrix = TripleStageMatrix.create(
            stages=settings.stages,
            host_triples=settings.host_triples,
            target_triples=settings.target_triples,
        )
        resolver = ArtifactResolver(
            matrix=matrix,
            root=store.root,
            libdir=settings.libdir,
            scheme=settings.naming_scheme,
            version=settings.version,
            names=settings.names,
        )
        engine = PromotionEngine(resolver, inputs=store.tracked_inputs())
        toolchain = StageToolchain(
            resolver=resolver,
            options=options,
            instrument_tool=list(settings.instrument_tool),
            platform_bad_instrument=settings.bad_instrument,
        )
        aggregator = StageGoalAggregator(
            engine,
            primary_host=settings.host_triple,
            tools=settings.tools,
            generated_steps=[generated_node_name(entry.output) for entry in store.generated],
            in_transition=settings.in_transition,
        )
        return cls(
            store=store,
            matrix=matrix,
            resolver=resolver,
            engine=engine,
            toolchain=toolchain,
            aggregator=aggregator,
            console=console,
            env=dict(env or {}),
            notices=list(aggregator.notices),
        )

    @property
    def root(self) -> Path:
        return self.store.root

    def scan(self, root: Path, suffixes: Sequence[str]) -> List[Path]:
        """Walk ``root`` for ``suffixes``; every walk is recorded."""
        self.scans.append((root, tuple(suffixes)))
        return list(walk_sources(root, suffixes))

    def template_values(self, **values: Any) -> Dict[str, Any]:
        base: Dict[str, Any] = {
            "root": str(self.root),
            "source_dir": str(self.store.source_dir),
            "prefix": self.store.toolchain.prefix,
            "native_flags": self.toolchain.options.native_flags(),
        }
        base.update(values)
        return base

    def render(self, template: Sequence[str], **values: Any) -> Tuple[str, ...]:
        return tuple(TemplateResolver(self.template_values(**values)).resolve_command(template))

    def locate(self, path: PurePath) -> Path:
        return self.root / Path(path)


def generated_node_name(output: str) -> str:
    return f"generate/{output}"


def build_core_graph(context: GraphContext) -> BuildGraph:
    """Add every stage/host/target node, promotion copies, tools and generated outputs."""
    for host in context.matrix.host_triples:
        _add_snapshot_node(context, host)
    for stage, target, host in context.matrix:
        for kind in NATIVE_KINDS:
            _add_native_node(context, stage, target, host, kind)
        for kind in CRATE_KINDS:
            _add_crate_node(context, stage, target, host, kind)
    for stage, host in context.matrix.host_stages():
        if stage < context.matrix.max_stage:
            _add_promotion_nodes(context, stage, host)
    product = context.aggregator.product_stage
    if product > 0:
        for host in context.matrix.host_triples:
            for tool in context.store.toolchain.tools:
                _add_tool_node(context, product, host, tool)
    for entry in context.store.generated:
        node = context.graph.add(
            BuildNode(
                name=generated_node_name(entry.output),
                kind=ActionKind.COMMAND,
                description=f"Generate {entry.output}",
                outputs=(PurePosixPath(entry.output),),
                sources=tuple(context.root / item for item in entry.inputs),
                inputs=tuple(context.store.tracked_inputs()),
                commands=(context.render(entry.command, output=str(context.root / entry.output)),),
            )
        )
        context.generated.append(node.name)
    if context.matrix.max_stage >= 3:
        for host in context.matrix.host_triples:
            _add_verify_node(context, host)
    return context.graph


def add_goal_nodes(context: GraphContext) -> None:
    """One phony node per goal; goals are registered by now, including module goals."""
    for goal in context.aggregator:
        deps = list(goal.steps)
        if goal.alias_of:
            deps.append(goal.alias_of)
        context.graph.add(
            BuildNode(
                name=goal.name,
                kind=ActionKind.PHONY,
                description=goal.description,
                requires=goal.requirements.artifacts,
                deps=tuple(deps),
            )
        )


def _add_snapshot_node(context: GraphContext, host: Triple) -> None:
    artifacts = context.engine.host_requirements(0, host).artifacts
    manifest = context.store.configure.manifest
    context.graph.add(
        BuildNode(
            name=f"snapshot/{host}",
            kind=ActionKind.COMMAND,
            description=f"Fetch stage-0 snapshot for {host}",
            outputs=tuple(artifact.path for artifact in artifacts),
            inputs=tuple(context.store.tracked_inputs())
            + ((context.root / manifest,) if manifest else ()),
            commands=(
                context.render(
                    context.store.snapshot_fetch,
                    host=host,
                    stage_dir=str(context.locate(context.resolver.host_root(0, host))),
                ),
            ),
            context={"stage": "0", "host": host},
        )
    )


def _add_native_node(context: GraphContext, stage: int, target: Triple, host: Triple, kind: ArtifactKind) -> None:
    artifact = context.resolver.resolve(stage, host, kind, target)
    context.graph.add(
        BuildNode(
            name=f"native/stage{stage}/{host}/{target}/{kind.value}",
            kind=ActionKind.COMMAND,
            description=f"Build {artifact.describe()}",
            outputs=(artifact.path,),
            inputs=tuple(context.store.tracked_inputs()),
            commands=(
                context.render(
                    context.store.native_command,
                    artifact={"kind": kind.value, "output": str(context.locate(artifact.path))},
                    host=host,
                    target=target,
                    stage=str(stage),
                ),
            ),
            context=artifact_context(artifact),
        )
    )


def _compile_command(
    context: GraphContext,
    stage: int,
    target: Triple,
    host: Triple,
    crate: Path,
    output: ArtifactPath,
    depfile: PurePath,
    *,
    library: bool,
) -> Tuple[str, ...]:
    command = context.toolchain.command(stage, target, host)
    if library:
        command.append("--lib")
    command.extend(
        [
            str(crate),
            "-o",
            str(context.locate(output.path)),
            "--dep-info",
            str(context.locate(depfile)),
        ]
    )
    return tuple(command)


def _add_crate_node(context: GraphContext, stage: int, target: Triple, host: Triple, kind: ArtifactKind) -> None:
    artifact = context.resolver.resolve(stage, host, kind, target)
    crate = context.store.source_dir / context.store.toolchain.crates[kind]
    requires = list(context.engine.target_cross_requirements(stage, target, host).artifacts)
    requires.extend(context.resolver.resolve(stage, host, dep, target) for dep in CRATE_DEPENDENCIES[kind])
    depfile = PurePosixPath(f"{artifact.path}.d")
    node = context.graph.add(
        BuildNode(
            name=f"compile/stage{stage}/{host}/{target}/{kind.value}",
            kind=ActionKind.COMMAND,
            description=f"Compile {artifact.describe()}",
            outputs=(artifact.path,),
            requires=tuple(dict.fromkeys(requires)),
            sources=(crate,),
            inputs=tuple(context.store.tracked_inputs()),
            commands=(
                _compile_command(
                    context,
                    stage,
                    target,
                    host,
                    crate,
                    artifact,
                    depfile,
                    library=kind is not ArtifactKind.COMPILER_DRIVER,
                ),
            ),
            depfile=depfile,
            context=artifact_context(artifact),
        )
    )
    context.compile_units.append(node.name)


def _add_promotion_nodes(context: GraphContext, stage: int, host: Triple) -> None:
    for edge in context.engine.promotion_edges(stage, host):
        context.graph.add(
            BuildNode(
                name=f"promote/stage{stage + 1}/{host}/{edge.kind.value}",
                kind=ActionKind.COPY,
                description=f"Promote {edge.source.describe()} to stage {stage + 1}",
                outputs=(edge.destination.path,),
                requires=(edge.source,),
                pairs=((edge.source.path, edge.destination.path),),
                context=artifact_context(edge.destination),
            )
        )


def _add_tool_node(context: GraphContext, stage: int, host: Triple, tool: ArtifactKind) -> None:
    artifact = context.resolver.resolve(stage, host, tool)
    crate = context.store.source_dir / context.store.toolchain.crates[tool]
    depfile = PurePosixPath(f"{artifact.path}.d")
    node = context.graph.add(
        BuildNode(
            name=f"tool/stage{stage}/{host}/{tool.value}",
            kind=ActionKind.COMMAND,
            description=f"Compile {artifact.describe()}",
            outputs=(artifact.path,),
            requires=context.engine.host_requirements(stage, host).artifacts,
            sources=(crate,),
            inputs=tuple(context.store.tracked_inputs()),
            commands=(_compile_command(context, stage, host, host, crate, artifact, depfile, library=False),),
            depfile=depfile,
            context=artifact_context(artifact),
        )
    )
    context.compile_units.append(node.name)


def _add_verify_node(context: GraphContext, host: Triple) -> None:
    kinds = tuple(dict.fromkeys((*CROSS_KINDS, *COMPLETE_KINDS)))
    stage2 = context.engine.target_artifacts(2, host, host, kinds)
    stage3 = context.engine.target_artifacts(3, host, host, kinds)
    context.graph.add(
        BuildNode(
            name=verify_node_name(host),
            kind=ActionKind.VERIFY,
            description=f"Verify stage-3 artifacts on {host} match stage 2",
            requires=(*stage2, *stage3),
            pairs=tuple((first.path, second.path) for first, second in zip(stage2, stage3)),
            always=True,
            context={"stage": "3", "host": host, "target": host},
        )
    )


__all__ = [
    "ActionKind",
    "BuildGraph",
    "BuildNode",
    "GraphContext",
    "MissingArtifactError",
    "add_goal_nodes",
    "build_core_graph",
    "generated_node_name",
    "topological_order",
]
