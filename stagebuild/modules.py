"""Optional rule modules, loaded only when a requested goal asks for them."""
from __future__ import annotations

from enum import Enum
from pathlib import Path, PurePath, PurePosixPath
from typing import Callable, Dict, Iterable, List, Mapping, Sequence, Tuple

from core.config_loader import normalize_string_list

from .artifacts import ArtifactKind, ArtifactPath
from .goals import Goal
from .graph import ActionKind, BuildNode, GraphContext
from .matrix import Triple

ModuleLoader = Callable[[GraphContext], None]

SOURCE_SUFFIXES = [".rs", ".rc", ".c", ".cpp", ".h", ".py", ".mk"]
TAGS_SUFFIXES = [".rs", ".rc", ".c", ".cpp", ".h"]


class ModuleCategory(str, Enum):
    PACKAGING = "packaging"
    SNAPSHOT = "snapshot"
    REFORMAT = "reformat"
    TESTS = "tests"
    PERF = "perf"
    CLEAN = "clean"
    INSTALL = "install"
    TAGS = "tags"

    @property
    def patterns(self) -> Tuple[str, ...]:
        return MODULE_PATTERNS[self]

    def matches(self, goal: str) -> bool:
        return any(pattern in goal for pattern in self.patterns)


MODULE_PATTERNS: Dict[ModuleCategory, Tuple[str, ...]] = {
    ModuleCategory.PACKAGING: ("dist",),
    ModuleCategory.SNAPSHOT: ("snap",),
    ModuleCategory.REFORMAT: ("reformat",),
    ModuleCategory.TESTS: ("check", "test", "tidy", "bench"),
    ModuleCategory.PERF: ("perf",),
    ModuleCategory.CLEAN: ("clean",),
    ModuleCategory.INSTALL: ("install",),
    ModuleCategory.TAGS: ("TAGS", "tags"),
}


def _section_list(section: Mapping[str, object], key: str, default: Sequence[str], *, label: str) -> List[str]:
    if key not in section:
        return list(default)
    return normalize_string_list(section.get(key), field_name=f"{label}.{key}")


def _section_str(section: Mapping[str, object], key: str, default: str) -> str:
    value = section.get(key)
    return str(value).strip() if value is not None and str(value).strip() else default


def _relative(context: GraphContext, paths: Iterable[Path]) -> List[str]:
    return [path.relative_to(context.root).as_posix() for path in paths]


def _add_goal(context: GraphContext, name: str, steps: Sequence[str], description: str, **kwargs) -> None:
    context.aggregator.add(Goal(name=name, steps=tuple(steps), description=description, **kwargs))


def load_packaging(context: GraphContext) -> None:
    section = context.store.section("dist")
    suffixes = _section_list(section, "suffixes", SOURCE_SUFFIXES, label="dist")
    name = _section_str(section, "name", "toolchain")
    output = PurePosixPath(_section_str(section, "output", f"dist/{name}-{context.store.toolchain.version}.tar.gz"))
    files = context.scan(context.store.source_dir, suffixes)
    command = _section_list(
        section,
        "command",
        ["tar", "-czf", "{{output}}", "-C", "{{root}}", "{{files}}"],
        label="dist",
    )
    context.graph.add(
        BuildNode(
            name="dist/tarball",
            kind=ActionKind.COMMAND,
            description=f"Package source tarball {output}",
            outputs=(output,),
            sources=tuple(files),
            inputs=tuple(context.store.tracked_inputs()),
            commands=(context.render(command, output=str(context.locate(output)), files=_relative(context, files)),),
        )
    )
    _add_goal(context, "dist", ["dist/tarball"], "Build the source tarball")


def load_snapshot(context: GraphContext) -> None:
    section = context.store.section("snapshot")
    command = _section_list(
        section,
        "make",
        ["python3", "{{source_dir}}/etc/make-snapshot.py", "{{stage_dir}}", "{{output}}"],
        label="snapshot",
    )
    host = context.aggregator.primary_host
    for stage in context.matrix.built_stages:
        output = PurePosixPath("snapshots") / f"stage{stage}-{host}-{context.store.toolchain.version}.tar.bz2"
        node_name = f"snap/stage{stage}"
        context.graph.add(
            BuildNode(
                name=node_name,
                kind=ActionKind.COMMAND,
                description=f"Archive the stage-{stage} toolchain for {host}",
                outputs=(output,),
                requires=context.engine.host_requirements(stage, host).artifacts,
                commands=(
                    context.render(
                        command,
                        stage_dir=str(context.locate(context.resolver.host_root(stage, host))),
                        output=str(context.locate(output)),
                    ),
                ),
                context={"stage": str(stage), "host": host},
            )
        )
        _add_goal(context, f"snap-stage{stage}", [node_name], f"Make a snapshot from the stage-{stage} toolchain")


def load_reformat(context: GraphContext) -> None:
    host = context.aggregator.primary_host
    stage = min(1, context.matrix.max_stage)
    files = context.scan(context.store.source_dir, [".rs", ".rc"])
    driver = str(context.locate(context.resolver.resolve(stage, host, ArtifactKind.COMPILER_DRIVER).path))
    context.graph.add(
        BuildNode(
            name="reformat/sources",
            kind=ActionKind.COMMAND,
            description=f"Pretty-print {len(files)} source file(s) with the stage-{stage} compiler",
            requires=context.engine.host_requirements(stage, host).artifacts,
            commands=tuple(
                (driver, "--no-trans", "--pretty", "normal", "-o", str(path), str(path)) for path in files
            ),
            always=True,
        )
    )
    _add_goal(context, "reformat", ["reformat/sources"], "Reformat the sources in place")


def _test_commands(
    context: GraphContext,
    stage: int,
    host: Triple,
    files: Sequence[Path],
    output_dir: PurePath,
    *,
    run_args: Sequence[str] = (),
) -> Tuple[Tuple[str, ...], ...]:
    commands: List[Tuple[str, ...]] = [("mkdir", "-p", str(context.locate(output_dir)))]
    for path in files:
        binary = str(context.locate(output_dir / path.stem))
        commands.append((*context.toolchain.command(stage, host, host), "--test", str(path), "-o", binary))
        commands.append((binary, *run_args))
    return tuple(commands)


def load_tests(context: GraphContext) -> None:
    section = context.store.section("tests")
    test_dir = context.root / _section_str(section, "directory", f"{context.store.toolchain.source_dir}/test")
    suffixes = _section_list(section, "suffixes", [".rs"], label="tests")
    test_files = context.scan(test_dir, suffixes)

    product = context.aggregator.product_stage
    for host in context.matrix.host_triples:
        for stage in context.matrix.built_stages:
            node_name = f"check/stage{stage}/{host}"
            output_dir = PurePosixPath("test") / f"stage{stage}" / host
            context.graph.add(
                BuildNode(
                    name=node_name,
                    kind=ActionKind.COMMAND,
                    description=f"Run {len(test_files)} test(s) with the stage-{stage} compiler on {host}",
                    requires=context.aggregator.stage_requirements(stage, host).artifacts,
                    sources=tuple(test_files),
                    commands=_test_commands(context, stage, host, test_files, output_dir),
                    always=True,
                    context={"stage": str(stage), "host": host},
                )
            )
            _add_goal(
                context,
                f"check-stage{stage}-H-{host}",
                [node_name],
                f"Test the stage-{stage} toolchain on {host}",
            )

    primary = context.aggregator.primary_host
    if product > 0:
        check_goal = f"check-stage{product}-H-{primary}"
        _add_goal(context, "check", [check_goal], "Test the product toolchain")
        _add_goal(context, "test", [check_goal], "Alias of check")

    tidy_files = context.scan(context.store.source_dir, _section_list(section, "tidy_suffixes", SOURCE_SUFFIXES, label="tests"))
    tidy_command = _section_list(
        section,
        "tidy",
        ["python3", "{{source_dir}}/etc/tidy.py", "{{files}}"],
        label="tests",
    )
    context.graph.add(
        BuildNode(
            name="tidy/sources",
            kind=ActionKind.COMMAND,
            description=f"Check style of {len(tidy_files)} source file(s)",
            sources=tuple(tidy_files),
            commands=(context.render(tidy_command, files=[str(path) for path in tidy_files]),),
            always=True,
        )
    )
    _add_goal(context, "tidy", ["tidy/sources"], "Check source style")

    if product > 0:
        bench_dir = context.root / _section_str(section, "bench_directory", f"{context.store.toolchain.source_dir}/test/bench")
        bench_files = context.scan(bench_dir, suffixes)
        context.graph.add(
            BuildNode(
                name="bench/run",
                kind=ActionKind.COMMAND,
                description=f"Run {len(bench_files)} benchmark(s) with the stage-{product} compiler",
                requires=context.aggregator.stage_requirements(product, primary).artifacts,
                sources=tuple(bench_files),
                commands=_test_commands(
                    context,
                    product,
                    primary,
                    bench_files,
                    PurePosixPath("test") / "bench",
                    run_args=("--bench",),
                ),
                always=True,
                context={"stage": str(product), "host": primary},
            )
        )
        _add_goal(context, "bench", ["bench/run"], "Run the benchmarks")


def load_perf(context: GraphContext) -> None:
    section = context.store.section("perf")
    host = context.aggregator.primary_host
    stage = context.aggregator.product_stage
    tool = _section_list(section, "tool", ["perf", "stat", "-o", "{{report}}"], label="perf")
    crate = context.store.source_dir / _section_str(
        section, "input", context.store.toolchain.crates[ArtifactKind.STD_LIBRARY]
    )
    report = PurePosixPath("perf") / f"stage{stage}-{host}.txt"
    output = PurePosixPath("perf") / f"stage{stage}-{host}.out"
    command = (
        *context.render(tool, report=str(context.locate(report))),
        *context.toolchain.command(stage, host, host),
        "--lib",
        str(crate),
        "-o",
        str(context.locate(output)),
    )
    context.graph.add(
        BuildNode(
            name="perf/compile",
            kind=ActionKind.COMMAND,
            description=f"Profile a stage-{stage} compile on {host}",
            outputs=(report,),
            requires=context.engine.host_requirements(stage, host).artifacts,
            sources=(crate,),
            commands=(command,),
            always=True,
            context={"stage": str(stage), "host": host},
        )
    )
    _add_goal(context, "perf", ["perf/compile"], "Profile the product compiler")


def load_clean(context: GraphContext) -> None:
    steps: List[str] = []
    for stage in context.matrix.stages:
        node_name = f"clean/stage{stage}"
        context.graph.add(
            BuildNode(
                name=node_name,
                kind=ActionKind.REMOVE,
                description=f"Remove stage-{stage} artifacts",
                targets=tuple(context.resolver.host_root(stage, host) for host in context.matrix.host_triples),
            )
        )
        _add_goal(context, f"clean-stage{stage}", [node_name], f"Remove stage-{stage} artifacts")
        steps.append(node_name)
    extras: List[PurePath] = [PurePosixPath(entry.output) for entry in context.store.generated]
    extras.extend(PurePosixPath(name) for name in ("dist", "snapshots", "test", "perf", "TAGS"))
    context.graph.add(
        BuildNode(
            name="clean/misc",
            kind=ActionKind.REMOVE,
            description="Remove generated outputs and auxiliary build products",
            targets=tuple(extras),
        )
    )
    steps.append("clean/misc")
    _add_goal(context, "clean", steps, "Remove every build product")


def install_prefix(context: GraphContext) -> Path:
    destdir = context.env.get("DESTDIR", "").strip()
    return Path(destdir or context.store.toolchain.prefix)


def _install_pairs(context: GraphContext) -> List[Tuple[ArtifactPath, Path]]:
    """Product-stage artifacts of the primary host, mapped below the install prefix."""
    host = context.aggregator.primary_host
    stage = context.aggregator.product_stage
    prefix = install_prefix(context)
    host_root = context.resolver.host_root(stage, host)
    if stage > 0:
        installed = context.aggregator.stage_requirements(stage, host).copy()
        installed.extend(context.resolver.resolve(stage, host, tool) for tool in context.store.toolchain.tools)
    else:
        installed = context.engine.host_requirements(0, host)
    return [
        (artifact, prefix / Path(artifact.path.relative_to(host_root)))
        for artifact in installed
        if artifact.stage == stage
    ]


def load_install(context: GraphContext) -> None:
    pairs = _install_pairs(context)
    prefix = install_prefix(context)
    context.graph.add(
        BuildNode(
            name="install/files",
            kind=ActionKind.COPY,
            description=f"Install the product toolchain into {prefix}",
            outputs=tuple(destination for _, destination in pairs),
            requires=tuple(artifact for artifact, _ in pairs),
            pairs=tuple((artifact.path, destination) for artifact, destination in pairs),
        )
    )
    context.graph.add(
        BuildNode(
            name="uninstall/files",
            kind=ActionKind.REMOVE,
            description=f"Remove the installed toolchain from {prefix}",
            targets=tuple(destination for _, destination in pairs),
        )
    )
    _add_goal(context, "install", ["install/files"], f"Install into {prefix}")
    _add_goal(context, "uninstall", ["uninstall/files"], f"Uninstall from {prefix}")


def load_tags(context: GraphContext) -> None:
    section = context.store.section("tags")
    files = context.scan(context.store.source_dir, _section_list(section, "suffixes", TAGS_SUFFIXES, label="tags"))
    command = _section_list(section, "command", ["ctags", "-e", "-f", "{{output}}", "{{files}}"], label="tags")
    output = PurePosixPath("TAGS")
    context.graph.add(
        BuildNode(
            name="tags/emacs",
            kind=ActionKind.COMMAND,
            description="Generate the TAGS index",
            outputs=(output,),
            sources=tuple(files),
            commands=(context.render(command, output=str(context.locate(output)), files=[str(path) for path in files]),),
        )
    )
    _add_goal(context, "TAGS", ["tags/emacs"], "Generate the TAGS index")
    _add_goal(context, "tags", ["tags/emacs"], "Alias of TAGS", alias_of="TAGS")


DEFAULT_LOADERS: Dict[ModuleCategory, ModuleLoader] = {
    ModuleCategory.PACKAGING: load_packaging,
    ModuleCategory.SNAPSHOT: load_snapshot,
    ModuleCategory.REFORMAT: load_reformat,
    ModuleCategory.TESTS: load_tests,
    ModuleCategory.PERF: load_perf,
    ModuleCategory.CLEAN: load_clean,
    ModuleCategory.INSTALL: load_install,
    ModuleCategory.TAGS: load_tags,
}


class ModuleActivator:
    """Decides once per invocation which optional modules the goals need."""

    def __init__(self, loaders: Mapping[ModuleCategory, ModuleLoader] | None = None) -> None:
        self._loaders = dict(DEFAULT_LOADERS if loaders is None else loaders)

    def activate(self, goals: Iterable[str]) -> List[ModuleCategory]:
        requested = list(goals)
        return [category for category in ModuleCategory if any(category.matches(goal) for goal in requested)]

    def load(self, context: GraphContext, goals: Iterable[str]) -> List[ModuleCategory]:
        active = self.activate(goals)
        for category in active:
            loader = self._loaders.get(category)
            if loader is None:
                continue
            context.console.debug(f"Loading {category.value} module")
            loader(context)
        return active
