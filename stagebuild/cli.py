"""Command line interface for the stagebuild tool."""
from __future__ import annotations

from argparse import ArgumentParser, Namespace
from pathlib import Path
from typing import Iterable, List
import os
import sys

from core.command_runner import CommandError, RecordingCommandRunner, SubprocessCommandRunner
from core.template import TemplateError

from .artifacts import ArtifactKind, TARGET_ONLY_KINDS
from .build import BuildEngine, BuildOptions
from .config_loader import ConfigurationStore
from .console import Console
from .graph import GraphContext, MissingArtifactError, add_goal_nodes, build_core_graph
from .matrix import OutOfDomainError
from .modules import ModuleCategory
from .reconfigure import ConfigurationLoopError
from .toolchain import CompilerOptions

CONFIG_ERRORS = (
    ConfigurationLoopError,
    OutOfDomainError,
    MissingArtifactError,
    TemplateError,
    CommandError,
    FileNotFoundError,
    KeyError,
    TypeError,
    ValueError,
)


def _make_runner(dry_run: bool) -> SubprocessCommandRunner | RecordingCommandRunner:
    return RecordingCommandRunner() if dry_run else SubprocessCommandRunner()


def _error_text(exc: BaseException) -> str:
    # KeyError wraps its message in quotes.
    if isinstance(exc, KeyError) and exc.args:
        return str(exc.args[0])
    return str(exc)


def _emit_dry_run_output(runner: RecordingCommandRunner, *, workspace: Path) -> None:
    for line in runner.iter_formatted(workspace=workspace):
        print(line)


def _parse_arguments(argv: Iterable[str]) -> Namespace:
    parser = ArgumentParser(prog="stagebuild", description="Staged bootstrap build orchestrator")
    parser.add_argument(
        "-C",
        "--directory",
        dest="directory",
        metavar="PATH",
        help="Build root (defaults to the current directory)",
    )
    parser.add_argument(
        "--config-dir",
        dest="config_dir",
        metavar="PATH",
        help="Directory holding the persisted configuration (defaults to <build root>/config)",
    )
    parser.add_argument(
        "--log-level",
        choices=list(Console.LEVELS),
        default=None,
        help="Console verbosity (defaults to global.log_level)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    build_parser = subparsers.add_parser("build", help="Build one or more goals")
    build_parser.add_argument("goals", nargs="*", help="Goals to build (default: all)")
    build_parser.add_argument("-j", "--jobs", type=int, help="Number of parallel jobs")
    build_parser.add_argument(
        "-k",
        "--keep-going",
        action="store_true",
        help="Keep building independent nodes after a failure",
    )
    build_parser.add_argument("-n", "--dry-run", action="store_true", help="Print actions without executing them")
    build_parser.add_argument("-v", "--verbose", action="store_true", help="Show executed command lines")

    subparsers.add_parser("goals", help="List available goals")

    paths_parser = subparsers.add_parser("paths", help="Print resolved artifact paths")
    paths_parser.add_argument("--stage", type=int, required=True, help="Stage number")
    paths_parser.add_argument("--host", required=True, help="Host triple")
    paths_parser.add_argument("--target", help="Target triple")

    subparsers.add_parser("validate", help="Validate the configuration and the build graph")
    return parser.parse_args(list(argv))


def main(argv: Iterable[str] | None = None) -> int:
    args = _parse_arguments(sys.argv[1:] if argv is None else argv)
    workspace = Path(args.directory).resolve() if args.directory else Path.cwd()

    if args.command == "build":
        return _handle_build(args, workspace)
    if args.command == "goals":
        return _handle_goals(args, workspace)
    if args.command == "paths":
        return _handle_paths(args, workspace)
    if args.command == "validate":
        return _handle_validate(args, workspace)
    raise ValueError(f"Unknown command: {args.command}")


def _config_dir(args: Namespace) -> Path | None:
    return Path(args.config_dir) if args.config_dir else None


def _configured_log_level(args: Namespace, workspace: Path) -> str:
    if args.log_level:
        return args.log_level
    try:
        return ConfigurationStore.from_directory(workspace, _config_dir(args)).global_config.log_level
    except CONFIG_ERRORS:
        # The build reports the broken configuration itself.
        return "info"


def _load_context(args: Namespace, workspace: Path) -> GraphContext:
    store = ConfigurationStore.from_directory(workspace, _config_dir(args))
    console = Console(args.log_level or store.global_config.log_level)
    return GraphContext.create(
        store,
        options=CompilerOptions.from_environment(os.environ, stages=store.toolchain.stages),
        console=console,
        env=dict(os.environ),
    )


def _handle_build(args: Namespace, workspace: Path) -> int:
    options = BuildOptions.from_environment(
        os.environ,
        goals=list(args.goals),
        jobs=args.jobs,
        keep_going=args.keep_going or None,
        dry_run=args.dry_run,
        config_dir=_config_dir(args),
    )
    options.verbose = options.verbose or args.verbose
    if options.jobs is not None and options.jobs < 1:
        print("Error: --jobs must be at least 1")
        return 2

    console = Console.for_verbosity(_configured_log_level(args, workspace), verbose=options.verbose)
    runner = _make_runner(args.dry_run)
    engine = BuildEngine(workspace=workspace, command_runner=runner, console=console)

    try:
        plan = engine.plan(options)
    except CONFIG_ERRORS as exc:
        print(f"Error: {_error_text(exc)}")
        if isinstance(runner, RecordingCommandRunner):
            _emit_dry_run_output(runner, workspace=workspace)
        return 2

    console.debug(f"Active modules: {', '.join(module.value for module in plan.modules) or 'none'}")
    console.debug(f"{len(plan.nodes)} node(s) selected for {', '.join(plan.goals)}")
    try:
        report = engine.execute(plan, options)
    except MissingArtifactError as exc:
        print(f"Error: {exc}")
        return 1

    if isinstance(runner, RecordingCommandRunner):
        _emit_dry_run_output(runner, workspace=workspace)

    console.info(f"{len(report.built)} action(s) run, {len(report.up_to_date)} up to date")
    for failure in [*report.failures, *report.reproducibility]:
        print(f"Error: {failure.describe()}")
    if report.skipped and not report.ok:
        print(f"Skipped {len(report.skipped)} node(s) because of earlier failures")
    return 0 if report.ok else 1


def _handle_goals(args: Namespace, workspace: Path) -> int:
    try:
        context = _load_context(args, workspace)
    except CONFIG_ERRORS as exc:
        print(f"Error: {_error_text(exc)}")
        return 2

    goals = list(context.aggregator)
    width = max(len(goal.name) for goal in goals)
    for goal in goals:
        suffix = f" (alias of {goal.alias_of})" if goal.alias_of else ""
        print(f"{goal.name.ljust(width)}  {goal.description}{suffix}")
    print()
    print("Optional modules (loaded when a goal contains one of the patterns):")
    for category in ModuleCategory:
        print(f"  {category.value}: {', '.join(category.patterns)}")
    return 0


def _handle_paths(args: Namespace, workspace: Path) -> int:
    try:
        context = _load_context(args, workspace)
        rows: List[tuple[str, str]] = []
        for kind in ArtifactKind:
            if args.target is None and kind in TARGET_ONLY_KINDS:
                continue
            artifact = context.resolver.resolve(args.stage, args.host, kind, args.target)
            rows.append((kind.value, str(artifact.path)))
    except CONFIG_ERRORS as exc:
        print(f"Error: {_error_text(exc)}")
        return 2

    width = max(len(kind) for kind, _ in rows)
    for kind, path in rows:
        print(f"{kind.ljust(width)}  {path}")
    return 0


def _handle_validate(args: Namespace, workspace: Path) -> int:
    try:
        context = _load_context(args, workspace)
        build_core_graph(context)
        add_goal_nodes(context)
        context.graph.finalize()
    except CONFIG_ERRORS as exc:
        print(f"Error: {_error_text(exc)}")
        return 2

    for notice in context.notices:
        print(f"Notice: {notice}")
    print(
        f"Configuration OK: {len(context.matrix.stages)} stage(s), "
        f"{len(context.matrix.host_triples)} host(s), {len(context.matrix.target_triples)} target(s), "
        f"{len(context.graph)} build node(s)"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
