"""Planning and execution of a bootstrap build invocation."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping
import os

from core.command_runner import CommandRunner

from .config_loader import ConfigurationStore
from .console import Console
from .depfiles import DependencyFileMerger
from .executor import ExecutionReport, GraphExecutor
from .goals import DEFAULT_GOAL
from .graph import GraphContext, add_goal_nodes, build_core_graph
from .modules import ModuleActivator, ModuleCategory
from .reconfigure import ReconfigurationTrigger, SubmoduleProbe, ensure_fresh_configuration
from .toolchain import CompilerOptions, env_flag


@dataclass(slots=True)
class BuildOptions:
    goals: List[str] = field(default_factory=list)
    jobs: int | None = None
    keep_going: bool = False
    dry_run: bool = False
    verbose: bool = False
    compiler: CompilerOptions = field(default_factory=CompilerOptions)
    manage_submodules: bool = True
    config_dir: Path | None = None
    environment: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_environment(cls, env: Mapping[str, str], **overrides) -> "BuildOptions":
        """Options from make-style environment variables; explicit overrides win."""
        options = cls(
            verbose=env_flag(env, "VERBOSE"),
            compiler=CompilerOptions.from_environment(env),
            manage_submodules=not env_flag(env, "CFG_DISABLE_MANAGE_SUBMODULES"),
            environment=dict(env),
        )
        for key, value in overrides.items():
            if value is None:
                continue
            setattr(options, key, value)
        return options

    @property
    def requested_goals(self) -> List[str]:
        return list(self.goals) or [DEFAULT_GOAL]


@dataclass(slots=True)
class BuildPlan:
    store: ConfigurationStore
    context: GraphContext
    goals: List[str]
    nodes: List[str]
    modules: List[ModuleCategory]
    forced: int = 0

    @property
    def notices(self) -> List[str]:
        return self.context.notices


class BuildEngine:
    def __init__(
        self,
        *,
        workspace: Path,
        command_runner: CommandRunner,
        console: Console,
        probe: SubmoduleProbe | None = None,
        activator: ModuleActivator | None = None,
    ) -> None:
        self._workspace = workspace
        self._command_runner = command_runner
        self._console = console
        self._probe = probe
        self._activator = activator or ModuleActivator()

    def load_configuration(self, options: BuildOptions) -> ConfigurationStore:
        trigger = ReconfigurationTrigger(
            self._workspace,
            self._command_runner,
            self._console,
            probe=self._probe,
            check_submodules=options.manage_submodules,
        )
        return ensure_fresh_configuration(
            lambda: ConfigurationStore.from_directory(self._workspace, options.config_dir),
            trigger,
            self._console,
            dry_run=options.dry_run,
        )

    def plan(self, options: BuildOptions) -> BuildPlan:
        store = self.load_configuration(options)
        goals = options.requested_goals
        context = GraphContext.create(
            store,
            options=options.compiler,
            console=self._console,
            env=options.environment,
        )
        for notice in context.notices:
            self._console.info(notice)

        build_core_graph(context)
        modules = self._activator.load(context, goals)
        add_goal_nodes(context)
        for goal in goals:
            context.aggregator.get(goal)

        graph = context.graph
        graph.finalize()
        forced = DependencyFileMerger(self._workspace, self._console).merge(graph)
        return BuildPlan(
            store=store,
            context=context,
            goals=goals,
            nodes=graph.closure(goals),
            modules=modules,
            forced=forced,
        )

    def execute(self, plan: BuildPlan, options: BuildOptions) -> ExecutionReport:
        jobs = options.jobs or plan.store.global_config.jobs or os.cpu_count() or 1
        executor = GraphExecutor(
            self._workspace,
            self._command_runner,
            self._console,
            jobs=jobs,
            keep_going=options.keep_going,
            dry_run=options.dry_run,
        )
        return executor.run(plan.context.graph, plan.goals)
