"""Compiler invocation for each stage: flags, per-stage extras and instrumentation."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Sequence
import shlex

from .artifacts import ArtifactKind, ArtifactResolver
from .matrix import Triple


def env_flag(env: Mapping[str, str], name: str) -> bool:
    """Make-style ``ifdef``: set and non-empty."""
    return bool(env.get(name, "").strip())


@dataclass(slots=True)
class CompilerOptions:
    disable_optimize: bool = False
    enable_debug: bool = False
    save_temps: bool = False
    time_passes: bool = False
    time_backend_passes: bool = False
    trace: bool = False
    instrument_compile: bool = False
    disable_instrument: bool = False
    bad_instrument: bool = False
    extra_flags: Dict[int, List[str]] = field(default_factory=dict)

    @classmethod
    def from_environment(cls, env: Mapping[str, str], *, stages: Sequence[int] = (0, 1, 2, 3)) -> "CompilerOptions":
        extra_flags: Dict[int, List[str]] = {}
        for stage in stages:
            raw = env.get(f"EXTRAFLAGS_STAGE{stage}", "")
            if raw.strip():
                extra_flags[stage] = shlex.split(raw)
        return cls(
            disable_optimize=env_flag(env, "CFG_DISABLE_OPTIMIZE"),
            enable_debug=env_flag(env, "CFG_ENABLE_DEBUG"),
            save_temps=env_flag(env, "SAVE_TEMPS"),
            time_passes=env_flag(env, "TIME_PASSES"),
            time_backend_passes=env_flag(env, "TIME_BACKEND_PASSES"),
            trace=env_flag(env, "TRACE"),
            instrument_compile=env_flag(env, "INSTRUMENT_COMPILE"),
            disable_instrument=env_flag(env, "CFG_DISABLE_INSTRUMENT"),
            bad_instrument=env_flag(env, "CFG_BAD_INSTRUMENT"),
            extra_flags=extra_flags,
        )

    def compiler_flags(self) -> List[str]:
        flags: List[str] = []
        if not self.disable_optimize:
            flags.append("-O")
        flags.extend(["--cfg", "debug" if self.enable_debug else "ndebug"])
        if self.save_temps:
            flags.append("--save-temps")
        if self.time_passes:
            flags.append("--time-passes")
        if self.time_backend_passes:
            flags.append("--time-backend-passes")
        if self.trace:
            flags.append("--trace")
        return flags

    def native_flags(self) -> List[str]:
        return ["-DTOOLCHAIN_DEBUG" if self.enable_debug else "-DTOOLCHAIN_NDEBUG"]


@dataclass(slots=True)
class StageToolchain:
    """Builds the command line of the stage-N host compiler targeting a triple."""

    resolver: ArtifactResolver
    options: CompilerOptions
    instrument_tool: List[str] = field(default_factory=list)
    platform_bad_instrument: bool = False

    @property
    def instrumentation_enabled(self) -> bool:
        return (
            self.options.instrument_compile
            and bool(self.instrument_tool)
            and not self.options.disable_instrument
            and not self.options.bad_instrument
            and not self.platform_bad_instrument
        )

    def launcher(self, stage: int) -> List[str]:
        # The stage-0 compiler is a downloaded snapshot; never instrument it.
        if stage == 0 or not self.instrumentation_enabled:
            return []
        return list(self.instrument_tool)

    def command(self, stage: int, target: Triple, host: Triple) -> List[str]:
        driver = self.resolver.resolve(stage, host, ArtifactKind.COMPILER_DRIVER)
        self.resolver.matrix.check_target(target)
        return [
            *self.launcher(stage),
            str(self.resolver.locate(driver)),
            *self.options.compiler_flags(),
            *self.options.extra_flags.get(stage, []),
            "--target",
            target,
        ]
