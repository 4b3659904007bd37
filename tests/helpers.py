from __future__ import annotations

from pathlib import Path
from typing import Mapping, Sequence
import textwrap

from stagebuild.artifacts import ArtifactResolver, NamingScheme
from stagebuild.config_loader import ConfigurationStore
from stagebuild.console import Console
from stagebuild.graph import GraphContext
from stagebuild.matrix import TripleStageMatrix
from stagebuild.prerequisites import PromotionEngine
from stagebuild.toolchain import CompilerOptions

HOST = "x86_64-unknown-linux-gnu"
CROSS = "aarch64-unknown-linux-gnu"
WINDOWS = "x86_64-pc-windows-gnu"
DARWIN = "x86_64-apple-darwin"


def make_matrix(
    *,
    stages: Sequence[int] = (0, 1, 2, 3),
    hosts: Sequence[str] = (HOST,),
    targets: Sequence[str] = (HOST,),
) -> TripleStageMatrix:
    return TripleStageMatrix.create(stages=stages, host_triples=hosts, target_triples=targets)


def make_resolver(
    matrix: TripleStageMatrix | None = None,
    *,
    root: Path = Path("/build"),
    scheme: NamingScheme = NamingScheme.FIXED,
    version: str = "0.1",
) -> ArtifactResolver:
    return ArtifactResolver(matrix=matrix or make_matrix(), root=root, scheme=scheme, version=version)


def make_engine(matrix: TripleStageMatrix | None = None, **kwargs) -> PromotionEngine:
    return PromotionEngine(make_resolver(matrix, **kwargs), inputs=[Path("/build/config.stamp")])


def write_workspace(
    root: Path,
    *,
    targets: Sequence[str] = (HOST,),
    toolchain_extra: str = "",
    extra: str = "",
    stamp: bool = True,
    log_level: str = "none",
) -> None:
    config_dir = root / "config"
    config_dir.mkdir(parents=True, exist_ok=True)
    target_list = ", ".join(f'"{target}"' for target in targets)
    (config_dir / "config.toml").write_text(
        textwrap.dedent(
            f"""
            [global]
            log_level = "{log_level}"
            jobs = 2

            [configure]
            script = "configure"
            args = ["--prefix=/opt/toolchain"]

            [toolchain]
            host_triple = "{HOST}"
            target_triples = [{target_list}]
            naming_scheme = "fixed"
            version = "0.1"
            prefix = "/opt/toolchain"
            """
        )
        + textwrap.dedent(toolchain_extra)
        + textwrap.dedent(extra),
        encoding="utf-8",
    )
    if stamp:
        (root / "config.stamp").touch()


def make_context(
    root: Path,
    *,
    env: Mapping[str, str] | None = None,
    options: CompilerOptions | None = None,
) -> GraphContext:
    store = ConfigurationStore.from_directory(root)
    return GraphContext.create(
        store,
        options=options or CompilerOptions(),
        console=Console("none"),
        env=env or {},
    )
