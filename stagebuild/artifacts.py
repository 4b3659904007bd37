"""Canonical artifact locations and file names.

Every artifact of the bootstrap is addressed by ``(stage, host, target?, kind)``.
Host artifacts live under ``<host>/stage<N>/``; artifacts built for a target
live under ``<host>/stage<N>/<libdir>/toolchain/<target>/``. Callers never
spell these paths out themselves: promotion, installation and cleaning all go
through :class:`ArtifactResolver`.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Dict, Mapping
import hashlib

from .matrix import OutOfDomainError, Triple, TripleStageMatrix


class ArtifactKind(str, Enum):
    COMPILER_DRIVER = "compiler-driver"
    RUNTIME = "runtime"
    BACKEND_INTEROP = "backend-interop"
    LINK_SUPPORT = "link-support"
    CORE_LIBRARY = "core-library"
    STD_LIBRARY = "std-library"
    COMPILER_LIBRARY = "compiler-library"
    LIBRARY_DIR = "library-dir"
    PACKAGE_MANAGER = "package-manager"
    DOC_GENERATOR = "doc-generator"


class NamingScheme(str, Enum):
    FIXED = "fixed"
    VERSIONED = "versioned"


SHAREABLE_KINDS = frozenset(
    {ArtifactKind.CORE_LIBRARY, ArtifactKind.STD_LIBRARY, ArtifactKind.COMPILER_LIBRARY}
)
TARGET_ONLY_KINDS = frozenset({ArtifactKind.LINK_SUPPORT, ArtifactKind.LIBRARY_DIR})
BINARY_KINDS = frozenset(
    {ArtifactKind.COMPILER_DRIVER, ArtifactKind.PACKAGE_MANAGER, ArtifactKind.DOC_GENERATOR}
)

DEFAULT_NAMES: Dict[ArtifactKind, str] = {
    ArtifactKind.COMPILER_DRIVER: "rustc",
    ArtifactKind.RUNTIME: "rustrt",
    ArtifactKind.BACKEND_INTEROP: "rustllvm",
    ArtifactKind.LINK_SUPPORT: "morestack",
    ArtifactKind.CORE_LIBRARY: "core",
    ArtifactKind.STD_LIBRARY: "std",
    ArtifactKind.COMPILER_LIBRARY: "rustc",
    ArtifactKind.PACKAGE_MANAGER: "cargo",
    ArtifactKind.DOC_GENERATOR: "rustdoc",
}


@dataclass(frozen=True, slots=True)
class PlatformNaming:
    """File naming conventions of the platform a triple describes."""

    shared_prefix: str
    shared_suffix: str
    exe_suffix: str

    @classmethod
    def for_triple(cls, triple: Triple) -> "PlatformNaming":
        lowered = triple.lower()
        if "windows" in lowered or "mingw" in lowered:
            return cls(shared_prefix="", shared_suffix=".dll", exe_suffix=".exe")
        if "darwin" in lowered or "apple" in lowered:
            return cls(shared_prefix="lib", shared_suffix=".dylib", exe_suffix="")
        return cls(shared_prefix="lib", shared_suffix=".so", exe_suffix="")

    def shared_library(self, name: str) -> str:
        return f"{self.shared_prefix}{name}{self.shared_suffix}"

    def static_library(self, name: str) -> str:
        return f"lib{name}.a"

    def executable(self, name: str) -> str:
        return f"{name}{self.exe_suffix}"


@dataclass(frozen=True, slots=True)
class ArtifactPath:
    """A resolved artifact; ``path`` is relative to the build root."""

    stage: int
    host: Triple
    target: Triple | None
    kind: ArtifactKind
    path: PurePosixPath

    @property
    def name(self) -> str:
        return self.path.name

    def describe(self) -> str:
        where = f"stage{self.stage} host={self.host}"
        if self.target is not None:
            where = f"{where} target={self.target}"
        return f"{self.kind.value} ({where})"

    def __str__(self) -> str:
        return str(self.path)


@dataclass(slots=True)
class ArtifactResolver:
    """Pure mapping from ``(stage, host, target?, kind)`` to :class:`ArtifactPath`."""

    matrix: TripleStageMatrix
    root: Path
    libdir: str = "lib"
    scheme: NamingScheme = NamingScheme.VERSIONED
    version: str = "0.0"
    names: Mapping[ArtifactKind, str] = field(default_factory=lambda: dict(DEFAULT_NAMES))

    def __post_init__(self) -> None:
        self.scheme = NamingScheme(self.scheme)
        merged = dict(DEFAULT_NAMES)
        merged.update({ArtifactKind(kind): str(name) for kind, name in self.names.items()})
        self.names = merged
        # Binaries and libraries share a directory when libdir is "bin".
        for group in (BINARY_KINDS, frozenset(DEFAULT_NAMES) - BINARY_KINDS):
            seen: Dict[str, ArtifactKind] = {}
            for kind in sorted(group, key=lambda item: item.value):
                name = merged[kind]
                if name in seen:
                    raise ValueError(
                        f"Artifact kinds '{seen[name].value}' and '{kind.value}' share the file name '{name}'"
                    )
                seen[name] = kind

    def resolve(
        self,
        stage: int,
        host: Triple,
        kind: ArtifactKind,
        target: Triple | None = None,
    ) -> ArtifactPath:
        self.matrix.check(stage, host, target)
        kind = ArtifactKind(kind)
        if target is None:
            if kind in TARGET_ONLY_KINDS:
                raise OutOfDomainError(f"Artifact kind '{kind.value}' requires a target triple")
            directory = self.host_bin(stage, host) if kind in BINARY_KINDS else self.host_lib(stage, host)
            owner = host
        else:
            if kind is ArtifactKind.LIBRARY_DIR:
                return ArtifactPath(stage, host, target, kind, self.target_lib(stage, target, host))
            directory = (
                self.target_bin(stage, target, host) if kind in BINARY_KINDS else self.target_lib(stage, target, host)
            )
            owner = target
        return ArtifactPath(stage, host, target, kind, directory / self.file_name(kind, owner))

    def file_name(self, kind: ArtifactKind, triple: Triple) -> str:
        naming = PlatformNaming.for_triple(triple)
        name = self.names.get(kind, DEFAULT_NAMES.get(kind, kind.value))
        if kind in BINARY_KINDS:
            return naming.executable(name)
        if kind is ArtifactKind.LINK_SUPPORT:
            return naming.static_library(name)
        if kind in SHAREABLE_KINDS and self.scheme is NamingScheme.VERSIONED:
            return naming.shared_library(self.versioned_stem(name))
        return naming.shared_library(name)

    def versioned_stem(self, crate: str) -> str:
        digest = hashlib.sha256(f"{crate}-{self.version}".encode("utf-8")).hexdigest()[:16]
        return f"{crate}-{digest}-{self.version}"

    def host_root(self, stage: int, host: Triple) -> PurePosixPath:
        self.matrix.check(stage, host)
        return PurePosixPath(host) / f"stage{stage}"

    def host_bin(self, stage: int, host: Triple) -> PurePosixPath:
        return self.host_root(stage, host) / "bin"

    def host_lib(self, stage: int, host: Triple) -> PurePosixPath:
        return self.host_root(stage, host) / self.libdir

    def target_root(self, stage: int, target: Triple, host: Triple) -> PurePosixPath:
        self.matrix.check_target(target)
        return self.host_lib(stage, host) / "toolchain" / target

    def target_bin(self, stage: int, target: Triple, host: Triple) -> PurePosixPath:
        return self.target_root(stage, target, host) / "bin"

    def target_lib(self, stage: int, target: Triple, host: Triple) -> PurePosixPath:
        return self.target_root(stage, target, host) / self.libdir

    def locate(self, artifact: ArtifactPath | PurePosixPath) -> Path:
        relative = artifact.path if isinstance(artifact, ArtifactPath) else artifact
        return self.root / Path(relative)
