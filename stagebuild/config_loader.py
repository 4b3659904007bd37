"""Configuration loading and validation for the bootstrap build."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Sequence

from core.config_loader import (
    collect_config_files,
    load_config_file,
    merge_mappings,
    normalize_int_list,
    normalize_string_list,
)

from .artifacts import ArtifactKind, NamingScheme
from .console import Console

CONFIG_DIR_NAME = "config"
STAMP_NAME = "config.stamp"

DEFAULT_INSTRUMENT_TOOL = ["valgrind", "--error-exitcode=100", "--leak-check=full", "--quiet"]

DEFAULT_CRATES: Dict[ArtifactKind, str] = {
    ArtifactKind.CORE_LIBRARY: "libcore/core.rc",
    ArtifactKind.STD_LIBRARY: "libstd/std.rc",
    ArtifactKind.COMPILER_LIBRARY: "rustc/rustc.rc",
    ArtifactKind.COMPILER_DRIVER: "driver/rustc.rs",
    ArtifactKind.PACKAGE_MANAGER: "cargo/cargo.rc",
    ArtifactKind.DOC_GENERATOR: "rustdoc/rustdoc.rc",
}

DEFAULT_NATIVE_COMMAND = [
    "make",
    "-f",
    "{{source_dir}}/mk/native.mk",
    "{{artifact.kind}}",
    "OUT={{artifact.output}}",
    "HOST={{host}}",
    "TARGET={{target}}",
    "STAGE={{stage}}",
    "CFLAGS={{native_flags}}",
]

DEFAULT_SNAPSHOT_FETCH = ["python3", "{{source_dir}}/etc/get-snapshot.py", "{{host}}", "{{stage_dir}}"]

AUXILIARY_TOOLS = (ArtifactKind.PACKAGE_MANAGER, ArtifactKind.DOC_GENERATOR)


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _kind_mapping(section: Any, *, label: str) -> Dict[ArtifactKind, str]:
    if section is None:
        return {}
    if not isinstance(section, Mapping):
        raise TypeError(f"[{label}] must be a table")
    mapping: Dict[ArtifactKind, str] = {}
    for raw_key, raw_value in section.items():
        try:
            kind = ArtifactKind(str(raw_key))
        except ValueError as exc:
            available = ", ".join(kind.value for kind in ArtifactKind)
            raise ValueError(f"[{label}] has unknown artifact kind '{raw_key}'. Available: {available}") from exc
        text = _optional_str(raw_value)
        if not text:
            raise ValueError(f"[{label}] entry '{raw_key}' must be a non-empty string")
        mapping[kind] = text
    return mapping


@dataclass(slots=True)
class GlobalConfig:
    log_level: str = "info"
    jobs: int | None = None
    max_reconfigure: int = 3

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "GlobalConfig":
        section = data.get("global", {}) if isinstance(data, Mapping) else {}
        log_level = str(section.get("log_level", "info")).lower()
        if log_level not in Console.LEVELS:
            raise ValueError(f"global.log_level '{log_level}' is not one of {', '.join(Console.LEVELS)}")
        jobs = section.get("jobs")
        if jobs is not None and (isinstance(jobs, bool) or not isinstance(jobs, int) or jobs < 1):
            raise ValueError("global.jobs must be a positive integer")
        max_reconfigure = section.get("max_reconfigure", 3)
        if isinstance(max_reconfigure, bool) or not isinstance(max_reconfigure, int) or max_reconfigure < 0:
            raise ValueError("global.max_reconfigure must be a non-negative integer")
        return cls(log_level=log_level, jobs=jobs, max_reconfigure=max_reconfigure)


@dataclass(slots=True)
class ConfigureSettings:
    """How the persisted configuration was produced and what it was produced from."""

    script: str | None = None
    template: str | None = None
    manifest: str | None = None
    args: List[str] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ConfigureSettings":
        section = data.get("configure", {})
        if not isinstance(section, Mapping):
            raise TypeError("[configure] must be a table")
        return cls(
            script=_optional_str(section.get("script")),
            template=_optional_str(section.get("template")),
            manifest=_optional_str(section.get("manifest")),
            args=normalize_string_list(section.get("args"), field_name="configure.args"),
        )

    def declared_inputs(self) -> List[str]:
        return [value for value in (self.script, self.template, self.manifest) if value]


@dataclass(slots=True)
class ToolchainSettings:
    source_dir: str
    host_triple: str
    host_triples: List[str]
    target_triples: List[str]
    stages: List[int]
    libdir: str = "lib"
    naming_scheme: NamingScheme = NamingScheme.VERSIONED
    version: str = "0.0"
    in_transition: bool = False
    instrument_tool: List[str] = field(default_factory=lambda: list(DEFAULT_INSTRUMENT_TOOL))
    bad_instrument: bool = False
    prefix: str = "/usr/local"
    names: Dict[ArtifactKind, str] = field(default_factory=dict)
    crates: Dict[ArtifactKind, str] = field(default_factory=lambda: dict(DEFAULT_CRATES))
    tools: List[ArtifactKind] = field(default_factory=lambda: list(AUXILIARY_TOOLS))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ToolchainSettings":
        section = data.get("toolchain")
        if not isinstance(section, Mapping):
            raise ValueError("[toolchain] section is required in the configuration")
        host_triple = _optional_str(section.get("host_triple"))
        if not host_triple:
            raise ValueError("toolchain.host_triple is required")
        target_triples = normalize_string_list(section.get("target_triples"), field_name="toolchain.target_triples")
        if not target_triples:
            target_triples = [host_triple]
        host_triples = normalize_string_list(section.get("host_triples"), field_name="toolchain.host_triples")
        if not host_triples:
            host_triples = [host_triple]
        if host_triple not in host_triples:
            raise ValueError(f"toolchain.host_triple '{host_triple}' must be listed in toolchain.host_triples")
        stages = normalize_int_list(section.get("stages"), field_name="toolchain.stages") or [0, 1, 2, 3]

        raw_scheme = str(section.get("naming_scheme", NamingScheme.VERSIONED.value)).lower()
        try:
            scheme = NamingScheme(raw_scheme)
        except ValueError as exc:
            allowed = ", ".join(item.value for item in NamingScheme)
            raise ValueError(f"toolchain.naming_scheme '{raw_scheme}' is not supported (allowed: {allowed})") from exc

        libdir = _optional_str(section.get("libdir")) or "lib"
        if "/" in libdir or libdir in {".", ".."}:
            raise ValueError("toolchain.libdir must be a single directory name")

        instrument_tool = section.get("instrument_tool")
        crates = dict(DEFAULT_CRATES)
        crates.update(_kind_mapping(data.get("crates"), label="crates"))

        tools_section = data.get("tools", {})
        if not isinstance(tools_section, Mapping):
            raise TypeError("[tools] must be a table")
        enabled_tools = normalize_string_list(tools_section.get("enabled"), field_name="tools.enabled")
        tools = [ArtifactKind(name) for name in enabled_tools] if "enabled" in tools_section else list(AUXILIARY_TOOLS)
        for tool in tools:
            if tool not in AUXILIARY_TOOLS:
                raise ValueError(f"tools.enabled entry '{tool.value}' is not an auxiliary tool")

        return cls(
            source_dir=_optional_str(section.get("source_dir")) or "src",
            host_triple=host_triple,
            host_triples=host_triples,
            target_triples=target_triples,
            stages=stages,
            libdir=libdir,
            naming_scheme=scheme,
            version=_optional_str(section.get("version")) or "0.0",
            in_transition=bool(section.get("in_transition", False)),
            instrument_tool=(
                normalize_string_list(instrument_tool, field_name="toolchain.instrument_tool")
                if instrument_tool is not None
                else list(DEFAULT_INSTRUMENT_TOOL)
            ),
            bad_instrument=bool(section.get("bad_instrument", False)),
            prefix=_optional_str(section.get("prefix")) or "/usr/local",
            names=_kind_mapping(data.get("names"), label="names"),
            crates=crates,
            tools=tools,
        )


@dataclass(slots=True)
class GeneratedOutput:
    """A statically generated (non-compiled) output, e.g. a version document."""

    output: str
    command: List[str]
    inputs: List[str] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "GeneratedOutput":
        output = _optional_str(data.get("output"))
        if not output:
            raise ValueError("[[generated]] entries require an 'output'")
        command = normalize_string_list(data.get("command"), field_name="generated.command")
        if not command:
            raise ValueError(f"[[generated]] entry '{output}' requires a 'command'")
        return cls(
            output=output,
            command=command,
            inputs=normalize_string_list(data.get("inputs"), field_name="generated.inputs"),
        )


@dataclass(slots=True)
class ConfigurationStore:
    root: Path
    global_config: GlobalConfig
    configure: ConfigureSettings
    toolchain: ToolchainSettings
    native_command: List[str]
    snapshot_fetch: List[str]
    generated: List[GeneratedOutput]
    sections: Dict[str, Mapping[str, Any]]
    config_files: tuple[Path, ...] = field(default_factory=tuple)

    @classmethod
    def from_directory(cls, root: Path, config_dir: Path | None = None) -> "ConfigurationStore":
        directory = config_dir or (root / CONFIG_DIR_NAME)
        if not directory.is_absolute():
            directory = (root / directory).resolve()
        if not directory.is_dir():
            raise FileNotFoundError(f"Configuration directory '{directory}' does not exist; run the configure step first")
        files = collect_config_files(directory)
        if "config" not in files:
            raise FileNotFoundError(f"No persisted configuration (config.toml/.json/.yaml) found in '{directory}'")

        # config.* is the configure output; any other file in the directory overlays it.
        data: Mapping[str, Any] = load_config_file(files["config"])
        tracked = [files["config"]]
        for stem, path in sorted(files.items()):
            if stem == "config":
                continue
            data = merge_mappings(data, load_config_file(path))
            tracked.append(path)
        return cls.from_mapping(root, data, config_files=tuple(tracked))

    @classmethod
    def from_mapping(
        cls,
        root: Path,
        data: Mapping[str, Any],
        *,
        config_files: Sequence[Path] = (),
    ) -> "ConfigurationStore":
        native = data.get("native", {})
        snapshot = data.get("snapshot", {})
        if not isinstance(native, Mapping) or not isinstance(snapshot, Mapping):
            raise TypeError("[native] and [snapshot] must be tables")
        generated_section = data.get("generated", [])
        if not isinstance(generated_section, Sequence) or isinstance(generated_section, (str, bytes)):
            raise TypeError("[[generated]] must be an array of tables")
        generated = [GeneratedOutput.from_mapping(entry) for entry in generated_section]
        outputs = [entry.output for entry in generated]
        if len(set(outputs)) != len(outputs):
            raise ValueError("[[generated]] outputs must be unique")

        sections = {str(key): value for key, value in data.items() if isinstance(value, Mapping)}
        return cls(
            root=root,
            global_config=GlobalConfig.from_mapping(data),
            configure=ConfigureSettings.from_mapping(data),
            toolchain=ToolchainSettings.from_mapping(data),
            native_command=normalize_string_list(native.get("command"), field_name="native.command")
            or list(DEFAULT_NATIVE_COMMAND),
            snapshot_fetch=normalize_string_list(snapshot.get("fetch"), field_name="snapshot.fetch")
            or list(DEFAULT_SNAPSHOT_FETCH),
            generated=generated,
            sections=sections,
            config_files=tuple(config_files),
        )

    @property
    def stamp_path(self) -> Path:
        return self.root / STAMP_NAME

    @property
    def source_dir(self) -> Path:
        return self.root / self.toolchain.source_dir

    def section(self, name: str) -> Mapping[str, Any]:
        """Raw table for an optional module; empty when absent."""
        return self.sections.get(name, {})

    def tracked_inputs(self) -> List[Path]:
        """Non-artifact inputs every compile step depends on."""
        return [self.stamp_path, *self.config_files]


__all__ = [
    "AUXILIARY_TOOLS",
    "ConfigurationStore",
    "ConfigureSettings",
    "GeneratedOutput",
    "GlobalConfig",
    "STAMP_NAME",
    "ToolchainSettings",
]
