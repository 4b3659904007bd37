"""Shared utilities for command execution, configuration files and templates."""

from .command_runner import (
    CommandError,
    CommandResult,
    CommandRunner,
    RecordingCommandRunner,
    SubprocessCommandRunner,
)
from .config_loader import (
    collect_config_files,
    load_config_file,
    merge_mappings,
    normalize_int_list,
    normalize_string_list,
)
from .template import TemplateError, TemplateResolver, extract_placeholders

__all__ = [
    "CommandError",
    "CommandResult",
    "CommandRunner",
    "RecordingCommandRunner",
    "SubprocessCommandRunner",
    "collect_config_files",
    "load_config_file",
    "merge_mappings",
    "normalize_int_list",
    "normalize_string_list",
    "TemplateError",
    "TemplateResolver",
    "extract_placeholders",
]
