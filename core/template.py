"""Placeholder resolution for command templates."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Mapping, Sequence
import re


_PLACEHOLDER_PATTERN = re.compile(r"\{\{([^{}]+)\}\}")
_SINGLE_PLACEHOLDER_PATTERN = re.compile(r"^\s*\{\{([^{}]+)\}\}\s*$")


class TemplateError(ValueError):
    """Raised when a placeholder cannot be resolved."""


@dataclass(slots=True)
class TemplateResolver:
    """Resolves ``{{dotted.path}}`` placeholders against a nested mapping context."""

    context: Mapping[str, Any]
    _cache: dict[str, Any] = field(default_factory=dict, init=False, repr=False)

    def resolve(self, value: Any) -> Any:
        if isinstance(value, str):
            return self._resolve_string(value)
        if isinstance(value, list):
            return [self.resolve(item) for item in value]
        if isinstance(value, tuple):
            return tuple(self.resolve(item) for item in value)
        if isinstance(value, dict):
            return {key: self.resolve(item) for key, item in value.items()}
        return value

    def resolve_command(self, template: Sequence[Any]) -> List[str]:
        """Resolve an argv template.

        An element consisting of a single placeholder that names a list is
        spliced into the command instead of being stringified.
        """

        command: List[str] = []
        for part in template:
            match = _SINGLE_PLACEHOLDER_PATTERN.match(part) if isinstance(part, str) else None
            if match:
                value = self._lookup(match.group(1).strip())
                if isinstance(value, (list, tuple)):
                    command.extend(str(item) for item in value)
                    continue
                command.append(str(value))
                continue
            command.append(str(self.resolve(part)))
        return command

    def _resolve_string(self, value: str) -> Any:
        match = _SINGLE_PLACEHOLDER_PATTERN.match(value)
        if match:
            return self._lookup(match.group(1).strip())

        def replacement(found: re.Match[str]) -> str:
            result = self._lookup(found.group(1).strip())
            if isinstance(result, (list, tuple)):
                return " ".join(str(item) for item in result)
            return str(result)

        return _PLACEHOLDER_PATTERN.sub(replacement, value)

    def _lookup(self, path: str) -> Any:
        if path in self._cache:
            return self._cache[path]
        current: Any = self.context
        for part in path.split("."):
            if isinstance(current, Mapping) and part in current:
                current = current[part]
                continue
            raise TemplateError(f"Cannot resolve path '{path}' in template context")
        self._cache[path] = current
        return current


def extract_placeholders(value: Any) -> set[str]:
    """Collect all placeholder paths referenced within *value*."""

    placeholders: set[str] = set()

    def _collect(obj: Any) -> None:
        if isinstance(obj, str):
            for match in _PLACEHOLDER_PATTERN.finditer(obj):
                path = match.group(1).strip()
                if path:
                    placeholders.add(path)
        elif isinstance(obj, Mapping):
            for item in obj.values():
                _collect(item)
        elif isinstance(obj, (list, tuple)):
            for item in obj:
                _collect(item)

    _collect(value)
    return placeholders


__all__ = [
    "TemplateError",
    "TemplateResolver",
    "extract_placeholders",
]
