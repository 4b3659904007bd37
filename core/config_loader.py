"""Helpers for locating and decoding configuration mappings."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Sequence, Tuple

import json
import tomllib

import yaml


# suffix -> (open mode, decoder); tomllib only reads binary streams.
_DECODERS: Dict[str, Tuple[str, Callable[[Any], Any]]] = {
    ".toml": ("rb", tomllib.load),
    ".json": ("r", json.load),
    ".yaml": ("r", yaml.safe_load),
    ".yml": ("r", yaml.safe_load),
}


def load_config_file(path: Path) -> Mapping[str, Any]:
    """Decode ``path`` according to its suffix; the root must be a table."""

    try:
        mode, decode = _DECODERS[path.suffix.lower()]
    except KeyError:
        raise ValueError(
            f"Cannot read '{path.name}': expected one of {', '.join(sorted(_DECODERS))}"
        ) from None
    with path.open(mode, encoding=None if "b" in mode else "utf-8") as stream:
        data = decode(stream)
    if not isinstance(data, Mapping):
        raise TypeError(f"Configuration file '{path}' must contain a mapping at the root")
    return data


def collect_config_files(directory: Path) -> Dict[str, Path]:
    """Index the decodable files of ``directory`` by stem; one format per stem."""

    files: Dict[str, Path] = {}
    candidates = (path for path in sorted(directory.iterdir()) if path.suffix.lower() in _DECODERS)
    for path in candidates:
        if not path.is_file():
            continue
        clash = files.setdefault(path.stem, path)
        if clash is not path:
            raise ValueError(f"'{clash.name}' and '{path.name}' both define configuration '{path.stem}'")
    return files


def merge_mappings(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> Dict[str, Any]:
    """Overlay ``overlay`` onto ``base``; nested tables merge key by key."""

    merged = dict(base)
    for key, value in overlay.items():
        below = merged.get(key)
        both_tables = isinstance(below, Mapping) and isinstance(value, Mapping)
        merged[key] = merge_mappings(below, value) if both_tables else value
    return merged


def normalize_string_list(value: Any, *, field_name: str | None = None) -> List[str]:
    """Accept a bare string or a list of strings; blanks are dropped."""

    prefix = f"{field_name} " if field_name else ""
    if value is None:
        return []
    if isinstance(value, (str, bytes)):
        value = [value]
    elif not isinstance(value, Sequence):
        raise TypeError(f"{prefix}must be a string or sequence of strings")
    if any(not isinstance(item, (str, bytes)) for item in value):
        raise TypeError(f"{prefix}entries must be strings")
    stripped = (str(item).strip() for item in value)
    return [text for text in stripped if text]


def normalize_int_list(value: Any, *, field_name: str | None = None) -> List[int]:
    """Coerce ``value`` into a list of integers (booleans rejected)."""

    label = f"{field_name} " if field_name else ""
    if value is None:
        return []
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes)):
        raise TypeError(f"{label}must be a sequence of integers")
    items: List[int] = []
    for item in value:
        if isinstance(item, bool) or not isinstance(item, int):
            raise TypeError(f"{label}entries must be integers")
        items.append(item)
    return items


__all__ = [
    "collect_config_files",
    "load_config_file",
    "merge_mappings",
    "normalize_int_list",
    "normalize_string_list",
]
