"""Staged bootstrap build orchestrator for a self-hosting compiler toolchain."""
from __future__ import annotations

from .cli import main

__all__ = ["main"]
