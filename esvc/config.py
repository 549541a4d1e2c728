"""
Engine configuration.

Loaded from a small YAML file; every key is optional:

    workers: 4              # threads for pairwise commute evaluation
    state_cache_size: 256   # cached frontier states per working copy
    default_branch: main
    log_level: INFO
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

KNOWN_KEYS = frozenset({"workers", "state_cache_size", "default_branch", "log_level"})


@dataclass(frozen=True)
class EngineConfig:
    workers: int = 1
    state_cache_size: int = 256
    default_branch: str = "main"
    log_level: str = "WARNING"

    def __post_init__(self) -> None:
        if self.workers < 1:
            raise ValueError("workers must be a positive integer")
        if self.state_cache_size < 2:
            raise ValueError("state_cache_size must be at least 2")
        if not self.default_branch:
            raise ValueError("default_branch must not be empty")
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ValueError(f"unknown log_level: {self.log_level}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EngineConfig:
        unknown = set(data) - KNOWN_KEYS
        if unknown:
            raise ValueError(f"unknown config keys: {', '.join(sorted(unknown))}")

        defaults = cls()
        try:
            return cls(
                workers=int(data.get("workers", defaults.workers)),
                state_cache_size=int(data.get("state_cache_size", defaults.state_cache_size)),
                default_branch=str(data.get("default_branch", defaults.default_branch)).strip(),
                log_level=str(data.get("log_level", defaults.log_level)).strip().upper(),
            )
        except (TypeError, ValueError) as e:
            raise ValueError(f"invalid engine config: {e}") from e

    def to_dict(self) -> dict[str, Any]:
        return {
            "workers": self.workers,
            "state_cache_size": self.state_cache_size,
            "default_branch": self.default_branch,
            "log_level": self.log_level,
        }


def load_config(path: Path) -> EngineConfig:
    """Load an EngineConfig from YAML. A missing file yields the defaults."""
    if not path.exists():
        return EngineConfig()

    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return EngineConfig.from_dict(data)
