"""StoreConfig: tunables for the node directory, heap and property codec.

Defaults suit every container; a TOML file can override any of them:

    [pstndb]
    growth_increment = 1048576
    side_index = false
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

_CONFIG_TABLE = "pstndb"


@dataclass(frozen=True)
class StoreConfig:
    # Heap allocation
    block_size: int = 512
    heap_start: int = 0x4400
    growth_increment: int = 0x10000
    max_file_size: int = 2 * 1024 ** 3

    # Property codec
    max_property_count: int = 10000
    recovery_max_properties: int = 100
    recovery_max_bytes: int = 1024 * 1024

    # Node directory
    full_load_threshold: int = 100000
    side_index: bool = True
    side_index_suffix: str = ".nodes"

    def __post_init__(self):
        if self.block_size < 512 or self.block_size & (self.block_size - 1):
            raise ValueError(
                f"block_size must be a power of two of at least 512, got {self.block_size}")
        if self.heap_start % self.block_size:
            raise ValueError("heap_start must be block aligned")
        if self.growth_increment < self.block_size:
            raise ValueError("growth_increment must be at least one block")
        if self.max_property_count < 0 or self.recovery_max_properties < 0:
            raise ValueError("property limits must not be negative")

    def with_overrides(self, **overrides: Any) -> StoreConfig:
        return replace(self, **overrides)


DEFAULT_CONFIG = StoreConfig()


def _coerce(data: dict[str, Any]) -> dict[str, Any]:
    known = {f.name: f for f in fields(StoreConfig)}
    unknown = sorted(set(data) - set(known))
    if unknown:
        raise ValueError(f"Unknown config keys: {', '.join(unknown)}")
    out = {}
    for key, value in data.items():
        expected = type(getattr(DEFAULT_CONFIG, key))
        if expected is int and (isinstance(value, bool) or not isinstance(value, int)):
            raise ValueError(f"Config key {key!r} must be an integer")
        if expected is bool and not isinstance(value, bool):
            raise ValueError(f"Config key {key!r} must be a boolean")
        if expected is str and not isinstance(value, str):
            raise ValueError(f"Config key {key!r} must be a string")
        out[key] = value
    return out


def load_config(path: Path | str | None = None) -> StoreConfig:
    """Load a StoreConfig from a TOML file.

    A missing path, or a file without a ``[pstndb]`` table, yields the defaults.
    """
    if path is None:
        return DEFAULT_CONFIG
    path = Path(path)
    if not path.is_file():
        return DEFAULT_CONFIG
    with path.open("rb") as f:
        raw = tomllib.load(f)
    table = raw.get(_CONFIG_TABLE, {})
    if not isinstance(table, dict):
        raise ValueError(f"[{_CONFIG_TABLE}] must be a table")
    return StoreConfig(**_coerce(table))
