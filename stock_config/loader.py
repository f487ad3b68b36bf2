"""
Configuration loader (``stock_config.loader``).

Responsibility
--------------
Loads a YAML configuration set and parses it into the frozen
``stock_config.schema`` dataclasses.  Services never call this directly;
the runtime entry point is ``stock_config.get_active_config()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys in a section  -> ``ValueError``.
* Out-of-range values  -> ``ValueError`` from the schema ``__post_init__``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from stock_config.schema import (
    DatabaseSettings,
    LedgerConfig,
    NumberingSettings,
    PostingSettings,
    PrecisionSettings,
    VarianceSettings,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any) -> Decimal:
    """Parse a decimal from YAML.  Floats go through ``str`` to keep their text."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _section(data: dict[str, Any], name: str, allowed: set[str]) -> dict[str, Any]:
    section = data.get(name) or {}
    unknown = set(section) - allowed
    if unknown:
        raise ValueError(f"Unknown keys in '{name}': {sorted(unknown)}")
    return section


def parse_config(data: dict[str, Any]) -> LedgerConfig:
    """Parse a LedgerConfig from a dict (missing sections take defaults)."""
    variance = _section(data, "variance", {"threshold_percent", "threshold_amount"})
    posting = _section(data, "posting", {"lock_wait_seconds", "statement_timeout_seconds"})
    numbering = _section(data, "numbering", set(NumberingSettings.__dataclass_fields__))
    precision = _section(data, "precision", {"cost_places", "money_places"})
    database = _section(data, "database", {"url", "pool_size"})

    return LedgerConfig(
        config_id=str(data.get("config_id", "default")),
        version=int(data.get("version", 1)),
        variance=VarianceSettings(
            **{k: parse_decimal(v) for k, v in variance.items()}
        ),
        posting=PostingSettings(**{k: int(v) for k, v in posting.items()}),
        numbering=NumberingSettings(**numbering),
        precision=PrecisionSettings(**{k: int(v) for k, v in precision.items()}),
        database=DatabaseSettings(**database),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
