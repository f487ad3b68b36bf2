"""
stock_config -- single public entrypoint for ledger configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    or environment variables directly.

Architecture position:
    Configuration.  Sits beside ``stock_kernel`` and below
    ``stock_modules``.  The kernel MUST NEVER import from ``stock_config``;
    module services pass the relevant settings into kernel services.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - Validation at load time: every section validates itself before any
      service sees it.
    - ``DATABASE_URL`` in the environment overrides ``database.url``.

Audit relevance:
    Every call emits a ``STOCK_CONFIG_TRACE`` log entry with the config id,
    version and checksum of the set that governed the postings.
"""

from __future__ import annotations

import logging
import os
from dataclasses import replace
from pathlib import Path

from stock_config.loader import load_yaml_file, parse_config
from stock_config.schema import (
    DatabaseSettings,
    LedgerConfig,
    NumberingSettings,
    PostingSettings,
    PrecisionSettings,
    VarianceSettings,
)

_logger = logging.getLogger("stock_kernel.config")

_DEFAULT_CONFIG_FILE = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(config_path: Path | None = None) -> LedgerConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: Override path to a YAML configuration set.
            Defaults to stock_config/sets/default.yaml.

    Returns:
        A frozen, validated LedgerConfig.

    Raises:
        FileNotFoundError: If the configuration file does not exist.
        ValueError: If the configuration fails validation.
    """
    path = config_path or _DEFAULT_CONFIG_FILE
    config = parse_config(load_yaml_file(path))

    env_url = os.environ.get("DATABASE_URL")
    if env_url:
        config = replace(config, database=replace(config.database, url=env_url))

    _logger.info(
        "STOCK_CONFIG_TRACE",
        extra={
            "trace_type": "STOCK_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "source": str(path),
        },
    )
    return config


__all__ = [
    "DatabaseSettings",
    "LedgerConfig",
    "NumberingSettings",
    "PostingSettings",
    "PrecisionSettings",
    "VarianceSettings",
    "get_active_config",
]
