"""
Configuration schema (``stock_config.schema``).

Frozen dataclasses describing the runtime settings of the ledger.  Every
section validates itself in ``__post_init__`` so a bad set fails at load
time, before any service is built.

    LedgerConfig
      |-- variance    VarianceSettings
      |-- posting     PostingSettings
      |-- numbering   NumberingSettings
      |-- precision   PrecisionSettings
      `-- database    DatabaseSettings
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True)
class VarianceSettings:
    """When a price difference against the period price raises an NCR.

    Both thresholds at zero mean any nonzero variance counts.
    """

    threshold_percent: Decimal = Decimal("0")
    threshold_amount: Decimal = Decimal("0")

    def __post_init__(self) -> None:
        if self.threshold_percent < 0:
            raise ValueError("variance.threshold_percent cannot be negative")
        if self.threshold_amount < 0:
            raise ValueError("variance.threshold_amount cannot be negative")


@dataclass(frozen=True)
class PostingSettings:
    """Wait and run budget of one posting transaction (PostgreSQL)."""

    lock_wait_seconds: int = 10
    statement_timeout_seconds: int = 30

    def __post_init__(self) -> None:
        if self.lock_wait_seconds <= 0:
            raise ValueError("posting.lock_wait_seconds must be positive")
        if self.statement_timeout_seconds <= 0:
            raise ValueError("posting.statement_timeout_seconds must be positive")


@dataclass(frozen=True)
class NumberingSettings:
    delivery_prefix: str = "DLV"
    issue_prefix: str = "ISS"
    transfer_prefix: str = "TRF"
    ncr_prefix: str = "NCR"
    delivery_width: int = 2
    document_width: int = 3
    location_max_length: int = 20

    def __post_init__(self) -> None:
        for name in ("delivery_width", "document_width", "location_max_length"):
            if getattr(self, name) <= 0:
                raise ValueError(f"numbering.{name} must be positive")
        for name in ("delivery_prefix", "issue_prefix", "transfer_prefix", "ncr_prefix"):
            if not getattr(self, name):
                raise ValueError(f"numbering.{name} cannot be empty")


@dataclass(frozen=True)
class PrecisionSettings:
    cost_places: int = 4
    money_places: int = 2

    def __post_init__(self) -> None:
        if self.cost_places < 0 or self.money_places < 0:
            raise ValueError("precision places cannot be negative")


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = "sqlite://"
    pool_size: int = 20

    def __post_init__(self) -> None:
        if self.pool_size <= 0:
            raise ValueError("database.pool_size must be positive")


@dataclass(frozen=True)
class LedgerConfig:
    """The complete runtime configuration of one ledger deployment."""

    config_id: str = "default"
    version: int = 1
    variance: VarianceSettings = field(default_factory=VarianceSettings)
    posting: PostingSettings = field(default_factory=PostingSettings)
    numbering: NumberingSettings = field(default_factory=NumberingSettings)
    precision: PrecisionSettings = field(default_factory=PrecisionSettings)
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    checksum: str = ""
