"""
DocumentNumbering -- human-readable document numbers.

Responsibility:
    Formats delivery, issue, transfer and NCR numbers on top of
    SequenceService counters:

        DLV-{LOCATION}-{DD}-{Mon}-{YYYY}-{NN}   scope: (location, date)
        ISS-{YYYY}-{NNN}                        scope: year
        TRF-{YYYY}-{NNN}                        scope: year
        NCR-{YYYY}-{NNN}                        scope: year

Invariants enforced:
    - Numbers are allocated inside the caller's transaction, so a rolled
      back posting never consumes or duplicates a number.
    - Sequences wider than the configured width keep all their digits.
"""

import re
from datetime import date
from uuid import UUID

from stock_kernel.services.sequence_service import SequenceService

_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun",
           "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

_WHITESPACE = re.compile(r"\s+")
_DISALLOWED = re.compile(r"[^A-Z0-9-]")


def sanitize_location_name(name: str, max_length: int = 20) -> str:
    """Upper-case, hyphenate whitespace, drop anything outside [A-Z0-9-]."""
    cleaned = _WHITESPACE.sub("-", name.strip().upper())
    cleaned = _DISALLOWED.sub("", cleaned)
    return cleaned[:max_length]


class DocumentNumbering:
    """Allocates formatted document numbers through locked counters."""

    def __init__(
        self,
        sequences: SequenceService,
        *,
        delivery_prefix: str = "DLV",
        issue_prefix: str = "ISS",
        transfer_prefix: str = "TRF",
        ncr_prefix: str = "NCR",
        delivery_width: int = 2,
        document_width: int = 3,
        location_max_length: int = 20,
    ):
        self._sequences = sequences
        self._delivery_prefix = delivery_prefix
        self._issue_prefix = issue_prefix
        self._transfer_prefix = transfer_prefix
        self._ncr_prefix = ncr_prefix
        self._delivery_width = delivery_width
        self._document_width = document_width
        self._location_max_length = location_max_length

    @classmethod
    def from_settings(cls, sequences: SequenceService, settings) -> "DocumentNumbering":
        """Build from a numbering settings object (stock_config NumberingSettings)."""
        return cls(
            sequences,
            delivery_prefix=settings.delivery_prefix,
            issue_prefix=settings.issue_prefix,
            transfer_prefix=settings.transfer_prefix,
            ncr_prefix=settings.ncr_prefix,
            delivery_width=settings.delivery_width,
            document_width=settings.document_width,
            location_max_length=settings.location_max_length,
        )

    def next_delivery_no(self, location_id: UUID, location_name: str, delivery_date: date) -> str:
        seq = self._sequences.next_value(
            f"{self._delivery_prefix}:{location_id}:{delivery_date.isoformat()}"
        )
        location = sanitize_location_name(location_name, self._location_max_length)
        return (
            f"{self._delivery_prefix}-{location}-{delivery_date.day:02d}-"
            f"{_MONTHS[delivery_date.month - 1]}-{delivery_date.year}-"
            f"{seq:0{self._delivery_width}d}"
        )

    def _yearly(self, prefix: str, year: int) -> str:
        seq = self._sequences.next_value(f"{prefix}:{year}")
        return f"{prefix}-{year}-{seq:0{self._document_width}d}"

    def next_issue_no(self, year: int) -> str:
        return self._yearly(self._issue_prefix, year)

    def next_transfer_no(self, year: int) -> str:
        return self._yearly(self._transfer_prefix, year)

    def next_ncr_no(self, year: int) -> str:
        return self._yearly(self._ncr_prefix, year)
