"""Issues Module: consumption postings that deduct stock at the current WAC."""

from stock_modules.issues.models import (
    CostCentre,
    Issue,
    IssueLine,
    IssueLineRequest,
    IssueRequest,
)

__all__ = [
    "CostCentre",
    "Issue",
    "IssueLine",
    "IssueLineRequest",
    "IssueRequest",
]
