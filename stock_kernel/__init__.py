"""
Stock Kernel

Per-location stock positions and the control plane around them:
- Weighted average cost on every receipt
- Row-locked stock mutation with full rollback on failure
- Locked-counter document numbering
- Period gating and price locking
- Structured logging and typed errors with stable codes
"""

__version__ = "0.1.0"
