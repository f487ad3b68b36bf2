"""
Module: stock_kernel.db.transaction
Responsibility: The explicit transaction boundary every posting runs inside.
    ``with_transaction(session, fn)`` runs ``fn`` and commits, or rolls back
    and re-raises.  Posting logic therefore never touches commit/rollback
    itself and stays independent of the storage engine.
Architecture position: Kernel > DB.  May import from logging_config only.

Invariants enforced:
    - All effects of ``fn`` land together or not at all.
    - On PostgreSQL each transaction carries a bounded lock wait and a
      bounded statement run time (``SET LOCAL``), so a stuck stock row
      fails the posting instead of hanging it.
    - The exception raised by ``fn`` reaches the caller unchanged.

Failure modes:
    - Whatever ``fn`` raises, after rollback.
    - OperationalError (lock_timeout / statement_timeout) on PostgreSQL when
      the wait or run budget is exhausted.
"""

from typing import Callable, TypeVar

from sqlalchemy import text
from sqlalchemy.orm import Session

from stock_kernel.logging_config import get_logger

logger = get_logger("db.transaction")

T = TypeVar("T")

DEFAULT_LOCK_WAIT_SECONDS = 10
DEFAULT_STATEMENT_TIMEOUT_SECONDS = 30


class TransactionRunner:
    """
    Runs units of work against one session.

    Contract:
        ``run(operation, fn)`` executes ``fn()`` inside the session's current
        transaction, commits on success, rolls back on any exception and
        re-raises it.  ``operation`` names the unit of work in the log.

    Non-goals:
        - No retries.  Concurrency failures surface to the caller, who may
          retry the whole operation.
    """

    def __init__(
        self,
        session: Session,
        lock_wait_seconds: int = DEFAULT_LOCK_WAIT_SECONDS,
        statement_timeout_seconds: int = DEFAULT_STATEMENT_TIMEOUT_SECONDS,
    ):
        self._session = session
        self._lock_wait_seconds = lock_wait_seconds
        self._statement_timeout_seconds = statement_timeout_seconds

    @property
    def session(self) -> Session:
        return self._session

    def _apply_timeouts(self) -> None:
        bind = self._session.get_bind()
        if bind.dialect.name != "postgresql":
            return
        self._session.execute(
            text(f"SET LOCAL lock_timeout = '{int(self._lock_wait_seconds)}s'")
        )
        self._session.execute(
            text(f"SET LOCAL statement_timeout = '{int(self._statement_timeout_seconds)}s'")
        )

    def run(self, operation: str, fn: Callable[[], T]) -> T:
        try:
            self._apply_timeouts()
            result = fn()
            self._session.commit()
        except Exception:
            self._session.rollback()
            logger.warning(
                "transaction_rolled_back",
                extra={"operation": operation},
                exc_info=True,
            )
            raise
        logger.debug("transaction_committed", extra={"operation": operation})
        return result


def with_transaction(
    session: Session,
    fn: Callable[[], T],
    *,
    operation: str = "unit_of_work",
    lock_wait_seconds: int = DEFAULT_LOCK_WAIT_SECONDS,
    statement_timeout_seconds: int = DEFAULT_STATEMENT_TIMEOUT_SECONDS,
) -> T:
    """Run ``fn`` as one atomic unit on ``session``; see TransactionRunner."""
    runner = TransactionRunner(session, lock_wait_seconds, statement_timeout_seconds)
    return runner.run(operation, fn)
