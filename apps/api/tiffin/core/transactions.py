from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from tiffin.core.config import get_settings
from tiffin.core.errors import ConflictError, IntegrityError
from tiffin.metrics import observe_integrity_error, observe_transaction_conflict


logger = logging.getLogger("tiffin.transactions")

T = TypeVar("T")

# serialization_failure, deadlock_detected, lock_not_available
_RETRYABLE_SQLSTATES = frozenset({"40001", "40P01", "55P03"})


def _is_retryable(exc: Exception) -> bool:
    if isinstance(exc, StaleDataError):
        return True
    if isinstance(exc, OperationalError):
        orig = exc.orig
        sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        if sqlstate in _RETRYABLE_SQLSTATES:
            return True
        return "database is locked" in str(orig)
    return False


def run_in_transaction(
    session: Session,
    operation: Callable[[], T],
    *,
    name: str,
    max_attempts: int | None = None,
) -> T:
    """Run ``operation`` as one unit of work and commit it.

    A lost optimistic-lock race or a retryable database lock error rolls back
    and re-runs ``operation`` against a fresh snapshot. Every other failure
    rolls back and propagates unchanged.
    """
    attempts = max_attempts or get_settings().transaction_max_attempts
    for attempt in range(1, attempts + 1):
        try:
            result = operation()
            session.commit()
            return result
        except (StaleDataError, OperationalError) as exc:
            session.rollback()
            if not _is_retryable(exc):
                raise
            observe_transaction_conflict(name)
            logger.warning(
                "transaction.conflict",
                extra={"operation": name, "attempt": attempt, "error": str(exc)},
            )
        except IntegrityError as exc:
            session.rollback()
            observe_integrity_error(exc.kind)
            logger.error(
                "integrity_error",
                extra={"operation": name, "error_kind": exc.kind, "error": str(exc.detail)},
            )
            raise
        except Exception:
            session.rollback()
            raise
    raise ConflictError(f"{name} lost a concurrent update {attempts} times; retry later")
