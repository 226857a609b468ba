"""
Bounded retry for store operations.

One policy object, one decorator. Every PersistenceGateway query goes through
``with_retry``; transient failures (dropped connections, pool timeouts,
serialization failures) are retried with exponential backoff, anything else
propagates on the first failure with its identity unchanged.
"""

import logging
import time
from dataclasses import dataclass
from functools import wraps
from typing import Any, Callable, TypeVar

from sqlalchemy import exc as sa_exc
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from app.core.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# SQLSTATE classes worth another attempt: connection exceptions, serialization
# failure / deadlock, too many connections, admin / crash shutdown.
TRANSIENT_SQLSTATES = {
    "08000", "08001", "08003", "08004", "08006",
    "40001", "40P01",
    "53300",
    "57P01", "57P02", "57P03",
}


def _sqlstate(error: sa_exc.DBAPIError) -> str | None:
    orig = error.orig
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


def is_transient_error(error: BaseException) -> bool:
    if isinstance(error, (sa_exc.DisconnectionError, sa_exc.TimeoutError)):
        return True
    if isinstance(error, sa_exc.DBAPIError):
        if error.connection_invalidated:
            return True
        if _sqlstate(error) in TRANSIENT_SQLSTATES:
            return True
        if isinstance(error, sa_exc.OperationalError):
            text = str(error.orig).lower()
            return "connection" in text or "timeout" in text or "database is locked" in text
    return False


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    delay = retry_state.next_action.sleep if retry_state.next_action else 0
    logger.warning(
        "Store operation %s failed (attempt %d), retrying in %.2fs: %s",
        retry_state.fn.__name__ if retry_state.fn else "?",
        retry_state.attempt_number,
        delay,
        error,
    )


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 5.0
    sleep: Callable[[float], None] = time.sleep

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.DB_RETRY_MAX_ATTEMPTS,
            base_delay=settings.DB_RETRY_BASE_DELAY_SECONDS,
            max_delay=settings.DB_RETRY_MAX_DELAY_SECONDS,
        )

    def delay_for(self, attempt: int) -> float:
        """Backoff after the given failed attempt (1-based)."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    def retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(max(1, self.max_attempts)),
            wait=wait_exponential(multiplier=self.base_delay, min=self.base_delay, max=self.max_delay),
            retry=retry_if_exception(is_transient_error),
            sleep=self.sleep,
            before_sleep=_log_retry,
            reraise=True,
        )

    def call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return self.retrying()(fn, *args, **kwargs)
        except Exception as error:
            if is_transient_error(error):
                logger.error(
                    "Store operation %s failed after %d attempts: %s",
                    getattr(fn, "__name__", "?"), self.max_attempts, error,
                )
            raise


def with_retry(method: Callable[..., T]) -> Callable[..., T]:
    """
    Run a gateway method under ``self.retry_policy`` and commit it.

    Inside ``PersistenceGateway.transaction`` the method runs bare: the
    enclosing transaction owns commit, rollback and retry.
    """

    @wraps(method)
    def wrapper(self, *args: Any, **kwargs: Any) -> T:
        if self.in_transaction:
            return method(self, *args, **kwargs)

        @wraps(method)
        def attempt() -> T:
            try:
                result = method(self, *args, **kwargs)
                self.session.commit()
                return result
            except Exception:
                self.session.rollback()
                raise

        return self.retry_policy.call(attempt)

    return wrapper
