"""
Bounded retry for optimistic-locking conflicts.

The reconciler never retries on its own; callers that can safely re-run
a mutation from a fresh read (the API views, webhook handlers) wrap it
here.

Usage:
    from ledger.retry import retry_on_conflict

    balance = retry_on_conflict(lambda: reconciler.adjust_total(command))
"""

from __future__ import annotations

import logging
import random
import time
from typing import TYPE_CHECKING, TypeVar

from django.conf import settings

from ledger.exceptions import StaleBalanceError

if TYPE_CHECKING:
    from collections.abc import Callable

T = TypeVar("T")

logger = logging.getLogger(__name__)


def backoff_delay(attempt: int, base: float = 0.05, max_delay: float = 1.0) -> float:
    """Exponential delay with 0-25% jitter; attempt is 0-indexed."""
    delay = min(base * (2**attempt), max_delay)
    return delay + delay * random.uniform(0, 0.25)


def retry_on_conflict(
    func: Callable[[], T],
    max_attempts: int | None = None,
    base_delay: float = 0.05,
) -> T:
    """
    Call func, retrying on StaleBalanceError.

    Args:
        func: Zero-argument callable that re-reads state on every call
        max_attempts: Total attempts (default: LEDGER_CONFLICT_MAX_RETRIES)
        base_delay: First backoff in seconds; 0 disables sleeping

    Raises:
        StaleBalanceError: Still conflicting after max_attempts
    """
    if max_attempts is None:
        max_attempts = int(getattr(settings, "LEDGER_CONFLICT_MAX_RETRIES", 3))
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    for attempt in range(max_attempts):
        try:
            return func()
        except StaleBalanceError as e:
            if attempt + 1 >= max_attempts:
                logger.warning(
                    "Conflict retries exhausted",
                    extra={"attempts": max_attempts, **e.details},
                )
                raise
            logger.info(
                "Retrying after balance conflict",
                extra={"attempt": attempt + 1, **e.details},
            )
            if base_delay > 0:
                time.sleep(backoff_delay(attempt, base=base_delay))

    raise AssertionError("unreachable")


__all__ = [
    "backoff_delay",
    "retry_on_conflict",
]
