"""
Per-registration mutual exclusion for refund processing.

Refunds are the one ledger operation that talks to the gateway, and the
gateway call must happen outside any database transaction. Row locks
cannot span that call, so refunds for the same registration are
serialized with a Redis lock held across the whole read-call-apply
sequence. Everything else relies on row locks and version-guarded
commits in ledger.stores.

Usage:
    from ledger.locks import refund_lock

    with refund_lock(key):
        processor.process(command)
"""

from __future__ import annotations

import time
import uuid as uuid_module
from typing import TYPE_CHECKING

from django.conf import settings

from django_redis import get_redis_connection

from ledger.exceptions import LockAcquisitionError

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis

    from ledger.types import RegistrationKey


def _default_ttl() -> int:
    return int(getattr(settings, "LEDGER_REFUND_LOCK_TTL_SECONDS", 30))


def _default_timeout() -> float:
    return float(getattr(settings, "LEDGER_REFUND_LOCK_TIMEOUT_SECONDS", 5))


class DistributedLock:
    """
    Redis SET NX lock with an expiry and an owner token.

    The token makes release() and extend() no-ops for anyone but the
    holder, so a lock that expired and was re-taken by another worker is
    never released out from under it.

    Args:
        key: Lock name, stored as "lock:<key>"
        ttl: Seconds before Redis drops the lock on its own
        blocking: Wait up to timeout seconds instead of failing at once
        timeout: Maximum wait in blocking mode

    Raises:
        LockAcquisitionError: From acquire() / __enter__ when the lock
            is held elsewhere past the timeout
    """

    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    EXTEND_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("expire", KEYS[1], ARGV[2])
    else
        return 0
    end
    """

    POLL_INTERVAL = 0.05

    def __init__(
        self,
        key: str,
        ttl: int | None = None,
        blocking: bool = True,
        timeout: float | None = None,
    ) -> None:
        self.key = f"lock:{key}"
        self.ttl = ttl if ttl is not None else _default_ttl()
        self.blocking = blocking
        self.timeout = timeout if timeout is not None else _default_timeout()
        self._token: str | None = None
        self._redis: Redis | None = None

    def _get_redis(self) -> Redis:
        if self._redis is None:
            self._redis = get_redis_connection("default")
        return self._redis

    def _try_acquire(self, redis: Redis) -> bool:
        return bool(redis.set(self.key, self._token, nx=True, ex=self.ttl))

    def acquire(self) -> bool:
        self._token = str(uuid_module.uuid4())
        redis = self._get_redis()

        if not self.blocking:
            if self._try_acquire(redis):
                return True
            self._token = None
            raise LockAcquisitionError(
                f"Lock '{self.key}' is already held",
                details={"key": self.key},
            )

        deadline = time.monotonic() + self.timeout
        while True:
            if self._try_acquire(redis):
                return True
            if time.monotonic() >= deadline:
                break
            time.sleep(self.POLL_INTERVAL)

        self._token = None
        raise LockAcquisitionError(
            f"Failed to acquire lock '{self.key}' within {self.timeout}s",
            details={"key": self.key, "timeout": self.timeout},
        )

    def release(self) -> bool:
        """Release if held by us. Safe to call more than once."""
        if self._token is None:
            return False

        result = self._get_redis().eval(self.RELEASE_SCRIPT, 1, self.key, self._token)
        self._token = None
        return bool(result)

    def extend(self, ttl: int | None = None) -> bool:
        """Reset the expiry to ttl (default: the original ttl) if still held."""
        if self._token is None:
            return False

        result = self._get_redis().eval(
            self.EXTEND_SCRIPT, 1, self.key, self._token, ttl or self.ttl
        )
        return bool(result)

    @property
    def is_held(self) -> bool:
        return self._token is not None

    def __enter__(self) -> DistributedLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> bool:
        self.release()
        return False


def refund_lock_name(key: RegistrationKey) -> str:
    return f"ledger:refund:{key.registration_type}:{key.registration_id}"


def refund_lock(key: RegistrationKey, **kwargs: Any) -> DistributedLock:
    """Lock serializing refunds for one registration."""
    return DistributedLock(refund_lock_name(key), **kwargs)


__all__ = [
    "DistributedLock",
    "refund_lock",
    "refund_lock_name",
]
