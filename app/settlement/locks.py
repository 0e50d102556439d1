"""
Concurrency control for settlement operations.

Two mechanisms, used at different scopes:

1. **Row locks** (lock_row)
   - select_for_update() inside the caller's transaction.atomic()
   - Guards every money mutation: ledger balances, completion code
     attempts, payout admission
   - Held only for local work, never across a gateway call

2. **Distributed locks** (DistributedLock)
   - Redis SET NX EX via django-redis, released with a token check
   - Makes periodic sweeps single-flight across Celery workers

Usage:
    from settlement.locks import DistributedLock, lock_row

    with transaction.atomic():
        ledger = lock_row(EarningsLedger, technician=user)
        ...

    with DistributedLock("sweep:retry_pending_payouts", ttl=300, blocking=False):
        retry_payouts()
"""

from __future__ import annotations

import time
import uuid as uuid_module
from typing import TYPE_CHECKING, TypeVar

from django.db import models

from django_redis import get_redis_connection

from core.exceptions import NotFoundError
from settlement.exceptions import LockAcquisitionError

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis

T = TypeVar("T", bound=models.Model)


# =============================================================================
# Row Locks
# =============================================================================


def lock_row(model_class: type[T], **lookup: Any) -> T:
    """
    Fetch one row with select_for_update().

    Must be called inside transaction.atomic(); the lock is held until
    the transaction commits or rolls back.

    Raises:
        NotFoundError: If no row matches the lookup
    """
    instance = model_class.objects.select_for_update().filter(**lookup).first()
    if instance is None:
        model_name = model_class.__name__
        raise NotFoundError(
            f"{model_name} not found",
            error_code=f"{model_name.upper()}_NOT_FOUND",
            details={key: str(value) for key, value in lookup.items()},
        )
    return instance


# =============================================================================
# Distributed Locks
# =============================================================================


class DistributedLock:
    """
    Redis-based distributed lock with TTL.

    Features:
        - TTL releases the lock if the holder crashes
        - Token ownership: only the holder can release or extend
        - Blocking (with timeout) and non-blocking acquisition

    Example:
        lock = DistributedLock("sweep:expire_stale_orders", ttl=300, blocking=False)
        try:
            with lock:
                expire_orders()
        except LockAcquisitionError:
            pass  # another worker is running the sweep

    Args:
        key: Lock identifier (prefixed with "lock:")
        ttl: Seconds before the lock expires on its own
        blocking: If True, acquire() waits up to ``timeout`` seconds
        timeout: Maximum wait for blocking mode
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

    POLL_INTERVAL_SECONDS = 0.05

    def __init__(
        self,
        key: str,
        ttl: int = 30,
        blocking: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.key = f"lock:{key}"
        self.ttl = ttl
        self.blocking = blocking
        self.timeout = timeout
        self._token: str | None = None
        self._redis: Redis | None = None

    def _get_redis(self) -> Redis:
        if self._redis is None:
            self._redis = get_redis_connection("default")
        return self._redis

    def _try_acquire(self, redis: Redis) -> bool:
        return bool(redis.set(self.key, self._token, nx=True, ex=self.ttl))

    def acquire(self) -> bool:
        """
        Acquire the lock or raise.

        Raises:
            LockAcquisitionError: If the lock is held elsewhere (non-blocking)
                or could not be taken within ``timeout`` (blocking)
        """
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
        while time.monotonic() < deadline:
            if self._try_acquire(redis):
                return True
            time.sleep(self.POLL_INTERVAL_SECONDS)

        self._token = None
        raise LockAcquisitionError(
            f"Failed to acquire lock '{self.key}' within {self.timeout}s",
            details={"key": self.key, "timeout": self.timeout},
        )

    def release(self) -> bool:
        """Release the lock if we hold it. Safe to call more than once."""
        if self._token is None:
            return False

        result = self._get_redis().eval(self.RELEASE_SCRIPT, 1, self.key, self._token)
        self._token = None
        return bool(result)

    def extend(self, ttl: int | None = None) -> bool:
        """Reset the remaining TTL (not added to it). False if not held."""
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

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.release()
        return False


__all__ = [
    "DistributedLock",
    "lock_row",
]
