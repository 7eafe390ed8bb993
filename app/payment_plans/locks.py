"""
Concurrency control utilities for payment plan transitions.

Two complementary mechanisms serialize webhook deliveries for the same
subscription:

1. **Distributed Locks** (DistributedLock)
   - Redis-based mutual exclusion across web workers
   - TTL prevents deadlocks from crashed processes
   - Held for the whole read/decide/write of one transition

2. **Optimistic Locking** (check_version)
   - Compare-and-swap on Plan.version at write time
   - A stale snapshot raises StaleRecordError and the caller re-reads

Usage:

    from payment_plans.locks import DistributedLock, subscription_lock_key

    with DistributedLock(subscription_lock_key("sub_123"), ttl=30):
        state_machine.apply(event)
"""

from __future__ import annotations

import time
import uuid as uuid_module
from typing import TYPE_CHECKING

from django.db import models

from django_redis import get_redis_connection

from payment_plans.exceptions import LockAcquisitionError, StaleRecordError

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis


def subscription_lock_key(subscription_id: str) -> str:
    """Lock key serializing all transitions of one gateway subscription."""
    return f"payment_plan:subscription:{subscription_id}"


# =============================================================================
# Distributed Locks
# =============================================================================


class DistributedLock:
    """
    Redis-based distributed lock with TTL.

    Features:
        - Automatic TTL prevents deadlocks from crashed processes
        - Token-based ownership prevents accidental release by other processes
        - Blocking and non-blocking acquisition modes
        - Context manager support

    Example:
        with DistributedLock("payment_plan:subscription:123", ttl=30):
            apply_transition()

        lock = DistributedLock("payment_plan:subscription:123", blocking=False)
        try:
            with lock:
                apply_transition()
        except LockAcquisitionError:
            # Another worker is handling this subscription
            return_retryable_error()

    Args:
        key: Lock identifier (will be prefixed with "lock:")
        ttl: Lock TTL in seconds (auto-releases after this time)
        blocking: If True, acquire() waits until lock is available
        timeout: Maximum wait time in seconds (only if blocking=True)
    """

    # Lua script for atomic check-and-delete (release)
    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

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
        """Get Redis connection (lazy initialization)."""
        if self._redis is None:
            self._redis = get_redis_connection("default")
        return self._redis

    def acquire(self) -> bool:
        """
        Attempt to acquire the lock.

        Returns:
            True if lock was acquired

        Raises:
            LockAcquisitionError: If lock couldn't be acquired
        """
        token = str(uuid_module.uuid4())
        redis = self._get_redis()

        if self.blocking:
            end_time = time.monotonic() + self.timeout
            while True:
                if self._try_acquire(redis, token):
                    return True
                if time.monotonic() >= end_time:
                    break
                time.sleep(0.05)

            raise LockAcquisitionError(
                f"Failed to acquire lock '{self.key}' within {self.timeout}s",
                details={"key": self.key, "timeout": self.timeout},
            )

        if not self._try_acquire(redis, token):
            raise LockAcquisitionError(
                f"Lock '{self.key}' is already held",
                details={"key": self.key},
            )
        return True

    def _try_acquire(self, redis: Redis, token: str) -> bool:
        """Try once to acquire the lock."""
        if redis.set(self.key, token, nx=True, ex=self.ttl):
            self._token = token
            return True
        return False

    def release(self) -> bool:
        """
        Release the lock if we hold it.

        Returns:
            True if lock was released, False if we didn't hold it
        """
        if self._token is None:
            return False

        redis = self._get_redis()
        result = redis.eval(self.RELEASE_SCRIPT, 1, self.key, self._token)
        self._token = None
        return bool(result)

    @property
    def is_held(self) -> bool:
        """Check if we currently hold the lock."""
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


# =============================================================================
# Optimistic Locking
# =============================================================================


def check_version(
    model_class: type[models.Model],
    pk: Any,
    expected_version: int,
    **fields: Any,
) -> int:
    """
    Compare-and-swap update of a versioned row.

    Writes ``fields`` and bumps ``version`` only if the row is still at
    ``expected_version``.

    Returns:
        The new version

    Raises:
        StaleRecordError: If the row moved past expected_version or is gone
    """
    rows = model_class.objects.filter(pk=pk, version=expected_version).update(
        version=models.F("version") + 1,
        **fields,
    )
    if rows == 0:
        current = (
            model_class.objects.filter(pk=pk).values_list("version", flat=True).first()
        )
        model_name = model_class.__name__
        raise StaleRecordError(
            f"{model_name} {pk} has been modified "
            f"(expected version {expected_version}, current {current})",
            details={
                "pk": str(pk),
                "expected_version": expected_version,
                "current_version": current,
            },
        )
    return expected_version + 1


__all__ = [
    "DistributedLock",
    "check_version",
    "subscription_lock_key",
]
