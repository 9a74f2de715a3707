"""Per-child carryover lock.

Every carryover pass for a child runs its read-check-write-commit sequence
while holding this lock, so two concurrent passes for the same child can
never both insert the same carried-over record. Different children never
contend.

With Redis reachable the lock is a ``redis.asyncio`` lock and therefore
holds across worker processes. Without Redis it degrades to a process-local
``asyncio.Lock``, which is sufficient for a single-process deployment and
for tests.
"""

import asyncio
import logging
import uuid
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from kidsafe.config import settings
from kidsafe.core.redis_client import get_redis

logger = logging.getLogger(__name__)

LOCK_PREFIX = "kidsafe:carryover:"

# Entries vanish once no holder or waiter references the lock.
_local_locks: "weakref.WeakValueDictionary[uuid.UUID, asyncio.Lock]" = (
    weakref.WeakValueDictionary()
)


def _local_lock(child_id: uuid.UUID) -> asyncio.Lock:
    lock = _local_locks.get(child_id)
    if lock is None:
        lock = _local_locks[child_id] = asyncio.Lock()
    return lock


@asynccontextmanager
async def child_carryover_lock(child_id: uuid.UUID) -> AsyncIterator[None]:
    """Hold the carryover lock for ``child_id`` for the duration of the block."""
    redis = await get_redis()
    if redis is None:
        local = _local_lock(child_id)
        async with local:
            yield
        return

    timeout = settings.CARRYOVER_LOCK_TIMEOUT_SECONDS
    lock = redis.lock(
        f"{LOCK_PREFIX}{child_id}",
        timeout=timeout,
        blocking_timeout=timeout,
    )
    async with lock:
        logger.debug("Acquired carryover lock for child %s", child_id)
        yield
