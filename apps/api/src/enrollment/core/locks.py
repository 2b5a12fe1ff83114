"""
In-process coordination primitives.

KeyedLocks serializes coroutines that touch the same student or session, so
that a capacity check and the write that depends on it never interleave with
another request in this process. Row locks (SELECT ... FOR UPDATE) give the
same guarantee across processes on PostgreSQL.

SingleFlight makes concurrent invocations of the same job share one run.

Both only coordinate within one process. Under several uvicorn workers each
worker holds its own locks and its own scheduler, so the scheduler must run in
exactly one of them: set SCHEDULER_ENABLED=false on the others. Their manual
triggers still work, but concurrent runs from different workers are not
joined. Cleanup stays correct in that case because references are cleared
with compare-and-set.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Hashable
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from enrollment.core.database import atomic

logger = logging.getLogger(__name__)


class KeyedLocks:
    """A lazily-populated map of asyncio locks, dropped when nobody holds or waits."""

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, *keys: Hashable) -> AsyncIterator[None]:
        """
        Acquire the locks for all keys, in the order given.

        Callers must always pass keys in the same order (student before
        session) to avoid deadlocks.
        """
        acquired: list[Hashable] = []
        try:
            for key in keys:
                lock = self._locks.setdefault(key, asyncio.Lock())
                self._users[key] = self._users.get(key, 0) + 1
                try:
                    await lock.acquire()
                except BaseException:
                    self._drop_user(key)
                    raise
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                self._locks[key].release()
                self._drop_user(key)

    def is_locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)

    def _drop_user(self, key: Hashable) -> None:
        self._users[key] -= 1
        if self._users[key] == 0:
            del self._users[key]
            del self._locks[key]


class SingleFlight:
    """At most one in-flight execution per key; late callers await the same run."""

    def __init__(self) -> None:
        self._inflight: dict[Hashable, asyncio.Future[Any]] = {}

    def is_running(self, key: Hashable) -> bool:
        return key in self._inflight

    async def run(
        self,
        key: Hashable,
        func: Callable[[], Awaitable[Any]],
    ) -> tuple[Any, bool]:
        """
        Run func under key, or join the run already in progress.

        Returns:
            (result, joined) where joined is True when this call did not start
            the run itself.
        """
        task = self._inflight.get(key)
        joined = task is not None

        if task is None:
            task = asyncio.ensure_future(func())
            self._inflight[key] = task
            task.add_done_callback(lambda done: self._forget(key, done))
        else:
            logger.info(f"Run for {key!r} already in progress, joining it")

        # Shield so a cancelled caller does not cancel the shared run
        return await asyncio.shield(task), joined

    def _forget(self, key: Hashable, done: asyncio.Future[Any]) -> None:
        if self._inflight.get(key) is done:
            del self._inflight[key]


# Shared by every request handler in this process
decision_locks = KeyedLocks()


@asynccontextmanager
async def locked_transaction(
    db: AsyncSession,
    *keys: Hashable,
    timeout: float,
    locks: KeyedLocks = decision_locks,
) -> AsyncIterator[AsyncSession]:
    """
    Scope for one decision: bounded wait, keyed locks, then a single transaction.

    The timeout covers waiting for the locks as well as the transaction
    itself. On expiry the transaction is rolled back and TimeoutError
    propagates.
    """
    async with asyncio.timeout(timeout):
        async with locks.hold(*keys):
            async with atomic(db):
                yield db
