"""In-process execution registry.

Provides two things to the rest of the runtime:

- **Session leases**: at most one execution or lifecycle transition per
  session at a time.  With Redis configured the lease is a Redis lock, which
  holds across processes and hosts; otherwise it is an ``asyncio.Lock`` keyed
  by session id, which only serialises callers inside this process.
- **In-flight tracking**: executions register while they run so that
  shutdown can refuse new work and drain what is already running.

The registry is ephemeral -- empty on process restart.  All durable state
lives in PostgreSQL.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from loguru import logger
from redis.exceptions import LockError

from coherex.agent_runtime.errors import SessionBusyError

if TYPE_CHECKING:
    import redis.asyncio as aioredis

LEASE_KEY_PREFIX = "coherex:session-lease:"


class ShuttingDownError(RuntimeError):
    """Raised when attempting to start an execution during shutdown."""


@dataclass
class _LocalLease:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    refs: int = 0


class ExecutionRegistry:
    """Session leases plus a drain mechanism for graceful shutdown.

    ``wait_until_drained`` blocks until every tracked execution has finished.
    """

    def __init__(
        self,
        redis: aioredis.Redis | None = None,
        *,
        lock_timeout: float = 600,
        lock_wait_timeout: float = 30.0,
    ) -> None:
        self._redis = redis
        self._lock_timeout = lock_timeout
        self._lock_wait_timeout = lock_wait_timeout
        self._local_leases: dict[str, _LocalLease] = {}
        self._executions: set[str] = set()
        self._drain_event = asyncio.Event()
        self._drain_event.set()  # Starts "drained" (nothing running).
        self._shutting_down = False

    # -- Leases ----------------------------------------------------------------

    @asynccontextmanager
    async def session_lease(self, session_id: str, *, wait_timeout: float | None = None) -> AsyncIterator[None]:
        """Hold the exclusive lease on *session_id* for the body of the block.

        Raises ``SessionBusyError`` if the lease cannot be obtained within
        *wait_timeout* seconds (default: the configured ``lock_wait_timeout``).
        """
        timeout = self._lock_wait_timeout if wait_timeout is None else wait_timeout
        if self._redis is not None:
            async with self._redis_lease(session_id, timeout):
                yield
        else:
            async with self._local_lease(session_id, timeout):
                yield

    @asynccontextmanager
    async def _redis_lease(self, session_id: str, timeout: float) -> AsyncIterator[None]:
        assert self._redis is not None  # noqa: S101
        lock = self._redis.lock(
            f"{LEASE_KEY_PREFIX}{session_id}",
            timeout=self._lock_timeout,
            blocking_timeout=timeout,
        )
        if not await lock.acquire():
            msg = f"Session '{session_id}' is busy"
            raise SessionBusyError(msg)
        logger.debug("Lease acquired (redis): {}", session_id)
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                # The TTL expired while we held it; someone else may own it now.
                logger.warning("Lease for session {} expired before release", session_id)

    @asynccontextmanager
    async def _local_lease(self, session_id: str, timeout: float) -> AsyncIterator[None]:
        lease = self._local_leases.setdefault(session_id, _LocalLease())
        lease.refs += 1
        try:
            try:
                await asyncio.wait_for(lease.lock.acquire(), timeout=timeout)
            except TimeoutError as exc:
                msg = f"Session '{session_id}' is busy"
                raise SessionBusyError(msg) from exc
            logger.debug("Lease acquired (local): {}", session_id)
            try:
                yield
            finally:
                lease.lock.release()
        finally:
            lease.refs -= 1
            if lease.refs == 0:
                self._local_leases.pop(session_id, None)

    # -- Execution tracking ----------------------------------------------------

    @asynccontextmanager
    async def track(self, execution_id: str) -> AsyncIterator[None]:
        """Register *execution_id* as in flight for the body of the block.

        Raises ``ShuttingDownError`` once ``begin_shutdown`` has been called.
        """
        if self._shutting_down:
            raise ShuttingDownError
        logger.debug("Registry: register execution {}", execution_id)
        self._executions.add(execution_id)
        self._drain_event.clear()
        try:
            yield
        finally:
            self._executions.discard(execution_id)
            logger.debug("Registry: unregister execution {}", execution_id)
            if not self._executions:
                self._drain_event.set()

    @property
    def active_count(self) -> int:
        return len(self._executions)

    def is_running(self, execution_id: str) -> bool:
        return execution_id in self._executions

    # -- Lifecycle -------------------------------------------------------------

    def begin_shutdown(self) -> None:
        """Mark the registry as shutting down.  New executions are refused."""
        self._shutting_down = True
        logger.info("Registry: shutdown initiated, refusing new executions")
        if not self._executions:
            self._drain_event.set()

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    async def wait_until_drained(self, timeout: float | None = None) -> bool:
        """Wait until all tracked executions have finished.

        Returns ``True`` if nothing is running, ``False`` if *timeout* expired
        first.
        """
        if not self._executions:
            return True
        try:
            await asyncio.wait_for(self._drain_event.wait(), timeout=timeout)
        except TimeoutError:
            logger.warning(
                "Registry: drain timed out after {}s with {} executions still running",
                timeout,
                len(self._executions),
            )
            return False
        else:
            return True
