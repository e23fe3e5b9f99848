"""
Operation Locks
===============

Serializes ingestion runs, scraper test runs and version activations of the
same source, and batch matching of the same identity namespace. Different
keys never block each other.

Each hold takes an in-process asyncio lock and, when given a database bind,
a lease row in the ``leases`` table so that separate processes sharing the
database exclude each other too.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from uuid import UUID, uuid4

from sqlalchemy import Engine

from gig_agent.core.errors import ConflictError
from gig_agent.db.repositories import LeaseRepository

logger = logging.getLogger(__name__)

# Longest a crashed holder can block a key
DEFAULT_LEASE_SECONDS = 900.0


class LockManager:
    """
    Non-blocking mutex per key.

    A second caller for a busy key is rejected with ConflictError rather
    than queued, so operators see "already in progress" immediately.
    """

    def __init__(self, scope: str = "source", lease_seconds: float = DEFAULT_LEASE_SECONDS) -> None:
        """
        Initialize the manager.

        Args:
            scope: Kind of key guarded ("source", "namespace"); prefixes lease
                keys and names the key in conflict messages
            lease_seconds: Lifetime of a database lease
        """
        self.scope = scope
        self.lease_seconds = lease_seconds
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, str] = {}

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def _conflict(self, operation: str, current: str, key: str) -> ConflictError:
        return ConflictError(
            f"Cannot start {operation}: {current} for {self.scope} '{key}' already in progress"
        )

    def is_locked(self, key: UUID | str) -> bool:
        """Check whether an operation on the key is in flight in this process."""
        lock = self._locks.get(str(key))
        return lock is not None and lock.locked()

    def holder(self, key: UUID | str) -> str | None:
        """Name of the operation holding the key in this process, if any."""
        return self._holders.get(str(key))

    @asynccontextmanager
    async def hold(
        self, key: UUID | str, operation: str, bind: Engine | None = None
    ) -> AsyncIterator[None]:
        """
        Hold the key's lock for the duration of the block.

        Args:
            key: Source id or namespace being operated on
            operation: Short name shown in conflict messages (e.g. "ingestion")
            bind: Database engine to take a cross-process lease on

        Raises:
            ConflictError: If another operation holds the key
        """
        key = str(key)
        lock = self._lock_for(key)
        if lock.locked():
            raise self._conflict(operation, self._holders.get(key, "operation"), key)
        await lock.acquire()
        try:
            leases = LeaseRepository(bind) if bind is not None else None
            lease_key = f"{self.scope}:{key}"
            owner = f"{os.getpid()}-{uuid4().hex}"
            if leases is not None and not leases.acquire(
                lease_key, owner, operation, self.lease_seconds
            ):
                raise self._conflict(operation, leases.holder(lease_key) or "operation", key)

            self._holders[key] = operation
            logger.debug(f"Acquired {operation} lock for {self.scope} {key}")
            try:
                yield
            finally:
                self._holders.pop(key, None)
                if leases is not None:
                    leases.release(lease_key, owner)
        finally:
            lock.release()


_default_locks: LockManager | None = None
_matching_locks: LockManager | None = None


def get_source_locks() -> LockManager:
    """Get the process-wide per-source lock manager."""
    global _default_locks
    if _default_locks is None:
        _default_locks = LockManager("source")
    return _default_locks


def get_matching_locks() -> LockManager:
    """Get the process-wide per-namespace matching lock manager."""
    global _matching_locks
    if _matching_locks is None:
        _matching_locks = LockManager("namespace")
    return _matching_locks


def reset_source_locks() -> None:
    """Reset the process-wide lock managers (useful for testing)."""
    global _default_locks, _matching_locks
    _default_locks = None
    _matching_locks = None
