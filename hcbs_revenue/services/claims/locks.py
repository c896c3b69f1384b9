"""
Per-Claim Locks.
Source: https://docs.python.org/3/library/asyncio-sync.html#lock
Verified: 2026-10-19

Serializes status writes for one claim inside a process. Several claims are
always acquired in sorted id order so two reconciliations touching the same
claims cannot deadlock. Locks are dropped once nobody holds or awaits them.
"""

import asyncio
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from uuid import UUID


class ClaimLockManager:
    """asyncio.Lock per claim id."""

    def __init__(self) -> None:
        self._locks: dict[UUID, asyncio.Lock] = {}
        self._refs: dict[UUID, int] = {}

    def is_locked(self, claim_id: UUID) -> bool:
        lock = self._locks.get(claim_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, claim_ids: Iterable[UUID]) -> AsyncIterator[None]:
        ordered = sorted(set(claim_ids), key=str)
        acquired: list[UUID] = []
        try:
            for claim_id in ordered:
                lock = self._locks.setdefault(claim_id, asyncio.Lock())
                self._refs[claim_id] = self._refs.get(claim_id, 0) + 1
                try:
                    await lock.acquire()
                except BaseException:
                    self._release_ref(claim_id)
                    raise
                acquired.append(claim_id)
            yield
        finally:
            for claim_id in reversed(acquired):
                self._locks[claim_id].release()
                self._release_ref(claim_id)

    def _release_ref(self, claim_id: UUID) -> None:
        self._refs[claim_id] -= 1
        if self._refs[claim_id] == 0:
            del self._refs[claim_id]
            del self._locks[claim_id]
