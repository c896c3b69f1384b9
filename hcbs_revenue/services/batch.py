"""
Batch Processing Helpers.
Source: Batch claim operations (per-item outcomes, aggregate counts)
Verified: 2026-10-19

Each item runs independently under a concurrency bound. A ClaimError on one
item becomes an entry in ``errors``; it never aborts the remaining items.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar
from uuid import UUID

from hcbs_revenue.core.result import Result
from hcbs_revenue.utils.errors import ClaimError, IntegrationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class BatchItemError:
    """Failure of one item in a batch."""

    claim_id: UUID
    error: ClaimError

    def to_dict(self) -> dict[str, Any]:
        detail = (
            self.error.public_dict()
            if isinstance(self.error, IntegrationError)
            else self.error.to_dict()
        )
        return {"claim_id": str(self.claim_id), "error": detail}


@dataclass
class BatchResult(Generic[T]):
    """Aggregate outcome of a batch operation."""

    total_processed: int = 0
    success_count: int = 0
    error_count: int = 0
    results: dict[UUID, T] = field(default_factory=dict)
    errors: list[BatchItemError] = field(default_factory=list)

    def record(self, claim_id: UUID, outcome: Result[T]) -> None:
        self.total_processed += 1
        if outcome.ok:
            self.success_count += 1
            self.results[claim_id] = outcome.value  # type: ignore[assignment]
        else:
            self.error_count += 1
            self.errors.append(BatchItemError(claim_id, outcome.error))  # type: ignore[arg-type]

    def to_dict(self, item_to_dict: Callable[[T], dict[str, Any]]) -> dict[str, Any]:
        return {
            "total_processed": self.total_processed,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "results": {str(k): item_to_dict(v) for k, v in self.results.items()},
            "errors": [e.to_dict() for e in self.errors],
        }


async def run_batch(
    claim_ids: Sequence[UUID],
    worker: Callable[[UUID], Awaitable[Result[T]]],
    concurrency: int,
    label: str = "batch",
) -> BatchResult[T]:
    """Run ``worker`` for every claim id; results keep input order."""
    semaphore = asyncio.Semaphore(concurrency)

    async def guarded(claim_id: UUID) -> Result[T]:
        async with semaphore:
            try:
                return await worker(claim_id)
            except ClaimError as e:
                logger.warning(f"{label}: claim {claim_id} failed: {e.message}")
                return Result.failure(e)

    outcomes = await asyncio.gather(*(guarded(claim_id) for claim_id in claim_ids))

    result: BatchResult[T] = BatchResult()
    for claim_id, outcome in zip(claim_ids, outcomes):
        result.record(claim_id, outcome)
    logger.info(
        f"{label}: {result.success_count}/{result.total_processed} succeeded, "
        f"{result.error_count} failed"
    )
    return result
