"""Persistence contract and its implementations."""

from hcbs_revenue.repositories.base import OUTSTANDING_CLAIM_STATUSES, BillingRepository
from hcbs_revenue.repositories.memory import InMemoryBillingRepository
from hcbs_revenue.repositories.sql import SqlAlchemyBillingRepository

__all__ = [
    "BillingRepository",
    "InMemoryBillingRepository",
    "OUTSTANDING_CLAIM_STATUSES",
    "SqlAlchemyBillingRepository",
]
