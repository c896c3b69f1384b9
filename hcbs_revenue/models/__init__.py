"""
SQLAlchemy Models for the Revenue Cycle.

This module exports all database models so Base.metadata is complete on import.
"""

from hcbs_revenue.models.base import Base, TimeStampedModel, UUIDModel
from hcbs_revenue.models.claim import ClaimModel, ClaimStatusHistoryModel
from hcbs_revenue.models.payment import ClaimPaymentModel, PaymentModel
from hcbs_revenue.models.service import AuthorizationModel, PayerModel, ServiceModel

__all__ = [
    "AuthorizationModel",
    "Base",
    "ClaimModel",
    "ClaimPaymentModel",
    "ClaimStatusHistoryModel",
    "PayerModel",
    "PaymentModel",
    "ServiceModel",
    "TimeStampedModel",
    "UUIDModel",
]
