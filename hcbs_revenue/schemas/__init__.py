"""
Pydantic Schemas for the Revenue Cycle.

This module exports the domain entities shared by repositories, services and the API.
"""

from hcbs_revenue.schemas.claim import Claim, ClaimStatusHistory
from hcbs_revenue.schemas.payment import Adjustment, ClaimPayment, Payment, RemittanceDetail
from hcbs_revenue.schemas.service import Authorization, Payer, Service, select_authorization

__all__ = [
    "Adjustment",
    "Authorization",
    "Claim",
    "ClaimPayment",
    "ClaimStatusHistory",
    "Payer",
    "Payment",
    "RemittanceDetail",
    "Service",
    "select_authorization",
]
