"""Claim lifecycle: state machine, conversion and workflow operations."""

from hcbs_revenue.services.claims.conversion import ServiceToClaimConverter, format_claim_number
from hcbs_revenue.services.claims.lifecycle import ClaimLifecycleService, ClaimValidation
from hcbs_revenue.services.claims.locks import ClaimLockManager
from hcbs_revenue.services.claims.state_machine import (
    INVALID_TRANSITION_RULE,
    VALID_TRANSITIONS,
    ClaimStateMachine,
    Transition,
    TransitionRequest,
)

__all__ = [
    "INVALID_TRANSITION_RULE",
    "VALID_TRANSITIONS",
    "ClaimLifecycleService",
    "ClaimLockManager",
    "ClaimStateMachine",
    "ClaimValidation",
    "ServiceToClaimConverter",
    "Transition",
    "TransitionRequest",
    "format_claim_number",
]
