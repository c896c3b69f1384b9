"""Payment matching and reconciliation."""

from hcbs_revenue.services.payments.matching import (
    Allocation,
    MatchSuggestion,
    PaymentMatchingEngine,
    ReconciliationResult,
    UndoResult,
    reconciliation_status,
)

__all__ = [
    "Allocation",
    "MatchSuggestion",
    "PaymentMatchingEngine",
    "ReconciliationResult",
    "UndoResult",
    "reconciliation_status",
]
