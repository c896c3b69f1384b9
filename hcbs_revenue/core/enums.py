"""
Core Enumerations for the Revenue Cycle.
Source: Claim lifecycle, submission and reconciliation design
Verified: 2026-10-19
"""

from enum import Enum


# =============================================================================
# Claim Enums
# =============================================================================


class ClaimStatus(str, Enum):
    """Claim lifecycle states."""

    DRAFT = "draft"
    VALIDATED = "validated"
    SUBMITTED = "submitted"
    PENDING = "pending"
    PAID = "paid"
    PARTIAL_PAID = "partial_paid"
    DENIED = "denied"
    APPEALED = "appealed"
    VOID = "void"


class ClaimType(str, Enum):
    """Claim frequency / relationship to an earlier claim."""

    ORIGINAL = "original"
    ADJUSTMENT = "adjustment"
    REPLACEMENT = "replacement"
    VOID = "void"


class SubmissionMethod(str, Enum):
    """Channel a claim was submitted through."""

    ELECTRONIC = "electronic"
    PAPER = "paper"
    DIRECT = "direct"
    CLEARINGHOUSE = "clearinghouse"


# =============================================================================
# Service Enums
# =============================================================================


class BillingStatus(str, Enum):
    """Billing status of a delivered service."""

    UNBILLED = "unbilled"
    READY = "ready"
    IN_CLAIM = "in_claim"
    BILLED = "billed"
    PAID = "paid"
    DENIED = "denied"
    VOID = "void"


class DocumentationStatus(str, Enum):
    """Documentation state of a delivered service."""

    INCOMPLETE = "incomplete"
    PENDING_REVIEW = "pending_review"
    COMPLETE = "complete"
    REJECTED = "rejected"


class AuthorizationStatus(str, Enum):
    """Service authorization state."""

    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"
    PENDING = "pending"


# =============================================================================
# Payment Enums
# =============================================================================


class PaymentMethod(str, Enum):
    """How a payer remitted funds."""

    EFT = "eft"
    CHECK = "check"
    CREDIT_CARD = "credit_card"
    NON_PAYMENT = "non_payment"
    OTHER = "other"


class ReconciliationStatus(str, Enum):
    """Payment reconciliation state."""

    UNRECONCILED = "unreconciled"
    PARTIALLY_RECONCILED = "partially_reconciled"
    RECONCILED = "reconciled"
    OVERPAID = "overpaid"
    UNDERPAID = "underpaid"


class AdjustmentType(str, Enum):
    """Categorized adjustment types derived from CARC group/reason codes."""

    CONTRACTUAL = "contractual"
    DEDUCTIBLE = "deductible"
    COINSURANCE = "coinsurance"
    COPAY = "copay"
    NONCOVERED = "noncovered"
    TRANSFER = "transfer"
    OTHER = "other"


class AdjustmentGroup(str, Enum):
    """X12 CAS claim adjustment group codes."""

    CONTRACTUAL = "CO"  # Contractual Obligations
    CORRECTION = "CR"  # Correction and Reversals
    OTHER = "OA"  # Other Adjustments
    PAYER_INITIATED = "PI"  # Payer Initiated Reductions
    PATIENT_RESPONSIBILITY = "PR"  # Patient Responsibility


class RemittanceFileType(str, Enum):
    """Declared format of an inbound remittance file."""

    EDI_835 = "edi_835"
    CSV = "csv"
    PDF = "pdf"
    EXCEL = "excel"
    CUSTOM = "custom"


class MatchReason(str, Enum):
    """Why a claim was suggested for a payment."""

    EXACT_REFERENCE = "exact_reference"
    EXACT_AMOUNT = "exact_amount"
    AMOUNT_TOLERANCE = "amount_tolerance"


# =============================================================================
# Integration Enums
# =============================================================================


class IntegrationType(str, Enum):
    """Kinds of payer integrations an adapter can implement."""

    CLEARINGHOUSE = "clearinghouse"
    MEDICAID = "medicaid"
    EHR = "ehr"
    ACCOUNTING = "accounting"
    DEMO = "demo"


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class FailureType(str, Enum):
    """Classification of an external call failure."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    SERVER = "server"
    RATE_LIMITED = "rate_limited"
    AUTH = "auth"
    VALIDATION = "validation"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


class HealthState(str, Enum):
    """Reported health of an external integration."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class IntegrationMode(str, Enum):
    """Runtime mode: in-memory demo collaborators or live persistence/payers."""

    DEMO = "demo"
    LIVE = "live"
