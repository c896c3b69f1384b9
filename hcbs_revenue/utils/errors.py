"""
Custom Exceptions
Error taxonomy shared by every revenue cycle component.

Provides:
- ClaimError base with kind, HTTP status and context
- ValidationError with field-level detail
- BusinessError carrying the violated rule
- IntegrationError / ServiceUnavailableError for external calls
- NotFoundError and DatabaseError / ConcurrencyConflictError

Source: https://fastapi.tiangolo.com/tutorial/handling-errors/
Verified: 2026-10-19
"""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Optional

from fastapi import status

from hcbs_revenue.core.enums import FailureType


GENERIC_INTEGRATION_MESSAGE = (
    "The external service is temporarily unavailable. Please try again later."
)


class ErrorKind(str, Enum):
    """Top-level error categories."""

    VALIDATION = "validation"
    BUSINESS = "business"
    INTEGRATION = "integration"
    SERVICE_UNAVAILABLE = "service_unavailable"
    NOT_FOUND = "not_found"
    DATABASE = "database"


@dataclass(frozen=True)
class FieldError:
    """Single field-level validation failure."""

    field: str
    code: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


class ClaimError(Exception):
    """Base exception for all revenue cycle errors."""

    kind: ErrorKind = ErrorKind.BUSINESS
    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses."""
        return {
            "kind": self.kind.value,
            "message": self.message,
            "context": self.context,
        }


class ValidationError(ClaimError):
    """Structural or field-level validation failure."""

    kind = ErrorKind.VALIDATION
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(
        self,
        message: str,
        errors: Optional[list[FieldError]] = None,
        context: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, context)
        self.errors = errors or []

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["errors"] = [e.to_dict() for e in self.errors]
        return payload


class BusinessError(ClaimError):
    """Violation of a business rule (invalid transition, stale authorization, ...)."""

    kind = ErrorKind.BUSINESS
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(
        self,
        message: str,
        rule: str,
        context: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, context)
        self.rule = rule

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["rule"] = self.rule
        return payload


class IntegrationError(ClaimError):
    """
    External call failure.

    Diagnostic fields (status code, endpoint, response body) are kept on the
    instance for operators; public_dict() never exposes them.
    """

    kind = ErrorKind.INTEGRATION
    http_status = status.HTTP_502_BAD_GATEWAY

    def __init__(
        self,
        message: str,
        service: str,
        retryable: bool,
        failure_type: FailureType = FailureType.UNKNOWN,
        endpoint: Optional[str] = None,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        original_error: Optional[BaseException] = None,
    ):
        super().__init__(message, {"service": service})
        self.service = service
        self.retryable = retryable
        self.failure_type = failure_type
        self.endpoint = endpoint
        self.status_code = status_code
        self.response_body = response_body
        self.original_error = original_error

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload.update(
            {
                "retryable": self.retryable,
                "failure_type": self.failure_type.value,
                "endpoint": self.endpoint,
                "status_code": self.status_code,
                "response_body": self.response_body,
            }
        )
        return payload

    def public_dict(self) -> dict[str, Any]:
        """Caller-safe view of the error."""
        return {
            "kind": self.kind.value,
            "message": GENERIC_INTEGRATION_MESSAGE,
            "retryable": self.retryable,
        }


class ServiceUnavailableError(IntegrationError):
    """Raised when a circuit breaker rejects a call without invoking the adapter."""

    kind = ErrorKind.SERVICE_UNAVAILABLE
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, service: str, retry_after_seconds: Optional[float] = None):
        super().__init__(
            f"Circuit breaker is OPEN for {service}. Please try again later.",
            service=service,
            retryable=False,
            failure_type=FailureType.UNAVAILABLE,
        )
        self.retry_after_seconds = retry_after_seconds


class NotFoundError(ClaimError):
    """Raised when an entity does not exist."""

    kind = ErrorKind.NOT_FOUND
    http_status = status.HTTP_404_NOT_FOUND

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(
            f"{entity} not found: {entity_id}",
            {"entity": entity, "entity_id": str(entity_id)},
        )
        self.entity = entity
        self.entity_id = entity_id


class DatabaseError(ClaimError):
    """Persistence failure."""

    kind = ErrorKind.DATABASE

    def __init__(
        self,
        message: str,
        duplicate_key: bool = False,
        original_error: Optional[BaseException] = None,
    ):
        super().__init__(message, {"duplicate_key": duplicate_key})
        self.duplicate_key = duplicate_key
        self.original_error = original_error
        if duplicate_key:
            self.http_status = status.HTTP_409_CONFLICT


class ConcurrencyConflictError(DatabaseError):
    """Optimistic version check failed on a single-entity write."""

    http_status = status.HTTP_409_CONFLICT

    def __init__(self, entity: str, entity_id: Any, expected_version: int):
        super().__init__(
            f"{entity} {entity_id} was modified concurrently "
            f"(expected version {expected_version})"
        )
        self.entity = entity
        self.entity_id = entity_id
        self.expected_version = expected_version
