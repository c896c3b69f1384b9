"""
Validation Result Types.
Source: Claim validation service (severity, issue, result)
Verified: 2026-10-19
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from hcbs_revenue.utils.errors import FieldError


class ValidationSeverity(str, Enum):
    """Severity level of validation issues."""

    ERROR = "error"  # Blocks the transition
    WARNING = "warning"  # Reported, never blocks


@dataclass
class ValidationIssue:
    """Single validation issue."""

    code: str
    field: Optional[str]
    message: str
    context: dict[str, Any] = field(default_factory=dict)
    severity: ValidationSeverity = ValidationSeverity.ERROR

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "field": self.field,
            "message": self.message,
            "context": self.context,
        }


@dataclass
class ValidationResult:
    """Complete validation result."""

    is_valid: bool = True
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)
    validated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def add_issue(self, issue: ValidationIssue) -> None:
        if issue.severity == ValidationSeverity.ERROR:
            self.errors.append(issue)
            self.is_valid = False
        else:
            self.warnings.append(issue)

    def extend(self, issues: list[ValidationIssue]) -> None:
        for issue in issues:
            self.add_issue(issue)

    @property
    def error_codes(self) -> list[str]:
        return [e.code for e in self.errors]

    @property
    def warning_codes(self) -> list[str]:
        return [w.code for w in self.warnings]

    def field_errors(self) -> list[FieldError]:
        return [FieldError(field=e.field or "claim", code=e.code, message=e.message) for e in self.errors]

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }
