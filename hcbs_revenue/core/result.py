"""
Result type for expected outcomes.

Operations return Result[T] for conditions a caller is expected to handle
(invalid transition, failed validation, missing entity). Exceptions remain
for truly exceptional paths and for unwrap() at the API boundary.
"""

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from hcbs_revenue.utils.errors import ClaimError

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """Either a value or a ClaimError."""

    value: Optional[T] = None
    error: Optional[ClaimError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: ClaimError) -> "Result[T]":
        return cls(error=error)

    def unwrap(self) -> T:
        """Return the value or raise the carried error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]
