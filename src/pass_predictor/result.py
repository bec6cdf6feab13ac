"""
Result wrapper for operations that can fail without raising.

Propagation, frame transforms and cache lookups return a ``Result`` so callers
can tell a decayed element set from a missing Earth-orientation entry or a
plain cache miss, instead of receiving ``None`` for all of them.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(Enum):
    """Failure categories carried by a failed Result."""

    PROPAGATION_FAILED = "propagation_failed"
    IMPLAUSIBLE_POSITION = "implausible_position"
    FRAME_UNAVAILABLE = "frame_unavailable"
    CACHE_MISS = "cache_miss"


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of an operation: a value, or an error kind plus message."""

    value: Optional[T] = None
    error: Optional[ErrorKind] = None
    message: str = ""

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        """Create a successful result."""
        return cls(value=value)

    @classmethod
    def failure(cls, error: ErrorKind, message: str = "") -> "Result[T]":
        """Create a failed result."""
        return cls(error=error, message=message)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """
        Return the value of a successful result.

        Raises:
            ValueError: If the result is a failure
        """
        if self.error is not None:
            raise ValueError(f"{self.error.value}: {self.message}")
        return self.value  # type: ignore[return-value]

    def value_or(self, default: Optional[T] = None) -> Optional[T]:
        return self.value if self.error is None else default
