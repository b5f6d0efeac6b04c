from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")

# Failures worth another delivery attempt later; the rest need a config or content fix.
TRANSIENT_ERROR_CODES = frozenset({"network_error", "transport_exception", "rate_limited"})


@dataclass
class Result(Generic[T]):
    """Outcome of a service call that callers branch on instead of catching."""

    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @staticmethod
    def success(value: T) -> "Result[T]":
        return Result(ok=True, value=value)

    @staticmethod
    def failure(error: str, code: str = "unknown") -> "Result[T]":
        return Result(ok=False, error=error, error_code=code)

    @property
    def transient(self) -> bool:
        return not self.ok and self.error_code in TRANSIENT_ERROR_CODES

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok else default
