"""
Tagged result type used to propagate expected failures without raising.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from shared.errors import ProvisioningError

T = TypeVar("T")
U = TypeVar("U")


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a fallible step: either a value or a ``ProvisioningError``.

    Chains built with ``and_then``/``and_then_async`` stop at the first
    failure, so later steps (and their remote calls) never run.
    """

    value: Optional[T] = None
    error: Optional[ProvisioningError] = None

    @classmethod
    def ok(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def fail(cls, error: ProvisioningError) -> "Result[T]":
        return cls(error=error)

    @property
    def is_ok(self) -> bool:
        return self.error is None

    @property
    def is_err(self) -> bool:
        return self.error is not None

    def map(self, fn: Callable[[T], U]) -> "Result[U]":
        if self.error is not None:
            return Result.fail(self.error)
        return Result.ok(fn(self.value))

    def and_then(self, fn: Callable[[T], "Result[U]"]) -> "Result[U]":
        if self.error is not None:
            return Result.fail(self.error)
        return fn(self.value)

    async def and_then_async(self, fn: Callable[[T], Awaitable["Result[U]"]]) -> "Result[U]":
        if self.error is not None:
            return Result.fail(self.error)
        return await fn(self.value)

    def unwrap(self) -> T:
        """Return the value or raise the carried error."""
        if self.error is not None:
            raise self.error
        return self.value

    def unwrap_or(self, default: Any) -> Any:
        return default if self.error is not None else self.value


def from_optional(value: Optional[T], error: ProvisioningError) -> Result[T]:
    """Lift an optional lookup into a result, failing with ``error`` on ``None``."""
    if value is None:
        return Result.fail(error)
    return Result.ok(value)


async def attempt(awaitable: Awaitable[T]) -> Result[T]:
    """Await a remote call and capture provisioning errors as a failed result."""
    try:
        return Result.ok(await awaitable)
    except ProvisioningError as exc:
        return Result.fail(exc)
