from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

T = TypeVar("T")
U = TypeVar("U")
E = TypeVar("E")


class Result(Generic[T, E]):
    """
    Ok/Err result used by the bookkeeping policy checks.

    Policy functions never raise for an expected rejection; they return
    Err(reason) and let the caller decide whether the rejection becomes an
    exception at the mutation boundary.

        def check(...) -> Result[Decimal, Rejection]:
            if amount > available:
                return Err(Rejection("WITHDRAWAL_EXCEEDS_SHARE", "..."))
            return Ok(available - amount)
    """

    def bind(self, fn: Callable[[T], Result[U, E]]) -> Result[U, E]:
        """Chain another check that also returns a Result."""
        raise NotImplementedError

    def unwrap_or_raise(self, to_exc: Callable[[E], BaseException]) -> T:
        """Return the value on Ok, raise to_exc(error) on Err."""
        raise NotImplementedError


@dataclass(frozen=True)
class Ok(Result[T, E]):
    value: T

    def bind(self, fn: Callable[[T], Result[U, E]]) -> Result[U, E]:
        return fn(self.value)

    def unwrap_or_raise(self, to_exc: Callable[[E], BaseException]) -> T:
        return self.value


@dataclass(frozen=True)
class Err(Result[T, E]):
    error: E

    def bind(self, fn: Callable[[T], Result[U, E]]) -> Result[U, E]:
        return Err(self.error)  # type: ignore[return-value]

    def unwrap_or_raise(self, to_exc: Callable[[E], BaseException]) -> T:
        raise to_exc(self.error)
