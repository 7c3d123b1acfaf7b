from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Rejection:
    """Reason a policy check refused a mutation (code is stable, message is for humans)."""
    code: str
    message: str


class BookkeepingError(Exception):
    """Base error for the bookkeeping engine."""

    code = "BOOKKEEPING_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code

    @classmethod
    def from_rejection(cls, rejection: Rejection) -> "BookkeepingError":
        return cls(rejection.message, code=rejection.code)


class ValidationError(BookkeepingError):
    """Malformed input: missing reference, negative amount, bad share split."""

    code = "VALIDATION_ERROR"


class BusinessRuleError(BookkeepingError):
    """Well-formed input that breaks a ledger rule (overdraw, early close, ...)."""

    code = "BUSINESS_RULE"


class ImmutablePeriodError(BookkeepingError):
    """Edit or delete touching a closed period."""

    code = "PERIOD_CLOSED"


class PeriodNotActiveError(BusinessRuleError):
    """Write dated outside the active period (or with no active period)."""

    code = "PERIOD_NOT_ACTIVE"


class RecordNotFoundError(BookkeepingError):
    code = "RECORD_NOT_FOUND"


_BY_CODE = {
    ValidationError.code: ValidationError,
    ImmutablePeriodError.code: ImmutablePeriodError,
    PeriodNotActiveError.code: PeriodNotActiveError,
    RecordNotFoundError.code: RecordNotFoundError,
}


def error_for(rejection: Rejection) -> BookkeepingError:
    """Exception to raise for a rejection; unknown codes are business-rule violations."""
    return _BY_CODE.get(rejection.code, BusinessRuleError).from_rejection(rejection)
