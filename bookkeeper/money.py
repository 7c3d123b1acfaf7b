"""
Money and calendar-period helpers.

- amount: Decimal (NEVER float)
- period: "YYYY-MM" calendar month
"""
from __future__ import annotations

import calendar
import re
from datetime import date
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Iterable, Literal, Tuple, Union

import deal

Currency = Literal["VND", "USD"]
CURRENCIES: Tuple[str, ...] = ("VND", "USD")

MoneyInput = Union[Decimal, int, str]

ZERO = Decimal("0")
HUNDRED = Decimal("100")
_Q2 = Decimal("0.01")

_PERIOD_RE = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")


def to_decimal(value: MoneyInput) -> Decimal:
    """Coerce Decimal|int|str to Decimal. Floats are rejected on the money path."""
    if isinstance(value, bool):
        raise TypeError("bool is not a valid amount")
    if isinstance(value, float):
        raise TypeError("float forbidden in money-path; use Decimal|int|str")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, str):
        try:
            return Decimal(value.strip())
        except InvalidOperation as exc:
            raise ValueError(f"invalid decimal string: {value!r}") from exc
    raise TypeError(f"amount must be Decimal|int|str, got {type(value).__name__}")


def q2(value: Decimal) -> Decimal:
    """Round to cents, money style."""
    return value.quantize(_Q2, rounding=ROUND_HALF_UP)


def dsum(values: Iterable[Decimal]) -> Decimal:
    return sum(values, ZERO)


def pct_of(amount: Decimal, percentage: Decimal) -> Decimal:
    return amount * percentage / HUNDRED


# ============================================================
# PERIODS
# ============================================================

def is_period(value: object) -> bool:
    return isinstance(value, str) and _PERIOD_RE.match(value) is not None


@deal.pre(lambda period: is_period(period), message="period must be YYYY-MM")
def parse_period(period: str) -> Tuple[int, int]:
    year, month = period.split("-")
    return int(year), int(month)


def period_of(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"


def in_period(day: date | None, period: str) -> bool:
    return day is not None and period_of(day) == period


@deal.pre(lambda period, months: is_period(period), message="period must be YYYY-MM")
@deal.post(lambda result: is_period(result))
def add_months(period: str, months: int) -> str:
    year, month = parse_period(period)
    index = year * 12 + (month - 1) + months
    return f"{index // 12:04d}-{index % 12 + 1:02d}"


def next_period(period: str) -> str:
    return add_months(period, 1)


def period_start(period: str) -> date:
    year, month = parse_period(period)
    return date(year, month, 1)


def period_end(period: str) -> date:
    year, month = parse_period(period)
    return date(year, month, calendar.monthrange(year, month)[1])
