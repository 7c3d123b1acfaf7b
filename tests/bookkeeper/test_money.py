from datetime import date
from decimal import Decimal

import deal
import pytest

from bookkeeper.money import (
    add_months,
    in_period,
    is_period,
    next_period,
    parse_period,
    period_end,
    period_of,
    period_start,
    q2,
    to_decimal,
)


def test_to_decimal_accepts_int_str_decimal() -> None:
    assert to_decimal(5) == Decimal("5")
    assert to_decimal(" 1.25 ") == Decimal("1.25")
    assert to_decimal(Decimal("3.10")) == Decimal("3.10")


def test_to_decimal_rejects_float_and_bool() -> None:
    with pytest.raises(TypeError):
        to_decimal(1.5)  # type: ignore[arg-type]
    with pytest.raises(TypeError):
        to_decimal(True)  # type: ignore[arg-type]


def test_to_decimal_rejects_garbage_string() -> None:
    with pytest.raises(ValueError):
        to_decimal("abc")


def test_q2_rounds_half_up() -> None:
    assert q2(Decimal("0.005")) == Decimal("0.01")
    assert q2(Decimal("2.344")) == Decimal("2.34")


def test_period_helpers() -> None:
    assert is_period("2024-01")
    assert not is_period("2024-13")
    assert not is_period("2024-1")
    assert parse_period("2024-07") == (2024, 7)
    assert period_of(date(2024, 3, 31)) == "2024-03"
    assert in_period(date(2024, 3, 1), "2024-03")
    assert not in_period(None, "2024-03")


def test_add_months_crosses_years() -> None:
    assert next_period("2024-12") == "2025-01"
    assert add_months("2024-01", 11) == "2024-12"
    assert add_months("2024-01", -1) == "2023-12"


def test_period_bounds() -> None:
    assert period_start("2024-02") == date(2024, 2, 1)
    assert period_end("2024-02") == date(2024, 2, 29)
    assert period_end("2023-02") == date(2023, 2, 28)


def test_parse_period_contract() -> None:
    with pytest.raises(deal.PreContractError):
        parse_period("January")
