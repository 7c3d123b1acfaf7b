from __future__ import annotations

import dataclasses
from datetime import date
from decimal import Decimal

import deal
import pytest

from bookkeeper.amortization import (
    completion_date,
    cumulative_due,
    due_items,
    installment_plan,
    schedule,
    status,
)
from bookkeeper.models import DebtPayment, Liability, PeriodLiability, Receivable, ReceivablePayment

EPS = Decimal("0.001")

LOAN = Liability(
    id="l1",
    description="Car loan",
    total_amount=Decimal("1200000"),
    currency="VND",
    creation_date=date(2024, 1, 1),
    is_installment=True,
    start_date=date(2024, 1, 1),
    number_of_installments=12,
)


def _pay(pay_id: str, day: date, amount: str) -> DebtPayment:
    return DebtPayment(id=pay_id, liability_id="l1", asset_id="bank", date=day, amount=Decimal(amount))


def test_installment_due_after_four_months_without_payments() -> None:
    st = status(LOAN, [], "2024-04", EPS)
    assert st.total_due_to_date == Decimal("400000")
    assert st.due_this_period == Decimal("400000")
    assert st.total_remaining == Decimal("1200000")
    assert st.is_paid is False


def test_installment_due_nets_earlier_payments() -> None:
    payments = [_pay("p1", date(2024, 1, 10), "100000"), _pay("p2", date(2024, 4, 3), "50000")]
    st = status(LOAN, payments, "2024-04", EPS)
    assert st.paid_this_period == Decimal("50000")
    assert st.total_paid == Decimal("150000")
    assert st.due_this_period == Decimal("300000")


def test_payments_after_the_period_are_ignored() -> None:
    st = status(LOAN, [_pay("p1", date(2024, 6, 1), "900000")], "2024-02", EPS)
    assert st.total_paid == Decimal("0")
    assert st.due_this_period == Decimal("200000")


def test_bullet_due_is_remaining_plus_paid_this_period() -> None:
    bullet = dataclasses.replace(LOAN, is_installment=False, start_date=None, number_of_installments=None)
    st = status(bullet, [_pay("p1", date(2024, 2, 1), "200000")], "2024-02", EPS)
    assert st.due_this_period == Decimal("1200000")
    assert st.total_remaining == Decimal("1000000")


def test_installment_without_start_or_count_is_never_due() -> None:
    broken = dataclasses.replace(LOAN, start_date=None)
    assert status(broken, [], "2024-04", EPS).due_this_period == Decimal("0")
    zero = dataclasses.replace(LOAN, number_of_installments=0)
    assert status(zero, [], "2024-04", EPS).due_this_period == Decimal("0")
    assert schedule(zero, []) == []


def test_months_before_start_owe_nothing() -> None:
    later = dataclasses.replace(LOAN, start_date=date(2024, 6, 15))
    assert status(later, [], "2024-04", EPS).due_this_period == Decimal("0")


def test_schedule_lands_exactly_on_total() -> None:
    odd = dataclasses.replace(LOAN, total_amount=Decimal("1000"), number_of_installments=3)
    lines = schedule(odd, [])
    assert [line.period for line in lines] == ["2024-01", "2024-02", "2024-03"]
    assert [line.installment for line in lines] == [Decimal("333.33"), Decimal("333.34"), Decimal("333.33")]
    assert lines[-1].cumulative_due == Decimal("1000")
    assert sum(line.installment for line in lines) == Decimal("1000")


def test_cumulative_due_contract() -> None:
    assert cumulative_due(Decimal("100"), 4, 4) == Decimal("100")
    with pytest.raises(deal.PreContractError):
        cumulative_due(Decimal("100"), 4, 5)


def test_completion_date_is_the_crossing_payment() -> None:
    payments = [_pay("p2", date(2024, 3, 1), "600000"), _pay("p1", date(2024, 2, 1), "599999.9995")]
    assert completion_date(LOAN, payments, EPS) == date(2024, 3, 1)
    assert completion_date(LOAN, payments[1:], EPS) is None


def test_due_items_filters_and_includes_period_items(snapshot_of) -> None:
    settled_receivable = Receivable(
        id="r1",
        description="Lent",
        total_amount=Decimal("100"),
        currency="VND",
        creation_date=date(2023, 12, 1),
    )
    collected = ReceivablePayment(
        id="rp1", receivable_id="r1", asset_id="bank", date=date(2023, 12, 20), amount=Decimal("100")
    )
    future = dataclasses.replace(LOAN, id="l2", creation_date=date(2024, 5, 1), start_date=date(2024, 5, 1))
    rent = PeriodLiability(id="pl1", period="2024-04", description="Rent", amount=Decimal("50"), currency="VND")
    other_month = PeriodLiability(id="pl2", period="2024-05", description="Rent", amount=Decimal("50"), currency="VND")

    items = due_items(snapshot_of(LOAN, settled_receivable, collected, future, rent, other_month), "2024-04", EPS)
    assert [(i.item_id, i.kind) for i in items] == [("l1", "liabilities"), ("pl1", "period_liabilities")]
    assert items[1].due_this_period == Decimal("50")


def test_installment_plan_needs_start_and_count() -> None:
    assert installment_plan(LOAN) == (date(2024, 1, 1), 12)
    assert installment_plan(dataclasses.replace(LOAN, is_installment=False)) is None
    assert installment_plan(dataclasses.replace(LOAN, start_date=None)) is None
    assert installment_plan(dataclasses.replace(LOAN, number_of_installments=0)) is None
