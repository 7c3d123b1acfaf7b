"""
Amortization scheduler for debts and receivables.

Installment items owe total / N per month for N consecutive months starting
at start_date's month. The cumulative amount due after k months is
rounded once (q2(total * k / N)), so the last month lands exactly on the
total and the monthly dues never drift.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple, Union

import deal

from bookkeeper.models import (
    DebtPayment,
    LedgerSnapshot,
    Liability,
    PeriodLiability,
    PeriodReceivable,
    Receivable,
    ReceivablePayment,
)
from bookkeeper.money import ZERO, add_months, dsum, in_period, parse_period, period_end, period_of, q2

Item = Union[Liability, Receivable]
Payment = Union[DebtPayment, ReceivablePayment]


@dataclass(frozen=True)
class DueStatus:
    item_id: str
    kind: str
    description: str
    currency: str
    total_amount: Decimal
    total_due_to_date: Decimal
    due_this_period: Decimal
    paid_this_period: Decimal
    total_paid: Decimal
    total_remaining: Decimal
    is_paid: bool


@dataclass(frozen=True)
class ScheduleLine:
    period: str
    installment: Decimal
    cumulative_due: Decimal
    paid_in_period: Decimal
    cumulative_paid: Decimal


def _months_between(start: str, end: str) -> int:
    sy, sm = parse_period(start)
    ey, em = parse_period(end)
    return (ey - sy) * 12 + (em - sm)


def installment_plan(item: Item) -> Optional[Tuple[date, int]]:
    """(start_date, number_of_installments) for a usable installment item, else None."""
    n = item.number_of_installments
    if item.is_installment and item.start_date is not None and n is not None and n > 0:
        return item.start_date, n
    return None


@deal.pre(lambda total, n, k: n > 0 and 0 <= k <= n, message="0 <= k <= n, n > 0")
@deal.post(lambda result: result >= 0)
def cumulative_due(total: Decimal, n: int, k: int) -> Decimal:
    """Amount due after k of n installments."""
    if k == n:
        return total
    return q2(total * k / n)


def installments_elapsed(item: Item, period: str) -> int:
    """Number of installment months with month <= period."""
    plan = installment_plan(item)
    if plan is None:
        return 0
    start, n = plan
    elapsed = _months_between(period_of(start), period) + 1
    return max(0, min(n, elapsed))


def status(
    item: Item,
    payments: Sequence[Payment],
    period: str,
    epsilon: Decimal,
    kind: str = "",
) -> DueStatus:
    """Due / paid / remaining for one item as seen from `period`."""
    end = period_end(period)
    paid_this = dsum(p.amount for p in payments if in_period(p.date, period))
    total_paid = dsum(p.amount for p in payments if p.date <= end)
    remaining = item.total_amount - total_paid
    plan = installment_plan(item)

    if not item.is_installment:
        due_to_date = item.total_amount
        due = remaining + paid_this
    elif plan is None:
        due_to_date = ZERO
        due = ZERO
    else:
        due_to_date = cumulative_due(item.total_amount, plan[1], installments_elapsed(item, period))
        due = max(ZERO, due_to_date - (total_paid - paid_this))

    return DueStatus(
        item_id=item.id,
        kind=kind or item.collection,
        description=item.description,
        currency=item.currency,
        total_amount=item.total_amount,
        total_due_to_date=due_to_date,
        due_this_period=due,
        paid_this_period=paid_this,
        total_paid=total_paid,
        total_remaining=remaining,
        is_paid=remaining <= epsilon,
    )


def schedule(item: Item, payments: Sequence[Payment]) -> List[ScheduleLine]:
    """Month-by-month installment plan with payments made in each month."""
    plan = installment_plan(item)
    if plan is None:
        return []
    start, n = plan
    first = period_of(start)
    lines: List[ScheduleLine] = []
    previous = ZERO
    for k in range(1, n + 1):
        period = add_months(first, k - 1)
        cum = cumulative_due(item.total_amount, n, k)
        end = period_end(period)
        lines.append(
            ScheduleLine(
                period=period,
                installment=cum - previous,
                cumulative_due=cum,
                paid_in_period=dsum(p.amount for p in payments if in_period(p.date, period)),
                cumulative_paid=dsum(p.amount for p in payments if p.date <= end),
            )
        )
        previous = cum
    return lines


def completion_date(item: Item, payments: Sequence[Payment], epsilon: Decimal) -> Optional[date]:
    """Date of the payment that brought the remainder to <= epsilon, if any."""
    paid = ZERO
    for p in sorted(payments, key=lambda p: (p.date, p.id)):
        paid += p.amount
        if item.total_amount - paid <= epsilon:
            return p.date
    return None


def payments_for(snapshot: LedgerSnapshot, item: Item) -> List[Payment]:
    if isinstance(item, Liability):
        return [p for p in snapshot.all(DebtPayment) if p.liability_id == item.id]
    return [p for p in snapshot.all(ReceivablePayment) if p.receivable_id == item.id]


def _period_item_status(item: Union[PeriodLiability, PeriodReceivable]) -> DueStatus:
    settled = item.is_paid if isinstance(item, PeriodLiability) else item.is_received
    return DueStatus(
        item_id=item.id,
        kind=item.collection,
        description=item.description,
        currency=item.currency,
        total_amount=item.amount,
        total_due_to_date=item.amount,
        due_this_period=ZERO if settled else item.amount,
        paid_this_period=item.amount if settled else ZERO,
        total_paid=item.amount if settled else ZERO,
        total_remaining=ZERO if settled else item.amount,
        is_paid=settled,
    )


def due_items(snapshot: LedgerSnapshot, period: str, epsilon: Decimal) -> List[DueStatus]:
    """Everything with something due or paid in `period`."""
    end = period_end(period)
    out: List[DueStatus] = []
    items: List[Tuple[Item, str]] = [(lb, "liabilities") for lb in snapshot.all(Liability)]
    items += [(rc, "receivables") for rc in snapshot.all(Receivable)]
    for item, kind in sorted(items, key=lambda t: (t[1], t[0].id)):
        if item.creation_date > end:
            continue
        st = status(item, payments_for(snapshot, item), period, epsilon, kind)
        if st.due_this_period <= epsilon and st.paid_this_period == ZERO:
            continue
        out.append(st)

    period_items: List[Union[PeriodLiability, PeriodReceivable]] = list(snapshot.all(PeriodLiability))
    period_items += list(snapshot.all(PeriodReceivable))
    for pi in sorted(period_items, key=lambda x: (x.collection, x.id)):
        if pi.period == period and pi.amount != ZERO:
            out.append(_period_item_status(pi))
    return out
