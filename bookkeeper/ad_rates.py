"""
Ad spend in VND.

Daily ad costs carry only a USD amount; the VND cost uses the rate of the
account's most recent deposit on or before the cost date, falling back to
the account's earliest deposit. An account with no deposits yields rate 0
and the cost is flagged unresolved (stored and reported, never rejected).
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

import deal

from bookkeeper.models import AdAccount, AdDeposit, AdFundTransfer, DailyAdCost, LedgerSnapshot
from bookkeeper.money import ZERO, pct_of


@dataclass(frozen=True)
class EnrichedAdCost:
    cost: DailyAdCost
    effective_rate: Decimal
    vnd_cost: Decimal
    vat_amount: Decimal
    deposit_id: Optional[str]
    unresolved: bool


@dataclass(frozen=True)
class AdAccountEntry:
    date: date
    kind: str
    reference_id: str
    description: str
    deposit: Decimal
    spent: Decimal
    balance: Decimal


def deposits_by_account(snapshot: LedgerSnapshot) -> Dict[str, List[AdDeposit]]:
    out: Dict[str, List[AdDeposit]] = {}
    for d in snapshot.all(AdDeposit):
        out.setdefault(d.ad_account_number, []).append(d)
    for items in out.values():
        items.sort(key=lambda d: (d.date, d.id))
    return out


@deal.pre(
    lambda cost_date, deposits: all(
        (a.date, a.id) <= (b.date, b.id) for a, b in zip(deposits, deposits[1:])
    ),
    message="deposits must be sorted by (date, id)",
)
def pick_deposit(cost_date: date, deposits: Sequence[AdDeposit]) -> Optional[AdDeposit]:
    """Latest deposit dated on or before cost_date, else the earliest one."""
    if not deposits:
        return None
    chosen: Optional[AdDeposit] = None
    for d in deposits:
        if d.date <= cost_date:
            chosen = d
        else:
            break
    return chosen if chosen is not None else deposits[0]


def enrich_cost(cost: DailyAdCost, deposits: Sequence[AdDeposit]) -> EnrichedAdCost:
    deposit = pick_deposit(cost.date, deposits)
    if deposit is None:
        return EnrichedAdCost(cost, ZERO, ZERO, ZERO, None, True)
    vnd_cost = cost.amount * deposit.rate
    return EnrichedAdCost(
        cost=cost,
        effective_rate=deposit.rate,
        vnd_cost=vnd_cost,
        vat_amount=pct_of(vnd_cost, cost.vat_rate),
        deposit_id=deposit.id,
        unresolved=False,
    )


def enrich_ad_costs(snapshot: LedgerSnapshot) -> List[EnrichedAdCost]:
    by_account = deposits_by_account(snapshot)
    costs = sorted(snapshot.all(DailyAdCost), key=lambda c: (c.date, c.id))
    return [enrich_cost(c, by_account.get(c.ad_account_number, [])) for c in costs]


# ============================================================
# AD ACCOUNT LEDGERS (USD)
# ============================================================

def _account_numbers(snapshot: LedgerSnapshot) -> List[str]:
    numbers = {a.account_number for a in snapshot.all(AdAccount)}
    numbers |= {d.ad_account_number for d in snapshot.all(AdDeposit)}
    numbers |= {c.ad_account_number for c in snapshot.all(DailyAdCost)}
    for t in snapshot.all(AdFundTransfer):
        numbers |= {t.from_ad_account_number, t.to_ad_account_number}
    return sorted(numbers)


def ad_account_ledger(snapshot: LedgerSnapshot, account_number: str) -> List[AdAccountEntry]:
    """Deposits, transfers and spend for one account with a running USD balance."""
    rows: List[Tuple[date, int, str, str, str, Decimal, Decimal]] = []
    for d in snapshot.all(AdDeposit):
        if d.ad_account_number == account_number:
            rows.append((d.date, 0, d.id, "deposit", f"Deposit @ {d.rate}", d.usd_amount, ZERO))
    for t in snapshot.all(AdFundTransfer):
        if t.to_ad_account_number == account_number:
            rows.append((t.date, 1, t.id, "transfer_in", f"From {t.from_ad_account_number}", t.amount, ZERO))
        if t.from_ad_account_number == account_number:
            rows.append((t.date, 1, t.id, "transfer_out", f"To {t.to_ad_account_number}", ZERO, t.amount))
    for c in snapshot.all(DailyAdCost):
        if c.ad_account_number == account_number:
            rows.append((c.date, 2, c.id, "spend", "Daily ad spend", ZERO, c.amount))

    rows.sort(key=lambda r: (r[0], r[1], r[2], r[3]))
    balance = ZERO
    entries: List[AdAccountEntry] = []
    for day, _, ref, kind, description, deposit, spent in rows:
        balance += deposit - spent
        entries.append(AdAccountEntry(day, kind, ref, description, deposit, spent, balance))
    return entries


def ad_account_balances(snapshot: LedgerSnapshot) -> Dict[str, Decimal]:
    out: Dict[str, Decimal] = {}
    for number in _account_numbers(snapshot):
        ledger = ad_account_ledger(snapshot, number)
        out[number] = ledger[-1].balance if ledger else ZERO
    return out
