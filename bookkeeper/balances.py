"""
Balance & ownership resolver.

Every record that touches an asset is flattened into `Movement`s (one per
asset leg). Balances, owner stakes, the cash-flow statement and the
per-period asset details are all sums over the same movement list, so they
cannot disagree with each other.

Replay order is (date, rank, source id, leg): exchanges run after the other
movements of their day because their split depends on the owner positions
of the selling asset at that moment.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from bookkeeper.attribution import Allocation, AttributionStrategy, Split, apportion, split
from bookkeeper.models import (
    AdDeposit,
    Asset,
    CapitalInflow,
    Commission,
    DebtPayment,
    ExchangeLog,
    Investment,
    LedgerSnapshot,
    Liability,
    MiscellaneousExpense,
    PeriodLiability,
    PeriodReceivable,
    Receivable,
    ReceivablePayment,
    Record,
    Saving,
    TaxPayment,
    Withdrawal,
)
from bookkeeper.money import ZERO, dsum

OPERATING = "operating"
INVESTING = "investing"
FINANCING = "financing"
ACTIVITIES = (OPERATING, INVESTING, FINANCING)

IN = "in"
OUT = "out"


@dataclass(frozen=True)
class Movement:
    asset_id: str
    date: date
    direction: str
    amount: Decimal
    activity: str
    label: str
    source: str
    source_id: str
    # None: resolved at replay time (exchange legs)
    allocation: Optional[Allocation]
    rank: int = 0
    leg: int = 0

    @property
    def signed(self) -> Decimal:
        return self.amount if self.direction == IN else -self.amount

    def sort_key(self) -> Tuple[date, int, str, str, int]:
        return (self.date, self.rank, self.source, self.source_id, self.leg)


@dataclass(frozen=True)
class OwnerStake:
    partner_id: str
    received: Decimal
    withdrawn: Decimal

    @property
    def available(self) -> Decimal:
        return self.received - self.withdrawn


@dataclass(frozen=True)
class AssetPosition:
    asset_id: str
    name: str
    currency: str
    opening_balance: Decimal
    balance: Decimal
    total_received: Decimal
    total_withdrawn: Decimal
    untracked_received: Decimal
    owners: Tuple[OwnerStake, ...]
    is_expandable: bool

    def owner(self, partner_id: str) -> OwnerStake:
        for stake in self.owners:
            if stake.partner_id == partner_id:
                return stake
        return OwnerStake(partner_id, ZERO, ZERO)


# ============================================================
# MOVEMENTS
# ============================================================

def _mv(
    record: Record,
    asset_id: Optional[str],
    day: Optional[date],
    direction: str,
    amount: Optional[Decimal],
    activity: str,
    label: str,
    allocation: Optional[Allocation],
    rank: int = 0,
    leg: int = 0,
) -> List[Movement]:
    if asset_id is None or day is None or amount is None:
        return []
    return [
        Movement(
            asset_id=asset_id,
            date=day,
            direction=direction,
            amount=amount,
            activity=activity,
            label=label,
            source=record.collection,
            source_id=record.id,
            allocation=allocation,
            rank=rank,
            leg=leg,
        )
    ]


def build_movements(snapshot: LedgerSnapshot, attribution: AttributionStrategy) -> List[Movement]:
    """Every asset-touching effect in the ledger, in replay order."""
    assets = snapshot.index(Asset)

    def in_asset_currency(asset_id: str, usd: Decimal, vnd: Decimal) -> Decimal:
        asset = assets.get(asset_id)
        return usd if asset is not None and asset.currency == "USD" else vnd

    me = attribution.me()
    out: List[Movement] = []

    for c in snapshot.all(Commission):
        amount = in_asset_currency(c.asset_id, c.usd_amount, c.vnd_amount)
        out += _mv(c, c.asset_id, c.date, IN, amount, OPERATING, "Commissions received", attribution(c))

    for d in snapshot.all(AdDeposit):
        amount = in_asset_currency(d.asset_id, d.usd_amount, d.vnd_amount)
        out += _mv(d, d.asset_id, d.date, OUT, amount, OPERATING, "Ad account deposits", me)

    for e in snapshot.all(MiscellaneousExpense):
        out += _mv(e, e.asset_id, e.date, OUT, e.amount, OPERATING, "Miscellaneous expenses", attribution(e))

    for x in snapshot.all(ExchangeLog):
        out += _mv(x, x.selling_asset_id, x.date, OUT, x.usd_amount, OPERATING, "USD sold", None, rank=1, leg=0)
        out += _mv(x, x.receiving_asset_id, x.date, IN, x.vnd_amount, OPERATING, "USD sale proceeds", None, rank=1, leg=1)

    for t in snapshot.all(TaxPayment):
        out += _mv(t, t.asset_id, t.date, OUT, t.amount, OPERATING, "Tax payments", me)

    for pl in snapshot.all(PeriodLiability):
        if pl.is_paid:
            out += _mv(pl, pl.payment_asset_id, pl.payment_date, OUT, pl.amount, OPERATING,
                       "Period liabilities paid", attribution(pl))

    for pr in snapshot.all(PeriodReceivable):
        if pr.is_received:
            out += _mv(pr, pr.received_asset_id, pr.received_date, IN, pr.amount, OPERATING,
                       "Period receivables collected", attribution(pr))

    for s in snapshot.all(Saving):
        out += _mv(s, s.asset_id, s.start_date, OUT, s.principal_amount, INVESTING, "Savings placed", me)
        if s.status == "matured":
            out += _mv(s, s.asset_id, s.end_date, IN, s.maturity_amount, INVESTING, "Savings matured", me, leg=1)

    for i in snapshot.all(Investment):
        out += _mv(i, i.asset_id, i.date, OUT, i.investment_amount, INVESTING, "Investments placed", me)
        if i.status == "liquidated":
            out += _mv(i, i.proceeds_asset_id, i.liquidation_date, IN, i.liquidation_amount, INVESTING,
                       "Investments liquidated", me, leg=1)

    for rp in snapshot.all(ReceivablePayment):
        out += _mv(rp, rp.asset_id, rp.date, IN, rp.amount, INVESTING, "Receivable collections", me)

    for lb in snapshot.all(Liability):
        out += _mv(lb, lb.inflow_asset_id, lb.creation_date, IN, lb.total_amount, INVESTING,
                   "Borrowed funds received", me)

    for ci in snapshot.all(CapitalInflow):
        out += _mv(ci, ci.asset_id, ci.date, IN, ci.amount, FINANCING, "Capital contributions", attribution(ci))

    for w in snapshot.all(Withdrawal):
        out += _mv(w, w.asset_id, w.date, OUT, w.amount, FINANCING, "Partner withdrawals", attribution(w))

    for dp in snapshot.all(DebtPayment):
        out += _mv(dp, dp.asset_id, dp.date, OUT, dp.amount, FINANCING, "Debt repayments", me)

    for rc in snapshot.all(Receivable):
        out += _mv(rc, rc.outflow_asset_id, rc.creation_date, OUT, rc.total_amount, FINANCING,
                   "Receivables disbursed", me)

    out = [m for m in out if m.asset_id in assets]
    out.sort(key=Movement.sort_key)
    return out


# ============================================================
# REPLAY
# ============================================================

class _Stakes:
    def __init__(self) -> None:
        self.received: Dict[str, Dict[str, Decimal]] = {}
        self.withdrawn: Dict[str, Dict[str, Decimal]] = {}
        self.untracked: Dict[str, Decimal] = {}

    def add(self, movement: Movement, parts: Split) -> None:
        book = self.received if movement.direction == IN else self.withdrawn
        per_asset = book.setdefault(movement.asset_id, {})
        for pid, part in parts:
            per_asset[pid] = per_asset.get(pid, ZERO) + part
        if not parts and movement.direction == IN:
            self.untracked[movement.asset_id] = self.untracked.get(movement.asset_id, ZERO) + movement.amount

    def positive_positions(self, asset_id: str) -> List[Tuple[str, Decimal]]:
        received = self.received.get(asset_id, {})
        withdrawn = self.withdrawn.get(asset_id, {})
        out = []
        for pid in sorted(set(received) | set(withdrawn)):
            net = received.get(pid, ZERO) - withdrawn.get(pid, ZERO)
            if net > ZERO:
                out.append((pid, net))
        return out


def attributed_movements(
    movements: Iterable[Movement], attribution: AttributionStrategy
) -> List[Tuple[Movement, Split]]:
    """Replay movements in order, splitting each across partners."""
    stakes = _Stakes()
    exchange_weights: Dict[str, List[Tuple[str, Decimal]]] = {}
    out: List[Tuple[Movement, Split]] = []

    for m in movements:
        if m.allocation is None:
            weights = exchange_weights.get(m.source_id)
            if weights is None:
                # Selling leg: pro rata to positive positions on the selling asset
                weights = stakes.positive_positions(m.asset_id) or list(attribution.me())
                exchange_weights[m.source_id] = weights
            parts = apportion(m.amount, weights)
        else:
            parts = split(m.amount, m.allocation)
        stakes.add(m, parts)
        out.append((m, parts))
    return out


def _position(
    asset: Asset,
    rows: List[Tuple[Movement, Split]],
    me_partner_id: str,
) -> AssetPosition:
    received: Dict[str, Decimal] = {}
    withdrawn: Dict[str, Decimal] = {}
    total_in = ZERO
    total_out = ZERO
    untracked = ZERO
    for m, parts in rows:
        if m.direction == IN:
            total_in += m.amount
            if not parts:
                untracked += m.amount
            for pid, part in parts:
                received[pid] = received.get(pid, ZERO) + part
        else:
            total_out += m.amount
            for pid, part in parts:
                withdrawn[pid] = withdrawn.get(pid, ZERO) + part

    owners = []
    for pid in sorted(set(received) | set(withdrawn), key=lambda p: (p != me_partner_id, p)):
        r = received.get(pid, ZERO)
        w = withdrawn.get(pid, ZERO)
        if r != ZERO or w != ZERO:
            owners.append(OwnerStake(pid, r, w))

    return AssetPosition(
        asset_id=asset.id,
        name=asset.name,
        currency=asset.currency,
        opening_balance=asset.opening_balance,
        balance=asset.opening_balance + total_in - total_out,
        total_received=total_in,
        total_withdrawn=total_out,
        untracked_received=untracked,
        owners=tuple(owners),
        is_expandable=len(owners) > 1,
    )


def resolve_all(
    snapshot: LedgerSnapshot,
    attribution: AttributionStrategy,
    as_of: Optional[date] = None,
) -> Dict[str, AssetPosition]:
    """Position of every asset, optionally as of the end of `as_of`."""
    movements = build_movements(snapshot, attribution)
    if as_of is not None:
        movements = [m for m in movements if m.date <= as_of]
    rows = attributed_movements(movements, attribution)

    by_asset: Dict[str, List[Tuple[Movement, Split]]] = {}
    for m, parts in rows:
        by_asset.setdefault(m.asset_id, []).append((m, parts))

    return {
        asset.id: _position(asset, by_asset.get(asset.id, []), attribution.me_partner_id)
        for asset in sorted(snapshot.all(Asset), key=lambda a: a.id)
    }


def resolve(snapshot: LedgerSnapshot, asset_id: str, attribution: AttributionStrategy) -> AssetPosition:
    positions = resolve_all(snapshot, attribution)
    if asset_id not in positions:
        raise KeyError(asset_id)
    return positions[asset_id]


def balance_at(movements: Iterable[Movement], asset: Asset, before: date) -> Decimal:
    """Balance at the start of `before` (movements strictly earlier)."""
    return asset.opening_balance + dsum(m.signed for m in movements if m.asset_id == asset.id and m.date < before)
