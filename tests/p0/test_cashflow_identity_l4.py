from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

from hypothesis import given, settings, strategies as st

from bookkeeper.attribution import AttributionStrategy
from bookkeeper.balances import resolve_all
from bookkeeper.financials import compile_period
from bookkeeper.models import (
    RECORD_TYPES,
    Asset,
    CapitalInflow,
    Commission,
    ExchangeLog,
    LedgerSnapshot,
    MiscellaneousExpense,
    Project,
    Withdrawal,
)
from bookkeeper.money import period_end
from infra.config_loader import EngineConfig, TaxSettings

ME = "default-me"
FIRST_DAY = date(2023, 12, 1)
PERIOD = "2024-01"

AMOUNT = st.decimals(
    min_value=Decimal("0.01"),
    max_value=Decimal("1000000"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)
RATE = st.integers(min_value=20000, max_value=27000).map(Decimal)
OP = st.tuples(
    st.sampled_from(["commission", "inflow", "withdrawal", "expense", "exchange"]),
    st.sampled_from(["u", "v"]),
    AMOUNT,
    RATE,
    st.integers(min_value=0, max_value=90),
)

ASSETS = (
    Asset(id="u", name="Payoneer", currency="USD", opening_balance=Decimal("50")),
    Asset(id="v", name="Bank", currency="VND", opening_balance=Decimal("1000000")),
)
PROJECT = Project(id="p", name="Store", period=PERIOD)


def _records(ops):
    out = [*ASSETS, PROJECT]
    for i, (kind, asset_id, amount, rate, offset) in enumerate(ops):
        rid = f"r{i:03d}"
        day = FIRST_DAY + timedelta(days=offset)
        if kind == "commission":
            out.append(
                Commission(
                    id=rid,
                    project_id="p",
                    asset_id=asset_id,
                    date=day,
                    usd_amount=amount,
                    predicted_rate=rate,
                    vnd_amount=amount * rate,
                )
            )
        elif kind == "inflow":
            out.append(CapitalInflow(id=rid, asset_id=asset_id, date=day, amount=amount))
        elif kind == "withdrawal":
            out.append(Withdrawal(id=rid, asset_id=asset_id, withdrawn_by=ME, date=day, amount=amount))
        elif kind == "expense":
            out.append(
                MiscellaneousExpense(
                    id=rid,
                    asset_id=asset_id,
                    date=day,
                    description="office",
                    amount=amount,
                    rate=rate if asset_id == "u" else None,
                    vnd_amount=amount * rate if asset_id == "u" else amount,
                )
            )
        else:
            out.append(
                ExchangeLog(
                    id=rid,
                    selling_asset_id="u",
                    receiving_asset_id="v",
                    date=day,
                    usd_amount=amount,
                    rate=rate,
                    vnd_amount=amount * rate,
                )
            )
    return out


def _snapshot(records) -> LedgerSnapshot:
    collections = {t.collection: [] for t in RECORD_TYPES}
    for r in records:
        collections[r.collection].append(r)
    return LedgerSnapshot({k: tuple(v) for k, v in collections.items()})


@settings(max_examples=50)
@given(st.lists(OP, max_size=30))
def test_cash_flow_ties_to_asset_details_and_balances(ops) -> None:
    snap = _snapshot(_records(ops))
    config = EngineConfig()
    report = compile_period(snap, PERIOD, TaxSettings(), config)
    positions = resolve_all(snap, AttributionStrategy(snap.index(Project), ME), as_of=period_end(PERIOD))

    for currency in ("USD", "VND"):
        cf = report.cash_flows[currency]
        details = [d for d in report.period_asset_details if d.currency == currency]
        assert cf.end_balance == cf.beginning_balance + cf.net_change
        assert sum((d.change for d in details), Decimal("0")) == cf.net_change
        assert sum((d.opening_balance for d in details), Decimal("0")) == cf.beginning_balance
        closing = sum((p.balance for p in positions.values() if p.currency == currency), Decimal("0"))
        assert closing == cf.end_balance
        net = cf.operating.net + cf.investing.net + cf.financing.net
        assert net == cf.net_change


@settings(max_examples=25)
@given(st.lists(OP, max_size=20))
def test_compiling_is_repeatable(ops) -> None:
    snap = _snapshot(_records(ops))
    first = compile_period(snap, PERIOD, TaxSettings(), EngineConfig())
    second = compile_period(snap, PERIOD, TaxSettings(), EngineConfig())
    assert first == second
