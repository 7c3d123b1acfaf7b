from __future__ import annotations

from datetime import date
from decimal import Decimal

import deal
import pytest

from bookkeeper.ad_rates import (
    ad_account_balances,
    ad_account_ledger,
    enrich_ad_costs,
    pick_deposit,
)
from bookkeeper.models import AdDeposit, AdFundTransfer, DailyAdCost


def _deposit(dep_id: str, day: int, rate: str, usd: str = "100", account: str = "ACC1") -> AdDeposit:
    return AdDeposit(
        id=dep_id,
        ad_account_number=account,
        asset_id="bank",
        date=date(2024, 1, day),
        usd_amount=Decimal(usd),
        rate=Decimal(rate),
        vnd_amount=Decimal(usd) * Decimal(rate),
    )


def _cost(cost_id: str, day: int, amount: str, account: str = "ACC1", vat: str = "0") -> DailyAdCost:
    return DailyAdCost(
        id=cost_id,
        project_id="p",
        ad_account_number=account,
        date=date(2024, 1, day),
        amount=Decimal(amount),
        vat_rate=Decimal(vat),
    )


def test_pick_deposit_latest_on_or_before_else_earliest() -> None:
    d1 = _deposit("d1", 5, "24000")
    d2 = _deposit("d2", 20, "25000")
    assert pick_deposit(date(2024, 1, 10), [d1, d2]) is d1
    assert pick_deposit(date(2024, 1, 20), [d1, d2]) is d2
    assert pick_deposit(date(2024, 1, 2), [d1, d2]) is d1
    assert pick_deposit(date(2024, 1, 2), []) is None


def test_pick_deposit_same_day_ties_broken_by_id() -> None:
    a = _deposit("a", 5, "24000")
    b = _deposit("b", 5, "24500")
    assert pick_deposit(date(2024, 1, 5), [a, b]) is b


def test_pick_deposit_requires_sorted_input() -> None:
    with pytest.raises(deal.PreContractError):
        pick_deposit(date(2024, 1, 10), [_deposit("d2", 20, "1"), _deposit("d1", 5, "1")])


def test_enrich_costs_uses_effective_rate_and_vat(snapshot_of) -> None:
    snap = snapshot_of(
        _deposit("d1", 5, "24000"),
        _deposit("d2", 20, "25000"),
        _cost("c1", 10, "10", vat="10"),
        _cost("c2", 25, "4"),
        _cost("c3", 2, "1"),
    )
    enriched = {e.cost.id: e for e in enrich_ad_costs(snap)}
    assert enriched["c1"].effective_rate == Decimal("24000")
    assert enriched["c1"].vnd_cost == Decimal("240000")
    assert enriched["c1"].vat_amount == Decimal("24000")
    assert enriched["c2"].vnd_cost == Decimal("100000")
    assert enriched["c3"].deposit_id == "d1"


def test_cost_without_deposits_is_unresolved(snapshot_of) -> None:
    [e] = enrich_ad_costs(snapshot_of(_cost("c1", 10, "10", account="EMPTY")))
    assert e.unresolved is True
    assert e.effective_rate == Decimal("0")
    assert e.vnd_cost == Decimal("0")


def test_ad_account_ledger_running_balance(snapshot_of) -> None:
    snap = snapshot_of(
        _deposit("d1", 5, "24000", usd="100"),
        AdFundTransfer(
            id="t1",
            from_ad_account_number="ACC1",
            to_ad_account_number="ACC2",
            date=date(2024, 1, 6),
            amount=Decimal("30"),
        ),
        _cost("c1", 7, "20"),
        _cost("c2", 8, "5", account="ACC2"),
    )
    ledger = ad_account_ledger(snap, "ACC1")
    assert [(e.kind, e.balance) for e in ledger] == [
        ("deposit", Decimal("100")),
        ("transfer_out", Decimal("70")),
        ("spend", Decimal("50")),
    ]
    assert ad_account_balances(snap) == {"ACC1": Decimal("50"), "ACC2": Decimal("25")}
