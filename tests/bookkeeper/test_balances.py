from __future__ import annotations

from datetime import date
from decimal import Decimal

from bookkeeper.attribution import AttributionStrategy
from bookkeeper.balances import build_movements, resolve, resolve_all
from bookkeeper.models import (
    AdDeposit,
    Asset,
    CapitalInflow,
    Commission,
    Draft,
    ExchangeLog,
    Investment,
    Liability,
    PartnerShare,
    Project,
    Saving,
    Withdrawal,
)

ME = "default-me"


def _attr(*projects: Project) -> AttributionStrategy:
    return AttributionStrategy({p.id: p for p in projects}, ME)


def test_capital_commission_withdrawal_example(january) -> None:
    a1 = january.add(Draft(Asset, {"name": "A1", "currency": "VND"}))
    a2 = january.add(Draft(Asset, {"name": "A2", "currency": "VND"}))
    project = january.add(Draft(Project, {"name": "Solo"}))
    january.add(Draft(CapitalInflow, {"asset_id": a1.id, "date": date(2024, 1, 2), "amount": Decimal("10000000")}))
    january.add(
        Draft(
            Commission,
            {
                "project_id": project.id,
                "asset_id": a2.id,
                "date": date(2024, 1, 3),
                "usd_amount": Decimal("100"),
                "predicted_rate": Decimal("25000"),
            },
        )
    )
    january.add(
        Draft(Withdrawal, {"asset_id": a1.id, "withdrawn_by": ME, "date": date(2024, 1, 4), "amount": Decimal("3000000")})
    )

    pos = january.get_asset_position(a1.id)
    assert pos.balance == Decimal("7000000")
    assert [(o.partner_id, o.received, o.withdrawn) for o in pos.owners] == [
        (ME, Decimal("10000000"), Decimal("3000000"))
    ]
    assert pos.is_expandable is False
    assert january.get_asset_position(a2.id).balance == Decimal("2500000")


def test_commission_into_usd_asset_moves_usd(snapshot_of) -> None:
    usd = Asset(id="u", name="Payoneer", currency="USD")
    project = Project(id="p", name="P", period="2024-01")
    c = Commission(
        id="c",
        project_id="p",
        asset_id="u",
        date=date(2024, 1, 3),
        usd_amount=Decimal("100"),
        predicted_rate=Decimal("25000"),
        vnd_amount=Decimal("2500000"),
    )
    pos = resolve(snapshot_of(usd, project, c), "u", _attr(project))
    assert pos.balance == Decimal("100")


def test_external_investor_money_is_untracked(snapshot_of) -> None:
    bank = Asset(id="b", name="Bank", currency="VND")
    external = CapitalInflow(
        id="ci", asset_id="b", date=date(2024, 1, 2), amount=Decimal("500"), external_investor_name="Fund"
    )
    mine = CapitalInflow(id="ci2", asset_id="b", date=date(2024, 1, 2), amount=Decimal("100"))
    pos = resolve(snapshot_of(bank, external, mine), "b", _attr())
    assert pos.total_received == Decimal("600")
    assert pos.untracked_received == Decimal("500")
    assert sum(o.received for o in pos.owners) + pos.untracked_received == pos.total_received


def test_exchange_split_follows_selling_positions(snapshot_of) -> None:
    usd = Asset(id="u", name="USD", currency="USD")
    vnd = Asset(id="v", name="VND", currency="VND")
    p1 = CapitalInflow(id="c1", asset_id="u", date=date(2024, 1, 1), amount=Decimal("60"), contributed_by_partner_id="p1")
    p2 = CapitalInflow(id="c2", asset_id="u", date=date(2024, 1, 1), amount=Decimal("40"), contributed_by_partner_id="p2")
    x = ExchangeLog(
        id="x",
        selling_asset_id="u",
        receiving_asset_id="v",
        date=date(2024, 1, 1),
        usd_amount=Decimal("50"),
        rate=Decimal("25000"),
        vnd_amount=Decimal("1250000"),
    )
    positions = resolve_all(snapshot_of(usd, vnd, p1, p2, x), _attr())

    assert positions["u"].balance == Decimal("50")
    assert positions["u"].owner("p1").withdrawn == Decimal("30")
    assert positions["u"].owner("p2").withdrawn == Decimal("20")
    assert positions["v"].owner("p1").received == Decimal("750000")
    assert positions["v"].owner("p2").received == Decimal("500000")
    assert positions["v"].is_expandable is True


def test_exchange_without_positions_falls_back_to_me(snapshot_of) -> None:
    usd = Asset(id="u", name="USD", currency="USD", opening_balance=Decimal("10"))
    vnd = Asset(id="v", name="VND", currency="VND")
    x = ExchangeLog(
        id="x",
        selling_asset_id="u",
        receiving_asset_id="v",
        date=date(2024, 1, 1),
        usd_amount=Decimal("10"),
        rate=Decimal("24000"),
        vnd_amount=Decimal("240000"),
    )
    positions = resolve_all(snapshot_of(usd, vnd, x), _attr())
    assert positions["v"].owner(ME).received == Decimal("240000")
    assert positions["u"].balance == Decimal("0")


def test_partnership_commission_split(snapshot_of) -> None:
    bank = Asset(id="b", name="Bank", currency="VND")
    project = Project(
        id="p",
        name="Shared",
        period="2024-01",
        is_partnership=True,
        partner_shares=(PartnerShare(ME, Decimal("60")), PartnerShare("p2", Decimal("40"))),
    )
    c = Commission(
        id="c",
        project_id="p",
        asset_id="b",
        date=date(2024, 1, 3),
        usd_amount=Decimal("100"),
        predicted_rate=Decimal("25000"),
        vnd_amount=Decimal("2500000"),
    )
    pos = resolve(snapshot_of(bank, project, c), "b", _attr(project))
    assert pos.owner(ME).received == Decimal("1500000")
    assert pos.owner("p2").received == Decimal("1000000")
    assert [o.partner_id for o in pos.owners] == [ME, "p2"]


def test_investing_and_debt_flows(snapshot_of) -> None:
    bank = Asset(id="b", name="Bank", currency="VND", opening_balance=Decimal("1000"))
    loan = Liability(
        id="l",
        description="Loan",
        total_amount=Decimal("500"),
        currency="VND",
        creation_date=date(2024, 1, 1),
        inflow_asset_id="b",
    )
    saving = Saving(
        id="s",
        asset_id="b",
        description="Term",
        principal_amount=Decimal("300"),
        start_date=date(2024, 1, 2),
        end_date=date(2024, 2, 2),
        status="matured",
        maturity_amount=Decimal("310"),
    )
    inv = Investment(
        id="i",
        asset_id="b",
        description="Gold",
        investment_amount=Decimal("200"),
        date=date(2024, 1, 3),
    )
    deposit = AdDeposit(
        id="d",
        ad_account_number="ACC",
        asset_id="b",
        date=date(2024, 1, 4),
        usd_amount=Decimal("0.01"),
        rate=Decimal("1000"),
        vnd_amount=Decimal("10"),
    )
    snap = snapshot_of(bank, loan, saving, inv, deposit)
    pos = resolve(snap, "b", _attr())
    assert pos.balance == Decimal("1000") + 500 - 300 + 310 - 200 - 10
    assert pos.total_received == Decimal("810")
    assert pos.total_withdrawn == Decimal("510")

    earlier = resolve_all(snap, _attr(), as_of=date(2024, 1, 31))["b"]
    assert earlier.balance == Decimal("1000") + 500 - 300 - 200 - 10


def test_movements_skip_unknown_assets(snapshot_of) -> None:
    ci = CapitalInflow(id="ci", asset_id="ghost", date=date(2024, 1, 2), amount=Decimal("1"))
    assert build_movements(snapshot_of(ci), _attr()) == []


def test_resolution_ignores_collection_order(snapshot_of) -> None:
    bank = Asset(id="b", name="Bank", currency="VND")
    flows = [
        CapitalInflow(id=f"c{i}", asset_id="b", date=date(2024, 1, 1 + i), amount=Decimal(10 * (i + 1)),
                      contributed_by_partner_id="p2" if i % 2 else None)
        for i in range(5)
    ]
    forward = resolve_all(snapshot_of(bank, *flows), _attr())
    backward = resolve_all(snapshot_of(bank, *reversed(flows)), _attr())
    assert forward == backward
