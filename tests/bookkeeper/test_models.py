from __future__ import annotations

import dataclasses
from datetime import date
from decimal import Decimal

import pytest

from bookkeeper.errors import ValidationError
from bookkeeper.models import (
    Asset,
    Commission,
    Draft,
    LedgerSnapshot,
    Liability,
    PartnerShare,
    Project,
    Saving,
    record_from_dict,
    record_to_dict,
)


def test_record_coerces_iso_dates_and_string_amounts() -> None:
    c = Commission(
        id="c1",
        project_id="p1",
        asset_id="a1",
        date="2024-01-10",
        usd_amount="100",
        predicted_rate=25000,
    )
    assert c.date == date(2024, 1, 10)
    assert c.usd_amount == Decimal("100")
    assert c.predicted_rate == Decimal("25000")


def test_record_rejects_float_amounts() -> None:
    with pytest.raises(ValidationError):
        Asset(id="a1", name="Bank", currency="VND", opening_balance=1.5)  # type: ignore[arg-type]


def test_project_shares_from_mappings() -> None:
    p = Project(
        id="p1",
        name="Shop",
        period="2024-01",
        is_partnership=True,
        partner_shares=[{"partner_id": "me", "share_percentage": "60"}, {"partner_id": "p2", "share_percentage": 40}],
    )
    assert p.partner_shares == (PartnerShare("me", Decimal("60")), PartnerShare("p2", Decimal("40")))


def test_records_are_frozen() -> None:
    a = Asset(id="a1", name="Bank", currency="VND")
    with pytest.raises(dataclasses.FrozenInstanceError):
        a.name = "Other"  # type: ignore[misc]


def test_draft_rejects_id_and_unknown_fields() -> None:
    with pytest.raises(ValidationError):
        Draft(Asset, {"id": "x", "name": "Bank", "currency": "VND"})
    with pytest.raises(ValidationError):
        Draft(Asset, {"name": "Bank", "currency": "VND", "colour": "red"}).build("a1")


def test_draft_build_assigns_id() -> None:
    asset = Draft(Asset, {"name": "Bank", "currency": "VND"}).with_values(opening_balance="10").build("a1")
    assert asset == Asset(id="a1", name="Bank", currency="VND", opening_balance=Decimal("10"))


def test_draft_missing_required_field_is_validation_error() -> None:
    with pytest.raises(ValidationError):
        Draft(Asset, {"name": "Bank"}).build("a1")


def test_liability_events_ignore_completion_date() -> None:
    item = Liability(
        id="l1",
        description="Loan",
        total_amount=Decimal("1000"),
        currency="VND",
        creation_date=date(2024, 1, 1),
    )
    settled = dataclasses.replace(item, completion_date=date(2024, 5, 1))
    assert item.events() == settled.events()


def test_saving_events_split_placement_and_maturity() -> None:
    s = Saving(
        id="s1",
        asset_id="a1",
        description="Term",
        principal_amount=Decimal("100"),
        start_date=date(2024, 1, 5),
        end_date=date(2024, 4, 5),
    )
    matured = dataclasses.replace(s, status="matured", maturity_amount=Decimal("103"))
    assert set(s.events()) == {"placed"}
    assert matured.events()["placed"] == s.events()["placed"]
    assert matured.events()["matured"][0] == date(2024, 4, 5)


def test_codec_keeps_decimals_as_strings() -> None:
    p = Project(
        id="p1",
        name="Shop",
        period="2024-01",
        is_partnership=True,
        partner_shares=(PartnerShare("me", Decimal("100")),),
    )
    data = record_to_dict(p)
    assert data["partner_shares"] == [{"partner_id": "me", "share_percentage": "100"}]
    assert record_from_dict(Project, data) == p


def test_record_from_dict_ignores_unknown_keys() -> None:
    a = record_from_dict(Asset, {"id": "a1", "name": "Bank", "currency": "VND", "legacy": 1})
    assert a.id == "a1"


def test_snapshot_lookup() -> None:
    snap = LedgerSnapshot.empty()
    assert snap.all(Asset) == ()
    assert snap.get(Asset, None) is None
    assert snap.get(Asset, "missing") is None
