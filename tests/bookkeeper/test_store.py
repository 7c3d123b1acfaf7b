from __future__ import annotations

import json
from datetime import date
from decimal import Decimal
from pathlib import Path
from tempfile import TemporaryDirectory

import pytest

from bookkeeper.errors import RecordNotFoundError, ValidationError
from bookkeeper.models import Asset, Commission
from bookkeeper.store import (
    PERIOD_REPORTS_KEY,
    TAX_SETTINGS_KEY,
    InMemoryStore,
    JsonFileStore,
    LedgerRepository,
)


def _asset(asset_id: str, name: str = "Bank") -> Asset:
    return Asset(id=asset_id, name=name, currency="VND", opening_balance=Decimal("5"))


def test_in_memory_store_copies_values() -> None:
    store = InMemoryStore()
    value = {"items": [1, 2]}
    store.set("k", value)
    value["items"].append(3)
    assert store.get("k") == {"items": [1, 2]}
    assert store.get("missing") is None


def test_repository_put_replaces_by_id() -> None:
    repo = LedgerRepository(InMemoryStore())
    repo.put(_asset("a1"))
    repo.put(_asset("a1", name="Renamed"))
    assert [a.name for a in repo.records(Asset)] == ["Renamed"]


def test_repository_find_and_remove() -> None:
    repo = LedgerRepository(InMemoryStore())
    repo.put_many([_asset("a2"), _asset("a1")])
    assert repo.find(Asset, "a1").id == "a1"
    assert repo.exists(Asset, "a2")
    repo.remove(Asset, "a2")
    assert not repo.exists(Asset, "a2")
    with pytest.raises(RecordNotFoundError):
        repo.find(Asset, "a2")
    with pytest.raises(RecordNotFoundError):
        repo.remove(Asset, "a2")


def test_json_file_store_persists_across_instances() -> None:
    with TemporaryDirectory() as td:
        path = Path(td) / "nested" / "ledger.json"
        LedgerRepository(JsonFileStore(path)).put(_asset("a1"))
        assert path.exists()
        reloaded = LedgerRepository(JsonFileStore(path))
        assert reloaded.find(Asset, "a1").opening_balance == Decimal("5")
        # atomic replace leaves no temp files behind
        assert [p.name for p in path.parent.iterdir()] == ["ledger.json"]


def test_json_file_store_rejects_corrupt_file() -> None:
    with TemporaryDirectory() as td:
        path = Path(td) / "ledger.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ValidationError, match="LEDGER_CORRUPT"):
            JsonFileStore(path)


def test_json_file_store_rejects_non_object_root() -> None:
    with TemporaryDirectory() as td:
        path = Path(td) / "ledger.json"
        path.write_text("[]", encoding="utf-8")
        with pytest.raises(ValidationError):
            JsonFileStore(path)


def test_export_document_is_sorted_and_json_ready() -> None:
    repo = LedgerRepository(InMemoryStore())
    repo.put_many([_asset("b"), _asset("a")])
    doc = repo.export_document()
    assert [a["id"] for a in doc["assets"]] == ["a", "b"]
    assert doc[PERIOD_REPORTS_KEY] == {}
    json.dumps(doc)


def test_import_document_replaces_everything() -> None:
    source = LedgerRepository(InMemoryStore())
    source.put(_asset("a1"))
    source.put(
        Commission(
            id="c1",
            project_id="p1",
            asset_id="a1",
            date=date(2024, 1, 3),
            usd_amount=Decimal("10"),
            predicted_rate=Decimal("25000"),
            vnd_amount=Decimal("250000"),
        )
    )
    source.set_blob(TAX_SETTINGS_KEY, {"method": "revenue"})
    doc = source.export_document()

    target = LedgerRepository(InMemoryStore())
    target.put(_asset("old"))
    target.import_document(doc)
    assert target.export_document() == doc
    assert not target.exists(Asset, "old")


def test_import_document_rejects_duplicates_without_writing() -> None:
    repo = LedgerRepository(InMemoryStore())
    repo.put(_asset("keep"))
    doc = {"assets": [{"id": "x", "name": "A", "currency": "VND"}, {"id": "x", "name": "B", "currency": "VND"}]}
    with pytest.raises(ValidationError):
        repo.import_document(doc)
    assert repo.exists(Asset, "keep")


def test_import_document_rejects_bad_records_without_writing() -> None:
    repo = LedgerRepository(InMemoryStore())
    repo.put(_asset("keep"))
    doc = {
        "assets": [{"id": "new", "name": "A", "currency": "VND"}],
        "commissions": [{"id": "c1", "project_id": "p1"}],
    }
    with pytest.raises(ValidationError):
        repo.import_document(doc)
    assert [a.id for a in repo.records(Asset)] == ["keep"]
