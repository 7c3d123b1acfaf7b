from __future__ import annotations

import itertools
from datetime import date
from typing import Callable

import pytest

from bookkeeper.engine import BookkeepingEngine
from bookkeeper.models import RECORD_TYPES, LedgerSnapshot, Record
from bookkeeper.store import InMemoryStore
from infra.config_loader import EngineConfig, TaxSettings
from infra.time_utils import fixed_clock

ME = "default-me"


@pytest.fixture
def ids() -> Callable[[], str]:
    counter = itertools.count(1)
    return lambda: f"id-{next(counter):04d}"


@pytest.fixture
def engine(ids) -> BookkeepingEngine:
    return BookkeepingEngine(
        InMemoryStore(),
        config=EngineConfig(),
        tax_settings=TaxSettings(period_closing_day=5),
        clock=fixed_clock(date(2024, 1, 15)),
        id_factory=ids,
    )


@pytest.fixture
def january(engine: BookkeepingEngine) -> BookkeepingEngine:
    engine.open_period("2024-01")
    return engine


@pytest.fixture
def snapshot_of() -> Callable[..., LedgerSnapshot]:
    """Build a snapshot straight from records (no validation, no gating)."""

    def build(*records: Record) -> LedgerSnapshot:
        collections = {t.collection: [] for t in RECORD_TYPES}
        for r in records:
            collections[r.collection].append(r)
        return LedgerSnapshot({k: tuple(v) for k, v in collections.items()})

    return build
