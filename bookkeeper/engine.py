"""
Bookkeeping engine facade.

The one mutation boundary of the ledger: every add/update/delete is
validated, period-gated and only then written. Derived views are pure
reads over a fresh snapshot.

    engine = BookkeepingEngine(JsonFileStore("data/bookkeeper/ledger.json"))
    engine.open_period("2024-01")
    asset = engine.add(Draft(Asset, {"name": "Bank", "currency": "VND"}))
"""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, NoReturn, Optional, Type, TypeVar
from uuid import uuid4

import pydantic

from bookkeeper import amortization
from bookkeeper.ad_rates import AdAccountEntry, EnrichedAdCost, ad_account_balances, ad_account_ledger, enrich_ad_costs
from bookkeeper.attribution import AttributionStrategy
from bookkeeper.balances import AssetPosition, resolve_all
from bookkeeper.errors import PeriodNotActiveError, Rejection, ValidationError, error_for
from bookkeeper.financials import PeriodReport, PeriodSummary, compile_period, periods_overview
from bookkeeper.models import (
    DEFAULT_ASSET_TYPES,
    AdDeposit,
    AssetType,
    CapitalInflow,
    CapitalRollForward,
    Commission,
    DailyAdCost,
    DebtPayment,
    Draft,
    LedgerSnapshot,
    Liability,
    MiscellaneousExpense,
    Partner,
    Period,
    Project,
    Receivable,
    ReceivablePayment,
    Record,
    Withdrawal,
)
from bookkeeper.money import dsum, is_period
from bookkeeper.periods import PeriodLifecycle, closing_cutoff, suggest_next_period
from bookkeeper.store import PERIOD_REPORTS_KEY, TAX_SETTINGS_KEY, InMemoryStore, LedgerRepository, LedgerStore
from bookkeeper.tax import TaxResult
from bookkeeper.validation import RecordValidator, with_computed_amounts
from infra.config_loader import EngineConfig, TaxSettings, get_app_config
from infra.logging_config import get_logger
from infra.result import Err, Result
from infra.time_utils import Clock, today_utc

logger = get_logger(__name__)

R = TypeVar("R", bound=Record)


@dataclass(frozen=True)
class AmortizationView:
    status: amortization.DueStatus
    schedule: List[amortization.ScheduleLine]


@dataclass(frozen=True)
class PartnerCapital:
    partner_id: str
    name: str
    contributed: Decimal
    withdrawn: Decimal
    rolled_forward: Decimal

    @property
    def balance(self) -> Decimal:
        return self.contributed + self.rolled_forward - self.withdrawn


def _new_id() -> str:
    return uuid4().hex


class BookkeepingEngine:
    def __init__(
        self,
        store: Optional[LedgerStore] = None,
        config: Optional[EngineConfig] = None,
        tax_settings: Optional[TaxSettings] = None,
        clock: Clock = today_utc,
        id_factory: Callable[[], str] = _new_id,
    ) -> None:
        self._repo = LedgerRepository(store if store is not None else InMemoryStore())
        self._config = config if config is not None else get_app_config().engine
        self._clock = clock
        self._new_id = id_factory
        self._lifecycle = PeriodLifecycle(self._repo, self._config)
        self._tax_settings = self._init_tax_settings(tax_settings)
        self._ensure_defaults()

    # ============================================================
    # SETUP
    # ============================================================

    def _init_tax_settings(self, explicit: Optional[TaxSettings]) -> TaxSettings:
        if explicit is not None:
            self._repo.set_blob(TAX_SETTINGS_KEY, explicit.model_dump(mode="json"))
            return explicit
        stored = self._repo.get_blob(TAX_SETTINGS_KEY)
        if stored:
            try:
                return TaxSettings(**stored)
            except pydantic.ValidationError as exc:
                raise ValidationError(f"stored tax settings are invalid: {exc}") from exc
        settings = get_app_config().tax
        self._repo.set_blob(TAX_SETTINGS_KEY, settings.model_dump(mode="json"))
        return settings

    def _ensure_defaults(self) -> None:
        if not self._repo.exists(Partner, self._config.me_partner_id):
            self._repo.put(Partner(id=self._config.me_partner_id, name=self._config.me_partner_name, is_self=True))
        if not self._repo.records(AssetType):
            self._repo.put_many([AssetType(id=i, name=n) for i, n in DEFAULT_ASSET_TYPES])

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def tax_settings(self) -> TaxSettings:
        return self._tax_settings

    def update_tax_settings(self, **changes: Any) -> TaxSettings:
        try:
            updated = TaxSettings(**{**self._tax_settings.model_dump(), **changes})
        except pydantic.ValidationError as exc:
            self._reject(Rejection("VALIDATION_ERROR", f"invalid tax settings: {exc}"), "tax_settings")
        self._repo.set_blob(TAX_SETTINGS_KEY, updated.model_dump(mode="json"))
        self._tax_settings = updated
        logger.info("Tax settings updated", extra={"extra_data": {"changes": sorted(changes)}})
        return updated

    # ============================================================
    # HELPERS
    # ============================================================

    def _reject(self, rejection: Rejection, kind: str) -> NoReturn:
        logger.warning(
            "Mutation rejected",
            extra={"extra_data": {"code": rejection.code, "kind": kind, "reason": rejection.message}},
        )
        raise error_for(rejection)

    def _unwrap(self, result: Result[Any, Rejection], kind: str) -> Any:
        if isinstance(result, Err):
            self._reject(result.error, kind)
        return result.unwrap_or_raise(error_for)

    @staticmethod
    def _require_period(period: str) -> None:
        if not is_period(period):
            raise error_for(Rejection("VALIDATION_ERROR", f"invalid period {period!r}, expected YYYY-MM"))

    def _attribution(self, snap: LedgerSnapshot) -> AttributionStrategy:
        return AttributionStrategy(snap.index(Project), self._config.me_partner_id)

    def snapshot(self) -> LedgerSnapshot:
        return self._repo.snapshot()

    def get(self, record_type: Type[R], record_id: str) -> R:
        return self._repo.find(record_type, record_id)

    def list_records(self, record_type: Type[R]) -> List[R]:
        return sorted(self._repo.records(record_type), key=lambda r: r.id)

    # ============================================================
    # MUTATIONS
    # ============================================================

    def add(self, draft: Draft[R]) -> R:
        """Validate, gate and store a new record; returns it with its id."""
        if not isinstance(draft, Draft):
            raise ValidationError("add() takes a Draft; use update() for stored records")
        kind = draft.record_type.__name__
        if draft.record_type is Project and "period" not in draft.values:
            current = self._lifecycle.active()
            if current is None:
                self._reject(Rejection(PeriodNotActiveError.code, "no active period for the new project"), kind)
            draft = draft.with_values(period=current.id)

        snap = self._repo.snapshot()
        record = with_computed_amounts(draft.build(self._new_id()), snap)
        self._unwrap(RecordValidator(snap, self._config).check(record), kind)
        self._unwrap(self._lifecycle.gate(None, record), kind)

        self._repo.put(record)
        self._after_write(record)
        logger.info("Record added", extra={"extra_data": {"kind": kind, "id": record.id}})
        return self._repo.find(type(record), record.id)

    def update(self, record: Record) -> None:
        if isinstance(record, Draft):
            raise ValidationError("update() takes a stored record; use add() for drafts")
        kind = type(record).__name__
        old = self._repo.find(type(record), record.id)
        snap = self._repo.snapshot()
        record = with_computed_amounts(record, snap, creating=False)
        self._unwrap(RecordValidator(snap, self._config).check(record, old), kind)
        self._unwrap(self._lifecycle.gate(old, record), kind)

        self._repo.put(record)
        self._after_write(record)
        logger.info("Record updated", extra={"extra_data": {"kind": kind, "id": record.id}})

    def delete(self, record_type: Type[Record], record_id: str) -> None:
        kind = record_type.__name__
        record = self._repo.find(record_type, record_id)
        snap = self._repo.snapshot()
        self._unwrap(RecordValidator(snap, self._config).check_delete(record), kind)

        doomed: List[Record] = [record]
        if isinstance(record, Project):
            doomed += [c for c in snap.all(Commission) if c.project_id == record.id]
            doomed += [c for c in snap.all(DailyAdCost) if c.project_id == record.id]
            doomed += [e for e in snap.all(MiscellaneousExpense) if e.project_id == record.id]
            doomed += [d for d in snap.all(AdDeposit) if d.project_id == record.id]
        for item in doomed:
            self._unwrap(self._lifecycle.gate(item, None), type(item).__name__)

        for item in doomed:
            self._repo.remove(type(item), item.id)
            self._after_write(item)
        logger.info(
            "Record deleted",
            extra={"extra_data": {"kind": kind, "id": record_id, "cascade": len(doomed) - 1}},
        )

    def _after_write(self, record: Record) -> None:
        """Stamp completion on the parent debt/receivable once it is settled."""
        parent: Optional[Record] = None
        if isinstance(record, DebtPayment):
            parent = self._repo.snapshot().get(Liability, record.liability_id)
        elif isinstance(record, ReceivablePayment):
            parent = self._repo.snapshot().get(Receivable, record.receivable_id)
        if not isinstance(parent, (Liability, Receivable)) or parent.completion_date is not None:
            return
        payments = amortization.payments_for(self._repo.snapshot(), parent)
        done = amortization.completion_date(parent, payments, self._config.completion_epsilon)
        if done is not None:
            # Engine-owned field: written even when the parent sits in a closed period
            self._repo.put(dataclasses.replace(parent, completion_date=done))
            logger.info(
                "Item settled",
                extra={"extra_data": {"kind": type(parent).__name__, "id": parent.id, "completion_date": done}},
            )

    # ============================================================
    # DERIVED VIEWS
    # ============================================================

    def get_enriched_assets(self) -> List[AssetPosition]:
        snap = self._repo.snapshot()
        return list(resolve_all(snap, self._attribution(snap)).values())

    def get_asset_position(self, asset_id: str) -> AssetPosition:
        for position in self.get_enriched_assets():
            if position.asset_id == asset_id:
                return position
        raise error_for(Rejection("RECORD_NOT_FOUND", f"asset {asset_id!r} not found"))

    def get_amortization_schedule(self, item_id: str, period: str) -> AmortizationView:
        self._require_period(period)
        snap = self._repo.snapshot()
        item: Optional[Record] = snap.get(Liability, item_id) or snap.get(Receivable, item_id)
        if not isinstance(item, (Liability, Receivable)):
            raise error_for(Rejection("RECORD_NOT_FOUND", f"debt or receivable {item_id!r} not found"))
        payments = amortization.payments_for(snap, item)
        return AmortizationView(
            status=amortization.status(item, payments, period, self._config.completion_epsilon),
            schedule=amortization.schedule(item, payments),
        )

    def get_due_items(self, period: str) -> List[amortization.DueStatus]:
        self._require_period(period)
        return amortization.due_items(self._repo.snapshot(), period, self._config.completion_epsilon)

    def get_period_financials(self, period: str) -> PeriodReport:
        self._require_period(period)
        return compile_period(self._repo.snapshot(), period, self._tax_settings, self._config)

    def get_closed_report(self, period: str) -> Optional[Dict[str, Any]]:
        """The report stored when `period` was closed."""
        reports = self._repo.get_blob(PERIOD_REPORTS_KEY) or {}
        return reports.get(period)

    def get_tax_estimate(self, period: str) -> TaxResult:
        return self.get_period_financials(period).tax

    def get_enriched_ad_costs(self) -> List[EnrichedAdCost]:
        return enrich_ad_costs(self._repo.snapshot())

    def get_ad_account_balances(self) -> Dict[str, Decimal]:
        return ad_account_balances(self._repo.snapshot())

    def get_ad_account_ledger(self, account_number: str) -> List[AdAccountEntry]:
        return ad_account_ledger(self._repo.snapshot(), account_number)

    def get_partner_capital(self) -> List[PartnerCapital]:
        snap = self._repo.snapshot()
        me = self._config.me_partner_id
        out = []
        for p in sorted(snap.all(Partner), key=lambda p: (p.id != me, p.name, p.id)):
            contributed = dsum(
                c.amount
                for c in snap.all(CapitalInflow)
                if (c.contributed_by_partner_id or (me if not c.external_investor_name else None)) == p.id
            )
            withdrawn = dsum(w.amount for w in snap.all(Withdrawal) if w.withdrawn_by == p.id)
            rolled = dsum(r.amount for r in snap.all(CapitalRollForward) if r.partner_id == p.id)
            out.append(PartnerCapital(p.id, p.name, contributed, withdrawn, rolled))
        return out

    def get_periods_overview(self) -> List[PeriodSummary]:
        return periods_overview(self._repo.snapshot(), self._tax_settings, self._config)

    # ============================================================
    # LIFECYCLE
    # ============================================================

    def periods(self) -> List[Period]:
        return self._lifecycle.periods()

    def active_period(self) -> Optional[Period]:
        return self._lifecycle.active()

    def open_period(self, period: str) -> Period:
        return self._unwrap(self._lifecycle.open(period), "Period")

    def close_period(self, period: str, today: Optional[date] = None) -> PeriodReport:
        when = today if today is not None else self._clock()
        return self._unwrap(
            self._lifecycle.close(period, when, self._tax_settings, self._new_id),
            "Period",
        )

    def next_period(self, today: Optional[date] = None) -> str:
        return suggest_next_period(self._lifecycle.periods(), today if today is not None else self._clock())

    def closing_cutoff(self, period: str) -> date:
        self._require_period(period)
        return closing_cutoff(period, self._tax_settings.period_closing_day)

    # ============================================================
    # EXPORT / IMPORT
    # ============================================================

    def export_snapshot(self) -> Dict[str, Any]:
        return self._repo.export_document()

    def import_snapshot(self, doc: Mapping[str, Any]) -> None:
        self._repo.import_document(doc)
        stored = self._repo.get_blob(TAX_SETTINGS_KEY)
        if stored:
            try:
                self._tax_settings = TaxSettings(**stored)
            except pydantic.ValidationError as exc:
                raise ValidationError(f"imported tax settings are invalid: {exc}") from exc
        else:
            self._repo.set_blob(TAX_SETTINGS_KEY, self._tax_settings.model_dump(mode="json"))
        self._ensure_defaults()

