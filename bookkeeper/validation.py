"""
Policy checks at the mutation boundary.

Every check returns Ok(record) or Err(Rejection); nothing here raises for an
expected rejection and nothing writes. The engine turns Err into the
matching BookkeepingError.
"""
from __future__ import annotations

import dataclasses
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

from bookkeeper.attribution import AttributionStrategy
from bookkeeper.balances import resolve_all
from bookkeeper.errors import Rejection
from bookkeeper.models import (
    AdAccount,
    AdDeposit,
    AdFundTransfer,
    Asset,
    AssetType,
    CapitalInflow,
    CapitalRollForward,
    Commission,
    DailyAdCost,
    DebtPayment,
    ExchangeLog,
    Investment,
    LedgerSnapshot,
    Liability,
    MiscellaneousExpense,
    Partner,
    PartnerShare,
    Period,
    PeriodLiability,
    PeriodReceivable,
    Project,
    Receivable,
    ReceivablePayment,
    Record,
    Saving,
    TaxPayment,
    Withdrawal,
    field_kinds,
)
from bookkeeper.money import CURRENCIES, HUNDRED, ZERO, dsum, in_period, is_period, period_of
from infra.config_loader import EngineConfig
from infra.result import Err, Ok, Result

Check = Result[Record, Rejection]

VALIDATION = "VALIDATION_ERROR"
PERIOD_CLOSED = "PERIOD_CLOSED"
PERIOD_NOT_ACTIVE = "PERIOD_NOT_ACTIVE"


def invalid(message: str) -> Check:
    return Err(Rejection(VALIDATION, message))


def violation(code: str, message: str) -> Check:
    return Err(Rejection(code, message))


# ============================================================
# PERIOD GATE
# ============================================================

def _gate_date(day: date, periods: Dict[str, Period]) -> Optional[Rejection]:
    p = period_of(day)
    record = periods.get(p)
    if record is not None and record.status == "closed":
        return Rejection(PERIOD_CLOSED, f"period {p} is closed")
    if record is None or record.status != "active":
        return Rejection(PERIOD_NOT_ACTIVE, f"period {p} is not the active period")
    return None


def check_period_gate(
    old: Optional[Record],
    new: Optional[Record],
    periods: Iterable[Period],
) -> Result[Optional[Record], Rejection]:
    """
    Every dated effect that the write adds, changes or removes must lie in
    the active period. Unchanged effects (e.g. the placement of a saving
    that is now being matured) are not re-checked.
    """
    by_id = {p.id: p for p in periods}
    old_events = old.events() if old is not None else {}
    new_events = new.events() if new is not None else {}
    days: List[date] = []
    for name in sorted(set(old_events) | set(new_events)):
        before = old_events.get(name)
        after = new_events.get(name)
        if before == after:
            continue
        days += [ev[0] for ev in (before, after) if ev is not None]
    # Closed-period violations win over not-active ones
    rejections = [r for r in (_gate_date(d, by_id) for d in sorted(set(days))) if r is not None]
    rejections.sort(key=lambda r: r.code != PERIOD_CLOSED)
    if rejections:
        return Err(rejections[0])
    return Ok(new)


# ============================================================
# RECORD CHECKS
# ============================================================

class RecordValidator:
    """Shape, reference and business checks against the current snapshot."""

    def __init__(self, snapshot: LedgerSnapshot, config: EngineConfig) -> None:
        self._snap = snapshot
        self._config = config
        # Dispatch is on the exact record type, so each handler sees its own class
        self._checks: Dict[type, Callable[[Any, Optional[Record]], Check]] = {
            AssetType: self._asset_type,
            Asset: self._asset,
            Partner: self._partner,
            Project: self._project,
            AdAccount: self._ad_account,
            Commission: self._commission,
            AdDeposit: self._ad_deposit,
            AdFundTransfer: self._ad_transfer,
            DailyAdCost: self._daily_ad_cost,
            MiscellaneousExpense: self._misc_expense,
            Liability: self._liability,
            Receivable: self._receivable,
            DebtPayment: self._debt_payment,
            ReceivablePayment: self._receivable_payment,
            PeriodLiability: self._period_liability,
            PeriodReceivable: self._period_receivable,
            CapitalInflow: self._capital_inflow,
            Withdrawal: self._withdrawal,
            ExchangeLog: self._exchange,
            Saving: self._saving,
            Investment: self._investment,
            TaxPayment: self._tax_payment,
        }

    def check(self, record: Record, previous: Optional[Record] = None) -> Check:
        handler = self._checks.get(type(record))
        if handler is None:
            return invalid(f"{type(record).__name__} records are managed by the engine")
        return self._non_negative(record).bind(lambda r: handler(r, previous))

    # --- helpers ---

    def _exists(self, record_type: type, record_id: Optional[str]) -> bool:
        return record_id is not None and self._snap.get(record_type, record_id) is not None

    def _asset(self, record: Asset, previous: Optional[Record]) -> Check:
        if not record.name.strip():
            return invalid("asset name is required")
        if record.currency not in CURRENCIES:
            return invalid(f"unsupported currency {record.currency!r}")
        if not self._exists(AssetType, record.type_id):
            return invalid(f"unknown asset type {record.type_id!r}")
        if previous is not None and previous.currency != record.currency and self._asset_in_use(record.id):
            return violation("ASSET_CURRENCY_LOCKED", "currency of an asset with transactions cannot change")
        return Ok(record)

    def _asset_ref(self, asset_id: Optional[str], currency: Optional[str] = None) -> Optional[Asset]:
        asset = self._snap.get(Asset, asset_id)
        if asset is None or (currency is not None and asset.currency != currency):
            return None
        return asset

    def _non_negative(self, record: Record) -> Check:
        for name, kind in field_kinds(type(record)).items():
            value = getattr(record, name)
            if kind == "decimal" and value is not None and value < ZERO:
                return invalid(f"{type(record).__name__}.{name} must be >= 0")
        return Ok(record)

    def _shares(self, shares: Sequence[PartnerShare]) -> Optional[str]:
        if not shares:
            return "a partnership needs partner shares"
        ids = [s.partner_id for s in shares]
        if len(ids) != len(set(ids)):
            return "duplicate partner in shares"
        for s in shares:
            if not self._exists(Partner, s.partner_id):
                return f"unknown partner {s.partner_id!r} in shares"
            if s.share_percentage <= ZERO:
                return "share percentages must be > 0"
        total = dsum(s.share_percentage for s in shares)
        if total != HUNDRED:
            return f"share percentages must sum to 100, got {total}"
        return None

    def _asset_in_use(self, asset_id: str) -> bool:
        s = self._snap
        refs = [c.asset_id for c in s.all(Commission)]
        refs += [d.asset_id for d in s.all(AdDeposit)]
        refs += [e.asset_id for e in s.all(MiscellaneousExpense)]
        refs += [x.selling_asset_id for x in s.all(ExchangeLog)] + [x.receiving_asset_id for x in s.all(ExchangeLog)]
        refs += [c.asset_id for c in s.all(CapitalInflow)] + [w.asset_id for w in s.all(Withdrawal)]
        refs += [p.asset_id for p in s.all(DebtPayment)] + [p.asset_id for p in s.all(ReceivablePayment)]
        refs += [lb.inflow_asset_id for lb in s.all(Liability)] + [r.outflow_asset_id for r in s.all(Receivable)]
        refs += [v.asset_id for v in s.all(Saving)] + [i.asset_id for i in s.all(Investment)]
        refs += [i.liquidation_asset_id for i in s.all(Investment)]
        refs += [t.asset_id for t in s.all(TaxPayment)]
        refs += [p.payment_asset_id for p in s.all(PeriodLiability)]
        refs += [p.received_asset_id for p in s.all(PeriodReceivable)]
        return asset_id in refs

    # --- reference data ---

    def _asset_type(self, record: AssetType, previous: Optional[Record]) -> Check:
        return Ok(record) if record.name.strip() else invalid("asset type name is required")

    def _partner(self, record: Partner, previous: Optional[Record]) -> Check:
        if not record.name.strip():
            return invalid("partner name is required")
        if record.is_self and record.id != self._config.me_partner_id:
            return invalid("only the default partner can be the self partner")
        return Ok(record)

    def _project(self, record: Project, previous: Optional[Record]) -> Check:
        if not record.name.strip():
            return invalid("project name is required")
        if not is_period(record.period):
            return invalid(f"invalid period {record.period!r}")
        if record.is_partnership:
            problem = self._shares(record.partner_shares)
            if problem:
                return invalid(problem)
        key = record.name.strip().lower()
        for other in self._snap.all(Project):
            if other.id != record.id and other.period == record.period and other.name.strip().lower() == key:
                return violation("PROJECT_NAME_TAKEN", f"project {record.name!r} already exists in {record.period}")
        return Ok(record)

    def _ad_account(self, record: AdAccount, previous: Optional[Record]) -> Check:
        if not record.account_number.strip():
            return invalid("account number is required")
        for other in self._snap.all(AdAccount):
            if other.id != record.id and other.account_number == record.account_number:
                return violation("AD_ACCOUNT_TAKEN", f"ad account {record.account_number!r} already exists")
        return Ok(record)

    # --- revenue & ad spend ---

    def _commission(self, record: Commission, previous: Optional[Record]) -> Check:
        if not self._exists(Project, record.project_id):
            return invalid(f"unknown project {record.project_id!r}")
        if self._asset_ref(record.asset_id) is None:
            return invalid(f"unknown asset {record.asset_id!r}")
        return Ok(record)

    def _ad_deposit(self, record: AdDeposit, previous: Optional[Record]) -> Check:
        if not record.ad_account_number.strip():
            return invalid("ad account number is required")
        if self._asset_ref(record.asset_id) is None:
            return invalid(f"unknown asset {record.asset_id!r}")
        if record.project_id is not None and not self._exists(Project, record.project_id):
            return invalid(f"unknown project {record.project_id!r}")
        if record.rate <= ZERO:
            return invalid("deposit rate must be > 0")
        return Ok(record)

    def _ad_transfer(self, record: AdFundTransfer, previous: Optional[Record]) -> Check:
        if record.from_ad_account_number == record.to_ad_account_number:
            return invalid("transfer source and destination must differ")
        if record.amount <= ZERO:
            return invalid("transfer amount must be > 0")
        return Ok(record)

    def _daily_ad_cost(self, record: DailyAdCost, previous: Optional[Record]) -> Check:
        if not self._exists(Project, record.project_id):
            return invalid(f"unknown project {record.project_id!r}")
        if not record.ad_account_number.strip():
            return invalid("ad account number is required")
        return Ok(record)

    def _misc_expense(self, record: MiscellaneousExpense, previous: Optional[Record]) -> Check:
        asset = self._asset_ref(record.asset_id)
        if asset is None:
            return invalid(f"unknown asset {record.asset_id!r}")
        if record.project_id is not None and not self._exists(Project, record.project_id):
            return invalid(f"unknown project {record.project_id!r}")
        if asset.currency == "USD" and (record.rate is None or record.rate <= ZERO):
            return invalid("expenses paid from a USD asset need a rate > 0")
        if record.is_partnership:
            problem = self._shares(record.partner_shares)
            if problem:
                return invalid(problem)
        return Ok(record)

    # --- debts & receivables ---

    def _scheduled_item(self, record: Union[Liability, Receivable], asset_id: Optional[str]) -> Check:
        if record.currency not in CURRENCIES:
            return invalid(f"unsupported currency {record.currency!r}")
        if record.total_amount <= ZERO:
            return invalid("total amount must be > 0")
        if record.number_of_installments is not None and record.number_of_installments < 0:
            return invalid("number of installments must be >= 0")
        if asset_id is not None and self._asset_ref(asset_id, record.currency) is None:
            return invalid(f"asset {asset_id!r} missing or not in {record.currency}")
        return Ok(record)

    def _paid_so_far(self, parent_id: str, payments: Iterable, parent_attr: str, exclude: Optional[str]) -> Decimal:
        return dsum(p.amount for p in payments if getattr(p, parent_attr) == parent_id and p.id != exclude)

    def _liability(self, record: Liability, previous: Optional[Record]) -> Check:
        paid = self._paid_so_far(record.id, self._snap.all(DebtPayment), "liability_id", None)
        if record.total_amount < paid:
            return violation("TOTAL_BELOW_PAID", f"total {record.total_amount} is below the {paid} already paid")
        return self._scheduled_item(record, record.inflow_asset_id)

    def _receivable(self, record: Receivable, previous: Optional[Record]) -> Check:
        paid = self._paid_so_far(record.id, self._snap.all(ReceivablePayment), "receivable_id", None)
        if record.total_amount < paid:
            return violation("TOTAL_BELOW_PAID", f"total {record.total_amount} is below the {paid} already collected")
        return self._scheduled_item(record, record.outflow_asset_id)

    def _payment(
        self,
        record: Union[DebtPayment, ReceivablePayment],
        parent: Optional[Union[Liability, Receivable]],
        paid: Decimal,
    ) -> Check:
        if parent is None:
            return invalid("payment references an unknown debt or receivable")
        if record.amount <= ZERO:
            return invalid("payment amount must be > 0")
        if self._asset_ref(record.asset_id, parent.currency) is None:
            return invalid(f"asset {record.asset_id!r} missing or not in {parent.currency}")
        remaining = parent.total_amount - paid
        if record.amount > remaining:
            return violation("PAYMENT_EXCEEDS_REMAINING", f"payment {record.amount} exceeds remaining {remaining}")
        return Ok(record)

    def _debt_payment(self, record: DebtPayment, previous: Optional[Record]) -> Check:
        parent = self._snap.get(Liability, record.liability_id)
        paid = self._paid_so_far(record.liability_id, self._snap.all(DebtPayment), "liability_id", record.id)
        return self._payment(record, parent, paid)

    def _receivable_payment(self, record: ReceivablePayment, previous: Optional[Record]) -> Check:
        parent = self._snap.get(Receivable, record.receivable_id)
        paid = self._paid_so_far(record.receivable_id, self._snap.all(ReceivablePayment), "receivable_id", record.id)
        return self._payment(record, parent, paid)

    def _period_item(
        self,
        record: Union[PeriodLiability, PeriodReceivable],
        settled: bool,
        asset_id: Optional[str],
        day: Optional[date],
    ) -> Check:
        if not is_period(record.period):
            return invalid(f"invalid period {record.period!r}")
        if record.currency not in CURRENCIES:
            return invalid(f"unsupported currency {record.currency!r}")
        if settled:
            if asset_id is None or day is None:
                return invalid("a settled item needs an asset and a date")
            if self._asset_ref(asset_id, record.currency) is None:
                return invalid(f"asset {asset_id!r} missing or not in {record.currency}")
            if not in_period(day, record.period):
                return invalid(f"settlement date must fall within {record.period}")
        if record.is_partnership:
            problem = self._shares(record.partner_shares)
            if problem:
                return invalid(problem)
        return Ok(record)

    def _period_liability(self, record: PeriodLiability, previous: Optional[Record]) -> Check:
        return self._period_item(record, record.is_paid, record.payment_asset_id, record.payment_date)

    def _period_receivable(self, record: PeriodReceivable, previous: Optional[Record]) -> Check:
        return self._period_item(record, record.is_received, record.received_asset_id, record.received_date)

    # --- capital ---

    def _capital_inflow(self, record: CapitalInflow, previous: Optional[Record]) -> Check:
        if self._asset_ref(record.asset_id) is None:
            return invalid(f"unknown asset {record.asset_id!r}")
        if record.contributed_by_partner_id and record.external_investor_name:
            return invalid("a capital inflow has at most one source")
        if record.contributed_by_partner_id and not self._exists(Partner, record.contributed_by_partner_id):
            return invalid(f"unknown partner {record.contributed_by_partner_id!r}")
        return Ok(record)

    def _without(self, record: Record) -> LedgerSnapshot:
        collections = dict(self._snap.collections)
        collections[record.collection] = tuple(r for r in collections.get(record.collection, ()) if r.id != record.id)
        return LedgerSnapshot(collections)

    def _positions(self, record: Record):
        snap = self._without(record)
        attribution = AttributionStrategy(snap.index(Project), self._config.me_partner_id)
        return resolve_all(snap, attribution)

    def _withdrawal(self, record: Withdrawal, previous: Optional[Record]) -> Check:
        if self._asset_ref(record.asset_id) is None:
            return invalid(f"unknown asset {record.asset_id!r}")
        if not self._exists(Partner, record.withdrawn_by):
            return invalid(f"unknown partner {record.withdrawn_by!r}")
        if record.amount <= ZERO:
            return invalid("withdrawal amount must be > 0")
        available = self._positions(record)[record.asset_id].owner(record.withdrawn_by).available
        if record.amount > available:
            return violation(
                "WITHDRAWAL_EXCEEDS_SHARE",
                f"withdrawal {record.amount} exceeds available share {available}",
            )
        return Ok(record)

    def _exchange(self, record: ExchangeLog, previous: Optional[Record]) -> Check:
        if self._asset_ref(record.selling_asset_id, "USD") is None:
            return invalid("selling asset must be a USD asset")
        if self._asset_ref(record.receiving_asset_id, "VND") is None:
            return invalid("receiving asset must be a VND asset")
        if record.usd_amount <= ZERO or record.rate <= ZERO:
            return invalid("exchange amount and rate must be > 0")
        balance = self._positions(record)[record.selling_asset_id].balance
        if record.usd_amount > balance:
            return violation(
                "EXCHANGE_EXCEEDS_BALANCE",
                f"selling {record.usd_amount} USD exceeds balance {balance}",
            )
        return Ok(record)

    def _saving(self, record: Saving, previous: Optional[Record]) -> Check:
        if self._asset_ref(record.asset_id) is None:
            return invalid(f"unknown asset {record.asset_id!r}")
        if record.status not in ("active", "matured"):
            return invalid(f"invalid saving status {record.status!r}")
        if record.end_date < record.start_date:
            return invalid("end date precedes start date")
        if (record.status == "matured") != (record.maturity_amount is not None):
            return invalid("maturity amount is required iff the saving is matured")
        return Ok(record)

    def _investment(self, record: Investment, previous: Optional[Record]) -> Check:
        if self._asset_ref(record.asset_id) is None:
            return invalid(f"unknown asset {record.asset_id!r}")
        if record.status not in ("ongoing", "liquidated"):
            return invalid(f"invalid investment status {record.status!r}")
        liquidated = record.status == "liquidated"
        has_fields = record.liquidation_date is not None and record.liquidation_amount is not None
        if liquidated != has_fields:
            return invalid("liquidation date and amount are required iff the investment is liquidated")
        if liquidated:
            if record.liquidation_date is not None and record.liquidation_date < record.date:
                return invalid("liquidation date precedes investment date")
            source = self._snap.get(Asset, record.asset_id)
            target = self._asset_ref(record.proceeds_asset_id)
            if target is None or source is None or target.currency != source.currency:
                return invalid("liquidation asset missing or in another currency")
        return Ok(record)

    def _tax_payment(self, record: TaxPayment, previous: Optional[Record]) -> Check:
        if not is_period(record.period):
            return invalid(f"invalid period {record.period!r}")
        if self._asset_ref(record.asset_id) is None:
            return invalid(f"unknown asset {record.asset_id!r}")
        return Ok(record)

    # ============================================================
    # DELETES
    # ============================================================

    def check_delete(self, record: Record) -> Check:
        s = self._snap
        if isinstance(record, (Period, CapitalRollForward)):
            return invalid(f"{type(record).__name__} records are managed by the engine")
        if isinstance(record, Partner):
            if record.id == self._config.me_partner_id or record.is_self:
                return violation("PARTNER_IS_SELF", "the self partner cannot be deleted")
            if self._partner_in_use(record.id):
                return violation("PARTNER_IN_USE", f"partner {record.id!r} is referenced by the ledger")
        if isinstance(record, Asset) and self._asset_in_use(record.id):
            return violation("ASSET_IN_USE", f"asset {record.id!r} has transactions")
        if isinstance(record, AssetType) and any(a.type_id == record.id for a in s.all(Asset)):
            return violation("ASSET_TYPE_IN_USE", f"asset type {record.id!r} is used by assets")
        if isinstance(record, AdAccount):
            number = record.account_number
            used = any(d.ad_account_number == number for d in s.all(AdDeposit))
            used = used or any(c.ad_account_number == number for c in s.all(DailyAdCost))
            used = used or any(number in (t.from_ad_account_number, t.to_ad_account_number) for t in s.all(AdFundTransfer))
            if used:
                return violation("AD_ACCOUNT_IN_USE", f"ad account {number!r} has activity")
        if isinstance(record, Liability) and any(p.liability_id == record.id for p in s.all(DebtPayment)):
            return violation("HAS_PAYMENTS", "delete the payments of this debt first")
        if isinstance(record, Receivable) and any(p.receivable_id == record.id for p in s.all(ReceivablePayment)):
            return violation("HAS_PAYMENTS", "delete the collections of this receivable first")
        return Ok(record)

    def _partner_in_use(self, partner_id: str) -> bool:
        s = self._snap
        shared: List[PartnerShare] = []
        for p in s.all(Project):
            shared += list(p.partner_shares)
        for e in s.all(MiscellaneousExpense):
            shared += list(e.partner_shares)
        for pl in s.all(PeriodLiability):
            shared += list(pl.partner_shares)
        for pr in s.all(PeriodReceivable):
            shared += list(pr.partner_shares)
        if any(sh.partner_id == partner_id for sh in shared):
            return True
        if any(c.contributed_by_partner_id == partner_id for c in s.all(CapitalInflow)):
            return True
        if any(w.withdrawn_by == partner_id for w in s.all(Withdrawal)):
            return True
        return any(r.partner_id == partner_id for r in s.all(CapitalRollForward))


def with_computed_amounts(record: Record, snapshot: LedgerSnapshot, creating: bool = True) -> Record:
    """
    Derive the VND amount of a record from its own amount and rate.

    A commission keeps the VND amount it was booked with (predicted rate at
    creation); deposits, exchanges and expenses are recomputed on every write.
    """
    if isinstance(record, Commission):
        if not creating:
            return record
        return dataclasses.replace(record, vnd_amount=record.usd_amount * record.predicted_rate)
    if isinstance(record, AdDeposit):
        return dataclasses.replace(record, vnd_amount=record.usd_amount * record.rate)
    if isinstance(record, ExchangeLog):
        return dataclasses.replace(record, vnd_amount=record.usd_amount * record.rate)
    if isinstance(record, MiscellaneousExpense):
        asset = snapshot.get(Asset, record.asset_id)
        if asset is not None and asset.currency == "USD" and record.rate is not None:
            return dataclasses.replace(record, vnd_amount=record.amount * record.rate)
        return dataclasses.replace(record, vnd_amount=record.amount)
    return record
