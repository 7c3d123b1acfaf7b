"""
Ledger records.

Every record is a frozen dataclass with an immutable `id`. Money fields are
Decimal (floats rejected), dates are datetime.date; ISO strings and
str/int amounts are coerced on construction so records can be rebuilt
straight from the JSON document.

New records enter the engine as `Draft(record_type, values)`; existing ones
as the record itself.
"""
from __future__ import annotations

import dataclasses
import typing
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from functools import lru_cache
from typing import Any, ClassVar, Dict, Generic, Mapping, Optional, Tuple, Type, TypeVar

from bookkeeper.errors import ValidationError
from bookkeeper.money import ZERO, period_start, to_decimal

R = TypeVar("R", bound="Record")

# Event = (date, payload). Two versions of a record differ on an event when
# either the date or the payload differs.
Event = Tuple[date, Tuple[Any, ...]]


@dataclass(frozen=True)
class PartnerShare:
    partner_id: str
    share_percentage: Decimal

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, "share_percentage", to_decimal(self.share_percentage))
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"share_percentage: {exc}") from exc


def _coerce_shares(value: Any) -> Tuple[PartnerShare, ...]:
    shares = []
    for item in value or ():
        if isinstance(item, PartnerShare):
            shares.append(item)
        elif isinstance(item, Mapping):
            shares.append(PartnerShare(str(item["partner_id"]), item["share_percentage"]))
        else:
            raise ValidationError(f"invalid partner share: {item!r}")
    return tuple(shares)


def _unwrap_optional(hint: Any) -> Any:
    if typing.get_origin(hint) is typing.Union:
        args = [a for a in typing.get_args(hint) if a is not type(None)]
        if len(args) == 1:
            return args[0]
    return hint


@lru_cache(maxsize=None)
def field_kinds(cls: type) -> Dict[str, str]:
    """name -> decimal | date | shares | plain, resolved from the type hints."""
    hints = typing.get_type_hints(cls)
    kinds: Dict[str, str] = {}
    for f in dataclasses.fields(cls):
        hint = _unwrap_optional(hints[f.name])
        if hint is Decimal:
            kinds[f.name] = "decimal"
        elif hint is date:
            kinds[f.name] = "date"
        elif typing.get_origin(hint) is tuple and typing.get_args(hint)[:1] == (PartnerShare,):
            kinds[f.name] = "shares"
        else:
            kinds[f.name] = "plain"
    return kinds


class Record:
    """Base for stored records: coercion on construction, events for gating."""

    collection: ClassVar[str] = ""
    id: str

    def __post_init__(self) -> None:
        for name, kind in field_kinds(type(self)).items():
            value = getattr(self, name)
            if value is None or kind == "plain":
                continue
            try:
                if kind == "decimal":
                    coerced: Any = to_decimal(value)
                elif kind == "date":
                    coerced = value if isinstance(value, date) else date.fromisoformat(str(value))
                else:
                    coerced = _coerce_shares(value)
            except (TypeError, ValueError) as exc:
                raise ValidationError(f"{type(self).__name__}.{name}: {exc}") from exc
            object.__setattr__(self, name, coerced)

    def events(self) -> Dict[str, Event]:
        """Dated effects of the record; empty for records outside any period."""
        return {}

    def _whole(self, day: Optional[date]) -> Dict[str, Event]:
        if day is None:
            return {}
        values = tuple(getattr(self, f.name) for f in dataclasses.fields(self))  # type: ignore[arg-type]
        return {"recorded": (day, values)}


# ============================================================
# REFERENCE DATA
# ============================================================

@dataclass(frozen=True)
class AssetType(Record):
    collection: ClassVar[str] = "asset_types"
    id: str
    name: str


DEFAULT_ASSET_TYPES: Tuple[Tuple[str, str], ...] = (
    ("platform", "Platform"),
    ("bank", "Bank"),
    ("cash", "Cash"),
    ("agency", "Agency"),
)


@dataclass(frozen=True)
class Asset(Record):
    collection: ClassVar[str] = "assets"
    id: str
    name: str
    currency: str
    type_id: str = "bank"
    opening_balance: Decimal = ZERO


@dataclass(frozen=True)
class Partner(Record):
    collection: ClassVar[str] = "partners"
    id: str
    name: str
    is_self: bool = False


@dataclass(frozen=True)
class Project(Record):
    collection: ClassVar[str] = "projects"
    id: str
    name: str
    period: str
    is_partnership: bool = False
    partner_shares: Tuple[PartnerShare, ...] = ()
    status: str = "running"

    def events(self) -> Dict[str, Event]:
        return self._whole(period_start(self.period))


@dataclass(frozen=True)
class AdAccount(Record):
    collection: ClassVar[str] = "ad_accounts"
    id: str
    account_number: str
    platform: str = "facebook"
    status: str = "running"


# ============================================================
# REVENUE & AD SPEND
# ============================================================

@dataclass(frozen=True)
class Commission(Record):
    collection: ClassVar[str] = "commissions"
    id: str
    project_id: str
    asset_id: str
    date: date
    usd_amount: Decimal
    predicted_rate: Decimal
    vnd_amount: Decimal = ZERO

    def events(self) -> Dict[str, Event]:
        return self._whole(self.date)


@dataclass(frozen=True)
class AdDeposit(Record):
    collection: ClassVar[str] = "ad_deposits"
    id: str
    ad_account_number: str
    asset_id: str
    date: date
    usd_amount: Decimal
    rate: Decimal
    vnd_amount: Decimal = ZERO
    status: str = "running"
    project_id: Optional[str] = None

    def events(self) -> Dict[str, Event]:
        return self._whole(self.date)


@dataclass(frozen=True)
class AdFundTransfer(Record):
    collection: ClassVar[str] = "ad_fund_transfers"
    id: str
    from_ad_account_number: str
    to_ad_account_number: str
    date: date
    amount: Decimal
    description: str = ""

    def events(self) -> Dict[str, Event]:
        return self._whole(self.date)


@dataclass(frozen=True)
class DailyAdCost(Record):
    collection: ClassVar[str] = "daily_ad_costs"
    id: str
    project_id: str
    ad_account_number: str
    date: date
    amount: Decimal
    vat_rate: Decimal = ZERO

    def events(self) -> Dict[str, Event]:
        return self._whole(self.date)


@dataclass(frozen=True)
class MiscellaneousExpense(Record):
    collection: ClassVar[str] = "misc_expenses"
    id: str
    asset_id: str
    date: date
    description: str
    amount: Decimal
    rate: Optional[Decimal] = None
    vnd_amount: Decimal = ZERO
    vat_rate: Decimal = ZERO
    project_id: Optional[str] = None
    is_partnership: bool = False
    partner_shares: Tuple[PartnerShare, ...] = ()

    def events(self) -> Dict[str, Event]:
        return self._whole(self.date)


# ============================================================
# DEBTS & RECEIVABLES
# ============================================================

@dataclass(frozen=True)
class Liability(Record):
    """Borrowed money repaid in one go (bullet) or in monthly installments."""

    collection: ClassVar[str] = "liabilities"
    id: str
    description: str
    total_amount: Decimal
    currency: str
    creation_date: date
    is_installment: bool = False
    start_date: Optional[date] = None
    number_of_installments: Optional[int] = None
    inflow_asset_id: Optional[str] = None
    completion_date: Optional[date] = None

    def events(self) -> Dict[str, Event]:
        # completion_date is written by the engine, not by the caller
        values = dataclasses.replace(self, completion_date=None)
        return {"recorded": (self.creation_date, (values,))}


@dataclass(frozen=True)
class Receivable(Record):
    """Money lent out, collected in one go or in monthly installments."""

    collection: ClassVar[str] = "receivables"
    id: str
    description: str
    total_amount: Decimal
    currency: str
    creation_date: date
    is_installment: bool = False
    start_date: Optional[date] = None
    number_of_installments: Optional[int] = None
    outflow_asset_id: Optional[str] = None
    completion_date: Optional[date] = None

    def events(self) -> Dict[str, Event]:
        values = dataclasses.replace(self, completion_date=None)
        return {"recorded": (self.creation_date, (values,))}


@dataclass(frozen=True)
class DebtPayment(Record):
    collection: ClassVar[str] = "debt_payments"
    id: str
    liability_id: str
    asset_id: str
    date: date
    amount: Decimal

    def events(self) -> Dict[str, Event]:
        return self._whole(self.date)


@dataclass(frozen=True)
class ReceivablePayment(Record):
    collection: ClassVar[str] = "receivable_payments"
    id: str
    receivable_id: str
    asset_id: str
    date: date
    amount: Decimal

    def events(self) -> Dict[str, Event]:
        return self._whole(self.date)


@dataclass(frozen=True)
class PeriodLiability(Record):
    """Single-period payable (rent, salaries); never amortized."""

    collection: ClassVar[str] = "period_liabilities"
    id: str
    period: str
    description: str
    amount: Decimal
    currency: str
    is_paid: bool = False
    payment_asset_id: Optional[str] = None
    payment_date: Optional[date] = None
    is_partnership: bool = False
    partner_shares: Tuple[PartnerShare, ...] = ()

    def events(self) -> Dict[str, Event]:
        return self._whole(period_start(self.period))


@dataclass(frozen=True)
class PeriodReceivable(Record):
    collection: ClassVar[str] = "period_receivables"
    id: str
    period: str
    description: str
    amount: Decimal
    currency: str
    is_received: bool = False
    received_asset_id: Optional[str] = None
    received_date: Optional[date] = None
    is_partnership: bool = False
    partner_shares: Tuple[PartnerShare, ...] = ()

    def events(self) -> Dict[str, Event]:
        return self._whole(period_start(self.period))


# ============================================================
# CAPITAL
# ============================================================

@dataclass(frozen=True)
class CapitalInflow(Record):
    collection: ClassVar[str] = "capital_inflows"
    id: str
    asset_id: str
    date: date
    amount: Decimal
    description: str = ""
    contributed_by_partner_id: Optional[str] = None
    external_investor_name: Optional[str] = None

    def events(self) -> Dict[str, Event]:
        return self._whole(self.date)


@dataclass(frozen=True)
class Withdrawal(Record):
    collection: ClassVar[str] = "withdrawals"
    id: str
    asset_id: str
    withdrawn_by: str
    date: date
    amount: Decimal
    description: str = ""

    def events(self) -> Dict[str, Event]:
        return self._whole(self.date)


@dataclass(frozen=True)
class ExchangeLog(Record):
    collection: ClassVar[str] = "exchange_logs"
    id: str
    selling_asset_id: str
    receiving_asset_id: str
    date: date
    usd_amount: Decimal
    rate: Decimal
    vnd_amount: Decimal = ZERO

    def events(self) -> Dict[str, Event]:
        return self._whole(self.date)


@dataclass(frozen=True)
class Saving(Record):
    """Term deposit: principal leaves the asset at start, returns at maturity."""

    collection: ClassVar[str] = "savings"
    id: str
    asset_id: str
    description: str
    principal_amount: Decimal
    start_date: date
    end_date: date
    interest_rate: Decimal = ZERO
    status: str = "active"
    maturity_amount: Optional[Decimal] = None

    def events(self) -> Dict[str, Event]:
        out: Dict[str, Event] = {
            "placed": (self.start_date, (self.asset_id, self.principal_amount, self.description, self.interest_rate)),
        }
        if self.status == "matured":
            out["matured"] = (self.end_date, (self.asset_id, self.maturity_amount))
        return out


@dataclass(frozen=True)
class Investment(Record):
    collection: ClassVar[str] = "investments"
    id: str
    asset_id: str
    description: str
    investment_amount: Decimal
    date: date
    status: str = "ongoing"
    liquidation_date: Optional[date] = None
    liquidation_amount: Optional[Decimal] = None
    liquidation_asset_id: Optional[str] = None

    def events(self) -> Dict[str, Event]:
        out: Dict[str, Event] = {
            "placed": (self.date, (self.asset_id, self.investment_amount, self.description)),
        }
        if self.status == "liquidated" and self.liquidation_date is not None:
            out["liquidated"] = (
                self.liquidation_date,
                (self.liquidation_asset_id, self.liquidation_amount),
            )
        return out

    @property
    def proceeds_asset_id(self) -> str:
        return self.liquidation_asset_id or self.asset_id


@dataclass(frozen=True)
class TaxPayment(Record):
    collection: ClassVar[str] = "tax_payments"
    id: str
    period: str
    asset_id: str
    date: date
    amount: Decimal

    def events(self) -> Dict[str, Event]:
        return self._whole(self.date)


# ============================================================
# LIFECYCLE
# ============================================================

@dataclass(frozen=True)
class Period(Record):
    collection: ClassVar[str] = "periods"
    id: str
    status: str = "active"
    opened_at: Optional[str] = None
    closed_at: Optional[str] = None


@dataclass(frozen=True)
class CapitalRollForward(Record):
    collection: ClassVar[str] = "capital_roll_forwards"
    id: str
    period: str
    partner_id: str
    amount: Decimal


RECORD_TYPES: Tuple[Type[Record], ...] = (
    AssetType,
    Asset,
    Partner,
    Project,
    AdAccount,
    Commission,
    AdDeposit,
    AdFundTransfer,
    DailyAdCost,
    MiscellaneousExpense,
    Liability,
    Receivable,
    DebtPayment,
    ReceivablePayment,
    PeriodLiability,
    PeriodReceivable,
    CapitalInflow,
    Withdrawal,
    ExchangeLog,
    Saving,
    Investment,
    TaxPayment,
    Period,
    CapitalRollForward,
)

BY_COLLECTION: Dict[str, Type[Record]] = {t.collection: t for t in RECORD_TYPES}


# ============================================================
# DRAFTS
# ============================================================

@dataclass(frozen=True)
class Draft(Generic[R]):
    """A record that has not been stored yet (no id)."""

    record_type: Type[R]
    values: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if "id" in self.values:
            raise ValidationError("a draft must not carry an id")

    def with_values(self, **extra: Any) -> "Draft[R]":
        return Draft(self.record_type, {**self.values, **extra})

    def build(self, record_id: str, **extra: Any) -> R:
        known = {f.name for f in dataclasses.fields(self.record_type)}  # type: ignore[arg-type]
        values = {**self.values, **extra}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ValidationError(f"unknown fields for {self.record_type.__name__}: {unknown}")
        try:
            return self.record_type(id=record_id, **values)
        except TypeError as exc:
            raise ValidationError(f"{self.record_type.__name__}: {exc}") from exc


# ============================================================
# SNAPSHOT
# ============================================================

@dataclass(frozen=True)
class LedgerSnapshot:
    """Immutable view of every collection; derivations read only from this."""

    collections: Mapping[str, Tuple[Record, ...]]

    def all(self, record_type: Type[R]) -> Tuple[R, ...]:
        return self.collections.get(record_type.collection, ())  # type: ignore[return-value]

    def index(self, record_type: Type[R]) -> Dict[str, R]:
        return {r.id: r for r in self.all(record_type)}

    def get(self, record_type: Type[R], record_id: Optional[str]) -> Optional[R]:
        if record_id is None:
            return None
        for r in self.all(record_type):
            if r.id == record_id:
                return r
        return None

    @classmethod
    def empty(cls) -> "LedgerSnapshot":
        return cls({t.collection: () for t in RECORD_TYPES})


# ============================================================
# CODEC (JSON-friendly dicts)
# ============================================================

def record_to_dict(record: Record) -> Dict[str, Any]:
    kinds = field_kinds(type(record))
    out: Dict[str, Any] = {}
    for f in dataclasses.fields(record):  # type: ignore[arg-type]
        value = getattr(record, f.name)
        kind = kinds[f.name]
        if value is None:
            out[f.name] = None
        elif kind == "decimal":
            out[f.name] = str(value)
        elif kind == "date":
            out[f.name] = value.isoformat()
        elif kind == "shares":
            out[f.name] = [
                {"partner_id": s.partner_id, "share_percentage": str(s.share_percentage)}
                for s in value
            ]
        else:
            out[f.name] = value
    return out


def record_from_dict(record_type: Type[R], data: Mapping[str, Any]) -> R:
    known = {f.name for f in dataclasses.fields(record_type)}  # type: ignore[arg-type]
    try:
        return record_type(**{k: v for k, v in data.items() if k in known})
    except (TypeError, KeyError) as exc:
        raise ValidationError(f"cannot rebuild {record_type.__name__}: {exc}") from exc
