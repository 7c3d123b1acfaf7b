"""
Period financial compiler.

compile_period() turns a ledger snapshot into the report for one month:
revenue and cost detail, exchange gain/loss, per-partner P&L and tax, the
cash-flow statement per currency and per-asset opening/closing balances.

All P&L figures are VND. Cash-flow figures are in the currency of the
statement. Nothing here writes to the ledger.
"""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import deal

from bookkeeper.ad_rates import enrich_ad_costs
from bookkeeper.attribution import Allocation, AttributionStrategy, split
from bookkeeper.balances import ACTIVITIES, IN, Movement, balance_at, build_movements
from bookkeeper.models import (
    Asset,
    Commission,
    ExchangeLog,
    Investment,
    LedgerSnapshot,
    MiscellaneousExpense,
    Partner,
    Period,
    Project,
)
from bookkeeper.money import CURRENCIES, ZERO, dsum, in_period, pct_of, period_end, period_start
from bookkeeper.tax import PnlFigures, TaxBases, TaxResult, build_bases, calculate_tax, partner_bases
from infra.config_loader import EngineConfig, TaxSettings
from infra.logging_config import get_logger

logger = get_logger(__name__)

UNKNOWN_PROJECT = "Unknown project"


@dataclass(frozen=True)
class DetailLine:
    name: str
    amount: Decimal


@dataclass(frozen=True)
class CashFlowLine:
    label: str
    amount: Decimal


@dataclass(frozen=True)
class CashFlowSection:
    inflows: Tuple[CashFlowLine, ...]
    outflows: Tuple[CashFlowLine, ...]
    net: Decimal


@dataclass(frozen=True)
class CashFlowStatement:
    currency: str
    operating: CashFlowSection
    investing: CashFlowSection
    financing: CashFlowSection
    net_change: Decimal
    beginning_balance: Decimal
    end_balance: Decimal


@dataclass(frozen=True)
class PartnerPnl:
    partner_id: str
    name: str
    revenue: Decimal
    cost: Decimal
    profit: Decimal
    input_vat: Decimal
    tax_payable: Decimal


@dataclass(frozen=True)
class PeriodAssetDetail:
    asset_id: str
    name: str
    currency: str
    opening_balance: Decimal
    change: Decimal
    closing_balance: Decimal


@dataclass(frozen=True)
class FxRealization:
    exchange_id: str
    date: date
    usd_amount: Decimal
    rate: Decimal
    matched_usd: Decimal
    unmatched_usd: Decimal
    gain_loss: Decimal


@dataclass(frozen=True)
class PeriodReport:
    period: str
    revenue_details: Tuple[DetailLine, ...]
    total_revenue: Decimal
    ad_cost_details: Tuple[DetailLine, ...]
    total_ad_cost: Decimal
    misc_cost_details: Tuple[DetailLine, ...]
    total_misc_cost: Decimal
    total_cost: Decimal
    total_input_vat: Decimal
    exchange_rate_gain_loss: Decimal
    fx_realizations: Tuple[FxRealization, ...]
    investment_gain_loss: Decimal
    profit_before_tax: Decimal
    tax: TaxResult
    net_profit: Decimal
    tax_bases: TaxBases
    partner_pnl_details: Tuple[PartnerPnl, ...]
    cash_flow: CashFlowStatement
    cash_flows: Dict[str, CashFlowStatement]
    period_asset_details: Tuple[PeriodAssetDetail, ...]
    unresolved_ad_costs: Tuple[str, ...]
    warnings: Tuple[str, ...]

    def partner(self, partner_id: str) -> Optional[PartnerPnl]:
        for p in self.partner_pnl_details:
            if p.partner_id == partner_id:
                return p
        return None


# ============================================================
# P&L LINES
# ============================================================

class _PartnerBook:
    """Running revenue / cost / input VAT per partner."""

    def __init__(self) -> None:
        self.revenue: Dict[str, Decimal] = {}
        self.cost: Dict[str, Decimal] = {}
        self.input_vat: Dict[str, Decimal] = {}

    @staticmethod
    def _add(book: Dict[str, Decimal], amount: Decimal, allocation: Allocation) -> None:
        for pid, part in split(amount, allocation):
            book[pid] = book.get(pid, ZERO) + part

    def revenue_line(self, amount: Decimal, allocation: Allocation) -> None:
        self._add(self.revenue, amount, allocation)

    def cost_line(self, amount: Decimal, vat: Decimal, allocation: Allocation) -> None:
        self._add(self.cost, amount, allocation)
        self._add(self.input_vat, vat, allocation)

    def figures(self, partner_id: str) -> PnlFigures:
        return PnlFigures(
            revenue=self.revenue.get(partner_id, ZERO),
            cost=self.cost.get(partner_id, ZERO),
            input_vat=self.input_vat.get(partner_id, ZERO),
        )

    def partner_ids(self) -> set:
        return set(self.revenue) | set(self.cost) | set(self.input_vat)


def _grouped(lines: Iterable[Tuple[str, Decimal]]) -> Tuple[DetailLine, ...]:
    totals: Dict[str, Decimal] = {}
    for name, amount in lines:
        totals[name] = totals.get(name, ZERO) + amount
    return tuple(DetailLine(name, totals[name]) for name in sorted(totals))


def realize_exchanges(
    snapshot: LedgerSnapshot,
    period: str,
    baseline_rate: Optional[Decimal],
) -> Tuple[Dict[Optional[str], Decimal], List[FxRealization], List[str]]:
    """
    FIFO exchange gain/loss for sales dated in `period`.

    USD commissions into USD assets form lots at their predicted rate. Every
    sale in history consumes lots of its selling asset in (date, id) order;
    only sales in the period report gain/loss. Returns gain/loss keyed by
    project id (None for USD with no lot), the per-sale detail and warnings.
    """
    assets = snapshot.index(Asset)
    lots: Dict[str, List[List[Any]]] = {}
    for c in sorted(snapshot.all(Commission), key=lambda c: (c.date, c.id)):
        asset = assets.get(c.asset_id)
        if asset is not None and asset.currency == "USD" and c.usd_amount > ZERO:
            lots.setdefault(c.asset_id, []).append([c.project_id, c.usd_amount, c.predicted_rate])

    by_project: Dict[Optional[str], Decimal] = {}
    realizations: List[FxRealization] = []
    warnings: List[str] = []

    for x in sorted(snapshot.all(ExchangeLog), key=lambda x: (x.date, x.id)):
        counted = in_period(x.date, period)
        queue = lots.get(x.selling_asset_id, [])
        to_sell = x.usd_amount
        matched = ZERO
        gain = ZERO
        while to_sell > ZERO and queue:
            lot = queue[0]
            take = min(to_sell, lot[1])
            part = (x.rate - lot[2]) * take
            if counted:
                by_project[lot[0]] = by_project.get(lot[0], ZERO) + part
            gain += part
            matched += take
            lot[1] -= take
            to_sell -= take
            if lot[1] <= ZERO:
                queue.pop(0)

        if not counted:
            continue
        if to_sell > ZERO:
            if baseline_rate is not None:
                part = (x.rate - baseline_rate) * to_sell
                by_project[None] = by_project.get(None, ZERO) + part
                gain += part
            else:
                warnings.append(
                    f"exchange {x.id}: {to_sell} USD sold without a matching commission; "
                    "no baseline rate configured, gain/loss not measured"
                )
        realizations.append(FxRealization(x.id, x.date, x.usd_amount, x.rate, matched, to_sell, gain))

    return by_project, realizations, warnings


# ============================================================
# CASH FLOW
# ============================================================

def _section(movements: List[Movement]) -> CashFlowSection:
    inflows: Dict[str, Decimal] = {}
    outflows: Dict[str, Decimal] = {}
    for m in movements:
        book = inflows if m.direction == IN else outflows
        book[m.label] = book.get(m.label, ZERO) + m.amount
    ins = tuple(CashFlowLine(k, v) for k, v in sorted(inflows.items()) if v != ZERO)
    outs = tuple(CashFlowLine(k, v) for k, v in sorted(outflows.items()) if v != ZERO)
    return CashFlowSection(ins, outs, dsum(line.amount for line in ins) - dsum(line.amount for line in outs))


@deal.post(lambda result: result.end_balance == result.beginning_balance + result.net_change)
def cash_flow_statement(
    movements: List[Movement],
    assets: Iterable[Asset],
    currency: str,
    period: str,
) -> CashFlowStatement:
    start = period_start(period)
    after = period_end(period) + timedelta(days=1)
    currency_assets = [a for a in assets if a.currency == currency]
    ids = {a.id for a in currency_assets}
    in_p = [m for m in movements if m.asset_id in ids and in_period(m.date, period)]

    sections = {act: _section([m for m in in_p if m.activity == act]) for act in ACTIVITIES}
    net_change = dsum(s.net for s in sections.values())
    beginning = dsum(balance_at(movements, a, start) for a in currency_assets)
    end = dsum(balance_at(movements, a, after) for a in currency_assets)
    return CashFlowStatement(
        currency=currency,
        operating=sections["operating"],
        investing=sections["investing"],
        financing=sections["financing"],
        net_change=net_change,
        beginning_balance=beginning,
        end_balance=end,
    )


def asset_details(movements: List[Movement], assets: Iterable[Asset], period: str) -> Tuple[PeriodAssetDetail, ...]:
    start = period_start(period)
    out = []
    for a in sorted(assets, key=lambda a: (a.currency, a.name, a.id)):
        opening = balance_at(movements, a, start)
        change = dsum(m.signed for m in movements if m.asset_id == a.id and in_period(m.date, period))
        out.append(PeriodAssetDetail(a.id, a.name, a.currency, opening, change, opening + change))
    return tuple(out)


# ============================================================
# COMPILER
# ============================================================

def _investment_gain(
    snapshot: LedgerSnapshot, period: str, base_currency: str
) -> Tuple[Decimal, List[str]]:
    assets = snapshot.index(Asset)
    gain = ZERO
    warnings: List[str] = []
    for inv in sorted(snapshot.all(Investment), key=lambda i: i.id):
        if inv.status != "liquidated" or not in_period(inv.liquidation_date, period):
            continue
        asset = assets.get(inv.asset_id)
        if asset is None or asset.currency != base_currency:
            warnings.append(f"investment {inv.id}: not in {base_currency}, gain/loss not reported")
            continue
        gain += (inv.liquidation_amount or ZERO) - inv.investment_amount
    return gain, warnings


def _partner_order(snapshot: LedgerSnapshot, extra_ids: Iterable[str], me_id: str) -> List[Tuple[str, str]]:
    names = {p.id: p.name for p in snapshot.all(Partner)}
    ids = set(names) | set(extra_ids) | {me_id}
    ordered = sorted(ids, key=lambda pid: (pid != me_id, names.get(pid, pid), pid))
    return [(pid, names.get(pid, "Unknown partner")) for pid in ordered]


def compile_period(
    snapshot: LedgerSnapshot,
    period: str,
    tax_settings: TaxSettings,
    config: EngineConfig,
) -> PeriodReport:
    """Full financial report for one period; a pure function of its inputs."""
    projects = snapshot.index(Project)
    attribution = AttributionStrategy(projects, config.me_partner_id)
    project_name = {pid: p.name for pid, p in projects.items()}
    book = _PartnerBook()
    warnings: List[str] = []

    # Revenue
    commissions = [c for c in snapshot.all(Commission) if in_period(c.date, period)]
    for c in commissions:
        book.revenue_line(c.vnd_amount, attribution(c))
    revenue_details = _grouped((project_name.get(c.project_id, UNKNOWN_PROJECT), c.vnd_amount) for c in commissions)
    total_revenue = dsum(c.vnd_amount for c in commissions)

    # Exchange gain/loss
    fx_by_project, fx_rows, fx_warnings = realize_exchanges(snapshot, period, config.baseline_exchange_rate)
    warnings += fx_warnings
    for project_id in sorted(fx_by_project, key=lambda k: (k is None, k or "")):
        allocation = attribution.for_project(project_id) if project_id else attribution.me()
        book.revenue_line(fx_by_project[project_id], allocation)
    fx_total = dsum(fx_by_project.values())

    # Ad costs
    ad_costs = [e for e in enrich_ad_costs(snapshot) if in_period(e.cost.date, period)]
    for e in ad_costs:
        book.cost_line(e.vnd_cost, e.vat_amount, attribution(e.cost))
    unresolved = tuple(e.cost.id for e in ad_costs if e.unresolved)
    for cost_id in unresolved:
        warnings.append(f"ad cost {cost_id}: account has no deposits, converted at rate 0")
    ad_cost_details = _grouped((project_name.get(e.cost.project_id, UNKNOWN_PROJECT), e.vnd_cost) for e in ad_costs)
    total_ad_cost = dsum(e.vnd_cost for e in ad_costs)
    ad_vat = dsum(e.vat_amount for e in ad_costs)

    # Miscellaneous expenses
    misc = [m for m in snapshot.all(MiscellaneousExpense) if in_period(m.date, period)]
    for m in misc:
        book.cost_line(m.vnd_amount, pct_of(m.vnd_amount, m.vat_rate), attribution(m))
    misc_cost_details = _grouped((m.description, m.vnd_amount) for m in misc)
    total_misc_cost = dsum(m.vnd_amount for m in misc)
    misc_vat = dsum(pct_of(m.vnd_amount, m.vat_rate) for m in misc)

    total_cost = total_ad_cost + total_misc_cost
    total_input_vat = ad_vat + misc_vat
    profit_before_tax = total_revenue + fx_total - total_cost

    investment_gain, inv_warnings = _investment_gain(snapshot, period, config.base_currency)
    warnings += inv_warnings

    # Tax
    total_figures = PnlFigures(total_revenue + fx_total, total_cost, total_input_vat)
    tax_bases = build_bases(book.figures(config.me_partner_id), total_figures, tax_settings)
    tax = calculate_tax(tax_bases, tax_settings, manual_input_vat=tax_settings.manual_input_vat)

    partner_rows = []
    for pid, name in _partner_order(snapshot, book.partner_ids(), config.me_partner_id):
        figures = book.figures(pid)
        partner_tax = calculate_tax(partner_bases(figures), tax_settings)
        partner_rows.append(
            PartnerPnl(pid, name, figures.revenue, figures.cost, figures.profit, figures.input_vat, partner_tax.tax_payable)
        )

    # Cash flow
    movements = build_movements(snapshot, attribution)
    assets = list(snapshot.all(Asset))
    cash_flows = {cur: cash_flow_statement(movements, assets, cur, period) for cur in CURRENCIES}

    report = PeriodReport(
        period=period,
        revenue_details=revenue_details,
        total_revenue=total_revenue,
        ad_cost_details=ad_cost_details,
        total_ad_cost=total_ad_cost,
        misc_cost_details=misc_cost_details,
        total_misc_cost=total_misc_cost,
        total_cost=total_cost,
        total_input_vat=total_input_vat,
        exchange_rate_gain_loss=fx_total,
        fx_realizations=tuple(fx_rows),
        investment_gain_loss=investment_gain,
        profit_before_tax=profit_before_tax,
        tax=tax,
        net_profit=profit_before_tax - tax.tax_payable,
        tax_bases=tax_bases,
        partner_pnl_details=tuple(partner_rows),
        cash_flow=cash_flows[config.base_currency],
        cash_flows=cash_flows,
        period_asset_details=asset_details(movements, assets, period),
        unresolved_ad_costs=unresolved,
        warnings=tuple(warnings),
    )

    if warnings:
        logger.warning(
            "Period compiled with warnings",
            extra={"extra_data": {"period": period, "warnings": list(warnings)}},
        )
    return report


# ============================================================
# OVERVIEW / SERIALIZATION
# ============================================================

@dataclass(frozen=True)
class PeriodSummary:
    period: str
    status: str
    total_revenue: Decimal
    total_cost: Decimal
    profit_before_tax: Decimal
    tax_payable: Decimal
    net_profit: Decimal


def periods_overview(
    snapshot: LedgerSnapshot,
    tax_settings: TaxSettings,
    config: EngineConfig,
) -> List[PeriodSummary]:
    out = []
    for p in sorted(snapshot.all(Period), key=lambda p: p.id):
        r = compile_period(snapshot, p.id, tax_settings, config)
        out.append(
            PeriodSummary(
                p.id, p.status, r.total_revenue, r.total_cost, r.profit_before_tax, r.tax.tax_payable, r.net_profit
            )
        )
    return out


def to_jsonable(value: Any) -> Any:
    """Dataclasses, Decimals and dates to plain JSON values (Decimal as str)."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, Mapping):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    return value
