"""
Tax calculator.

Pure function of the compiled bases and TaxSettings:

- revenue:    tax_payable = revenue_base * revenue_rate / 100
- profit_vat: output_vat = vat_output_base * vat_rate / 100
              net_vat    = output_vat - input_vat   (negative = VAT credit)
              income_tax = max(0, profit_base) * income_rate / 100
              tax_payable = max(0, net_vat) + income_tax
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import deal

from bookkeeper.money import ZERO, pct_of
from infra.config_loader import TaxSettings


@dataclass(frozen=True)
class PnlFigures:
    revenue: Decimal
    cost: Decimal
    input_vat: Decimal

    @property
    def profit(self) -> Decimal:
        return self.revenue - self.cost


@dataclass(frozen=True)
class TaxBases:
    initial_revenue_base: Decimal
    tax_separation_amount: Decimal
    revenue_base: Decimal
    cost_base: Decimal
    profit_base: Decimal
    initial_vat_output_base: Decimal
    vat_output_base: Decimal
    vat_input_base: Decimal


@dataclass(frozen=True)
class TaxResult:
    method: str
    tax_payable: Decimal
    income_tax: Decimal
    output_vat: Decimal
    input_vat: Decimal
    net_vat: Decimal


def _pick(base: str, personal: Decimal, total: Decimal) -> Decimal:
    return total if base == "total" else personal


@deal.post(lambda result: result.revenue_base >= 0 and result.vat_output_base >= 0)
@deal.post(lambda result: result.profit_base == result.revenue_base - result.cost_base)
def build_bases(personal: PnlFigures, total: PnlFigures, settings: TaxSettings) -> TaxBases:
    """Choose personal ('me') or total figures per setting, minus the separated revenue."""
    separation = settings.tax_separation_amount
    initial_revenue = _pick(settings.income_tax_base, personal.revenue, total.revenue)
    cost_base = _pick(settings.income_tax_base, personal.cost, total.cost)
    initial_output = _pick(settings.vat_output_base, personal.revenue, total.revenue)
    revenue_base = max(ZERO, initial_revenue - separation)
    return TaxBases(
        initial_revenue_base=initial_revenue,
        tax_separation_amount=separation,
        revenue_base=revenue_base,
        cost_base=cost_base,
        profit_base=revenue_base - cost_base,
        initial_vat_output_base=initial_output,
        vat_output_base=max(ZERO, initial_output - separation),
        vat_input_base=_pick(settings.vat_input_base, personal.input_vat, total.input_vat),
    )


def partner_bases(figures: PnlFigures) -> TaxBases:
    """A partner's own figures as bases (no separation amount)."""
    return TaxBases(
        initial_revenue_base=figures.revenue,
        tax_separation_amount=ZERO,
        revenue_base=figures.revenue,
        cost_base=figures.cost,
        profit_base=figures.profit,
        initial_vat_output_base=figures.revenue,
        vat_output_base=figures.revenue,
        vat_input_base=figures.input_vat,
    )


@deal.pre(lambda bases, settings, manual_input_vat=None: settings.method in ("revenue", "profit_vat"))
@deal.post(lambda result: result.tax_payable >= 0)
@deal.post(lambda result: result.income_tax >= 0)
def calculate_tax(
    bases: TaxBases,
    settings: TaxSettings,
    manual_input_vat: Optional[Decimal] = None,
) -> TaxResult:
    """
    Tax for a set of bases.

    manual_input_vat replaces the auto-summed input VAT when the settings ask
    for manual input; callers pass it only for the aggregate computation.
    """
    if settings.method == "revenue":
        tax = pct_of(max(ZERO, bases.revenue_base), settings.revenue_rate)
        return TaxResult("revenue", tax, tax, ZERO, ZERO, ZERO)

    output_vat = pct_of(bases.vat_output_base, settings.vat_rate)
    input_vat = bases.vat_input_base
    if settings.vat_input_method == "manual" and manual_input_vat is not None:
        input_vat = manual_input_vat
    net_vat = output_vat - input_vat
    income_tax = pct_of(max(ZERO, bases.profit_base), settings.income_rate)
    return TaxResult(
        method="profit_vat",
        tax_payable=max(ZERO, net_vat) + income_tax,
        income_tax=income_tax,
        output_vat=output_vat,
        input_vat=input_vat,
        net_vat=net_vat,
    )
