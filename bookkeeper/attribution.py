"""
Attribution strategy: who owns a slice of each amount.

One mapping from a source record to [(partner_id, fraction)], used by the
balance resolver and the period compiler alike. Fractions are
share_percentage / 100 and always sum to exactly 1; an empty allocation
means the amount is untracked (external investor money).
"""
from __future__ import annotations

from decimal import Decimal, ROUND_DOWN
from typing import Mapping, Optional, Sequence, Tuple

import deal

from bookkeeper.models import (
    CapitalInflow,
    Commission,
    DailyAdCost,
    MiscellaneousExpense,
    PartnerShare,
    PeriodLiability,
    PeriodReceivable,
    Project,
    Record,
    Withdrawal,
)
from bookkeeper.money import HUNDRED, ZERO, dsum

Allocation = Tuple[Tuple[str, Decimal], ...]
Split = Tuple[Tuple[str, Decimal], ...]

_ONE = Decimal("1")
_CENT = Decimal("0.01")


def _from_shares(shares: Sequence[PartnerShare]) -> Allocation:
    return tuple((s.partner_id, s.share_percentage / HUNDRED) for s in shares)


class AttributionStrategy:
    """Maps source records to partner fractions; projects are looked up by id."""

    def __init__(self, projects: Mapping[str, Project], me_partner_id: str) -> None:
        self._projects = projects
        self._me = me_partner_id

    @property
    def me_partner_id(self) -> str:
        return self._me

    def me(self) -> Allocation:
        return ((self._me, _ONE),)

    def for_project(self, project_id: Optional[str]) -> Allocation:
        project = self._projects.get(project_id) if project_id else None
        if project is not None and project.is_partnership and project.partner_shares:
            return _from_shares(project.partner_shares)
        return self.me()

    def __call__(self, source: Record) -> Allocation:
        if isinstance(source, (Commission, DailyAdCost)):
            return self.for_project(source.project_id)
        if isinstance(source, MiscellaneousExpense):
            if source.is_partnership and source.partner_shares:
                return _from_shares(source.partner_shares)
            return self.for_project(source.project_id)
        if isinstance(source, (PeriodLiability, PeriodReceivable)):
            if source.is_partnership and source.partner_shares:
                return _from_shares(source.partner_shares)
            return self.me()
        if isinstance(source, CapitalInflow):
            if source.contributed_by_partner_id:
                return ((source.contributed_by_partner_id, _ONE),)
            if source.external_investor_name:
                return ()
            return self.me()
        if isinstance(source, Withdrawal):
            return ((source.withdrawn_by, _ONE),)
        return self.me()


@deal.pre(lambda amount, weights: all(w >= 0 for _, w in weights), message="weights must be >= 0")
@deal.ensure(
    lambda amount, weights, result: not weights or sum((p for _, p in result), ZERO) == amount,
    message="parts must add up to the amount",
)
def apportion(amount: Decimal, weights: Sequence[Tuple[str, Decimal]]) -> Split:
    """
    Split `amount` proportionally to `weights`.

    Every part but one is truncated to cents; the entry with the largest
    weight takes the remainder, so the parts sum to `amount` exactly and
    never change sign.
    """
    if not weights:
        return ()
    total = dsum(w for _, w in weights)
    if total == ZERO:
        return ((weights[0][0], amount),) + tuple((pid, ZERO) for pid, _ in weights[1:])

    anchor = max(range(len(weights)), key=lambda i: (weights[i][1], -i))
    parts = []
    for i, (pid, w) in enumerate(weights):
        if i == anchor:
            parts.append((pid, ZERO))
            continue
        parts.append((pid, (amount * w / total).quantize(_CENT, rounding=ROUND_DOWN)))
    allocated = dsum(p for _, p in parts)
    parts[anchor] = (weights[anchor][0], amount - allocated)
    return tuple(parts)


def split(amount: Decimal, allocation: Allocation) -> Split:
    """Apply an allocation to an amount; untracked allocations split into nothing."""
    return apportion(amount, allocation)
