"""
Period lifecycle: none -> active -> closed.

- at most one active period
- a closed period is immutable and never reopened
- closing requires today >= closing cutoff (day `period_closing_day`,
  clamped 1..28, of the following month); it stores the final report and
  rolls each partner's net profit into capital
"""
from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Callable, Iterable, List, Optional, Tuple

import deal

from bookkeeper.errors import Rejection
from bookkeeper.financials import PeriodReport, compile_period, to_jsonable
from bookkeeper.models import CapitalRollForward, Period, Record
from bookkeeper.money import ZERO, is_period, next_period, parse_period, period_of
from bookkeeper.store import PERIOD_REPORTS_KEY, LedgerRepository
from bookkeeper.validation import check_period_gate
from infra.config_loader import EngineConfig, TaxSettings
from infra.logging_config import get_logger
from infra.result import Err, Ok, Result
from infra.time_utils import now_utc

logger = get_logger(__name__)


@deal.pre(lambda period, closing_day: is_period(period), message="period must be YYYY-MM")
@deal.post(lambda result: 1 <= result.day <= 28)
def closing_cutoff(period: str, closing_day: int) -> date:
    """Earliest date on which `period` may be closed."""
    year, month = parse_period(next_period(period))
    return date(year, month, max(1, min(28, int(closing_day))))


def active_period(periods: Iterable[Period]) -> Optional[Period]:
    for p in periods:
        if p.status == "active":
            return p
    return None


def latest_closed(periods: Iterable[Period]) -> Optional[Period]:
    closed = [p for p in periods if p.status == "closed"]
    return max(closed, key=lambda p: p.id) if closed else None


def suggest_next_period(periods: Iterable[Period], today: date) -> str:
    """The month after the latest closed period, or today's month."""
    items = list(periods)
    current = active_period(items)
    if current is not None:
        return current.id
    last = latest_closed(items)
    return next_period(last.id) if last is not None else period_of(today)


def check_open(period: str, periods: Iterable[Period]) -> Result[str, Rejection]:
    items = list(periods)
    if not is_period(period):
        return Err(Rejection("VALIDATION_ERROR", f"invalid period {period!r}"))
    if any(p.id == period for p in items):
        return Err(Rejection("PERIOD_EXISTS", f"period {period} was already opened"))
    current = active_period(items)
    if current is not None:
        return Err(Rejection("PERIOD_ALREADY_ACTIVE", f"period {current.id} is still active"))
    last = latest_closed(items)
    if last is not None and period < last.id:
        return Err(Rejection("PERIOD_BEFORE_CLOSED", f"period {period} precedes closed period {last.id}"))
    return Ok(period)


def check_close(
    period: str,
    periods: Iterable[Period],
    today: date,
    closing_day: int,
) -> Result[Period, Rejection]:
    record = next((p for p in periods if p.id == period), None)
    if record is None or record.status != "active":
        return Err(Rejection("PERIOD_NOT_ACTIVE", f"period {period} is not active"))
    cutoff = closing_cutoff(period, closing_day)
    if today < cutoff:
        return Err(Rejection("CLOSE_TOO_EARLY", f"period {period} can be closed from {cutoff.isoformat()}"))
    return Ok(record)


def roll_forward_amounts(report: PeriodReport) -> List[Tuple[str, Decimal]]:
    """Each partner's net profit share (profit - own tax); zero rows dropped."""
    out = []
    for row in report.partner_pnl_details:
        amount = row.profit - row.tax_payable
        if amount != ZERO:
            out.append((row.partner_id, amount))
    return out


class PeriodLifecycle:
    """State machine over the Period records of a ledger."""

    def __init__(self, repo: LedgerRepository, config: EngineConfig) -> None:
        self._repo = repo
        self._config = config

    def periods(self) -> List[Period]:
        return sorted(self._repo.records(Period), key=lambda p: p.id)

    def active(self) -> Optional[Period]:
        return active_period(self.periods())

    def gate(self, old: Optional[Record], new: Optional[Record]) -> Result[Optional[Record], Rejection]:
        return check_period_gate(old, new, self.periods())

    def open(self, period: str) -> Result[Period, Rejection]:
        checked = check_open(period, self.periods())
        if isinstance(checked, Err):
            return Err(checked.error)
        record = Period(id=period, status="active", opened_at=now_utc().isoformat())
        self._repo.put(record)
        logger.info("Period opened", extra={"extra_data": {"period": period}})
        return Ok(record)

    def close(
        self,
        period: str,
        today: date,
        tax_settings: TaxSettings,
        new_id: Callable[[], str],
    ) -> Result[PeriodReport, Rejection]:
        checked = check_close(period, self.periods(), today, tax_settings.period_closing_day)
        if isinstance(checked, Err):
            return Err(checked.error)
        current = checked.unwrap_or_raise(RuntimeError)

        report = compile_period(self._repo.snapshot(), period, tax_settings, self._config)
        rolls = [
            CapitalRollForward(id=new_id(), period=period, partner_id=pid, amount=amount)
            for pid, amount in roll_forward_amounts(report)
        ]

        reports = self._repo.get_blob(PERIOD_REPORTS_KEY) or {}
        reports[period] = to_jsonable(report)
        self._repo.set_blob(PERIOD_REPORTS_KEY, reports)
        self._repo.put_many(list(rolls))

        record = Period(id=period, status="closed", opened_at=current.opened_at, closed_at=now_utc().isoformat())
        self._repo.put(record)

        logger.info(
            "Period closed",
            extra={
                "extra_data": {
                    "period": period,
                    "profit_before_tax": report.profit_before_tax,
                    "tax_payable": report.tax.tax_payable,
                    "roll_forwards": {r.partner_id: r.amount for r in rolls},
                }
            },
        )
        return Ok(report)
