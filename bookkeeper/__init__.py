# bookkeeper/__init__.py
"""
Period bookkeeping engine.

Modules:
- models / money: records, Decimal and period helpers
- balances / attribution: asset balances and partner ownership
- amortization: installment schedules for debts and receivables
- financials / tax: monthly report, partner P&L, cash flow, tax
- periods: period lifecycle (open, close, roll-forward)
- engine: the facade; cli: the operator commands
"""

__version__ = "1.0.0"

from .engine import BookkeepingEngine
from .errors import (
    BookkeepingError,
    BusinessRuleError,
    ImmutablePeriodError,
    PeriodNotActiveError,
    RecordNotFoundError,
    ValidationError,
)
from .models import Draft
from .store import InMemoryStore, JsonFileStore

__all__ = [
    "BookkeepingEngine",
    "BookkeepingError",
    "BusinessRuleError",
    "Draft",
    "ImmutablePeriodError",
    "InMemoryStore",
    "JsonFileStore",
    "PeriodNotActiveError",
    "RecordNotFoundError",
    "ValidationError",
]
