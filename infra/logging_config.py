import logging
import json
import sys
from datetime import date
from decimal import Decimal
from typing import Dict, Any, Optional
from infra.settings import settings


def _json_default(value: Any) -> str:
    # Money stays exact in logs
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


class StructuredFormatter(logging.Formatter):
    """One JSON object per line; `extra_data` keys are merged at top level."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "message": record.getMessage(),
        }

        # Bookkeeping context (period, record ids, rejection codes)
        if hasattr(record, "extra_data"):
            log_entry.update(getattr(record, "extra_data"))

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=_json_default)


def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure the root logger once.

    `level` overrides `logging.level` from settings; output goes to stderr so
    commands that print JSON keep stdout clean.
    """
    log_level_name = (level or settings.get("logging.level", "INFO")).upper()
    log_level = getattr(logging, log_level_name, logging.INFO)
    log_format = settings.get("logging.format", "json")

    root = logging.getLogger()
    if root.handlers:
        root.setLevel(log_level)
        return

    if log_format == "json":
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    logging.basicConfig(level=log_level, handlers=[handler])


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
