from __future__ import annotations

from decimal import Decimal
from pathlib import Path
from typing import Optional, Dict, Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from infra.logging_config import get_logger
from infra.settings import settings

logger = get_logger(__name__)


# =========================
# CONFIG MODELS
# =========================


class TaxSettings(BaseModel):
  """
  Workspace tax configuration (one per ledger).

  Passed explicitly into the financial compiler and the period lifecycle;
  nothing reads it from ambient state.
  """

  model_config = ConfigDict(frozen=True)

  method: Literal["revenue", "profit_vat"] = "revenue"
  revenue_rate: Decimal = Decimal("1.5")
  vat_rate: Decimal = Decimal("10")
  income_rate: Decimal = Decimal("20")
  vat_input_method: Literal["auto_sum", "manual"] = "auto_sum"
  manual_input_vat: Decimal = Decimal("0")
  income_tax_base: Literal["personal", "total"] = "personal"
  vat_output_base: Literal["personal", "total"] = "personal"
  vat_input_base: Literal["personal", "total"] = "total"
  tax_separation_amount: Decimal = Field(default=Decimal("0"), ge=0)
  period_closing_day: int = 1

  @field_validator("revenue_rate", "vat_rate", "income_rate", "manual_input_vat")
  @classmethod
  def _non_negative(cls, v: Decimal) -> Decimal:
    if v < 0:
      raise ValueError("rates and manual VAT must be >= 0")
    return v

  @field_validator("period_closing_day")
  @classmethod
  def _clamp_closing_day(cls, v: int) -> int:
    # Every month has a day 1..28
    return max(1, min(28, int(v)))


class EngineConfig(BaseModel):
  """
  Engine-wide constants that are not tax rules.

  - me_partner_id: the distinguished self partner, default owner of
    every unattributed amount.
  - completion_epsilon: remaining amount at or below which a debt or
    receivable counts as settled.
  - baseline_exchange_rate: rate used to measure USD sold that has no
    matching commission lot. None means such sales carry no gain/loss.
  """

  model_config = ConfigDict(frozen=True)

  me_partner_id: str = "default-me"
  me_partner_name: str = "Me"
  base_currency: Literal["VND", "USD"] = "VND"
  completion_epsilon: Decimal = Decimal("0.001")
  baseline_exchange_rate: Optional[Decimal] = None

  @field_validator("baseline_exchange_rate")
  @classmethod
  def _positive_rate(cls, v: Optional[Decimal]) -> Optional[Decimal]:
    if v is not None and v <= 0:
      raise ValueError("baseline_exchange_rate must be > 0")
    return v


class AppConfig(BaseModel):
  engine: EngineConfig = Field(default_factory=EngineConfig)
  tax: TaxSettings = Field(default_factory=TaxSettings)
  store_path: str = "data/bookkeeper/ledger.json"


# =========================
# LOADER
# =========================

_DEFAULT_CONFIG_PATH = (
  Path(__file__).resolve().parents[1] / "config" / "default.yml"
)

_APP_CONFIG: Optional[AppConfig] = None


def _read_raw_yaml(path: Path) -> Dict[str, Any]:
  """Read YAML safely; any failure falls back to an empty mapping."""
  try:
    with path.open("r", encoding="utf-8") as f:
      data = yaml.safe_load(f) or {}
      if not isinstance(data, dict):
        logger.error(
          "Config YAML root is not a mapping, falling back to defaults",
          extra={"extra_data": {"config_path": str(path)}},
        )
        return {}
      return data
  except FileNotFoundError:
    logger.warning(
      "Config file not found, using defaults",
      extra={"extra_data": {"config_path": str(path)}},
    )
    return {}
  except (OSError, yaml.YAMLError) as exc:
    logger.error(
      "Error reading config file, using defaults",
      extra={
        "extra_data": {
          "config_path": str(path),
          "error": str(exc),
        }
      },
    )
    return {}


def _section(raw: Dict[str, Any], name: str) -> Dict[str, Any]:
  value = raw.get(name, {}) if isinstance(raw, dict) else {}
  if not isinstance(value, dict):
    return {}
  # Empty YAML values mean "not set"
  return {k: v for k, v in value.items() if v is not None}


def load_config(path: Optional[Path] = None) -> AppConfig:
  """
  Load configuration from YAML and validate it with pydantic.

  - Missing file -> defaults.
  - Invalid values -> defaults (logged).
  - Cached in memory when loaded from the default path.
  """
  global _APP_CONFIG

  if _APP_CONFIG is not None and path is None:
    return _APP_CONFIG

  config_path = Path(path) if path is not None else _DEFAULT_CONFIG_PATH
  if path is None:
    # Default tree already carries the .env / environment overrides
    raw = settings.config
  else:
    raw = _read_raw_yaml(config_path)

  store_section = _section(raw, "store")

  try:
    app_config = AppConfig(
      engine=EngineConfig(**_section(raw, "engine")),
      tax=TaxSettings(**_section(raw, "tax")),
      store_path=str(store_section.get("path", AppConfig().store_path)),
    )
  except ValidationError as exc:
    logger.error(
      "Invalid config, using defaults",
      extra={
        "extra_data": {
          "config_path": str(config_path),
          "error": str(exc),
        }
      },
    )
    app_config = AppConfig()

  if path is None:
    _APP_CONFIG = app_config

  logger.info(
    "Config loaded",
    extra={"extra_data": {"config_path": str(config_path)}},
  )
  return app_config


def get_app_config() -> AppConfig:
  """Shortcut for the cached default configuration."""
  return load_config()
