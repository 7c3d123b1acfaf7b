import os
from pathlib import Path
from typing import Any, Dict

import yaml
from dotenv import load_dotenv

load_dotenv()

_DEFAULT_YAML = Path(__file__).resolve().parents[1] / "config" / "default.yml"


class Settings:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(Settings, cls).__new__(cls)
            cls._instance._load()
        return cls._instance

    def _load(self):
        # Defaults from YAML; a missing file leaves an empty tree
        self._config: Dict[str, Any] = {}
        if _DEFAULT_YAML.exists():
            with open(_DEFAULT_YAML, "r", encoding="utf-8") as f:
                self._config = yaml.safe_load(f) or {}

        self._config.setdefault("logging", {})
        self._config.setdefault("store", {})
        self._config.setdefault("engine", {})
        self._config.setdefault("tax", {})

        self._override_with_env()

    def _override_with_env(self):
        if os.getenv("ENVIRONMENT"):
            self._config["environment"] = os.getenv("ENVIRONMENT")

        # Logging
        if os.getenv("LOG_LEVEL"):
            self._config["logging"]["level"] = os.getenv("LOG_LEVEL")
        if os.getenv("LOG_FORMAT"):
            self._config["logging"]["format"] = os.getenv("LOG_FORMAT")

        # Store
        if os.getenv("BOOKKEEPER_STORE_PATH"):
            self._config["store"]["path"] = os.getenv("BOOKKEEPER_STORE_PATH")

        # Engine
        if os.getenv("BOOKKEEPER_BASE_CURRENCY"):
            self._config["engine"]["base_currency"] = os.getenv("BOOKKEEPER_BASE_CURRENCY")
        if os.getenv("BOOKKEEPER_BASELINE_EXCHANGE_RATE"):
            self._config["engine"]["baseline_exchange_rate"] = os.getenv(
                "BOOKKEEPER_BASELINE_EXCHANGE_RATE"
            )

        # Tax
        if os.getenv("BOOKKEEPER_PERIOD_CLOSING_DAY"):
            self._config["tax"]["period_closing_day"] = int(
                os.getenv("BOOKKEEPER_PERIOD_CLOSING_DAY")
            )
        if os.getenv("BOOKKEEPER_TAX_METHOD"):
            self._config["tax"]["method"] = os.getenv("BOOKKEEPER_TAX_METHOD")

    def get(self, key: str, default: Any = None) -> Any:
        keys = key.split(".")
        value: Any = self._config
        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    @property
    def config(self) -> Dict[str, Any]:
        return self._config


settings = Settings()
