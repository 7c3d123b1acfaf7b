"""
Ledger storage.

The engine only needs a key-value store with get/set; each collection is one
key holding a list of JSON-friendly dicts. `LedgerRepository` is the typed
layer on top (records in, records out, snapshot export/import).
"""
from __future__ import annotations

import copy
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol, Type, TypeVar

from bookkeeper.errors import RecordNotFoundError, ValidationError
from bookkeeper.models import (
    BY_COLLECTION,
    RECORD_TYPES,
    LedgerSnapshot,
    Record,
    record_from_dict,
    record_to_dict,
)
from infra.logging_config import get_logger

logger = get_logger(__name__)

R = TypeVar("R", bound=Record)

TAX_SETTINGS_KEY = "tax_settings"
PERIOD_REPORTS_KEY = "period_reports"
FORMAT_VERSION = 1


class LedgerStore(Protocol):
    def get(self, key: str) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...


class InMemoryStore:
    """Dict-backed store; values are deep-copied in and out."""

    def __init__(self, initial: Optional[Mapping[str, Any]] = None) -> None:
        self._data: Dict[str, Any] = copy.deepcopy(dict(initial or {}))

    def get(self, key: str) -> Any:
        return copy.deepcopy(self._data.get(key))

    def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)


class JsonFileStore:
    """Whole ledger in one JSON document, rewritten atomically on every set."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._doc: Dict[str, Any] = self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValidationError(f"LEDGER_CORRUPT: {self._path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise ValidationError(f"LEDGER_CORRUPT: {self._path}: root must be an object")
        return raw

    def get(self, key: str) -> Any:
        return copy.deepcopy(self._doc.get(key))

    def set(self, key: str, value: Any) -> None:
        self._doc[key] = copy.deepcopy(value)
        self._atomic_write()

    def _atomic_write(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_fd, tmp_name = tempfile.mkstemp(
            prefix=self._path.name + ".", suffix=".tmp", dir=str(self._path.parent)
        )
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8", newline="\n") as f:
                json.dump(self._doc, f, indent=2, ensure_ascii=False, sort_keys=True, default=str)
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, str(self._path))
        finally:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)


class LedgerRepository:
    """Typed access to the collections held by a LedgerStore."""

    def __init__(self, store: LedgerStore) -> None:
        self._store = store

    @property
    def store(self) -> LedgerStore:
        return self._store

    def records(self, record_type: Type[R]) -> List[R]:
        raw = self._store.get(record_type.collection) or []
        return [record_from_dict(record_type, item) for item in raw]

    def _write(self, record_type: Type[R], records: List[R]) -> None:
        ordered = sorted(records, key=lambda r: r.id)
        self._store.set(record_type.collection, [record_to_dict(r) for r in ordered])

    def find(self, record_type: Type[R], record_id: str) -> R:
        for r in self.records(record_type):
            if r.id == record_id:
                return r
        raise RecordNotFoundError(f"{record_type.__name__} {record_id!r} not found")

    def exists(self, record_type: Type[R], record_id: str) -> bool:
        return any(r.id == record_id for r in self.records(record_type))

    def put(self, record: Record) -> None:
        """Insert, or replace the record with the same id."""
        record_type = type(record)
        rest = [r for r in self.records(record_type) if r.id != record.id]
        self._write(record_type, rest + [record])

    def put_many(self, records: List[Record]) -> None:
        grouped: Dict[Type[Record], List[Record]] = {}
        for record in records:
            grouped.setdefault(type(record), []).append(record)
        for record_type, new in grouped.items():
            ids = {r.id for r in new}
            rest = [r for r in self.records(record_type) if r.id not in ids]
            self._write(record_type, rest + new)

    def remove(self, record_type: Type[R], record_id: str) -> None:
        current = self.records(record_type)
        rest = [r for r in current if r.id != record_id]
        if len(rest) == len(current):
            raise RecordNotFoundError(f"{record_type.__name__} {record_id!r} not found")
        self._write(record_type, rest)

    def snapshot(self) -> LedgerSnapshot:
        return LedgerSnapshot({t.collection: tuple(self.records(t)) for t in RECORD_TYPES})

    # --- singletons / blobs ---

    def get_blob(self, key: str) -> Any:
        return self._store.get(key)

    def set_blob(self, key: str, value: Any) -> None:
        self._store.set(key, value)

    # --- export / import ---

    def export_document(self) -> Dict[str, Any]:
        """Every collection sorted by id, plus the singletons."""
        doc: Dict[str, Any] = {"format_version": FORMAT_VERSION}
        for record_type in RECORD_TYPES:
            records = sorted(self.records(record_type), key=lambda r: r.id)
            doc[record_type.collection] = [record_to_dict(r) for r in records]
        doc[TAX_SETTINGS_KEY] = self._store.get(TAX_SETTINGS_KEY)
        doc[PERIOD_REPORTS_KEY] = self._store.get(PERIOD_REPORTS_KEY) or {}
        return doc

    def import_document(self, doc: Mapping[str, Any]) -> None:
        """Replace the ledger with `doc`. Every record is rebuilt before anything is written."""
        if not isinstance(doc, Mapping):
            raise ValidationError("snapshot document must be an object")
        parsed: Dict[str, List[Record]] = {}
        for collection, record_type in BY_COLLECTION.items():
            items = doc.get(collection) or []
            if not isinstance(items, list):
                raise ValidationError(f"{collection} must be a list")
            records = [record_from_dict(record_type, item) for item in items]
            ids = [r.id for r in records]
            if len(ids) != len(set(ids)):
                raise ValidationError(f"duplicate ids in {collection}")
            parsed[collection] = records

        for collection, records in parsed.items():
            self._write(BY_COLLECTION[collection], records)
        self._store.set(TAX_SETTINGS_KEY, doc.get(TAX_SETTINGS_KEY))
        self._store.set(PERIOD_REPORTS_KEY, dict(doc.get(PERIOD_REPORTS_KEY) or {}))

        logger.info(
            "Ledger imported",
            extra={"extra_data": {"collections": {k: len(v) for k, v in parsed.items()}}},
        )
