from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from quote_models import Currency, Quote, UserSettings
from quote_totals import compute_totals

logger = logging.getLogger(__name__)

SAVED_QUOTES_KEY = "savedQuotes"
USER_SETTINGS_KEY = "userSettings"


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...


class MemoryKeyValueStore:
    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


class JsonFileKeyValueStore:
    """
    One `<key>.json` file per key inside `directory`.

    Writes go to a temp file in the same directory and are swapped in with `os.replace`, so a
    crash mid-write never leaves a half-written document behind.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise ValueError(f"invalid store key: {key!r}")
        return self.directory / f"{key}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=f".{key}.", suffix=".tmp", dir=str(self.directory))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise


def new_quote_id(now: datetime) -> str:
    """
    Permanent ids are timestamp-derived; microseconds keep two saves in the same second apart.
    """
    return now.strftime("%Y%m%dT%H%M%S%fZ")


class QuoteStore:
    """
    Saved quotes and company settings on top of a key-value store.

    Call `load()` once at startup. Every mutation rewrites the affected document in full;
    there is no locking, so concurrent writers simply overwrite each other.
    """

    def __init__(self, kv: KeyValueStore) -> None:
        self._kv = kv
        self._quotes: List[Quote] = []
        self._settings = UserSettings()
        self._loaded = False

    @property
    def loaded(self) -> bool:
        return self._loaded

    def _read_json(self, key: str) -> Any:
        raw = self._kv.get(key)
        if raw is None or not raw.strip():
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.error("Stored %s is not valid JSON; starting empty", key)
            return None

    def load(self) -> "QuoteStore":
        stored_quotes = self._read_json(SAVED_QUOTES_KEY)
        quotes: List[Quote] = []
        if isinstance(stored_quotes, list):
            for row in stored_quotes:
                if isinstance(row, dict):
                    quotes.append(Quote.from_dict(row))
        elif stored_quotes is not None:
            logger.error("Stored %s is not a list; ignoring it", SAVED_QUOTES_KEY)
        self._quotes = quotes

        stored_settings = self._read_json(USER_SETTINGS_KEY)
        self._settings = UserSettings.from_dict(stored_settings) if isinstance(stored_settings, dict) else UserSettings()
        self._loaded = True
        logger.info("Loaded %d saved quotes", len(self._quotes))
        return self

    def save(self) -> None:
        self._save_quotes()
        self._save_settings()

    def _save_quotes(self) -> None:
        self._kv.set(SAVED_QUOTES_KEY, json.dumps([q.to_dict() for q in self._quotes], ensure_ascii=False))

    def _save_settings(self) -> None:
        self._kv.set(USER_SETTINGS_KEY, json.dumps(self._settings.to_dict(), ensure_ascii=False))

    def quotes(self) -> List[Quote]:
        return list(self._quotes)

    def get(self, quote_id: str) -> Optional[Quote]:
        return next((q for q in self._quotes if q.id == quote_id), None)

    def add(self, quote: Quote, *, now: Optional[datetime] = None) -> Quote:
        """
        Store a finalized quote under a new permanent id and the save time as its date.
        """
        ts = now or datetime.now(timezone.utc)
        quote_id = new_quote_id(ts)
        while self.get(quote_id) is not None:
            ts = ts.replace(microsecond=(ts.microsecond + 1) % 1_000_000)
            quote_id = new_quote_id(ts)
        stored = replace(quote, id=quote_id, date=ts.isoformat())
        self._quotes.append(stored)
        self._save_quotes()
        return stored

    def update(self, quote: Quote) -> Quote:
        for i, existing in enumerate(self._quotes):
            if existing.id == quote.id:
                self._quotes[i] = quote
                self._save_quotes()
                return quote
        raise KeyError(f"no saved quote with id {quote.id!r}")

    def delete(self, quote_id: str) -> bool:
        before = len(self._quotes)
        self._quotes = [q for q in self._quotes if q.id != quote_id]
        if len(self._quotes) == before:
            return False
        self._save_quotes()
        return True

    @property
    def settings(self) -> UserSettings:
        return self._settings

    def save_settings(self, settings: UserSettings) -> None:
        self._settings = settings
        self._save_settings()


@dataclass(frozen=True)
class HistoryRow:
    quote_id: str
    title: str
    client_name: str
    date: str
    grand_total: Decimal
    currency: Currency


def history_rows(store: QuoteStore) -> List[HistoryRow]:
    """
    Saved quotes for the history list, newest first, with totals from the shared calculator.
    """
    return [
        HistoryRow(
            quote_id=q.id,
            title=q.title,
            client_name=q.client_name,
            date=q.date,
            grand_total=compute_totals(q.steps).grand_total,
            currency=q.currency,
        )
        for q in reversed(store.quotes())
    ]
