from __future__ import annotations

import json
import tempfile
import unittest
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

from quote_models import Currency, QuoteDraft, QuoteStep, UserSettings, update_step
from quote_store import (
    SAVED_QUOTES_KEY,
    USER_SETTINGS_KEY,
    JsonFileKeyValueStore,
    MemoryKeyValueStore,
    QuoteStore,
    history_rows,
)


def _draft_quote(title: str = "Boiler service", price: str = "100"):
    draft = QuoteDraft(
        title=title,
        summary="",
        execution_time="1 day",
        payment_terms="On completion",
        steps=(
            QuoteStep(
                title="Service",
                description="Annual service.",
                suggested_price=Decimal(price),
                quantity=Decimal("2"),
                user_price=Decimal(price),
                tax_rate=Decimal("23"),
            ),
        ),
        currency=Currency.EUR,
        city="Lisboa",
    )
    return draft.to_quote(client_name="Marta")


class TestQuoteStore(unittest.TestCase):
    def test_add_assigns_permanent_id_and_persists(self) -> None:
        kv = MemoryKeyValueStore()
        store = QuoteStore(kv).load()
        now = datetime(2026, 1, 15, 10, 30, 0, tzinfo=timezone.utc)

        saved = store.add(_draft_quote(), now=now)
        self.assertTrue(saved.is_saved)
        self.assertFalse(saved.id.startswith("temp-"))
        self.assertEqual(saved.date, now.isoformat())

        stored = json.loads(kv.get(SAVED_QUOTES_KEY) or "[]")
        self.assertEqual(len(stored), 1)
        self.assertEqual(stored[0]["id"], saved.id)
        self.assertEqual(stored[0]["steps"][0]["userPrice"], 100)

    def test_ids_stay_unique_within_same_instant(self) -> None:
        store = QuoteStore(MemoryKeyValueStore()).load()
        now = datetime(2026, 1, 15, 10, 30, 0, tzinfo=timezone.utc)
        a = store.add(_draft_quote("A"), now=now)
        b = store.add(_draft_quote("B"), now=now)
        self.assertNotEqual(a.id, b.id)

    def test_round_trip_through_new_store(self) -> None:
        kv = MemoryKeyValueStore()
        store = QuoteStore(kv).load()
        saved = store.add(update_step(_draft_quote(), 0, user_price="19.99"))
        store.save_settings(UserSettings(company_name="HidroClean", company_tax_id="PT123"))

        reloaded = QuoteStore(kv).load()
        self.assertEqual(reloaded.quotes(), [saved])
        self.assertEqual(reloaded.settings.company_name, "HidroClean")
        self.assertEqual(reloaded.settings.company_tax_id, "PT123")

    def test_update_replaces_by_id(self) -> None:
        kv = MemoryKeyValueStore()
        store = QuoteStore(kv).load()
        first = store.add(_draft_quote("First"), now=datetime(2026, 1, 1, tzinfo=timezone.utc))
        second = store.add(_draft_quote("Second"), now=datetime(2026, 1, 2, tzinfo=timezone.utc))

        edited = update_step(first, 0, quantity=5)
        store.update(edited)
        self.assertEqual(store.get(first.id), edited)
        self.assertEqual(store.get(second.id), second)
        self.assertEqual(QuoteStore(kv).load().get(first.id).steps[0].quantity, Decimal("5"))

    def test_update_unknown_id_raises(self) -> None:
        store = QuoteStore(MemoryKeyValueStore()).load()
        with self.assertRaises(KeyError):
            store.update(_draft_quote())

    def test_delete(self) -> None:
        store = QuoteStore(MemoryKeyValueStore()).load()
        saved = store.add(_draft_quote())
        self.assertTrue(store.delete(saved.id))
        self.assertFalse(store.delete(saved.id))
        self.assertEqual(store.quotes(), [])

    def test_settings_overwrite(self) -> None:
        kv = MemoryKeyValueStore()
        store = QuoteStore(kv).load()
        store.save_settings(UserSettings(company_name="Old"))
        store.save_settings(UserSettings(company_name="New"))
        self.assertEqual(json.loads(kv.get(USER_SETTINGS_KEY) or "{}")["companyName"], "New")

    def test_corrupt_blobs_start_empty(self) -> None:
        kv = MemoryKeyValueStore({SAVED_QUOTES_KEY: "{not json", USER_SETTINGS_KEY: "[]"})
        with self.assertLogs("quote_store", level="ERROR"):
            store = QuoteStore(kv).load()
        self.assertTrue(store.loaded)
        self.assertEqual(store.quotes(), [])
        self.assertEqual(store.settings, UserSettings())

    def test_legacy_rows_without_quantity(self) -> None:
        row = _draft_quote().to_dict()
        row["id"] = "1700000000000"
        del row["steps"][0]["quantity"]
        store = QuoteStore(MemoryKeyValueStore({SAVED_QUOTES_KEY: json.dumps([row])})).load()
        # 100 * 1 * 1.23
        self.assertEqual(history_rows(store)[0].grand_total, Decimal("123"))


class TestHistoryRows(unittest.TestCase):
    def test_newest_first_with_totals(self) -> None:
        store = QuoteStore(MemoryKeyValueStore()).load()
        store.add(_draft_quote("Older", "100"), now=datetime(2026, 1, 1, tzinfo=timezone.utc))
        store.add(_draft_quote("Newer", "50"), now=datetime(2026, 2, 1, tzinfo=timezone.utc))

        rows = history_rows(store)
        self.assertEqual([r.title for r in rows], ["Newer", "Older"])
        self.assertEqual(rows[0].grand_total, Decimal("123"))
        self.assertEqual(rows[1].grand_total, Decimal("246"))
        self.assertEqual(rows[1].currency, Currency.EUR)


class TestJsonFileKeyValueStore(unittest.TestCase):
    def test_get_set_and_reload(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            directory = Path(tmp) / "data"
            kv = JsonFileKeyValueStore(directory)
            self.assertIsNone(kv.get(SAVED_QUOTES_KEY))

            store = QuoteStore(kv).load()
            saved = store.add(_draft_quote())
            self.assertTrue((directory / f"{SAVED_QUOTES_KEY}.json").exists())
            self.assertEqual(sorted(p.name for p in directory.iterdir()), [f"{SAVED_QUOTES_KEY}.json"])

            reloaded = QuoteStore(JsonFileKeyValueStore(directory)).load()
            self.assertEqual(reloaded.quotes(), [saved])

    def test_rejects_path_like_keys(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            kv = JsonFileKeyValueStore(Path(tmp))
            for key in ("", "../escape", ".hidden", "a/b"):
                with self.subTest(key=key):
                    with self.assertRaises(ValueError):
                        kv.set(key, "{}")


if __name__ == "__main__":
    unittest.main()
