from __future__ import annotations

"""
Smoke test for the quote tool (local, offline).

This script replaces the model with canned responses, then runs the same path the app does:
- generates a draft quote (quote_generation) from a fenced JSON reply
- applies a few step edits and checks the totals (quote_models, quote_totals)
- saves and reloads the quote through a JSON-file store (quote_store)
- writes a technical report (report_generation) with one photo
- renders both PDFs (quote_pdf)

It writes PDFs to `out/smoke_test_quote/` and exits non-zero if anything breaks.

Usage:
  python3 scripts/smoke_test_quote.py
  python3 scripts/smoke_test_quote.py --out-dir out/smoke_test_quote
"""

import argparse
import json
import sys
import tempfile
import traceback
from decimal import Decimal
from io import BytesIO
from pathlib import Path
from typing import Optional, Sequence

# Allow running as `python3 scripts/smoke_test_quote.py` (module imports live at repo root).
_ROOT = Path(__file__).resolve().parents[1]
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from PIL import Image

from image_inputs import InlineImage
from quote_generation import QuoteGenerationError, generate_quote
from quote_models import Currency, UserSettings, update_step
from quote_pdf import make_quote_pdf_bytes, make_report_pdf_bytes, pdf_file_name
from quote_store import JsonFileKeyValueStore, QuoteStore
from quote_totals import compute_totals
from report_generation import generate_technical_report

_QUOTE_REPLY = {
    "title": "Bathroom leak repair",
    "summary": "Locate and repair the leak behind the shower wall, then restore the tiling.",
    "executionTime": "3 to 5 business days",
    "paymentTerms": "50% upfront, 50% on completion",
    "steps": [
        {
            "title": "Leak detection",
            "description": "In this step we will locate the leak with a thermal camera and a pressure test.",
            "suggestedQuantity": 1,
            "suggestedPrice": {"unitPrice": 100, "unit": "unit"},
        },
        {
            "title": "Tiling",
            "description": "Here we will replace the removed tiles.",
            "suggestedQuantity": 4,
            "suggestedPrice": {"unitPrice": 30, "unit": "m2"},
        },
    ],
}

_REPORT_REPLY = {
    "title": "TECHNICAL REPORT - INSPECTION REPORT",
    "clientInfo": {
        "name": "Demo Customer",
        "address": "Rua das Flores 10, Lisboa",
        "date": "15/01/2026",
        "technician": "",
        "buildingType": "Apartment",
    },
    "objective": "Inspection of a damp stain on the bathroom wall adjoining the shower.",
    "methodology": ["Thermal camera", "Pressure test"],
    "development": [
        {"title": "Initial inspection", "content": "Humidity readings above 80% along the lower wall."},
        {"title": "Tests performed", "content": "The hot water circuit lost 1.5 bar in 10 minutes."},
    ],
    "photoAnalysis": [
        {"photoIndex": 0, "legend": "Thermal anomaly", "description": "Cold spot consistent with a leak."},
        {"photoIndex": 7, "legend": "Missing photo", "description": "Index outside the uploaded photos."},
    ],
    "conclusion": {
        "diagnosis": "Probable origin in the hot water supply behind the shower mixer.",
        "technicalProof": "Pressure drop and thermal gradient.",
        "consequences": "Progressive damage to the wall and the flat below.",
        "activeLeak": True,
    },
    "recommendations": {
        "repairType": "Replace the supply section behind the mixer.",
        "materials": ["PEX pipe", "Fittings", "Tile adhesive"],
        "estimatedTime": "2 days",
        "notes": "Shut off the water supply before work starts.",
    },
}


class CannedClient:
    """
    Returns the queued replies in order and records each call.
    """

    def __init__(self, replies: Sequence[str]) -> None:
        self._replies = list(replies)
        self.calls: list[dict[str, object]] = []

    def complete(self, prompt, images, system_instruction, *, web_search=False, json_mode=False) -> str:
        self.calls.append({"images": len(images), "web_search": web_search, "json_mode": json_mode})
        return self._replies.pop(0)


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[1]


def _sample_photo() -> InlineImage:
    img = Image.new("RGB", (320, 240), (120, 160, 200))
    buf = BytesIO()
    img.save(buf, format="JPEG")
    return InlineImage(data=buf.getvalue(), mime_type="image/jpeg", name="wall.jpg")


def _check(cond: bool, message: str) -> None:
    if not cond:
        raise AssertionError(message)


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "--out-dir",
        default=str(_repo_root() / "out" / "smoke_test_quote"),
        help="Directory to write PDFs into (default: out/smoke_test_quote).",
    )
    args = parser.parse_args(argv)

    out_dir = Path(args.out_dir).resolve()
    out_dir.mkdir(parents=True, exist_ok=True)

    client = CannedClient(
        [
            "```json\n" + json.dumps(_QUOTE_REPLY) + "\n```",
            json.dumps(_REPORT_REPLY),
        ]
    )
    photo = _sample_photo()

    draft = generate_quote(
        client,
        description="Damp stain on the bathroom wall next to the shower.",
        city="Lisboa",
        images=[photo],
        currency=Currency.EUR,
        client_name="Demo Customer",
    )
    quote = draft.to_quote(client_name="Demo Customer", client_address="Rua das Flores 10, Lisboa")
    print(f"- draft: {quote.title!r} ({len(quote.steps)} steps)")

    quote = update_step(quote, 0, tax_rate=23, quantity=2)
    quote = update_step(quote, 1, tax_rate=6)
    totals = compute_totals(quote.steps)
    _check(totals.subtotal == Decimal("320"), f"unexpected subtotal {totals.subtotal}")
    _check(totals.grand_total == totals.subtotal + totals.total_tax, "grand total mismatch")
    print(f"- totals: subtotal={totals.subtotal} tax={totals.total_tax} total={totals.grand_total}")

    settings = UserSettings(company_name="HidroClean", company_address="Lisboa", company_tax_id="PT500000000")
    with tempfile.TemporaryDirectory() as tmp:
        store = QuoteStore(JsonFileKeyValueStore(Path(tmp))).load()
        store.save_settings(settings)
        saved = store.add(quote)
        reloaded = QuoteStore(JsonFileKeyValueStore(Path(tmp))).load()
        _check(reloaded.get(saved.id) == saved, "saved quote did not round-trip")
        _check(reloaded.settings == settings, "settings did not round-trip")
    print(f"- stored as {saved.id}")

    report = generate_technical_report(client, saved, [photo], settings.company_name)
    print(f"- report: {len(report.development)} sections, {len(report.photo_analysis)} photo notes")
    _check(client.calls[0]["web_search"] is True, "quote call must enable web search")
    _check(client.calls[1]["json_mode"] is True, "report call must request JSON")

    quote_pdf = make_quote_pdf_bytes(saved, settings)
    report_pdf = make_report_pdf_bytes(report, saved, settings, [photo])
    for data, kind in ((quote_pdf, "quote"), (report_pdf, "report")):
        _check(data.startswith(b"%PDF"), f"{kind} PDF is not a PDF")
        path = out_dir / pdf_file_name(kind, saved.client_name)
        path.write_bytes(data)
        print(f"- wrote {path.name} ({len(data)} bytes)")

    print("")
    print(f"OK: wrote PDFs to {out_dir}")
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except QuoteGenerationError as exc:
        print(f"FAIL: QuoteGenerationError: {exc}", file=sys.stderr)
        raise SystemExit(2)
    except Exception:
        traceback.print_exc()
        raise SystemExit(1)
