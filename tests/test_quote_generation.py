from __future__ import annotations

import json
import unittest
from datetime import date
from decimal import Decimal
from typing import Optional, Sequence

from image_inputs import InlineImage
from quote_generation import QUOTE_SYSTEM_INSTRUCTION, QuoteGenerationError, generate_quote
from quote_models import Currency, QuoteDraft, QuoteStep
from report_generation import (
    DEFAULT_COMPANY_NAME,
    REPORT_FAILED_MESSAGE,
    ReportGenerationError,
    generate_technical_report,
)


class FakeClient:
    def __init__(self, reply: str = "", *, error: Optional[Exception] = None) -> None:
        self.reply = reply
        self.error = error
        self.calls: list[dict[str, object]] = []

    def complete(
        self,
        prompt: str,
        images: Sequence[InlineImage],
        system_instruction: str,
        *,
        web_search: bool = False,
        json_mode: bool = False,
    ) -> str:
        self.calls.append(
            {
                "prompt": prompt,
                "images": tuple(images),
                "system_instruction": system_instruction,
                "web_search": web_search,
                "json_mode": json_mode,
            }
        )
        if self.error is not None:
            raise self.error
        return self.reply


_QUOTE_REPLY = json.dumps(
    {
        "title": "Roof repair",
        "summary": "Replace broken tiles.",
        "executionTime": "2 days",
        "paymentTerms": "On completion",
        "steps": [
            {
                "title": "Tile replacement",
                "description": "Here we will replace the broken tiles.",
                "suggestedQuantity": 12,
                "suggestedPrice": {"unitPrice": 8, "unit": "unit"},
            }
        ],
    }
)

_PHOTO = InlineImage(data=b"\xff\xd8\xff", mime_type="image/jpeg", name="roof.jpg")


def _saved_quote():
    draft = QuoteDraft(
        title="Roof repair",
        summary="Water coming through the ceiling after rain.",
        execution_time="2 days",
        payment_terms="On completion",
        steps=(
            QuoteStep(
                title="Tile replacement",
                description="Replace the broken tiles.",
                suggested_price=Decimal("8"),
                quantity=Decimal("12"),
                user_price=Decimal("8"),
            ),
        ),
        currency=Currency.EUR,
        city="Braga",
    )
    return draft.to_quote(client_name="Rui Costa", client_address="Rua Nova 5, Braga", quote_id="20260115T101500000000Z")


class TestGenerateQuote(unittest.TestCase):
    def test_single_call_with_web_search_and_images(self) -> None:
        client = FakeClient(_QUOTE_REPLY)
        draft = generate_quote(
            client,
            description="Tiles blown off by the storm.",
            city="Braga",
            images=[_PHOTO],
            currency=Currency.USD,
            client_name="Rui Costa",
        )
        self.assertEqual(len(client.calls), 1)
        call = client.calls[0]
        self.assertTrue(call["web_search"])
        self.assertFalse(call["json_mode"])
        self.assertEqual(call["images"], (_PHOTO,))
        self.assertEqual(call["system_instruction"], QUOTE_SYSTEM_INSTRUCTION)
        for needle in ("Rui Costa", "Tiles blown off by the storm.", "Braga", "USD"):
            self.assertIn(needle, call["prompt"])

        self.assertEqual(draft.title, "Roof repair")
        self.assertEqual(draft.currency, Currency.USD)
        self.assertEqual(draft.steps[0].user_price, Decimal("8"))
        self.assertEqual(draft.steps[0].quantity, Decimal("12"))

    def test_system_instruction_describes_output_contract(self) -> None:
        for key in ("executionTime", "paymentTerms", "suggestedQuantity", "unitPrice", "JSON"):
            self.assertIn(key, QUOTE_SYSTEM_INSTRUCTION)

    def test_unusable_response_raises_generation_error(self) -> None:
        for reply in ("not json", json.dumps({"summary": "no title or steps"})):
            with self.subTest(reply=reply):
                with self.assertRaises(QuoteGenerationError) as ctx:
                    generate_quote(
                        FakeClient(reply),
                        description="x",
                        city="Braga",
                        images=[],
                        currency=Currency.EUR,
                        client_name="Rui",
                    )
                self.assertEqual(str(ctx.exception), "The AI response was not valid.")
                self.assertIsNotNone(ctx.exception.__cause__)

    def test_upstream_errors_propagate_unchanged(self) -> None:
        boom = ConnectionError("network down")
        with self.assertRaises(ConnectionError) as ctx:
            generate_quote(
                FakeClient(error=boom),
                description="x",
                city="Braga",
                images=[],
                currency=Currency.EUR,
                client_name="Rui",
            )
        self.assertIs(ctx.exception, boom)


class TestGenerateTechnicalReport(unittest.TestCase):
    def test_prompt_carries_quote_context(self) -> None:
        client = FakeClient(json.dumps({"title": "TECHNICAL REPORT", "objective": "Find the leak."}))
        report = generate_technical_report(client, _saved_quote(), [_PHOTO], "AquaFix", today=date(2026, 1, 15))

        self.assertEqual(report.objective, "Find the leak.")
        call = client.calls[0]
        self.assertTrue(call["json_mode"])
        self.assertFalse(call["web_search"])
        self.assertEqual(call["images"], (_PHOTO,))
        for needle in (
            "Rui Costa",
            "Rua Nova 5, Braga",
            "15/01/2026",
            "Water coming through the ceiling after rain.",
            "- Tile replacement: Replace the broken tiles.",
            "AquaFix",
        ):
            self.assertIn(needle, call["prompt"])
        self.assertIn("AquaFix", call["system_instruction"])
        self.assertIn("probable origin", call["system_instruction"])
        self.assertIn("consistent with", call["system_instruction"])

    def test_blank_company_uses_default_name(self) -> None:
        client = FakeClient("{}")
        generate_technical_report(client, _saved_quote(), [], "  ", today=date(2026, 1, 15))
        self.assertIn(DEFAULT_COMPANY_NAME, client.calls[0]["system_instruction"])

    def test_scalar_blocks_do_not_break_report(self) -> None:
        client = FakeClient('{"title": "T", "photoAnalysis": 3, "development": 5}')
        report = generate_technical_report(client, _saved_quote(), [], "AquaFix", today=date(2026, 1, 15))
        self.assertEqual(report.title, "T")
        self.assertEqual(report.photo_analysis, ())
        self.assertEqual(report.development, ())

    def test_invalid_json_raises_report_error(self) -> None:
        with self.assertRaises(ReportGenerationError) as ctx:
            generate_technical_report(FakeClient("<html>"), _saved_quote(), [], "AquaFix")
        self.assertEqual(str(ctx.exception), REPORT_FAILED_MESSAGE)

    def test_upstream_errors_propagate_unchanged(self) -> None:
        with self.assertRaises(TimeoutError):
            generate_technical_report(FakeClient(error=TimeoutError("slow")), _saved_quote(), [], "AquaFix")


if __name__ == "__main__":
    unittest.main()
