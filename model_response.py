from __future__ import annotations

import json
import logging
import re
from typing import Any, Mapping

from quote_models import (
    DEFAULT_EXECUTION_TIME,
    DEFAULT_PAYMENT_TERMS,
    Currency,
    QuoteDraft,
    QuoteStep,
    TechnicalReport,
    coerce_quantity,
    to_decimal,
)

logger = logging.getLogger(__name__)


class ModelResponseError(ValueError):
    """
    Base class for model output that cannot be used. `str(exc)` is safe to show to users.
    """

    def __init__(self, message: str, *, raw_text: str = "") -> None:
        super().__init__(message)
        self.raw_text = raw_text


class MalformedResponse(ModelResponseError):
    pass


class UnexpectedShape(ModelResponseError):
    pass


MALFORMED_MESSAGE = "The AI response was not in a valid JSON format."
UNEXPECTED_SHAPE_MESSAGE = "The AI response did not match the expected format."

_FENCED_BLOCK_RE = re.compile(r"```(json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)


def extract_json_text(text: str) -> str:
    """
    Return the JSON candidate inside a model response.

    Models are told not to wrap output in markdown, but often do anyway. If a fenced block
    (optionally tagged `json`) is present, its inner content wins; otherwise the trimmed text.
    """
    t = (text or "").strip()
    m = _FENCED_BLOCK_RE.search(t)
    if m and m.group(2):
        return m.group(2)
    return t


def parse_json_payload(text: str) -> Any:
    candidate = extract_json_text(text)
    try:
        return json.loads(candidate)
    except (json.JSONDecodeError, TypeError) as exc:
        logger.warning("Model response is not valid JSON (%s): %r", exc, (text or "")[:2000])
        raise MalformedResponse(MALFORMED_MESSAGE, raw_text=text or "") from exc


def _normalize_step(step: Any) -> QuoteStep:
    if not isinstance(step, Mapping):
        step = {}
    suggested = step.get("suggestedPrice")
    unit = None
    if isinstance(suggested, Mapping):
        unit_price = suggested.get("unitPrice")
        if unit_price is None:
            unit_price = 0
        unit = suggested.get("unit")
    elif suggested is not None:
        unit_price = suggested
    else:
        unit_price = 0

    quantity = step.get("suggestedQuantity")
    if quantity is None:
        quantity = step.get("quantity")

    price = to_decimal(unit_price)
    return QuoteStep(
        title=str(step.get("title") or ""),
        description=str(step.get("description") or ""),
        suggested_price=price,
        suggested_unit=str(unit) if unit not in (None, "") else None,
        quantity=coerce_quantity(quantity),
        user_price=price,
        tax_rate=to_decimal(0),
    )


def parse_quote_payload(text: str, *, currency: Currency, city: str) -> QuoteDraft:
    """
    Parse a price-quote model response into a draft quote.

    Raises MalformedResponse for non-JSON text and UnexpectedShape when `title` or the
    `steps` array is missing.
    """
    payload = parse_json_payload(text)
    if not isinstance(payload, Mapping):
        raise UnexpectedShape(UNEXPECTED_SHAPE_MESSAGE, raw_text=text)

    title = payload.get("title")
    steps = payload.get("steps")
    if not isinstance(title, str) or not title.strip() or not isinstance(steps, list):
        logger.warning("Quote response missing title/steps: keys=%s", sorted(payload.keys()))
        raise UnexpectedShape(UNEXPECTED_SHAPE_MESSAGE, raw_text=text)

    return QuoteDraft(
        title=title.strip(),
        summary=str(payload.get("summary") or ""),
        execution_time=str(payload.get("executionTime") or DEFAULT_EXECUTION_TIME),
        payment_terms=str(payload.get("paymentTerms") or DEFAULT_PAYMENT_TERMS),
        steps=tuple(_normalize_step(s) for s in steps),
        currency=currency,
        city=city,
    )


def parse_report_payload(text: str) -> TechnicalReport:
    payload = parse_json_payload(text)
    if not isinstance(payload, Mapping):
        # JSON, but not something a report can be read from.
        raise MalformedResponse(MALFORMED_MESSAGE, raw_text=text)
    return TechnicalReport.from_dict(payload)
