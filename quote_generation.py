from __future__ import annotations

import json
import logging
from typing import Sequence

from generative_client import GenerativeClient
from image_inputs import InlineImage
from model_response import ModelResponseError, parse_quote_payload
from quote_models import Currency, QuoteDraft

logger = logging.getLogger(__name__)


class QuoteGenerationError(ValueError):
    pass


INVALID_RESPONSE_MESSAGE = "The AI response was not valid."

_QUOTE_OUTPUT_CONTRACT = {
    "title": "A concise, professional title for the overall job.",
    "summary": "A short summary of the work to be done.",
    "executionTime": "An estimate of the total time needed (e.g. '3 to 5 business days').",
    "paymentTerms": "A common payment arrangement for this service (e.g. '50% upfront, 50% on completion').",
    "steps": [
        {
            "title": "A short title for this step (e.g. 'Surface preparation and demolition').",
            "description": "A detailed description of the tasks in this step, written as if explaining it to the client.",
            "suggestedQuantity": "Estimated quantity for this step as a number (e.g. 5 for 5 m2, 1 for a single task). Use 1 when not applicable.",
            "suggestedPrice": {
                "unitPrice": "Fair market price PER UNIT for this step, as a number without currency symbols.",
                "unit": "Unit of measure for the price (e.g. 'm2', 'unit', 'hour').",
            },
        }
    ],
}

QUOTE_SYSTEM_INSTRUCTION = (
    "You are an expert assistant for construction and home-repair professionals. Your task is to create "
    "detailed, professional quotes. Descriptions must be clear and direct, written as if you, the professional, "
    "were explaining each step of the service to the end client (use language like \"In this step we will "
    "prepare...\", \"Here we will install...\").\n"
    "Use the web search tool to research labor and material costs in the city and currency given by the user.\n"
    "Your answer MUST be a single JSON object and nothing else. Do not include ```json or any other formatting.\n"
    "The JSON must have the following structure:\n"
    f"{json.dumps(_QUOTE_OUTPUT_CONTRACT, indent=2)}\n"
)


def build_quote_prompt(*, description: str, city: str, currency: Currency, client_name: str) -> str:
    return (
        f"Client: {client_name}\n"
        f"Job description: {description}\n"
        f"City for pricing: {city}\n"
        f"Quote currency: {currency.value}\n\n"
        "Please analyse the attached images and the job description to produce a detailed quote.\n"
        "Use search to find fair market prices for the services and materials in the given city and currency.\n"
        "Split the work into logical steps, describe each one, and estimate a quantity, a unit (if applicable) "
        "and a fair market price PER UNIT for each step.\n"
        "Also estimate a reasonable execution time and a standard payment arrangement for this kind of service.\n"
    )


def generate_quote(
    client: GenerativeClient,
    *,
    description: str,
    city: str,
    images: Sequence[InlineImage],
    currency: Currency,
    client_name: str,
) -> QuoteDraft:
    """
    Ask the model for a priced breakdown of the job and parse it into a draft quote.

    Exactly one model call, no retries. Model-call failures propagate untouched; unusable
    output raises QuoteGenerationError.
    """
    prompt = build_quote_prompt(description=description, city=city, currency=currency, client_name=client_name)
    text = client.complete(prompt, tuple(images), QUOTE_SYSTEM_INSTRUCTION, web_search=True)
    try:
        draft = parse_quote_payload(text, currency=currency, city=city)
    except ModelResponseError as exc:
        logger.error("Failed to parse quote response (%s)", type(exc).__name__)
        raise QuoteGenerationError(INVALID_RESPONSE_MESSAGE) from exc
    logger.info("Generated quote %r with %d steps for %s", draft.title, len(draft.steps), city)
    return draft
