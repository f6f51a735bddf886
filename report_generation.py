from __future__ import annotations

import json
import logging
from datetime import date
from typing import Optional, Sequence

from generative_client import GenerativeClient
from image_inputs import InlineImage
from model_response import MalformedResponse, parse_report_payload
from quote_models import Quote, TechnicalReport

logger = logging.getLogger(__name__)


class ReportGenerationError(ValueError):
    pass


REPORT_FAILED_MESSAGE = "Could not generate the technical report. Please try again."
DEFAULT_COMPANY_NAME = "HidroClean"

_REPORT_OUTPUT_CONTRACT = {
    "title": "TECHNICAL REPORT - INSPECTION REPORT",
    "clientInfo": {
        "name": "Client name",
        "address": "Full address",
        "date": "Current date",
        "technician": "Responsible technician (leave blank to be filled in)",
        "buildingType": "Apartment/House/Commercial (infer)",
    },
    "objective": "Short technical description of the reason for the intervention (3-5 lines).",
    "methodology": ["List", "of", "equipment", "used", "e.g. Geophone, Thermal camera, Flow test..."],
    "development": [
        {
            "title": "Initial inspection",
            "content": "LONG, detailed text about the environment found: humidity, stains, etc.",
        },
        {
            "title": "Technical inspection / Instrumental analysis",
            "content": "LONG technical text about the use of geophone/camera, zones investigated, sound maps, thermal gradients.",
        },
        {
            "title": "Tests performed",
            "content": "Detailed text about flow, pressure and tightness tests and the results observed.",
        },
    ],
    "photoAnalysis": [
        {
            "photoIndex": 0,
            "legend": "Short technical caption",
            "description": "Technical description of what the image shows (e.g. thermal anomaly, damp stain).",
        }
    ],
    "conclusion": {
        "diagnosis": "Exact location of the fault and probable cause.",
        "technicalProof": "Evidence supporting it (e.g. characteristic noise, pressure drop).",
        "consequences": "Impact if not repaired immediately.",
        "activeLeak": True,
    },
    "recommendations": {
        "repairType": "Description of the required repair.",
        "materials": ["List", "of", "materials"],
        "estimatedTime": "Estimated time",
        "notes": "Remarks about the intervention.",
    },
}


def report_system_instruction(company_name: str) -> str:
    company = (company_name or "").strip() or DEFAULT_COMPANY_NAME
    return (
        f"You are a technical expert at {company}. Your task is to write an extremely professional, detailed "
        "and extensive \"Technical Report\", used for insurers and expert assessments.\n\n"
        "MANDATORY PROTOCOL:\n"
        "1. ANALYSIS: identify the type of problem (water leak, infiltration, etc.) from the photos and text.\n"
        "2. RESPONSE JSON STRUCTURE (THE ONLY OUTPUT ALLOWED):\n"
        f"{json.dumps(_REPORT_OUTPUT_CONTRACT, indent=2)}\n\n"
        "photoIndex is the zero-based position of the corresponding image in the input (0, 1, 2...).\n\n"
        "LANGUAGE:\n"
        "- Use a formal, technical register (e.g. \"water impact zone\", \"thermal gradient\", \"hydraulic test\").\n"
        "- NEVER assign blame directly; use terms such as \"probable origin\" or \"consistent with\".\n"
        "- The \"development\" texts must be dense and explanatory.\n"
    )


def build_report_prompt(quote: Quote, *, company_name: str, today: date) -> str:
    company = (company_name or "").strip() or DEFAULT_COMPANY_NAME
    steps = "\n".join(f"- {s.title}: {s.description}" for s in quote.steps)
    return (
        "SERVICE DATA:\n"
        f"Client: {quote.client_name}\n"
        f"Address: {quote.client_address}\n"
        f"Date: {today.strftime('%d/%m/%Y')}\n"
        f"Problem/Service description: {quote.summary}\n\n"
        "DETAILS OF THE QUOTE ALREADY GENERATED:\n"
        f"{steps}\n\n"
        f"Produce a PROFESSIONAL TECHNICAL REPORT strictly following the protocol of the company \"{company}\".\n"
    )


def generate_technical_report(
    client: GenerativeClient,
    quote: Quote,
    images: Sequence[InlineImage],
    company_name: str,
    *,
    today: Optional[date] = None,
) -> TechnicalReport:
    """
    Ask the model for a formal inspection report about a quoted job.

    Uses the backend's strict JSON mode. `photo_index` values are returned as given; callers
    guard out-of-range indices when rendering.
    """
    prompt = build_report_prompt(quote, company_name=company_name, today=today or date.today())
    text = client.complete(prompt, tuple(images), report_system_instruction(company_name), json_mode=True)
    try:
        report = parse_report_payload(text)
    except MalformedResponse as exc:
        logger.error("Failed to parse technical report response")
        raise ReportGenerationError(REPORT_FAILED_MESSAGE) from exc
    logger.info(
        "Generated technical report with %d sections and %d photo notes",
        len(report.development),
        len(report.photo_analysis),
    )
    return report
