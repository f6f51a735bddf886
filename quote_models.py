from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping, Optional, Sequence, Tuple

from babel.numbers import format_currency

ZERO = Decimal("0")
ONE = Decimal("1")

TAX_RATE_CHOICES: Tuple[int, ...] = (0, 6, 11, 23)

DEFAULT_EXECUTION_TIME = "to be defined"
DEFAULT_PAYMENT_TERMS = "to be negotiated"


class Currency(str, Enum):
    EUR = "EUR"
    BRL = "BRL"
    USD = "USD"

    @property
    def locale(self) -> str:
        return _CURRENCY_LOCALES[self]

    @classmethod
    def coerce(cls, value: object) -> "Currency":
        """
        Parse a stored/user currency code; unknown codes fall back to EUR (the form default).
        """
        try:
            return cls(str(value or "").strip().upper())
        except ValueError:
            return cls.EUR


_CURRENCY_LOCALES = {
    Currency.EUR: "pt_PT",
    Currency.BRL: "pt_BR",
    Currency.USD: "en_US",
}


def to_decimal(value: Any, default: Decimal = ZERO) -> Decimal:
    """
    Coerce user or model input to a Decimal.

    Anything that is not a finite number (None, "", "abc", NaN, objects) becomes `default`.
    Floats go through `str()` so 0.1 stays 0.1.
    """
    if isinstance(value, bool):
        return Decimal(int(value))
    if isinstance(value, Decimal):
        d = value
    elif isinstance(value, int):
        return Decimal(value)
    elif isinstance(value, float):
        d = Decimal(str(value))
    elif isinstance(value, str):
        t = value.strip()
        if not t:
            return default
        try:
            d = Decimal(t)
        except InvalidOperation:
            return default
    else:
        return default
    if not d.is_finite():
        return default
    return d


def coerce_quantity(value: Any) -> Decimal:
    """
    Canonical quantity policy: missing/blank means a single unit, anything else is coerced.

    Non-numeric input becomes 0 and negative quantities are clamped to 0.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return ONE
    return max(ZERO, to_decimal(value))


def json_number(value: Decimal) -> Any:
    """
    Convert a Decimal into a plain JSON number (int when integral).
    """
    if value == value.to_integral_value():
        return int(value)
    return float(value)


def format_money(value: Any, currency: Currency) -> str:
    return format_currency(to_decimal(value), currency.value, locale=currency.locale)


def format_quantity(value: Decimal) -> str:
    d = to_decimal(value)
    if d == d.to_integral_value():
        return str(int(d))
    return f"{d.normalize():f}"


@dataclass(frozen=True)
class QuoteStep:
    title: str
    description: str
    suggested_price: Decimal
    quantity: Decimal
    user_price: Decimal
    tax_rate: Decimal = ZERO
    suggested_unit: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "QuoteStep":
        unit = data.get("suggestedUnit")
        return cls(
            title=str(data.get("title") or ""),
            description=str(data.get("description") or ""),
            suggested_price=to_decimal(data.get("suggestedPrice")),
            quantity=coerce_quantity(data.get("quantity")),
            user_price=to_decimal(data.get("userPrice")),
            tax_rate=to_decimal(data.get("taxRate")),
            suggested_unit=str(unit) if unit not in (None, "") else None,
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "title": self.title,
            "description": self.description,
            "suggestedPrice": json_number(self.suggested_price),
            "quantity": json_number(self.quantity),
            "userPrice": json_number(self.user_price),
            "taxRate": json_number(self.tax_rate),
        }
        if self.suggested_unit:
            out["suggestedUnit"] = self.suggested_unit
        return out


@dataclass(frozen=True)
class QuoteDraft:
    """
    What a generation call produces: a quote without identity, date or client contact fields.
    """

    title: str
    summary: str
    execution_time: str
    payment_terms: str
    steps: Tuple[QuoteStep, ...]
    currency: Currency
    city: str

    def to_quote(
        self,
        *,
        client_name: str,
        client_address: str = "",
        client_contact: str = "",
        quote_id: Optional[str] = None,
        date: Optional[str] = None,
    ) -> "Quote":
        created = datetime.now(timezone.utc)
        return Quote(
            id=quote_id or f"temp-{int(created.timestamp() * 1000)}",
            date=date or created.isoformat(),
            client_name=client_name,
            client_address=client_address,
            client_contact=client_contact,
            title=self.title,
            summary=self.summary,
            execution_time=self.execution_time,
            payment_terms=self.payment_terms,
            steps=self.steps,
            currency=self.currency,
            city=self.city,
        )


@dataclass(frozen=True)
class Quote:
    id: str
    date: str
    client_name: str
    client_address: str
    client_contact: str
    title: str
    summary: str
    execution_time: str
    payment_terms: str
    steps: Tuple[QuoteStep, ...]
    currency: Currency
    city: str

    @property
    def is_saved(self) -> bool:
        return not self.id.startswith("temp-")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Quote":
        raw_steps = data.get("steps")
        steps = tuple(
            QuoteStep.from_dict(s) for s in (raw_steps if isinstance(raw_steps, list) else []) if isinstance(s, Mapping)
        )
        return cls(
            id=str(data.get("id") or ""),
            date=str(data.get("date") or ""),
            client_name=str(data.get("clientName") or ""),
            client_address=str(data.get("clientAddress") or ""),
            client_contact=str(data.get("clientContact") or ""),
            title=str(data.get("title") or ""),
            summary=str(data.get("summary") or ""),
            execution_time=str(data.get("executionTime") or ""),
            payment_terms=str(data.get("paymentTerms") or ""),
            steps=steps,
            currency=Currency.coerce(data.get("currency")),
            city=str(data.get("city") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date,
            "clientName": self.client_name,
            "clientAddress": self.client_address,
            "clientContact": self.client_contact,
            "title": self.title,
            "summary": self.summary,
            "executionTime": self.execution_time,
            "paymentTerms": self.payment_terms,
            "steps": [s.to_dict() for s in self.steps],
            "currency": self.currency.value,
            "city": self.city,
        }


_EDITABLE_QUOTE_FIELDS = frozenset(
    {"client_name", "client_address", "client_contact", "execution_time", "payment_terms", "title", "summary"}
)


def update_quote_fields(quote: Quote, **changes: str) -> Quote:
    unknown = set(changes) - _EDITABLE_QUOTE_FIELDS
    if unknown:
        raise KeyError(f"not editable: {', '.join(sorted(unknown))}")
    return replace(quote, **{k: str(v if v is not None else "") for k, v in changes.items()})


def update_step(quote: Quote, index: int, **changes: Any) -> Quote:
    """
    Return a copy of `quote` with one step edited.

    Text fields are taken as-is. Numeric edits that are not numbers are ignored, and so are
    negative quantities, so the step always keeps its last valid value.
    """
    if index < 0 or index >= len(quote.steps):
        raise IndexError(f"step index out of range: {index}")
    step = quote.steps[index]
    updates: dict[str, Any] = {}
    for name, value in changes.items():
        if name in ("title", "description"):
            updates[name] = str(value if value is not None else "")
        elif name in ("user_price", "tax_rate", "quantity"):
            sentinel = Decimal("NaN")
            parsed = to_decimal(value, default=sentinel)
            if parsed.is_nan():
                continue
            if name == "quantity" and parsed < 0:
                continue
            updates[name] = parsed
        else:
            raise KeyError(f"not editable: {name}")
    if not updates:
        return quote
    steps = list(quote.steps)
    steps[index] = replace(step, **updates)
    return replace(quote, steps=tuple(steps))


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _text_list(value: Any) -> Tuple[str, ...]:
    if isinstance(value, (list, tuple)):
        return tuple(_text(v) for v in value if v is not None)
    if isinstance(value, str) and value.strip():
        return (value,)
    return ()


def _rows(value: Any) -> Tuple[Any, ...]:
    return tuple(value) if isinstance(value, (list, tuple)) else ()


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


@dataclass(frozen=True)
class ReportClientInfo:
    name: str = ""
    address: str = ""
    date: str = ""
    technician: str = ""
    building_type: str = ""


@dataclass(frozen=True)
class ReportSection:
    title: str
    content: str


@dataclass(frozen=True)
class PhotoAnalysis:
    photo_index: Optional[int]
    legend: str
    description: str


@dataclass(frozen=True)
class ReportConclusion:
    diagnosis: str = ""
    technical_proof: str = ""
    consequences: str = ""
    active_leak: bool = False


@dataclass(frozen=True)
class ReportRecommendations:
    repair_type: str = ""
    materials: Tuple[str, ...] = ()
    estimated_time: str = ""
    notes: str = ""


@dataclass(frozen=True)
class TechnicalReport:
    title: str
    client_info: ReportClientInfo
    objective: str
    methodology: Tuple[str, ...]
    development: Tuple[ReportSection, ...]
    photo_analysis: Tuple[PhotoAnalysis, ...]
    conclusion: ReportConclusion
    recommendations: ReportRecommendations
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TechnicalReport":
        """
        Build a report from model JSON without rejecting partial payloads.

        Missing blocks become empty values; the original mapping is kept in `raw`.
        """
        ci = _mapping(data.get("clientInfo"))
        conclusion = _mapping(data.get("conclusion"))
        rec = _mapping(data.get("recommendations"))

        development = []
        for row in _rows(data.get("development")):
            if isinstance(row, Mapping):
                development.append(ReportSection(title=_text(row.get("title")), content=_text(row.get("content"))))

        photos = []
        for row in _rows(data.get("photoAnalysis")):
            if not isinstance(row, Mapping):
                continue
            idx = row.get("photoIndex")
            try:
                photo_index: Optional[int] = int(idx) if idx is not None and not isinstance(idx, bool) else None
            except (TypeError, ValueError, OverflowError):
                photo_index = None
            photos.append(
                PhotoAnalysis(
                    photo_index=photo_index,
                    legend=_text(row.get("legend")),
                    description=_text(row.get("description")),
                )
            )

        active_leak = conclusion.get("activeLeak")
        if isinstance(active_leak, str):
            active_leak = active_leak.strip().lower() in {"true", "yes", "sim", "1"}

        return cls(
            title=_text(data.get("title")),
            client_info=ReportClientInfo(
                name=_text(ci.get("name")),
                address=_text(ci.get("address")),
                date=_text(ci.get("date")),
                technician=_text(ci.get("technician")),
                building_type=_text(ci.get("buildingType")),
            ),
            objective=_text(data.get("objective")),
            methodology=_text_list(data.get("methodology")),
            development=tuple(development),
            photo_analysis=tuple(photos),
            conclusion=ReportConclusion(
                diagnosis=_text(conclusion.get("diagnosis")),
                technical_proof=_text(conclusion.get("technicalProof")),
                consequences=_text(conclusion.get("consequences")),
                active_leak=bool(active_leak),
            ),
            recommendations=ReportRecommendations(
                repair_type=_text(rec.get("repairType")),
                materials=_text_list(rec.get("materials")),
                estimated_time=_text(rec.get("estimatedTime")),
                notes=_text(rec.get("notes")),
            ),
            raw=dict(data),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "clientInfo": {
                "name": self.client_info.name,
                "address": self.client_info.address,
                "date": self.client_info.date,
                "technician": self.client_info.technician,
                "buildingType": self.client_info.building_type,
            },
            "objective": self.objective,
            "methodology": list(self.methodology),
            "development": [{"title": s.title, "content": s.content} for s in self.development],
            "photoAnalysis": [
                {"photoIndex": p.photo_index, "legend": p.legend, "description": p.description}
                for p in self.photo_analysis
            ],
            "conclusion": {
                "diagnosis": self.conclusion.diagnosis,
                "technicalProof": self.conclusion.technical_proof,
                "consequences": self.conclusion.consequences,
                "activeLeak": self.conclusion.active_leak,
            },
            "recommendations": {
                "repairType": self.recommendations.repair_type,
                "materials": list(self.recommendations.materials),
                "estimatedTime": self.recommendations.estimated_time,
                "notes": self.recommendations.notes,
            },
        }

    @staticmethod
    def photo_for(entry: PhotoAnalysis, images: Sequence[Any]) -> Optional[Any]:
        """
        Return the image an analysis entry points at, or None when the index is out of range.
        """
        idx = entry.photo_index
        if idx is None or idx < 0 or idx >= len(images):
            return None
        return images[idx]


_DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<data>[A-Za-z0-9+/=\s]+)$")


@dataclass(frozen=True)
class UserSettings:
    company_name: str = ""
    company_address: str = ""
    company_tax_id: str = ""
    # data: URI, same shape the upload widget produces
    company_logo: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "UserSettings":
        return cls(
            company_name=_text(data.get("companyName")),
            company_address=_text(data.get("companyAddress")),
            company_tax_id=_text(data.get("companyTaxId")),
            company_logo=_text(data.get("companyLogo")),
        )

    def to_dict(self) -> dict[str, str]:
        return {
            "companyName": self.company_name,
            "companyAddress": self.company_address,
            "companyTaxId": self.company_tax_id,
            "companyLogo": self.company_logo,
        }

    @property
    def has_header(self) -> bool:
        return bool(self.company_name or self.company_logo)

    def logo_bytes(self) -> Optional[bytes]:
        """
        Decode the stored logo data URI; returns None when missing or malformed.
        """
        m = _DATA_URI_RE.match((self.company_logo or "").strip())
        if not m:
            return None
        try:
            return base64.b64decode(m.group("data"))
        except (binascii.Error, ValueError):
            return None


def data_uri(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"
