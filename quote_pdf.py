from __future__ import annotations

import re
from dataclasses import dataclass, replace
from datetime import datetime
from io import BytesIO
from typing import List, Optional, Sequence, Tuple

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfgen import canvas

from image_inputs import InlineImage, thumbnail_png_bytes
from quote_models import Quote, TechnicalReport, UserSettings, format_money, format_quantity
from quote_totals import compute_totals, line_total_with_tax

PAGE_W, PAGE_H = A4
MARGIN = 10 * mm
GAP = 5 * mm
PAD = 3 * mm

PRIMARY = colors.HexColor("#1d4ed8")
MUTED = colors.HexColor("#6b7280")
BOX_FILL = colors.HexColor("#f9fafb")
BOX_STROKE = colors.HexColor("#e5e7eb")

_BODY_FONT = ("Helvetica", 9.5)
_BOLD_FONT = ("Helvetica-Bold", 9.5)
_LABEL_FONT = ("Helvetica", 8)
_HEADING_FONT = ("Helvetica-Bold", 12)
_BANNER_TITLE_FONT = ("Helvetica-Bold", 16)


@dataclass(frozen=True)
class PdfSection:
    """
    One block of a document, laid out as a unit.

    A section never straddles two pages unless it is taller than a page on its own, in which
    case it is split into continuation sections. `break_before` forces a fresh page.

    kind:
    - "header": company logo on the left, `lines` right-aligned
    - "banner": filled band with `heading` and `lines` centred in white
    - "box": framed block
    - "plain": no frame
    """

    kind: str = "box"
    heading: str = ""
    lines: Tuple[str, ...] = ()
    fields: Tuple[Tuple[str, str], ...] = ()
    table: Tuple[Tuple[str, ...], ...] = ()
    # first table row is a column header
    table_header: bool = True
    image_png: Optional[bytes] = None
    caption: str = ""
    break_before: bool = False
    small: bool = False


# Typographic characters are flattened to ASCII; the built-in Type1 fonts lack some of them.
_PDF_TEXT_MAP = {
    chr(0x00A0): " ",  # no-break space
    chr(0x202F): " ",  # narrow no-break space (newer CLDR currency formats)
    chr(0x2013): "-",
    chr(0x2014): "-",
    chr(0x2018): "'",
    chr(0x2019): "'",
    chr(0x201C): '"',
    chr(0x201D): '"',
    chr(0x2026): "...",
    chr(0x2022): "-",
}


def _pdf_text(value: object) -> str:
    t = str(value if value is not None else "")
    for k, v in _PDF_TEXT_MAP.items():
        t = t.replace(k, v)
    return t


def plan_pages(
    heights: Sequence[float],
    break_before: Sequence[bool],
    *,
    page_height: float = PAGE_H,
    margin: float = MARGIN,
    gap: float = GAP,
) -> List[Tuple[int, float]]:
    """
    Assign each section a (page_index, offset_from_top).

    Sections stack from the top margin with `gap` between them. A new page starts when a
    section would run past the bottom margin, and before any section flagged `break_before`.
    A page that is still empty is reused in both cases, so no blank pages are produced.
    """
    if len(heights) != len(break_before):
        raise ValueError("heights and break_before must have the same length")
    placements: List[Tuple[int, float]] = []
    page = 0
    cursor = margin
    page_empty = True
    for h, brk in zip(heights, break_before):
        if h < 0:
            raise ValueError("section heights must be >= 0")
        if not page_empty and (brk or cursor + h > page_height - margin):
            page += 1
            cursor = margin
            page_empty = True
        placements.append((page, cursor))
        cursor += h + gap
        page_empty = False
    return placements


# ---------------------------------------------------------------------------
# Layout: a section becomes a list of items with known heights.
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _Item:
    kind: str  # "heading" | "label" | "text" | "row" | "image" | "caption" | "space"
    height: float
    text: str = ""
    cells: Tuple[str, ...] = ()
    header_row: bool = False
    image: Optional[ImageReader] = None
    image_w: float = 0.0


def _wrap(text: str, font: Tuple[str, float], width: float) -> List[str]:
    out: List[str] = []
    for paragraph in _pdf_text(text).split("\n"):
        if not paragraph.strip():
            out.append("")
            continue
        out.extend(simpleSplit(paragraph, font[0], font[1], width) or [""])
    return out


def _line_h(font: Tuple[str, float]) -> float:
    return font[1] * 1.35


def _layout_items(section: PdfSection, content_w: float) -> List[_Item]:
    items: List[_Item] = []
    body = _LABEL_FONT if section.small else _BODY_FONT

    if section.heading:
        font = _BANNER_TITLE_FONT if section.kind == "banner" else _HEADING_FONT
        for line in _wrap(section.heading, font, content_w):
            items.append(_Item("heading", _line_h(font), text=line))
        items.append(_Item("space", 1.5 * mm))

    for label, value in section.fields:
        items.append(_Item("label", _line_h(_LABEL_FONT), text=_pdf_text(label)))
        for line in _wrap(value or "-", _BODY_FONT, content_w):
            items.append(_Item("text", _line_h(_BODY_FONT), text=line))
        items.append(_Item("space", 1.5 * mm))

    for raw in section.lines:
        for line in _wrap(raw, body, content_w):
            items.append(_Item("text", _line_h(body), text=line))

    for idx, row in enumerate(section.table):
        items.append(_Item("row", _line_h(_BODY_FONT) + 1.0 * mm, cells=tuple(_pdf_text(c) for c in row), header_row=section.table_header and idx == 0))

    if section.image_png:
        try:
            reader = ImageReader(BytesIO(section.image_png))
            iw, ih = reader.getSize()
        except Exception:
            # An undecodable photo must not break the export.
            reader = None
            iw = ih = 0
        if reader is not None and iw > 0 and ih > 0:
            if section.kind == "header":
                target_h = 16 * mm
                target_w = min(50 * mm, target_h * iw / ih)
                target_h = target_w * ih / iw
            else:
                target_w = min(content_w, 120 * mm)
                target_h = target_w * ih / iw
                max_h = 95 * mm
                if target_h > max_h:
                    target_h = max_h
                    target_w = target_h * iw / ih
            items.append(_Item("image", target_h, image=reader, image_w=target_w))
            if section.caption:
                items.append(_Item("caption", _line_h(_LABEL_FONT), text=_pdf_text(section.caption)))
    return items


def _section_height(section: PdfSection, items: Sequence[_Item]) -> float:
    if section.kind == "header":
        image_h = sum(i.height for i in items if i.kind == "image")
        text_h = sum(i.height for i in items if i.kind != "image")
        return max(image_h, text_h) + 2 * PAD
    return sum(i.height for i in items) + 2 * PAD


def _split_to_fit(section: PdfSection, items: List[_Item], max_h: float) -> List[Tuple[PdfSection, List[_Item]]]:
    """
    Split an over-tall section into page-sized chunks of items.
    """
    if _section_height(section, items) <= max_h or section.kind == "header":
        return [(section, items)]
    chunks: List[Tuple[PdfSection, List[_Item]]] = []
    current: List[_Item] = []
    used = 2 * PAD
    first = True
    for item in items:
        if current and used + item.height > max_h:
            chunks.append((section if first else replace(section, break_before=False), current))
            first = False
            current = []
            used = 2 * PAD
        current.append(item)
        used += item.height
    if current:
        chunks.append((section if first else replace(section, break_before=False), current))
    return chunks


# ---------------------------------------------------------------------------
# Drawing
# ---------------------------------------------------------------------------


def _draw_items(c: canvas.Canvas, section: PdfSection, items: Sequence[_Item], *, x: float, top_y: float, width: float) -> None:
    content_x = x + PAD
    content_w = width - 2 * PAD
    y = top_y - PAD
    banner = section.kind == "banner"
    text_color = colors.white if banner else colors.black

    if section.kind == "header":
        image_items = [i for i in items if i.kind == "image"]
        for img in image_items:
            c.drawImage(img.image, content_x, y - img.height, width=img.image_w, height=img.height, mask="auto")
        ty = y
        text_items = [it for it in items if it.kind != "image"]
        for i, item in enumerate(text_items):
            font = _BOLD_FONT if i == 0 else _LABEL_FONT
            c.setFont(*font)
            c.setFillColor(colors.black if i == 0 else MUTED)
            c.drawRightString(x + width - PAD, ty - item.height + 2.5, item.text)
            ty -= item.height
        c.setFillColor(colors.black)
        return

    col_count = max((len(i.cells) for i in items if i.kind == "row"), default=0)
    col_w = content_w / col_count if col_count else content_w

    for item in items:
        baseline = y - item.height + 2.5
        if item.kind == "heading":
            font = _BANNER_TITLE_FONT if banner else _HEADING_FONT
            c.setFont(*font)
            c.setFillColor(text_color if banner else PRIMARY)
            if banner:
                c.drawCentredString(x + width / 2.0, baseline, item.text)
            else:
                c.drawString(content_x, baseline, item.text)
        elif item.kind == "label":
            c.setFont(*_LABEL_FONT)
            c.setFillColor(MUTED)
            c.drawString(content_x, baseline, item.text)
        elif item.kind == "text":
            font = _LABEL_FONT if section.small else _BODY_FONT
            c.setFont(*font)
            c.setFillColor(MUTED if section.small else text_color)
            if banner or section.small:
                c.drawCentredString(x + width / 2.0, baseline, item.text)
            else:
                c.drawString(content_x, baseline, item.text)
        elif item.kind == "row":
            c.setFont(*(_BOLD_FONT if item.header_row else _BODY_FONT))
            c.setFillColor(MUTED if item.header_row else colors.black)
            for idx, cell in enumerate(item.cells):
                if idx == len(item.cells) - 1 and len(item.cells) > 1:
                    c.drawRightString(content_x + content_w, baseline, cell)
                else:
                    c.drawString(content_x + idx * col_w, baseline, cell)
        elif item.kind == "image" and item.image is not None:
            c.drawImage(item.image, content_x, y - item.height, width=item.image_w, height=item.height, mask="auto")
        elif item.kind == "caption":
            c.setFont(*_LABEL_FONT)
            c.setFillColor(MUTED)
            c.drawString(content_x, baseline, item.text)
        y -= item.height
    c.setFillColor(colors.black)


def render_sections_pdf(sections: Sequence[PdfSection], *, title: str = "") -> bytes:
    """
    Lay out sections on A4 pages and return the PDF bytes.
    """
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    # Uncompressed streams keep the output diffable and let tests find text markers.
    c.setPageCompression(0)
    if title:
        c.setTitle(_pdf_text(title))

    width = PAGE_W - 2 * MARGIN
    content_w = width - 2 * PAD
    max_h = PAGE_H - 2 * MARGIN

    blocks: List[Tuple[PdfSection, List[_Item]]] = []
    for section in sections:
        items = _layout_items(section, content_w)
        if not items:
            continue
        blocks.extend(_split_to_fit(section, items, max_h))

    heights = [_section_height(s, items) for s, items in blocks]
    placements = plan_pages(heights, [s.break_before for s, _ in blocks])

    current_page = 0
    for (section, items), height, (page, offset) in zip(blocks, heights, placements):
        while current_page < page:
            c.showPage()
            current_page += 1
        top_y = PAGE_H - offset
        if section.kind == "banner":
            c.setFillColor(PRIMARY)
            c.roundRect(MARGIN, top_y - height, width, height, 3 * mm, stroke=0, fill=1)
            c.setFillColor(colors.black)
        elif section.kind == "box":
            c.setStrokeColor(BOX_STROKE)
            c.setFillColor(BOX_FILL)
            c.roundRect(MARGIN, top_y - height, width, height, 2 * mm, stroke=1, fill=1)
            c.setFillColor(colors.black)
            c.setStrokeColor(colors.black)
        elif section.kind == "header":
            c.setStrokeColor(BOX_STROKE)
            c.line(MARGIN, top_y - height, MARGIN + width, top_y - height)
            c.setStrokeColor(colors.black)
        _draw_items(c, section, items, x=MARGIN, top_y=top_y, width=width)

    c.showPage()
    c.save()
    return buf.getvalue()


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


def _display_date(value: str) -> str:
    try:
        return datetime.fromisoformat((value or "").replace("Z", "+00:00")).strftime("%d/%m/%Y")
    except ValueError:
        return value or ""


def company_header_section(settings: UserSettings) -> Optional[PdfSection]:
    if not settings.has_header:
        return None
    lines = [settings.company_name or "-"]
    if settings.company_address:
        lines.append(settings.company_address)
    if settings.company_tax_id:
        lines.append(f"Tax ID: {settings.company_tax_id}")
    return PdfSection(kind="header", lines=tuple(lines), image_png=settings.logo_bytes())


def quote_sections(quote: Quote, settings: UserSettings) -> List[PdfSection]:
    """
    The printable quote: same blocks, same order as the on-screen document.
    """
    sections: List[PdfSection] = []
    header = company_header_section(settings)
    if header:
        sections.append(header)

    sections.append(PdfSection(kind="banner", heading=quote.title, lines=(quote.summary,) if quote.summary else ()))
    sections.append(
        PdfSection(
            heading="Client details",
            fields=(
                ("Client name", quote.client_name),
                ("Address", quote.client_address),
                ("Contact", quote.client_contact),
            ),
        )
    )
    sections.append(PdfSection(kind="plain", heading="Service steps"))

    for idx, step in enumerate(quote.steps, start=1):
        unit = f" ({step.suggested_unit})" if step.suggested_unit else ""
        sections.append(
            PdfSection(
                fields=((f"Step {idx}", step.title), ("Service description", step.description)),
                table=(
                    ("Unit price", "Quantity", "Tax", "Step total"),
                    (
                        format_money(step.user_price, quote.currency),
                        f"{format_quantity(step.quantity)}{unit}",
                        f"{format_quantity(step.tax_rate)}%",
                        format_money(line_total_with_tax(step), quote.currency),
                    ),
                ),
            )
        )

    totals = compute_totals(quote.steps)
    sections.append(
        PdfSection(
            kind="plain",
            table_header=False,
            table=(
                ("Subtotal:", format_money(totals.subtotal, quote.currency)),
                ("Taxes (VAT):", format_money(totals.total_tax, quote.currency)),
                ("Quote total:", format_money(totals.grand_total, quote.currency)),
            ),
        )
    )
    sections.append(
        PdfSection(
            heading="General conditions",
            fields=(("Execution time", quote.execution_time), ("Payment terms", quote.payment_terms)),
        )
    )
    sections.append(PdfSection(kind="plain", small=True, lines=(f"Quote generated on {_display_date(quote.date)}",)))
    return sections


def report_sections(
    report: TechnicalReport,
    quote: Quote,
    settings: UserSettings,
    images: Sequence[InlineImage] = (),
) -> List[PdfSection]:
    sections: List[PdfSection] = []
    header = company_header_section(settings)
    if header:
        sections.append(header)

    ci = report.client_info
    sections.append(PdfSection(kind="banner", heading=report.title or "TECHNICAL REPORT"))
    sections.append(
        PdfSection(
            heading="1. Identification",
            fields=(
                ("Client", ci.name or quote.client_name),
                ("Address", ci.address or quote.client_address),
                ("Date", ci.date),
                ("Technician", ci.technician),
                ("Building type", ci.building_type),
            ),
        )
    )
    sections.append(PdfSection(heading="2. Objective", lines=(report.objective,)))
    if report.methodology:
        sections.append(PdfSection(heading="3. Methodology", lines=tuple(f"- {m}" for m in report.methodology)))

    for idx, dev in enumerate(report.development):
        sections.append(
            PdfSection(
                kind="plain" if idx else "box",
                heading=f"4.{idx + 1} {dev.title}",
                lines=(dev.content,),
                break_before=idx == 0,
            )
        )

    if report.photo_analysis:
        sections.append(PdfSection(kind="plain", heading="5. Photographic record", break_before=True))
        for idx, entry in enumerate(report.photo_analysis, start=1):
            image = TechnicalReport.photo_for(entry, images)
            png = thumbnail_png_bytes(image) if image is not None else None
            sections.append(
                PdfSection(
                    heading=f"Photo {idx}: {entry.legend}",
                    lines=(entry.description,),
                    image_png=png,
                )
            )

    conc = report.conclusion
    sections.append(
        PdfSection(
            heading="6. Conclusion",
            fields=(
                ("Diagnosis", conc.diagnosis),
                ("Technical evidence", conc.technical_proof),
                ("Consequences", conc.consequences),
                ("Active leak", "Yes" if conc.active_leak else "No"),
            ),
            break_before=True,
        )
    )
    rec = report.recommendations
    sections.append(
        PdfSection(
            heading="7. Recommendations",
            fields=(
                ("Repair", rec.repair_type),
                ("Materials", "\n".join(f"- {m}" for m in rec.materials)),
                ("Estimated time", rec.estimated_time),
                ("Notes", rec.notes),
            ),
        )
    )
    company = settings.company_name or "-"
    sections.append(
        PdfSection(
            kind="plain",
            small=True,
            lines=(f"{company} - Technician: {ci.technician or '____________________'}",),
        )
    )
    return sections


def make_quote_pdf_bytes(quote: Quote, settings: UserSettings) -> bytes:
    return render_sections_pdf(quote_sections(quote, settings), title=quote.title)


def make_report_pdf_bytes(
    report: TechnicalReport,
    quote: Quote,
    settings: UserSettings,
    images: Sequence[InlineImage] = (),
) -> bytes:
    return render_sections_pdf(report_sections(report, quote, settings, images), title=report.title)


def pdf_file_name(kind: str, client_name: str) -> str:
    prefix = "report" if kind == "report" else "quote"
    slug = re.sub(r"\s", "_", (client_name or "").strip()) or "client"
    return f"{prefix}-{slug}.pdf"
