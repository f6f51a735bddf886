from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Literal, Optional, Sequence

import streamlit as st

from app_config import AppConfig, MissingCredentials, configure_logging, load_app_config
from generative_client import GenerativeClient, build_generative_client
from image_inputs import InlineImage, inline_image_from_upload, load_inline_images, thumbnail_png_bytes
from quote_generation import generate_quote
from quote_models import (
    TAX_RATE_CHOICES,
    ZERO,
    Currency,
    Quote,
    TechnicalReport,
    UserSettings,
    data_uri,
    format_money,
    format_quantity,
    update_quote_fields,
    update_step,
)
from quote_pdf import make_quote_pdf_bytes, make_report_pdf_bytes, pdf_file_name
from quote_store import JsonFileKeyValueStore, QuoteStore, history_rows
from quote_totals import compute_totals, line_total_with_tax
from report_generation import generate_technical_report

logger = logging.getLogger(__name__)

Page = Literal["form", "result", "view", "history", "settings"]
ViewMode = Literal["quote", "report"]

QUOTE_FAILED_PREFIX = "Failed to generate quote"
REPORT_FAILED_PREFIX = "Failed to generate report"
NO_IMAGES_HINT = "Check that you uploaded images."

_STATE_DEFAULTS: dict[str, Any] = {
    "page": "form",
    "view_mode": "quote",
    "current_quote": None,
    "current_images": (),
    "current_report": None,
    "form_error": "",
    "report_error": "",
    "flash": "",
}


def _init_state() -> None:
    for key, default in _STATE_DEFAULTS.items():
        if key not in st.session_state:
            st.session_state[key] = default


def _go(page: Page) -> None:
    st.session_state["page"] = page


def _store(config: Optional[AppConfig] = None) -> QuoteStore:
    """
    The session's QuoteStore, created and loaded on first use.
    """
    store = st.session_state.get("store")
    if isinstance(store, QuoteStore):
        return store
    if config is None:
        raise RuntimeError("store requested before configuration was loaded")
    store = QuoteStore(JsonFileKeyValueStore(config.data_dir)).load()
    st.session_state["store"] = store
    return store


def _generative_client(config: AppConfig) -> GenerativeClient:
    client = st.session_state.get("generative_client")
    if client is None:
        client = build_generative_client(config)
        st.session_state["generative_client"] = client
    return client


def _current_quote() -> Optional[Quote]:
    quote = st.session_state.get("current_quote")
    return quote if isinstance(quote, Quote) else None


def _current_images() -> tuple[InlineImage, ...]:
    return tuple(st.session_state.get("current_images") or ())


def _current_report() -> Optional[TechnicalReport]:
    report = st.session_state.get("current_report")
    return report if isinstance(report, TechnicalReport) else None


def _validate_form(*, client_name: str, city: str, description: str) -> Optional[str]:
    if not (client_name or "").strip() or not (city or "").strip() or not (description or "").strip():
        return "Please fill in the client name, the city and the job description."
    return None


def _start_new_quote() -> None:
    st.session_state["current_quote"] = None
    st.session_state["current_images"] = ()
    st.session_state["current_report"] = None
    st.session_state["view_mode"] = "quote"
    st.session_state["form_error"] = ""
    st.session_state["report_error"] = ""
    _go("form")


def _run_quote_generation(
    client: GenerativeClient,
    *,
    client_name: str,
    client_contact: str,
    client_address: str,
    city: str,
    description: str,
    currency: Currency,
    images: Sequence[InlineImage],
) -> Optional[Quote]:
    """
    Generate a draft quote and make it the current one.

    On any failure the error is kept for the form page and the user stays on the form.
    """
    try:
        draft = generate_quote(
            client,
            description=description,
            city=city,
            images=images,
            currency=currency,
            client_name=client_name,
        )
    except Exception as exc:
        logger.exception("Quote generation failed")
        st.session_state["form_error"] = f"{QUOTE_FAILED_PREFIX}: {exc}"
        _go("form")
        return None

    quote = draft.to_quote(client_name=client_name, client_address=client_address, client_contact=client_contact)
    st.session_state["current_quote"] = quote
    st.session_state["current_images"] = tuple(images)
    st.session_state["current_report"] = None
    st.session_state["view_mode"] = "quote"
    st.session_state["form_error"] = ""
    st.session_state["report_error"] = ""
    _go("result")
    return quote


def _report_available() -> bool:
    return bool(_current_images()) or _current_report() is not None


def _run_report_generation(client: GenerativeClient, store: QuoteStore) -> Optional[TechnicalReport]:
    quote = _current_quote()
    if quote is None:
        return None
    images = _current_images()
    try:
        report = generate_technical_report(client, quote, images, store.settings.company_name)
    except Exception as exc:
        logger.exception("Technical report generation failed")
        message = f"{REPORT_FAILED_PREFIX}: {exc}"
        if not images:
            message = f"{message} {NO_IMAGES_HINT}"
        st.session_state["report_error"] = message
        return None
    st.session_state["current_report"] = report
    st.session_state["report_error"] = ""
    st.session_state["view_mode"] = "report"
    return report


def _finalize_current_quote(store: QuoteStore) -> Optional[Quote]:
    """
    Save a fresh quote under a permanent id, or write edits back to an already saved one.
    """
    quote = _current_quote()
    if quote is None:
        return None
    if quote.is_saved and store.get(quote.id) is not None:
        saved = store.update(quote)
        st.session_state["flash"] = "Changes saved."
    else:
        saved = store.add(quote)
        st.session_state["flash"] = "Quote saved."
    st.session_state["current_quote"] = saved
    _go("view")
    return saved


def _open_saved_quote(store: QuoteStore, quote_id: str) -> Optional[Quote]:
    quote = store.get(quote_id)
    if quote is None:
        return None
    st.session_state["current_quote"] = quote
    # Uploaded photos are not persisted with saved quotes.
    st.session_state["current_images"] = ()
    st.session_state["current_report"] = None
    st.session_state["report_error"] = ""
    st.session_state["view_mode"] = "quote"
    _go("view")
    return quote


def _delete_saved_quote(store: QuoteStore, quote_id: str) -> bool:
    deleted = store.delete(quote_id)
    current = _current_quote()
    if deleted and current is not None and current.id == quote_id:
        st.session_state["current_quote"] = None
        st.session_state["current_report"] = None
        st.session_state["current_images"] = ()
    return deleted


def _tax_rate_options(current: Decimal) -> tuple[tuple[Decimal, ...], int]:
    """
    Selectable VAT rates plus the index of `current`.

    A stored rate outside the standard choices is offered as its own option so that opening a
    quote never rewrites it.
    """
    options = [Decimal(r) for r in TAX_RATE_CHOICES]
    rate = current if current is not None else ZERO
    if rate not in options:
        options = sorted(options + [rate])
    return tuple(options), options.index(rate)


def _settings_from_inputs(
    current: UserSettings,
    *,
    company_name: str,
    company_address: str,
    company_tax_id: str,
    logo_upload: Any = None,
    remove_logo: bool = False,
) -> UserSettings:
    logo = current.company_logo
    if remove_logo:
        logo = ""
    elif logo_upload is not None:
        image = inline_image_from_upload(logo_upload)
        logo = data_uri(image.data, image.mime_type)
    return UserSettings(
        company_name=(company_name or "").strip(),
        company_address=(company_address or "").strip(),
        company_tax_id=(company_tax_id or "").strip(),
        company_logo=logo,
    )


# ---------------------------------------------------------------------------
# Pages
# ---------------------------------------------------------------------------


def _render_nav() -> None:
    st.sidebar.markdown("### Menu")
    if st.sidebar.button("New quote", key="nav_new", use_container_width=True):
        _start_new_quote()
        st.rerun()
    if st.sidebar.button("History", key="nav_history", use_container_width=True):
        _go("history")
        st.rerun()
    if st.sidebar.button("Settings", key="nav_settings", use_container_width=True):
        _go("settings")
        st.rerun()


def _render_form(config: AppConfig) -> None:
    st.subheader("New quote")
    err = str(st.session_state.get("form_error") or "")
    if err:
        st.error(err)

    with st.form("quote_form", clear_on_submit=False):
        c1, c2 = st.columns([1, 1], gap="medium")
        with c1:
            client_name = st.text_input("Client name *", key="form_client_name")
            client_contact = st.text_input("Contact (phone / email)", key="form_client_contact")
        with c2:
            city = st.text_input("City for pricing *", key="form_city")
            currency_code = st.selectbox("Currency", [c.value for c in Currency], index=0, key="form_currency")
        client_address = st.text_input("Client address", key="form_client_address")
        description = st.text_area("Job description *", height=160, key="form_description")
        uploads = st.file_uploader(
            "Photos of the job site",
            type=["png", "jpg", "jpeg", "webp", "heic"],
            accept_multiple_files=True,
            key="form_images",
        )
        submitted = st.form_submit_button("Generate quote", use_container_width=True)

    if not submitted:
        return

    problem = _validate_form(client_name=client_name, city=city, description=description)
    if problem:
        st.warning(problem)
        return

    images = load_inline_images(uploads or [])
    with st.spinner("Researching prices and building your quote..."):
        quote = _run_quote_generation(
            _generative_client(config),
            client_name=client_name.strip(),
            client_contact=client_contact.strip(),
            client_address=client_address.strip(),
            city=city.strip(),
            description=description.strip(),
            currency=Currency.coerce(currency_code),
            images=images,
        )
    if quote is not None:
        st.rerun()
    st.error(str(st.session_state.get("form_error") or ""))


def _render_quote_editor(quote: Quote) -> Quote:
    """
    Editable quote document. Returns the quote with this run's widget edits applied.
    """
    k = quote.id

    st.markdown(f"## {quote.title}")
    if quote.summary:
        st.caption(quote.summary)

    st.markdown("#### Client details")
    c1, c2, c3 = st.columns([1, 1, 1])
    with c1:
        name = st.text_input("Client name", value=quote.client_name, key=f"{k}_client_name")
    with c2:
        address = st.text_input("Address", value=quote.client_address, key=f"{k}_client_address")
    with c3:
        contact = st.text_input("Contact", value=quote.client_contact, key=f"{k}_client_contact")
    quote = update_quote_fields(quote, client_name=name, client_address=address, client_contact=contact)

    st.markdown("#### Service steps")
    for idx, step in enumerate(quote.steps):
        with st.container(border=True):
            title = st.text_input(f"Step {idx + 1}", value=step.title, key=f"{k}_step{idx}_title")
            description = st.text_area(
                "Service description", value=step.description, key=f"{k}_step{idx}_description"
            )
            r1, r2, r3, r4 = st.columns([1, 1, 1, 1])
            with r1:
                price = st.number_input(
                    "Unit price",
                    min_value=0.0,
                    value=max(0.0, float(step.user_price)),
                    step=1.0,
                    format="%.2f",
                    key=f"{k}_step{idx}_price",
                )
            with r2:
                qty = st.number_input(
                    f"Quantity{f' ({step.suggested_unit})' if step.suggested_unit else ''}",
                    min_value=0.0,
                    value=float(step.quantity),
                    step=1.0,
                    key=f"{k}_step{idx}_quantity",
                )
            with r3:
                rate_options, rate_index = _tax_rate_options(step.tax_rate)
                rate = st.selectbox(
                    "Tax (VAT)",
                    rate_options,
                    index=rate_index,
                    format_func=lambda r: f"{format_quantity(r)}%",
                    key=f"{k}_step{idx}_tax",
                )
            quote = update_step(
                quote,
                idx,
                title=title,
                description=description,
                user_price=price,
                quantity=qty,
                tax_rate=rate,
            )
            with r4:
                st.metric("Step total", format_money(line_total_with_tax(quote.steps[idx]), quote.currency))

    totals = compute_totals(quote.steps)
    t1, t2, t3 = st.columns([1, 1, 1])
    t1.metric("Subtotal", format_money(totals.subtotal, quote.currency))
    t2.metric("Taxes (VAT)", format_money(totals.total_tax, quote.currency))
    t3.metric("Quote total", format_money(totals.grand_total, quote.currency))

    st.markdown("#### General conditions")
    g1, g2 = st.columns([1, 1])
    with g1:
        execution_time = st.text_input("Execution time", value=quote.execution_time, key=f"{k}_execution_time")
    with g2:
        payment_terms = st.text_input("Payment terms", value=quote.payment_terms, key=f"{k}_payment_terms")
    return update_quote_fields(quote, execution_time=execution_time, payment_terms=payment_terms)


def _render_report(report: TechnicalReport, images: Sequence[InlineImage]) -> None:
    st.markdown(f"## {report.title or 'TECHNICAL REPORT'}")
    ci = report.client_info
    st.markdown(
        f"**Client:** {ci.name}  \n**Address:** {ci.address}  \n**Date:** {ci.date}  \n"
        f"**Technician:** {ci.technician or '-'}  \n**Building type:** {ci.building_type}"
    )
    st.markdown("#### Objective")
    st.write(report.objective)
    if report.methodology:
        st.markdown("#### Methodology")
        st.markdown("\n".join(f"- {m}" for m in report.methodology))
    for idx, dev in enumerate(report.development, start=1):
        st.markdown(f"#### 4.{idx} {dev.title}")
        st.write(dev.content)
    if report.photo_analysis:
        st.markdown("#### Photographic record")
        for idx, entry in enumerate(report.photo_analysis, start=1):
            image = TechnicalReport.photo_for(entry, images)
            png = thumbnail_png_bytes(image) if image is not None else None
            if png:
                st.image(png, caption=f"Photo {idx}: {entry.legend}")
            else:
                st.markdown(f"**Photo {idx}: {entry.legend}**")
            st.write(entry.description)
    conc = report.conclusion
    st.markdown("#### Conclusion")
    st.markdown(
        f"**Diagnosis:** {conc.diagnosis}  \n**Technical evidence:** {conc.technical_proof}  \n"
        f"**Consequences:** {conc.consequences}  \n**Active leak:** {'Yes' if conc.active_leak else 'No'}"
    )
    rec = report.recommendations
    st.markdown("#### Recommendations")
    st.markdown(f"**Repair:** {rec.repair_type}")
    if rec.materials:
        st.markdown("\n".join(f"- {m}" for m in rec.materials))
    st.markdown(f"**Estimated time:** {rec.estimated_time}  \n**Notes:** {rec.notes}")


def _render_download(quote: Quote, store: QuoteStore, mode: ViewMode) -> None:
    report = _current_report()
    try:
        if mode == "report" and report is not None:
            data = make_report_pdf_bytes(report, quote, store.settings, _current_images())
            label, name = "Download report (PDF)", pdf_file_name("report", quote.client_name)
        else:
            data = make_quote_pdf_bytes(quote, store.settings)
            label, name = "Download quote (PDF)", pdf_file_name("quote", quote.client_name)
    except Exception as exc:
        logger.exception("PDF export failed")
        st.error(f"Could not generate PDF: {exc}")
        return
    st.download_button(label, data=data, file_name=name, mime="application/pdf", use_container_width=True)


def _render_document(config: AppConfig, store: QuoteStore) -> None:
    quote = _current_quote()
    if quote is None:
        _go("form")
        st.rerun()
        return

    flash = str(st.session_state.pop("flash", "") or "")
    if flash:
        st.success(flash)

    modes: list[ViewMode] = ["quote", "report"] if _report_available() else ["quote"]
    mode: ViewMode = st.session_state.get("view_mode") if st.session_state.get("view_mode") in modes else "quote"
    if len(modes) > 1:
        mode = st.radio(
            "Document",
            modes,
            index=modes.index(mode),
            horizontal=True,
            format_func=lambda m: "Quote" if m == "quote" else "Technical report",
        )
        st.session_state["view_mode"] = mode

    if mode == "report" and _current_report() is not None:
        _render_report(_current_report(), _current_images())
    else:
        quote = _render_quote_editor(quote)
        st.session_state["current_quote"] = quote

    st.divider()
    a1, a2, a3 = st.columns([1, 1, 1])
    with a1:
        save_label = "Save changes" if st.session_state.get("page") == "view" else "Finalize and save"
        if st.button(save_label, key="doc_save", use_container_width=True):
            _finalize_current_quote(store)
            st.rerun()
    with a2:
        if _current_images():
            label = "Regenerate technical report" if _current_report() is not None else "Generate technical report"
            if st.button(label, key="doc_report", use_container_width=True):
                with st.spinner("Writing the technical report..."):
                    _run_report_generation(_generative_client(config), store)
                st.rerun()
        elif quote.is_saved:
            st.caption("Photos are not kept with saved quotes; start a new quote to write a report.")
    with a3:
        _render_download(quote, store, mode)

    report_err = str(st.session_state.get("report_error") or "")
    if report_err:
        st.error(report_err)


def _render_history(store: QuoteStore) -> None:
    st.subheader("Saved quotes")
    rows = history_rows(store)
    if not rows:
        st.info("No saved quotes yet.")
        return
    for row in rows:
        with st.container(border=True):
            left, right = st.columns([3, 1], gap="medium")
            with left:
                st.markdown(f"**{row.title}**")
                st.caption(f"{row.client_name} - {row.date[:10]}")
            with right:
                st.markdown(f"**{format_money(row.grand_total, row.currency)}**")
                b1, b2 = st.columns([1, 1])
                if b1.button("View", key=f"hist_view_{row.quote_id}", use_container_width=True):
                    _open_saved_quote(store, row.quote_id)
                    st.rerun()
                if b2.button("Delete", key=f"hist_delete_{row.quote_id}", use_container_width=True):
                    _delete_saved_quote(store, row.quote_id)
                    st.rerun()


def _render_settings(store: QuoteStore) -> None:
    st.subheader("Company settings")
    current = store.settings
    with st.form("settings_form", clear_on_submit=False):
        company_name = st.text_input("Company name", value=current.company_name)
        company_address = st.text_input("Company address", value=current.company_address)
        company_tax_id = st.text_input("Tax ID", value=current.company_tax_id)
        logo = current.logo_bytes()
        if logo:
            st.image(logo, width=160)
        logo_upload = st.file_uploader("Company logo", type=["png", "jpg", "jpeg"])
        remove_logo = st.checkbox("Remove logo", value=False) if logo else False
        submitted = st.form_submit_button("Save settings", use_container_width=True)
    if submitted:
        store.save_settings(
            _settings_from_inputs(
                current,
                company_name=company_name,
                company_address=company_address,
                company_tax_id=company_tax_id,
                logo_upload=logo_upload,
                remove_logo=remove_logo,
            )
        )
        st.success("Settings saved.")


def main() -> None:
    st.set_page_config(page_title="AI Quotes & Technical Reports", layout="wide")
    st.title("AI Quotes & Technical Reports")

    try:
        config = load_app_config(secrets=st.secrets)
    except MissingCredentials as exc:
        st.error(str(exc))
        st.stop()
        return
    configure_logging(config.log_level)

    _init_state()
    store = _store(config)
    _render_nav()

    page = st.session_state.get("page") or "form"
    if page in ("result", "view"):
        _render_document(config, store)
    elif page == "history":
        _render_history(store)
    elif page == "settings":
        _render_settings(store)
    else:
        _render_form(config)


if __name__ == "__main__":
    main()
