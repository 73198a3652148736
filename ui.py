#!/usr/bin/env python3
"""
Streamlit UI for the Guest Card Compositor
"""

import asyncio
import json
import tempfile
import time
import traceback
import zipfile
from typing import Any, Dict, List, Optional

import streamlit as st

from config import (
    API_BASE_URL,
    API_TOKEN,
    MAX_FONT_SIZE,
    MAX_INDIVIDUAL_DOWNLOADS,
    MIN_FONT_SIZE,
    PREVIEW_COLUMNS,
    PREVIEW_THUMB_WIDTH,
    PREVIEW_WIDTH,
    STORAGE_BASE_URL,
    ZIP_SPOOL_MAX_BYTES,
)
from dimensions import format_dimension_list, validate_upload
from errors import BackendError, CardError, UploadRejected
from positions import FIELDS, PositionModel, TextStyle

# Startup timing (logged to stdout for Streamlit Cloud logs)
_UI_T0 = time.perf_counter()
def _ui_log(msg: str) -> None:
    print(f"[ui] +{time.perf_counter() - _UI_T0:.3f}s {msg}", flush=True)

_ui_log("ui.py start")

FIELD_LABELS = {
    "name_x": "Name X (%)",
    "name_y": "Name Y (%)",
    "qr_x": "QR X (%)",
    "qr_y": "QR Y (%)",
    "card_class_x": "Card class X (%)",
    "card_class_y": "Card class Y (%)",
}

# Page config
st.set_page_config(
    page_title="Guest Card Designer",
    page_icon="🎴",
    layout="centered"
)

st.markdown(
    """
<style>
  button, input, textarea, select {
    border-radius: 10px !important;
  }
  .main .block-container {
    max-width: 980px;
    padding-top: 1rem;
    padding-bottom: 2.5rem;
  }
</style>
""",
    unsafe_allow_html=True,
)

# --- Header ---
st.markdown(
    """
<div style="margin-top: 0.25rem; margin-bottom: 0.25rem;">
  <div style="font-size: 1.8rem; font-weight: 750; line-height: 1.15;">
    Guest Card Designer
  </div>
  <div style="font-size: 1.05rem; opacity: 0.8; margin-top: 0.2rem;">
    Place guest names, QR codes and card classes on your event's card design
  </div>
</div>
""",
    unsafe_allow_html=True,
)
_ui_log("rendered header")

# Initialize session state
if "guests" not in st.session_state:
    st.session_state.guests = []  # REST-shaped guest records
if "template_bytes" not in st.session_state:
    st.session_state.template_bytes = None
if "card_type" not in st.session_state:
    st.session_state.card_type = {}
if "event_id" not in st.session_state:
    st.session_state.event_id = None
if "card_type_id" not in st.session_state:
    st.session_state.card_type_id = None
if "generated_items" not in st.session_state:
    # For <=10: list of {name, png_bytes, pdf_bytes, stem}
    st.session_state.generated_items = []
if "generated_zip" not in st.session_state:
    # For >10: {"zip_bytes": bytes, "zip_name": str, "count": int}
    st.session_state.generated_zip = None
if "generated_failed" not in st.session_state:
    st.session_state.generated_failed = []
if "_last_api_error" not in st.session_state:
    st.session_state._last_api_error = None


def _reset_loaded_data():
    st.session_state.guests = []
    st.session_state.template_bytes = None
    st.session_state.card_type = {}
    st.session_state.event_id = None
    st.session_state.card_type_id = None
    st.session_state.generated_items = []
    st.session_state.generated_zip = None
    st.session_state.generated_failed = []
    for f in FIELDS:
        st.session_state.pop(f"pos_{f}", None)
    for k in ("show_guest_name", "show_card_class", "name_size", "card_class_size", "name_color", "card_class_color"):
        st.session_state.pop(k, None)


def _api_client():
    from data_loaders import CardApiClient

    token = ""
    try:
        token = str(st.secrets.get("card_api", {}).get("token", ""))  # type: ignore[attr-defined]
    except (FileNotFoundError, KeyError, AttributeError):
        token = ""
    return CardApiClient(base_url=st.session_state.get("api_url") or API_BASE_URL, token=token or API_TOKEN)


class _EditorBackend:
    """Serves the editor's current state to the batch generator."""

    def __init__(self, template: bytes, guests: List[Dict[str, Any]], card_type: Dict[str, Any]):
        self._template = template
        self._guests = guests
        self._card_type = card_type

    def fetch_card_type(self, card_type_id) -> Dict[str, Any]:
        return dict(self._card_type)

    def fetch_guests(self, event_id) -> List[Dict[str, Any]]:
        return list(self._guests)

    def fetch_template_image(self, event_id) -> Optional[bytes]:
        return self._template


if "data_source" not in st.session_state:
    st.session_state.data_source = "Event API"

st.subheader("Data source")
source = st.radio(
    "Choose where to load guests from",
    options=["Event API", "Upload files"],
    index=0,
    horizontal=True,
    key="data_source",
    label_visibility="collapsed",
    on_change=_reset_loaded_data,
)

st.markdown("---")

if source == "Event API":
    st.markdown("### Event")
    with st.form("api_fetch_form", clear_on_submit=False):
        c1, c2 = st.columns([1, 1])
        with c1:
            st.text_input("API base URL", value=API_BASE_URL, key="api_url")
            event_id = st.text_input("Event ID")
        with c2:
            st.text_input("Storage base URL", value=STORAGE_BASE_URL, key="storage_url")
            card_type_id = st.text_input("Card type ID")
        fetch = st.form_submit_button("Fetch event")
    if fetch:
        st.session_state._last_api_error = None
        if not event_id.strip() or not card_type_id.strip():
            st.warning("Please enter both an event ID and a card type ID.")
        else:
            try:
                with st.spinner("Fetching card type, guests and card design…"):
                    client = _api_client()
                    st.session_state.card_type = client.fetch_card_type(card_type_id.strip())
                    st.session_state.guests = client.fetch_guests(event_id.strip())
                    template = client.fetch_template_image(event_id.strip())
                st.session_state.event_id = event_id.strip()
                st.session_state.card_type_id = card_type_id.strip()
                st.session_state.template_bytes = template
                for f in FIELDS:
                    st.session_state.pop(f"pos_{f}", None)
                st.success(f"Loaded **{len(st.session_state.guests)}** guest(s).")
                if template is None:
                    st.info("This event has no card design yet. Upload one below.")
            except BackendError as e:
                st.session_state._last_api_error = traceback.format_exc()
                st.error(f"Error fetching event: {e}")

    if st.session_state._last_api_error:
        with st.expander("Show API error details", expanded=False):
            st.code(st.session_state._last_api_error)
else:
    st.markdown("### Upload files")
    with st.form("local_load_form", clear_on_submit=False):
        data_file = st.file_uploader(
            "Guest list (Excel or CSV)",
            type=["csv", "xlsx"],
            help="Columns: Name, Title, Card Class, Invite Code, QR Path, QR Base64.",
        )
        card_type_file = st.file_uploader("Card type (JSON, optional)", type=["json"])
        generate_qr = st.checkbox("Generate missing QR codes from invite codes", value=True)
        load_uploaded = st.form_submit_button("📥 Load uploaded files")
    if load_uploaded:
        if data_file is None:
            st.warning("Please upload a guest list first.")
        else:
            try:
                from data_loaders import LocalCardBackend

                suffix = ".xlsx" if str(data_file.name).lower().endswith(".xlsx") else ".csv"
                with tempfile.NamedTemporaryFile(prefix="guests_", suffix=suffix) as tmp:
                    tmp.write(data_file.getbuffer())
                    tmp.flush()
                    backend = LocalCardBackend(None, tmp.name, generate_missing_qr=generate_qr)
                    st.session_state.guests = backend.fetch_guests(None)
                st.session_state.card_type = json.loads(card_type_file.getvalue()) if card_type_file else {}
                for f in FIELDS:
                    st.session_state.pop(f"pos_{f}", None)
                st.success(f"Loaded **{len(st.session_state.guests)}** guest(s) from **{data_file.name}**")
            except (BackendError, ValueError, ImportError) as e:
                st.error(f"Error reading {data_file.name}: {e}")

st.markdown("---")
with st.expander("Card design", expanded=st.session_state.template_bytes is None):
    st.caption(f"Allowed sizes: {format_dimension_list()} pixels (JPEG, PNG or GIF, up to 2MB).")
    template_file = st.file_uploader("Upload card design", type=["png", "jpg", "jpeg", "gif"])
    if template_file is not None and template_file.file_id != st.session_state.get("_last_template_upload"):
        st.session_state._last_template_upload = template_file.file_id
        data = template_file.getvalue()
        try:
            tier = validate_upload(data, template_file.type)
        except UploadRejected as e:
            st.error(str(e))
        else:
            if st.session_state.event_id is not None and source == "Event API":
                try:
                    _api_client().upload_template(st.session_state.event_id, data, template_file.type, template_file.name)
                except (BackendError, UploadRejected) as e:
                    st.error(f"Upload failed: {e}")
                    data = None
            if data is not None:
                st.session_state.template_bytes = data
                st.success(f"Card design accepted ({tier}).")

if st.button("🧼 Clear loaded data"):
    _reset_loaded_data()

if st.session_state.template_bytes is not None and st.session_state.guests:
    from guests import GuestRenderContext

    guests = [GuestRenderContext.from_record(r, index=i) for i, r in enumerate(st.session_state.guests, 1)]
    saved_positions = PositionModel.from_record(st.session_state.card_type)
    saved_style = TextStyle.from_record(st.session_state.card_type)

    st.header("🎯 Positions")
    c1, c2 = st.columns([1, 1])
    values = {}
    for i, f in enumerate(FIELDS):
        with (c1 if i % 2 == 0 else c2):
            values[f] = st.slider(
                FIELD_LABELS[f], 0.0, 100.0, float(saved_positions.get(f)), step=0.5, key=f"pos_{f}"
            )
    t1, t2 = st.columns([1, 1])
    with t1:
        show_name = st.toggle("Show guest name", value=saved_positions.show_guest_name, key="show_guest_name")
        name_size = st.number_input("Name size (px)", MIN_FONT_SIZE, MAX_FONT_SIZE, saved_style.name_size, key="name_size")
        name_color = st.color_picker("Name color", saved_style.name_color, key="name_color")
    with t2:
        show_class = st.toggle("Show card class", value=saved_positions.show_card_class, key="show_card_class")
        class_size = st.number_input(
            "Card class size (px)", MIN_FONT_SIZE, MAX_FONT_SIZE, saved_style.card_class_size, key="card_class_size"
        )
        class_color = st.color_picker("Card class color", saved_style.card_class_color, key="card_class_color")

    positions = PositionModel(values, show_guest_name=show_name, show_card_class=show_class)
    style = TextStyle(name_size, class_size, name_color, class_color)
    card_type_payload = {**st.session_state.card_type, **positions.to_payload(), **style.to_payload()}

    st.header("👀 Preview")
    by_id = {g.guest_id: g for g in guests}
    guest_id = st.selectbox(
        "Guest",
        options=list(by_id),
        format_func=lambda gid: f"{by_id[gid].name} ({by_id[gid].card_class})" if by_id[gid].card_class else by_id[gid].name,
    )
    try:
        from session import render_guest_card

        with st.spinner("Rendering preview…"):
            preview = asyncio.run(
                render_guest_card(
                    st.session_state.template_bytes,
                    by_id[guest_id],
                    positions,
                    style,
                    storage_base_url=st.session_state.get("storage_url") or STORAGE_BASE_URL,
                    preview=True,
                )
            )
        st.image(preview, width=PREVIEW_WIDTH)
    except CardError as e:
        st.error(f"Could not render preview: {e}")

    if source == "Event API" and st.session_state.card_type_id is not None:
        if st.button("💾 Save positions", type="primary"):
            try:
                st.session_state.card_type = _api_client().save_card_type(
                    st.session_state.card_type_id, card_type_payload
                ) or card_type_payload
                st.success("Positions saved.")
            except BackendError as e:
                st.error(f"Save failed: {e}")
    else:
        st.download_button(
            "💾 Download card type (JSON)",
            data=json.dumps(card_type_payload, indent=2, sort_keys=True),
            file_name="card_type.json",
            mime="application/json",
        )

    # Generation section
    st.markdown("---")
    st.header("🎨 Generate Cards")
    mode = st.radio(
        "Which guests",
        options=["missing", "all"],
        format_func=lambda m: "Only guests without a card" if m == "missing" else "All guests (regenerate)",
        horizontal=True,
    )
    st.caption(
        f"Download behavior: up to **{MAX_INDIVIDUAL_DOWNLOADS}** cards → individual PDFs + previews. "
        f"More than **{MAX_INDIVIDUAL_DOWNLOADS}** → one ZIP download."
    )

    if st.button("🚀 Generate downloads", type="primary", use_container_width=True):
        st.session_state.generated_items = []
        st.session_state.generated_zip = None
        st.session_state.generated_failed = []
        try:
            # Import heavy rendering code only when needed (improves Streamlit Cloud startup)
            from app import CardBatchGenerator

            backend = _EditorBackend(st.session_state.template_bytes, st.session_state.guests, card_type_payload)
            generator = CardBatchGenerator(
                backend,
                mode=mode,
                formats=("png", "pdf"),
                storage_base_url=st.session_state.get("storage_url") or STORAGE_BASE_URL,
            )
            with st.spinner(f"Generating cards for {len(guests)} guest(s)..."):
                result = generator.generate_in_memory()
            st.session_state.generated_failed = result.failed + [
                (name, f"QR placeholder used: {message}") for name, message in result.qr_warnings
            ]

            if len(result.cards) > MAX_INDIVIDUAL_DOWNLOADS:
                # Use a spooled temp file so large ZIPs spill to disk instead of RAM.
                zip_buf = tempfile.SpooledTemporaryFile(max_size=ZIP_SPOOL_MAX_BYTES)
                with zipfile.ZipFile(zip_buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
                    for card in result.cards:
                        zf.writestr(f"{card['stem']}.pdf", card["pdf"])
                zip_buf.seek(0)
                st.session_state.generated_zip = {
                    "zip_bytes": zip_buf.read(),
                    "zip_name": "guest_cards.zip",
                    "count": len(result.cards),
                }
            else:
                st.session_state.generated_items = [
                    {"name": c["guest"].name, "png_bytes": c["png"], "pdf_bytes": c["pdf"], "stem": c["stem"]}
                    for c in result.cards
                ]
            if result.skipped:
                st.info(f"Skipped {result.skipped} guest(s) that already have a card.")
        except CardError as e:
            st.error(f"Error during generation: {e}")

    for name, message in st.session_state.generated_failed:
        st.warning(f"{name}: {message}")

    if st.session_state.generated_zip is not None:
        z = st.session_state.generated_zip
        st.warning(f"More than {MAX_INDIVIDUAL_DOWNLOADS} cards (**{z['count']}**). Download as a single ZIP.")
        st.download_button(
            "⬇️ Download ZIP",
            data=z["zip_bytes"],
            file_name=z["zip_name"],
            mime="application/zip",
            key="dl_zip",
        )
    elif st.session_state.generated_items:
        st.success(f"Prepared **{len(st.session_state.generated_items)}** card(s).")
        items = st.session_state.generated_items
        for start in range(0, len(items), PREVIEW_COLUMNS):
            cols = st.columns(PREVIEW_COLUMNS)
            for c, it in enumerate(items[start : start + PREVIEW_COLUMNS]):
                idx = start + c
                with cols[c]:
                    st.image(it["png_bytes"], width=PREVIEW_THUMB_WIDTH)
                    st.caption(it["name"])
                    st.download_button(
                        "PDF",
                        data=it["pdf_bytes"],
                        file_name=f"{it['stem']}.pdf",
                        mime="application/pdf",
                        key=f"dl_pdf_{idx}_{it['stem']}",
                    )
                    st.download_button(
                        "PNG",
                        data=it["png_bytes"],
                        file_name=f"{it['stem']}.png",
                        mime="image/png",
                        key=f"dl_png_{idx}_{it['stem']}",
                    )

elif not st.session_state.guests:
    st.info("👈 Choose a data source above, then click **Fetch** / **Load** to load guests.")
elif st.session_state.template_bytes is None:
    st.info("👈 Please upload a card design above.")

# Footer
st.markdown("---")
