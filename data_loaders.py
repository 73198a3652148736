"""
Collaborators that supply events, guests and templates.

Important: Keep imports light at module import time (Streamlit Cloud startup).
We import pandas/requests/qrcode only inside functions.
"""

import base64
import json
import logging
import random
import time
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, List, Optional

from config import API_BASE_URL, API_MAX_ATTEMPTS, API_TIMEOUT_S, API_TOKEN
from errors import BackendError, UploadRejected

logger = logging.getLogger(__name__)

GUEST_COLUMNS = ["Name", "Title", "Card_Class", "Invite_Code", "QR_Path", "QR_Base64", "Card_Path"]
_RETRY_STATUSES = (429, 500, 502, 503)


def _backoff_sleep(attempt: int) -> None:
    time.sleep(min(6.0, 0.6 * (2**attempt) + random.random() * 0.25))


def _unwrap(payload: Any) -> Any:
    """REST responses are either the object itself or {"data": object}."""
    if isinstance(payload, dict) and isinstance(payload.get("data"), (dict, list)):
        return payload["data"]
    return payload


def _describe(resp) -> str:
    ct = (resp.headers.get("Content-Type") or "").split(";")[0].strip() or "unknown"
    snippet = (resp.text or "")[:300]
    return f"status: {resp.status_code}, content-type: {ct}. Body (first 300 chars): {snippet}"


def fetch_image_bytes(url: str, timeout_s: int = API_TIMEOUT_S) -> bytes:
    """Download image bytes (used for QR codes stored on the backend)."""
    import requests

    try:
        resp = requests.get(url, timeout=(10, max(10, int(timeout_s))))
    except requests.RequestException as e:
        raise BackendError(f"Image download failed for {url}: {e}") from e
    if resp.status_code != 200:
        raise BackendError(f"Image download failed for {url} ({_describe(resp)})", resp.status_code)
    if not resp.content:
        raise BackendError(f"Image download returned an empty body for {url}", resp.status_code)
    return resp.content


def to_data_url(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


class CardApiClient:
    """REST backend client: card types, guests and card designs."""

    def __init__(
        self,
        base_url: str = API_BASE_URL,
        token: str = API_TOKEN,
        timeout_s: int = API_TIMEOUT_S,
        max_attempts: int = API_MAX_ATTEMPTS,
        http: Any = None,
    ):
        if http is None:
            import requests

            http = requests.Session()
        self.base_url = (base_url or API_BASE_URL).rstrip("/")
        self.token = (token or "").strip()
        self.timeout_s = timeout_s
        self.max_attempts = max_attempts
        self._http = http

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": "guest-card-studio/1.0",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _request(self, method: str, path: str, *, body: Optional[dict] = None):
        import requests

        url = f"{self.base_url}/{path.lstrip('/')}"
        last_exc: Optional[Exception] = None
        last_resp = None
        for attempt in range(max(1, int(self.max_attempts))):
            try:
                resp = self._http.request(
                    method,
                    url,
                    headers=self._headers(),
                    json=body,
                    timeout=(10, max(10, int(self.timeout_s))),
                )
            except requests.RequestException as e:
                last_exc = e
                logger.warning("%s %s failed (attempt %d): %s", method, url, attempt + 1, e)
                _backoff_sleep(attempt)
                continue
            last_resp = resp
            if resp.status_code in _RETRY_STATUSES:
                logger.warning("%s %s returned %d (attempt %d)", method, url, resp.status_code, attempt + 1)
                _backoff_sleep(attempt)
                continue
            return resp
        if last_resp is not None:
            return last_resp
        raise BackendError(f"{method} {url} failed after retries: {last_exc}") from last_exc

    def _json(self, method: str, path: str, resp) -> Any:
        if resp.status_code < 200 or resp.status_code >= 300:
            raise BackendError(f"{method} {path} failed ({_describe(resp)})", resp.status_code)
        try:
            return _unwrap(resp.json())
        except ValueError as e:
            raise BackendError(f"{method} {path} returned invalid JSON ({_describe(resp)})", resp.status_code) from e

    def fetch_card_type(self, card_type_id) -> Dict[str, Any]:
        path = f"/card-types/{card_type_id}"
        data = self._json("GET", path, self._request("GET", path))
        if not isinstance(data, dict):
            raise BackendError(f"Unexpected card type response type: {type(data).__name__}")
        return data

    def fetch_guests(self, event_id) -> List[Dict[str, Any]]:
        path = f"/events/{event_id}/guests/all"
        data = self._json("GET", path, self._request("GET", path))
        if isinstance(data, dict):
            data = data.get("guests", data.get("rows"))
        if not isinstance(data, list):
            raise BackendError("Unexpected guests response: missing guest list.")
        return data

    def fetch_template_image(self, event_id) -> Optional[str]:
        """Card design as a base64 data URL, or None when the event has none."""
        path = f"/events/{event_id}/card-design"
        resp = self._request("GET", path)
        if resp.status_code == 404:
            return None
        data = self._json("GET", path, resp)
        if not isinstance(data, dict):
            raise BackendError(f"Unexpected card design response type: {type(data).__name__}")
        return data.get("card_design_base64") or None

    def save_card_type(self, card_type_id, payload: Dict[str, Any]) -> Dict[str, Any]:
        path = f"/card-types/{card_type_id}"
        data = self._json("PUT", path, self._request("PUT", path, body=payload))
        return data if isinstance(data, dict) else {}

    def upload_template(self, event_id, data: bytes, mime_type: str, file_name: str) -> Dict[str, Any]:
        path = f"/events/{event_id}/card-design"
        body = {
            "card_design_base64": to_data_url(data, mime_type),
            "file_name": file_name,
            "file_type": mime_type,
        }
        resp = self._request("POST", path, body=body)
        if resp.status_code in (400, 413, 415, 422):
            try:
                err = resp.json()
            except ValueError:
                err = {}
            message = (err.get("message") if isinstance(err, dict) else None) or f"Upload rejected ({_describe(resp)})"
            allowed = err.get("allowed_dimensions") if isinstance(err, dict) else None
            if allowed:
                message += "\n\nAllowed dimensions: " + ", ".join(f"{w}x{h}" for w, h in allowed)
            raise UploadRejected(message, allowed_dimensions=[tuple(d) for d in allowed or []])
        result = self._json("POST", path, resp)
        result = result if isinstance(result, dict) else {}
        return {"path": result.get("card_design_path", ""), "dimensions": result.get("dimensions", "")}


def _find_column(df: Any, exact: Optional[str], *subs) -> Optional[str]:
    """Find column by exact name or by substrings (all must match, case-insensitive)."""
    df_cols = [str(c).strip() for c in df.columns]
    if exact and exact in df_cols:
        return exact
    low = exact.lower() if exact else ""
    for c in df.columns:
        cs = str(c).strip()
        if exact and cs.lower() == low:
            return c
        if subs and all(s.lower() in cs.lower() for s in subs):
            return c
    return None


def load_guests_dataframe(path: str, sheet: str = "Sheet1") -> Any:
    """
    Load guests from Excel or CSV into a DataFrame with columns:
    Name, Title, Card_Class, Invite_Code, QR_Path, QR_Base64, Card_Path.
    Rows without a name are skipped; duplicate invite codes keep the first row.
    """
    import pandas as pd

    p = Path(path)
    if p.suffix.lower() in (".xlsx", ".xls"):
        try:
            df = pd.read_excel(path, sheet_name=sheet, dtype=str)
        except ImportError as e:
            if "openpyxl" in str(e).lower():
                raise ImportError(
                    "Reading Excel requires openpyxl. Install it with:\n  pip install openpyxl"
                ) from e
            raise
    else:
        df = pd.read_csv(path, dtype=str)
    df.columns = [str(c).strip() for c in df.columns]
    name_col = (
        _find_column(df, "Name")
        or _find_column(df, "Guest Name")
        or _find_column(df, None, "full", "name")
        or _find_column(df, None, "name")
        or df.columns[0]
    )
    columns = {
        "Name": name_col,
        "Title": _find_column(df, "Title"),
        "Card_Class": _find_column(df, "Card Class") or _find_column(df, "Card_Class") or _find_column(df, None, "class"),
        "Invite_Code": _find_column(df, "Invite Code") or _find_column(df, "Invite_Code") or _find_column(df, None, "invite"),
        "QR_Path": _find_column(df, "QR Path") or _find_column(df, "QR_Path") or _find_column(df, "qr_code_path"),
        "QR_Base64": _find_column(df, "QR Base64") or _find_column(df, "QR_Base64") or _find_column(df, "qr_code_base64"),
        "Card_Path": _find_column(df, "Card Path") or _find_column(df, "Card_Path") or _find_column(df, "guest_card_path"),
    }

    total_rows = len(df)
    out = pd.DataFrame({
        target: (df[src] if src is not None else pd.Series([""] * total_rows, index=df.index))
        for target, src in columns.items()
    })
    out = out.fillna("").astype(str).apply(lambda col: col.str.strip())
    out = out.replace({"nan": ""})
    out = out[out["Name"] != ""]
    kept = len(out)

    coded = out[out["Invite_Code"] != ""].drop_duplicates(subset=["Invite_Code"])
    uncoded = out[out["Invite_Code"] == ""]
    out = pd.concat([coded, uncoded]).sort_index().reset_index(drop=True)
    out = out[GUEST_COLUMNS]
    out.attrs["load_stats"] = {
        "source_rows": total_rows,
        "loaded_rows": len(out),
        "skipped_missing_name": total_rows - kept,
        "dropped_duplicate_invite_code": kept - len(out),
    }
    return out


def guest_records_from_dataframe(df: Any) -> List[Dict[str, Any]]:
    """Convert a guest DataFrame into records shaped like the REST payload."""
    records = []
    for i, row in enumerate(df.itertuples(index=False)):
        r = row._asdict()
        records.append(
            {
                "id": r["Invite_Code"] or str(i + 1),
                "name": r["Name"],
                "title": r["Title"],
                "card_class": r["Card_Class"],
                "invite_code": r["Invite_Code"],
                "qr_code_path": r["QR_Path"],
                "qr_code_base64": r["QR_Base64"],
                "guest_card_path": r["Card_Path"],
            }
        )
    return records


def make_qr_payload(data: str) -> str:
    """Render data as a QR code PNG and return it as a base64 data URL."""
    import qrcode

    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=2,
    )
    qr.add_data(str(data).strip())
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = BytesIO()
    img.save(buf, format="PNG")
    return to_data_url(buf.getvalue(), "image/png")


class LocalCardBackend:
    """
    File-backed stand-in for the REST backend: a template image, a guest list
    (CSV/Excel) and a JSON card-type record.
    """

    def __init__(
        self,
        template_path: Optional[str],
        guests_path: str,
        card_type_path: Optional[str] = None,
        generate_missing_qr: bool = False,
    ):
        self.template_path = Path(template_path) if template_path else None
        self.guests_path = guests_path
        self.card_type_path = Path(card_type_path) if card_type_path else None
        self.generate_missing_qr = generate_missing_qr

    def fetch_card_type(self, card_type_id) -> Dict[str, Any]:
        if self.card_type_path is None or not self.card_type_path.exists():
            return {}
        try:
            with open(self.card_type_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise BackendError(f"Could not read card type file {self.card_type_path}: {e}") from e
        if not isinstance(data, dict):
            raise BackendError("Card type file must contain a JSON object.")
        return data

    def fetch_guests(self, event_id) -> List[Dict[str, Any]]:
        try:
            df = load_guests_dataframe(self.guests_path)
        except (OSError, ValueError) as e:
            raise BackendError(f"Could not read guest list {self.guests_path}: {e}") from e
        records = guest_records_from_dataframe(df)
        if self.generate_missing_qr:
            generated = 0
            for r in records:
                if not r["qr_code_base64"] and not r["qr_code_path"] and r["invite_code"]:
                    r["qr_code_base64"] = make_qr_payload(r["invite_code"])
                    generated += 1
            if generated:
                logger.info("Generated %d missing QR code(s) from invite codes", generated)
        return records

    def fetch_template_image(self, event_id) -> Optional[bytes]:
        if self.template_path is None or not self.template_path.exists():
            return None
        return self.template_path.read_bytes()

    def save_card_type(self, card_type_id, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self.card_type_path is None:
            raise BackendError("No card type file configured; cannot save.")
        record = self.fetch_card_type(card_type_id)
        record.update(payload)
        try:
            with open(self.card_type_path, "w", encoding="utf-8") as f:
                json.dump(record, f, indent=2, sort_keys=True)
        except OSError as e:
            raise BackendError(f"Could not write card type file {self.card_type_path}: {e}") from e
        return record

    def upload_template(self, event_id, data: bytes, mime_type: str, file_name: str) -> Dict[str, Any]:
        from dimensions import validate_upload

        tier = validate_upload(data, mime_type)
        if self.template_path is None:
            raise BackendError("No template path configured; cannot store upload.")
        self.template_path.parent.mkdir(parents=True, exist_ok=True)
        self.template_path.write_bytes(data)
        return {"path": str(self.template_path), "dimensions": str(tier)}
