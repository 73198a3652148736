"""Guest records as consumed by the compositor."""

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from acquisition import QrSource, resolve_qr_source
from config import STORAGE_BASE_URL


def _text(value: Any) -> str:
    if value is None or (isinstance(value, float) and str(value) == "nan"):
        return ""
    s = str(value).strip()
    return "" if s.lower() == "nan" else s


@dataclass(frozen=True)
class GuestRenderContext:
    """Composition input for one guest. At most one QR field is used per render."""

    guest_id: str
    name: str
    card_class: str = ""
    title: str = ""
    qr_code_base64: str = ""
    qr_code_path: str = ""
    invite_code: str = ""
    guest_card_path: str = ""

    @classmethod
    def from_record(cls, record: Mapping[str, Any], index: Optional[int] = None) -> "GuestRenderContext":
        """
        Build from a backend guest record. `card_class` may be a nested
        {"name": ...} object (REST payload) or a plain label (CSV rows).
        Records without an id fall back to the invite code, then to
        `index` (position in the guest list) so same-named guests stay apart.
        """
        card_class = record.get("card_class")
        if isinstance(card_class, Mapping):
            card_class = card_class.get("name")
        guest_id = record.get("id")
        if guest_id is None:
            guest_id = record.get("invite_code") or (f"row-{index}" if index is not None else record.get("name"))
        return cls(
            guest_id=_text(guest_id),
            name=_text(record.get("name")),
            card_class=_text(card_class),
            title=_text(record.get("title")),
            qr_code_base64=_text(record.get("qr_code_base64")),
            qr_code_path=_text(record.get("qr_code_path")),
            invite_code=_text(record.get("invite_code")),
            guest_card_path=_text(record.get("guest_card_path")),
        )

    def qr_source(self, storage_base_url: str = STORAGE_BASE_URL) -> QrSource:
        return resolve_qr_source(self.qr_code_base64, self.qr_code_path, storage_base_url)

    @property
    def has_card(self) -> bool:
        return bool(self.guest_card_path)
