"""
Card design session: one render surface, one set of anchors, one selected
guest, and the acquisition pipeline feeding them.

All mutating methods must run inside the event loop; they only record the
change and let the RenderTrigger schedule the composite pass.
"""

import asyncio
import hashlib
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from acquisition import AcquisitionPipeline, ImageReadiness
from compositor import CardCompositor, QrLayer, RenderSurface
from config import (
    BACKGROUND_GRACE_S,
    BACKGROUND_LOAD_TIMEOUT_S,
    BACKGROUND_POLL_INTERVAL_S,
    RENDER_DEBOUNCE_S,
    STORAGE_BASE_URL,
)
from dimensions import validate_upload
from errors import CardError
from export import card_pdf_bytes, card_png_bytes
from guests import GuestRenderContext
from positions import PositionModel, TextStyle
from trigger import RenderTrigger

logger = logging.getLogger(__name__)

STATUS_NO_DESIGN = "no design"
STATUS_LOADING = "loading"
STATUS_READY = "ready"
STATUS_FAILED = "failed"


def payload_digest(payload: Union[bytes, str]) -> str:
    data = payload.encode("utf-8") if isinstance(payload, str) else bytes(payload)
    return hashlib.sha1(data).hexdigest()


class CardDesignSession:
    """Editor-side state for composing guest cards against one template."""

    def __init__(
        self,
        backend: Any = None,
        *,
        surface: Optional[RenderSurface] = None,
        storage_base_url: str = STORAGE_BASE_URL,
        fetch_bytes=None,
        debounce_s: float = RENDER_DEBOUNCE_S,
        grace_s: float = BACKGROUND_GRACE_S,
        poll_interval_s: float = BACKGROUND_POLL_INTERVAL_S,
        load_timeout_s: Optional[float] = BACKGROUND_LOAD_TIMEOUT_S,
        preview: bool = False,
    ):
        self.backend = backend
        self.preview = preview
        self.surface = surface or RenderSurface()
        self.compositor = CardCompositor()
        self.storage_base_url = storage_base_url
        self.positions = PositionModel()
        self.style = TextStyle()
        self.guests: List[GuestRenderContext] = []
        self.selected: Optional[GuestRenderContext] = None
        self.event_id = None
        self.card_type_id = None
        self.status = STATUS_NO_DESIGN
        self.pipeline = AcquisitionPipeline(
            storage_base_url=storage_base_url,
            fetch_bytes=fetch_bytes,
            grace_s=grace_s,
            poll_interval_s=poll_interval_s,
            load_timeout_s=load_timeout_s,
            on_background=self._on_background,
            on_qr=self._on_qr,
        )
        self.trigger = RenderTrigger(self._composite, debounce_s=debounce_s)

    # -- collaborators ----------------------------------------------------

    async def load(self, event_id, card_type_id) -> None:
        """Fetch anchors, guests and the template for an event."""
        if self.backend is None:
            raise CardError("No backend configured for this session.")
        self.event_id = event_id
        self.card_type_id = card_type_id

        card_type = await asyncio.to_thread(self.backend.fetch_card_type, card_type_id)
        self.positions = PositionModel.from_record(card_type)
        self.style = TextStyle.from_record(card_type)

        records = await asyncio.to_thread(self.backend.fetch_guests, event_id)
        self.set_guests(records)
        logger.info("Loaded %d guest(s) for event %s", len(self.guests), event_id)

        template = await asyncio.to_thread(self.backend.fetch_template_image, event_id)
        if template:
            self.set_template(template, identity=("event", event_id, payload_digest(template)))
        else:
            logger.info("Event %s has no card design", event_id)
            self.pipeline.clear_background()
            self._changed()

    async def save(self) -> Dict[str, Any]:
        """Persist anchors, flags and text style; becomes the new source of truth."""
        if self.backend is None or self.card_type_id is None:
            raise CardError("Load a card type before saving.")
        payload = self.positions.to_payload()
        payload.update(self.style.to_payload())
        result = await asyncio.to_thread(self.backend.save_card_type, self.card_type_id, payload)
        logger.info("Saved card type %s", self.card_type_id)
        return result

    async def upload_template(self, data: bytes, mime_type: str, file_name: str = "card-design") -> Dict[str, Any]:
        """
        Validate and store a new template, then use it as the background.
        UploadRejected propagates before anything is sent or decoded.
        """
        tier = validate_upload(data, mime_type)
        result: Dict[str, Any] = {"path": "", "dimensions": str(tier)}
        if self.backend is not None and self.event_id is not None:
            stored = await asyncio.to_thread(self.backend.upload_template, self.event_id, data, mime_type, file_name)
            result.update({k: v for k, v in stored.items() if v})
        logger.info("Template accepted (%s)", tier)
        self.set_template(data)
        return result

    # -- state changes ----------------------------------------------------

    def set_template(self, payload: Union[bytes, str], identity: Any = None) -> None:
        if identity is None:
            identity = ("payload", payload_digest(payload))
        if self.pipeline.load_background(payload, identity) is not None:
            self.status = STATUS_LOADING
        self._changed()

    def set_guests(self, records: Iterable[Union[GuestRenderContext, Mapping[str, Any]]]) -> None:
        self.guests = [
            r if isinstance(r, GuestRenderContext) else GuestRenderContext.from_record(r, index=i)
            for i, r in enumerate(records, 1)
        ]
        ids = {g.guest_id for g in self.guests}
        if self.selected is None or self.selected.guest_id not in ids:
            self.selected = self.guests[0] if self.guests else None
        else:
            self.selected = next(g for g in self.guests if g.guest_id == self.selected.guest_id)
        self._changed()

    def select_guest(self, guest_id) -> GuestRenderContext:
        key = str(guest_id)
        for guest in self.guests:
            if guest.guest_id == key:
                self.selected = guest
                self._changed()
                return guest
        raise KeyError(f"Unknown guest: {guest_id}")

    def set_position(self, field: str, value: Any) -> float:
        stored = self.positions.set_field(field, value)
        self._changed()
        return stored

    def set_flag(self, name: str, value: bool) -> None:
        self.positions.set_flag(name, value)
        self._changed()

    def set_text_style(self, **changes: Any) -> TextStyle:
        current = {
            "name_size": self.style.name_size,
            "card_class_size": self.style.card_class_size,
            "name_color": self.style.name_color,
            "card_class_color": self.style.card_class_color,
        }
        current.update(changes)
        self.style = TextStyle(**current)
        self._changed()
        return self.style

    def apply(self, positions: Optional[PositionModel] = None, style: Optional[TextStyle] = None) -> None:
        if positions is not None:
            self.positions = positions
        if style is not None:
            self.style = style
        self._changed()

    # -- rendering --------------------------------------------------------

    def _dependencies(self) -> tuple:
        bg = self.pipeline.background
        guest = self.selected
        return (
            bg.generation,
            bg.state,
            guest.guest_id if guest else None,
            guest.qr_source(self.storage_base_url).identity if guest else None,
            self.positions.snapshot(),
            self.style.snapshot(),
        )

    def _changed(self) -> None:
        self.trigger.observe(self._dependencies())

    def _on_background(self, state: ImageReadiness) -> None:
        self._changed()

    def _current_qr_layer(self) -> QrLayer:
        slot = self.pipeline.qr
        if slot.state is ImageReadiness.READY:
            return QrLayer.ready(slot.image)
        if slot.state is ImageReadiness.FAILED:
            return QrLayer.failed()
        if slot.state is ImageReadiness.LOADING:
            return QrLayer.loading()
        return QrLayer.absent()

    def _composite(self) -> None:
        bg = self.pipeline.background
        if bg.state is ImageReadiness.FAILED:
            self.surface.clear()
            self.status = STATUS_FAILED
            return
        if bg.state is ImageReadiness.NOT_REQUESTED:
            self.surface.clear()
            self.status = STATUS_NO_DESIGN
            return
        if bg.state is ImageReadiness.LOADING:
            self.status = STATUS_LOADING
            return

        self.status = STATUS_READY
        guest = self.selected
        if guest is not None:
            source = guest.qr_source(self.storage_base_url)
            if source.identity != self.pipeline.qr.identity:
                self.pipeline.request_qr(source)
        self.compositor.render(
            self.surface, bg.image, guest, self.positions, self._current_qr_layer(), self.style,
            preview=self.preview,
        )

    def _on_qr(self, generation: int, state: ImageReadiness) -> None:
        bg = self.pipeline.background
        guest = self.selected
        if not bg.ready or guest is None:
            return
        if self.pipeline.qr.identity != guest.qr_source(self.storage_base_url).identity:
            return
        if self.trigger.pending:
            # a queued pass reads the settled QR slot itself
            return
        logger.debug("QR %s for %s, repainting", state.value, guest.name)
        self.compositor.complete_qr(
            self.surface, bg.image, guest, self.positions, self._current_qr_layer(), self.style,
            preview=self.preview,
        )

    async def wait_idle(self) -> None:
        """Wait until no decode, poll or composite pass is outstanding."""
        while True:
            tasks = self.pipeline.pending()
            if not tasks and not self.trigger.pending:
                return
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
            await self.trigger.flush()

    @property
    def background_error(self) -> Optional[Exception]:
        return self.pipeline.background.error

    def export_png(self) -> bytes:
        return card_png_bytes(self.surface.image)

    def export_pdf(self) -> bytes:
        return card_pdf_bytes(self.surface.image)


async def render_guest_card(
    template: Union[bytes, str],
    guest: Union[GuestRenderContext, Mapping[str, Any]],
    positions: Optional[PositionModel] = None,
    style: Optional[TextStyle] = None,
    **session_kwargs: Any,
) -> "Image.Image":
    """
    One-shot composite for a single guest. Raises the background error when
    the template cannot be decoded.
    """
    session = CardDesignSession(**session_kwargs)
    session.apply(positions, style)
    session.set_guests([guest])
    session.set_template(template)
    await session.wait_idle()
    if session.status != STATUS_READY:
        raise session.background_error or CardError(f"Card not rendered (status: {session.status})")
    return session.surface.snapshot()
