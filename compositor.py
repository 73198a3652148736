"""
Card compositing onto a fixed 3000x4200 render surface.

Draw order for one composite pass:
  1. clear the surface
  2. background stretched to the whole surface (bicubic)
  3. guest name (optional), bold, centered on its anchor
  4. QR layer: decoded image, or a red placeholder ("QR" on failure,
     "NO QR" when the guest has no QR source); nothing while loading
  5. card-class label (optional), drawn last so the QR never covers it
"""

import os
from pathlib import Path
from typing import Dict, NamedTuple, Optional, Tuple

from acquisition import ImageReadiness
from config import (
    CARD_CLASS_PLACEHOLDER,
    PLACEHOLDER_FILL,
    PLACEHOLDER_TEXT_COLOR,
    QR_ABSENT_LABEL,
    QR_FAILED_LABEL,
    QR_SIZE_RATIO,
    SURFACE_CLEAR_COLOR,
    SURFACE_HEIGHT,
    SURFACE_WIDTH,
)
from guests import GuestRenderContext
from positions import PositionModel, TextStyle

_APP_DIR = Path(__file__).resolve().parent

_BOLD_FONT_PATHS = [
    str(_APP_DIR / "fonts" / "DejaVuSans-Bold.ttf"),
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    "/usr/share/fonts/dejavu/DejaVuSans-Bold.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Bold.ttf",
    "/System/Library/Fonts/Supplemental/Arial Bold.ttf",
    "/Library/Fonts/Arial Bold.ttf",
    "C:/Windows/Fonts/arialbd.ttf",
]
_REGULAR_FONT_PATHS = [
    str(_APP_DIR / "fonts" / "DejaVuSans.ttf"),
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf",
    "/System/Library/Fonts/Supplemental/Arial.ttf",
    "/Library/Fonts/Arial.ttf",
    "C:/Windows/Fonts/arial.ttf",
]

_font_cache: Dict[Tuple[int, bool], object] = {}


def load_font(size: int, bold: bool = True):
    """Load and cache a TrueType font; falls back to Pillow's bundled font."""
    from PIL import ImageFont

    key = (size, bold)
    if key in _font_cache:
        return _font_cache[key]

    font = None
    for path in _BOLD_FONT_PATHS if bold else _REGULAR_FONT_PATHS:
        if os.path.exists(path):
            try:
                font = ImageFont.truetype(path, size)
                break
            except OSError:
                continue
    if font is None:
        font = ImageFont.load_default(size=size)
    _font_cache[key] = font
    return font


class RenderSurface:
    """Caller-owned output buffer. The image object is reused across passes."""

    def __init__(self, width: int = SURFACE_WIDTH, height: int = SURFACE_HEIGHT, clear_color=SURFACE_CLEAR_COLOR):
        from PIL import Image

        self.width = width
        self.height = height
        self.clear_color = clear_color
        self.image = Image.new("RGB", (width, height), clear_color)

    @property
    def size(self) -> Tuple[int, int]:
        return (self.width, self.height)

    def clear(self) -> None:
        self.image.paste(self.clear_color, (0, 0, self.width, self.height))

    def snapshot(self):
        return self.image.copy()


class QrLayer(NamedTuple):
    """What the QR layer should show for this pass."""

    state: ImageReadiness
    image: Optional[object] = None

    @classmethod
    def absent(cls) -> "QrLayer":
        return cls(ImageReadiness.NOT_REQUESTED)

    @classmethod
    def loading(cls) -> "QrLayer":
        return cls(ImageReadiness.LOADING)

    @classmethod
    def failed(cls) -> "QrLayer":
        return cls(ImageReadiness.FAILED)

    @classmethod
    def ready(cls, image) -> "QrLayer":
        return cls(ImageReadiness.READY, image)


def qr_size_for(surface: RenderSurface) -> int:
    return int(round(surface.width * QR_SIZE_RATIO))


class CardCompositor:
    """Paints guest cards onto a RenderSurface."""

    def __init__(self):
        self._scaled = None  # (source image, stretched copy)

    def _stretched_background(self, background, size: Tuple[int, int]):
        from PIL import Image

        cached = self._scaled
        if cached is not None and cached[0] is background and cached[1].size == size:
            return cached[1]
        if background.size == size:
            scaled = background.convert("RGB")
        else:
            scaled = background.convert("RGB").resize(size, Image.Resampling.BICUBIC)
        self._scaled = (background, scaled)
        return scaled

    def render(
        self,
        surface: RenderSurface,
        background,
        guest: Optional[GuestRenderContext],
        positions: PositionModel,
        qr: QrLayer = QrLayer.absent(),
        style: Optional[TextStyle] = None,
        preview: bool = False,
    ) -> None:
        """
        One full composite pass. Identical inputs give identical pixels.
        `preview` marks an empty card-class slot with a placeholder label.
        """
        surface.clear()
        self._paint_layers(surface, background, guest, positions, qr, style or TextStyle(), preview)

    def complete_qr(
        self,
        surface: RenderSurface,
        background,
        guest: Optional[GuestRenderContext],
        positions: PositionModel,
        qr: QrLayer,
        style: Optional[TextStyle] = None,
        preview: bool = False,
    ) -> None:
        """
        Repaint after a QR decode settles: background and name first, then the
        QR layer and card class, so nothing stacks on a stale frame.
        """
        self._paint_layers(surface, background, guest, positions, qr, style or TextStyle(), preview)

    def _paint_layers(self, surface, background, guest, positions, qr, style, preview=False) -> None:
        from PIL import ImageDraw

        surface.image.paste(self._stretched_background(background, surface.size), (0, 0))
        if guest is None:
            return

        draw = ImageDraw.Draw(surface.image)
        anchors = positions.to_pixels(surface.width, surface.height)

        if positions.show_guest_name and guest.name:
            draw.text(
                anchors["name"],
                guest.name,
                font=load_font(style.name_size, bold=True),
                fill=style.name_color,
                anchor="mm",
            )

        self._paint_qr(surface, draw, anchors["qr"], qr)

        card_class = guest.card_class or (CARD_CLASS_PLACEHOLDER if preview else "")
        if positions.show_card_class and card_class:
            draw.text(
                anchors["card_class"],
                card_class,
                font=load_font(style.card_class_size, bold=True),
                fill=style.card_class_color,
                anchor="mm",
            )

    def _paint_qr(self, surface: RenderSurface, draw, anchor: Tuple[int, int], qr: QrLayer) -> None:
        from PIL import Image

        size = qr_size_for(surface)
        x, y = anchor
        left, top = x - size // 2, y - size // 2

        if qr.state is ImageReadiness.READY and qr.image is not None:
            qr_img = qr.image.convert("RGB").resize((size, size), Image.Resampling.LANCZOS)
            surface.image.paste(qr_img, (left, top))
        elif qr.state is ImageReadiness.FAILED:
            self._paint_placeholder(draw, left, top, size, QR_FAILED_LABEL)
        elif qr.state is ImageReadiness.NOT_REQUESTED:
            self._paint_placeholder(draw, left, top, size, QR_ABSENT_LABEL)

    @staticmethod
    def _paint_placeholder(draw, left: int, top: int, size: int, label: str) -> None:
        draw.rectangle([left, top, left + size - 1, top + size - 1], fill=PLACEHOLDER_FILL)
        draw.text(
            (left + size // 2, top + size // 2),
            label,
            font=load_font(int(round(size / 4)), bold=False),
            fill=PLACEHOLDER_TEXT_COLOR,
            anchor="mm",
        )

    def text_bbox(self, surface: RenderSurface, text: str, anchor: Tuple[int, int], size: int) -> Tuple[int, int, int, int]:
        """Bounding box a centered label occupies on the surface."""
        from PIL import ImageDraw

        draw = ImageDraw.Draw(surface.image)
        return tuple(int(v) for v in draw.textbbox(anchor, text, font=load_font(size, bold=True), anchor="mm"))
