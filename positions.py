"""
Anchor positions and visibility flags for the three card overlays.

Anchors are percentages (0-100) of the render surface. Conversion to pixels
uses Python's round(), i.e. round-half-to-even: 50.5 -> 50, 51.5 -> 52.
"""

import math
from typing import Any, Dict, Mapping, Optional, Tuple

from config import (
    CARD_CLASS_FONT_SIZE,
    CARD_CLASS_TEXT_COLOR,
    DEFAULT_POSITIONS,
    MAX_FONT_SIZE,
    MIN_FONT_SIZE,
    NAME_FONT_SIZE,
    NAME_TEXT_COLOR,
)

FIELDS = ("name_x", "name_y", "qr_x", "qr_y", "card_class_x", "card_class_y")
FLAGS = ("show_guest_name", "show_card_class")

# Persisted record keys (card type payload) for each anchor field
RECORD_KEYS = {
    "name_x": "name_position_x",
    "name_y": "name_position_y",
    "qr_x": "qr_position_x",
    "qr_y": "qr_position_y",
    "card_class_x": "card_class_position_x",
    "card_class_y": "card_class_position_y",
}


def clamp_percent(value: Any) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Position must be a number, got {value!r}") from e
    if math.isnan(v):
        raise ValueError("Position must be a number, got NaN")
    return max(0.0, min(100.0, v))


def clamp_font_size(value: Any) -> int:
    try:
        v = int(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Font size must be an integer, got {value!r}") from e
    return max(MIN_FONT_SIZE, min(MAX_FONT_SIZE, v))


def _check_color(color: str) -> str:
    from PIL import ImageColor

    try:
        ImageColor.getrgb(color)
    except ValueError as e:
        raise ValueError(f"Unsupported text color: {color!r}") from e
    return color


def percent_to_pixel(percent: float, dimension: int) -> int:
    return int(round(percent / 100 * dimension))


class PositionModel:
    """Editable anchors and flags for one card type."""

    def __init__(
        self,
        values: Optional[Mapping[str, Any]] = None,
        show_guest_name: bool = True,
        show_card_class: bool = True,
    ):
        self._values: Dict[str, float] = {}
        for field in FIELDS:
            self.set_field(field, DEFAULT_POSITIONS[field])
        for field, value in (values or {}).items():
            self.set_field(field, value)
        self.show_guest_name = bool(show_guest_name)
        self.show_card_class = bool(show_card_class)

    @classmethod
    def from_record(cls, record: Optional[Mapping[str, Any]]) -> "PositionModel":
        """Build from a card-type record; missing keys fall back to defaults."""
        record = record or {}
        values = {}
        for field, key in RECORD_KEYS.items():
            if record.get(key) is not None:
                values[field] = record[key]
            elif record.get(field) is not None:
                values[field] = record[field]

        def _flag(name: str) -> bool:
            v = record.get(name)
            return True if v is None else bool(v)

        return cls(values, show_guest_name=_flag("show_guest_name"), show_card_class=_flag("show_card_class"))

    def get(self, field: str) -> float:
        return self._values[field]

    def set_field(self, field: str, value: Any) -> float:
        """Store value clamped into [0, 100]; out-of-range input is not an error."""
        if field not in FIELDS:
            raise KeyError(f"Unknown position field: {field}")
        self._values[field] = clamp_percent(value)
        return self._values[field]

    def set_flag(self, name: str, value: bool) -> None:
        if name not in FLAGS:
            raise KeyError(f"Unknown visibility flag: {name}")
        setattr(self, name, bool(value))

    def to_pixels(self, surface_width: int, surface_height: int) -> Dict[str, Tuple[int, int]]:
        v = self._values
        return {
            "name": (percent_to_pixel(v["name_x"], surface_width), percent_to_pixel(v["name_y"], surface_height)),
            "qr": (percent_to_pixel(v["qr_x"], surface_width), percent_to_pixel(v["qr_y"], surface_height)),
            "card_class": (
                percent_to_pixel(v["card_class_x"], surface_width),
                percent_to_pixel(v["card_class_y"], surface_height),
            ),
        }

    def snapshot(self) -> Tuple:
        return tuple(self._values[f] for f in FIELDS) + (self.show_guest_name, self.show_card_class)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {RECORD_KEYS[f]: self._values[f] for f in FIELDS}
        payload["show_guest_name"] = self.show_guest_name
        payload["show_card_class"] = self.show_card_class
        return payload

    def __repr__(self) -> str:
        fields = ", ".join(f"{f}={self._values[f]:g}" for f in FIELDS)
        return f"PositionModel({fields}, show_guest_name={self.show_guest_name}, show_card_class={self.show_card_class})"


class TextStyle:
    """Font sizes and colors for the name and card-class labels."""

    def __init__(
        self,
        name_size: int = NAME_FONT_SIZE,
        card_class_size: int = CARD_CLASS_FONT_SIZE,
        name_color: str = NAME_TEXT_COLOR,
        card_class_color: str = CARD_CLASS_TEXT_COLOR,
    ):
        self.name_size = clamp_font_size(name_size)
        self.card_class_size = clamp_font_size(card_class_size)
        self.name_color = _check_color(name_color or NAME_TEXT_COLOR)
        self.card_class_color = _check_color(card_class_color or CARD_CLASS_TEXT_COLOR)

    @classmethod
    def from_record(cls, record: Optional[Mapping[str, Any]]) -> "TextStyle":
        record = record or {}
        return cls(
            name_size=record.get("name_text_size") or NAME_FONT_SIZE,
            card_class_size=record.get("card_class_text_size") or CARD_CLASS_FONT_SIZE,
            name_color=record.get("name_text_color") or NAME_TEXT_COLOR,
            card_class_color=record.get("card_class_text_color") or CARD_CLASS_TEXT_COLOR,
        )

    def snapshot(self) -> Tuple:
        return (self.name_size, self.card_class_size, self.name_color, self.card_class_color)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "name_text_size": self.name_size,
            "card_class_text_size": self.card_class_size,
            "name_text_color": self.name_color,
            "card_class_text_color": self.card_class_color,
        }
