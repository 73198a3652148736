import math

import pytest

from positions import FIELDS, PositionModel, TextStyle, clamp_percent, percent_to_pixel


def test_defaults():
    pm = PositionModel()
    assert (pm.get("name_x"), pm.get("name_y")) == (50, 30)
    assert (pm.get("qr_x"), pm.get("qr_y")) == (80, 70)
    assert (pm.get("card_class_x"), pm.get("card_class_y")) == (20, 90)
    assert pm.show_guest_name and pm.show_card_class


def test_out_of_range_values_clamp():
    pm = PositionModel()
    assert pm.set_field("name_x", 150) == 100
    assert pm.get("name_x") == 100
    assert pm.set_field("qr_y", -5) == 0
    assert pm.set_field("card_class_x", "42.5") == 42.5


def test_invalid_values_raise():
    pm = PositionModel()
    with pytest.raises(KeyError):
        pm.set_field("title_x", 10)
    with pytest.raises(ValueError):
        pm.set_field("name_x", "left")
    with pytest.raises(ValueError):
        clamp_percent(math.nan)
    with pytest.raises(KeyError):
        pm.set_flag("show_qr", False)


def test_to_pixels_uses_round_half_even():
    assert percent_to_pixel(50, 3000) == 1500
    assert percent_to_pixel(50, 5) == 2  # 2.5
    assert percent_to_pixel(50, 3) == 2  # 1.5
    assert percent_to_pixel(25, 10) == 2  # 2.5
    assert percent_to_pixel(50, 1) == 0  # 0.5


def test_to_pixels_for_defaults():
    px = PositionModel().to_pixels(3000, 4200)
    assert px == {"name": (1500, 1260), "qr": (2400, 2940), "card_class": (600, 3780)}


@pytest.mark.parametrize("value", [-1000, 0, 0.001, 33.3333, 99.999, 100, 1000])
def test_to_pixels_stays_in_bounds(value):
    pm = PositionModel({f: value for f in FIELDS})
    for x, y in pm.to_pixels(3000, 4200).values():
        assert 0 <= x <= 3000
        assert 0 <= y <= 4200


def test_from_record_and_payload():
    record = {
        "name_position_x": 10,
        "qr_position_y": "55",
        "card_class_x": 12,
        "show_guest_name": 0,
        "show_card_class": None,
    }
    pm = PositionModel.from_record(record)
    assert pm.get("name_x") == 10
    assert pm.get("qr_y") == 55
    assert pm.get("card_class_x") == 12
    assert pm.get("name_y") == 30  # default
    assert pm.show_guest_name is False
    assert pm.show_card_class is True

    payload = pm.to_payload()
    assert payload["name_position_x"] == 10
    assert payload["card_class_position_x"] == 12
    assert payload["show_guest_name"] is False
    assert PositionModel.from_record(payload).snapshot() == pm.snapshot()


def test_hidden_overlays_still_editable():
    pm = PositionModel(show_guest_name=False, show_card_class=False)
    pm.set_field("name_x", 70)
    assert pm.to_payload()["name_position_x"] == 70


def test_text_style_clamps_and_validates():
    style = TextStyle(name_size=500, card_class_size=1)
    assert style.name_size == 200
    assert style.card_class_size == 12
    with pytest.raises(ValueError):
        TextStyle(name_color="not-a-color")

    loaded = TextStyle.from_record({"name_text_size": 80, "card_class_text_color": "#ff0000"})
    assert loaded.name_size == 80
    assert loaded.card_class_size == 60
    assert loaded.to_payload()["card_class_text_color"] == "#ff0000"
