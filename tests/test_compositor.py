from PIL import Image, ImageChops

from acquisition import decode_image_bytes
from compositor import CardCompositor, QrLayer, RenderSurface, qr_size_for
from config import CARD_CLASS_FONT_SIZE, CARD_CLASS_PLACEHOLDER
from guests import GuestRenderContext
from positions import PositionModel

RED = (255, 0, 0)
BLUE = (0, 0, 255)

GUEST = GuestRenderContext.from_record({"id": 7, "name": "Ada Lovelace", "card_class": {"name": "VIP"}})


def _background(size=(3000, 4200), color=(0, 128, 0)):
    return Image.new("RGB", size, color)


def _qr_square(surface, positions):
    x, y = positions.to_pixels(surface.width, surface.height)["qr"]
    size = qr_size_for(surface)
    return (x - size // 2, y - size // 2, x - size // 2 + size, y - size // 2 + size)


def _render(guest=GUEST, positions=None, qr=QrLayer.absent(), background=None, preview=False):
    surface = RenderSurface()
    CardCompositor().render(
        surface, background or _background(), guest, positions or PositionModel(), qr, preview=preview
    )
    return surface


def test_render_is_deterministic(qr_data_url):
    qr = QrLayer.ready(decode_image_bytes(qr_data_url))
    bg = _background()
    surface = RenderSurface()
    compositor = CardCompositor()
    compositor.render(surface, bg, GUEST, PositionModel(), qr)
    first = surface.image.tobytes()
    compositor.render(surface, bg, GUEST, PositionModel(), qr)
    assert surface.image.tobytes() == first
    assert _render(qr=qr, background=bg).image.tobytes() == first


def test_surface_is_fixed_size():
    surface = _render()
    assert surface.size == (3000, 4200)
    assert surface.image.size == (3000, 4200)
    assert qr_size_for(surface) == 600


def test_small_tier_background_is_stretched():
    bg = Image.new("RGB", (1500, 2100), RED)
    bg.paste((0, 128, 0), (750, 0, 1500, 2100))
    surface = _render(guest=None, background=bg)
    img = surface.image
    assert img.getpixel((10, 10)) == RED
    assert img.getpixel((1400, 4190)) == RED
    assert img.getpixel((1600, 10)) == (0, 128, 0)
    assert img.getpixel((2990, 4190)) == (0, 128, 0)


def test_without_guest_only_background_is_drawn():
    surface = _render(guest=None)
    assert surface.image.getcolors() == [(3000 * 4200, (0, 128, 0))]


def test_hiding_name_only_changes_pixels_inside_name_box():
    shown = _render()
    hidden = _render(positions=PositionModel(show_guest_name=False))
    diff = ImageChops.difference(shown.image, hidden.image).getbbox()
    assert diff is not None

    anchor = PositionModel().to_pixels(3000, 4200)["name"]
    left, top, right, bottom = CardCompositor().text_bbox(RenderSurface(), GUEST.name, anchor, 98)
    assert diff[0] >= left - 1 and diff[1] >= top - 1
    assert diff[2] <= right + 1 and diff[3] <= bottom + 1


def test_absent_qr_draws_no_qr_placeholder():
    surface = _render(qr=QrLayer.absent())
    left, top, right, bottom = _qr_square(surface, PositionModel())
    assert surface.image.getpixel((left + 5, top + 5)) == RED
    assert surface.image.getpixel((right - 5, bottom - 5)) == RED
    # white label inside the square
    square = surface.image.crop((left, top, right, bottom))
    assert (255, 255, 255) in {c for _, c in square.getcolors(600 * 600)}
    # just outside the square is background
    assert surface.image.getpixel((left - 2, top - 2)) == (0, 128, 0)


def test_failed_qr_draws_qr_placeholder():
    failed = _render(qr=QrLayer.failed())
    absent = _render(qr=QrLayer.absent())
    box = _qr_square(failed, PositionModel())
    assert failed.image.getpixel((box[0] + 5, box[1] + 5)) == RED
    assert ImageChops.difference(failed.image.crop(box), absent.image.crop(box)).getbbox() is not None


def test_ready_qr_is_scaled_to_square_at_anchor(qr_data_url):
    surface = _render(qr=QrLayer.ready(decode_image_bytes(qr_data_url)))
    left, top, right, bottom = _qr_square(surface, PositionModel())
    assert surface.image.getpixel((left, top)) == BLUE
    assert surface.image.getpixel((right - 1, bottom - 1)) == BLUE
    assert surface.image.getpixel((left - 1, top)) == (0, 128, 0)


def test_loading_qr_draws_nothing():
    surface = _render(qr=QrLayer.loading(), positions=PositionModel({"card_class_y": 10}))
    box = _qr_square(surface, PositionModel())
    assert surface.image.crop(box).getcolors() == [(600 * 600, (0, 128, 0))]


def test_card_class_is_drawn_over_qr(qr_data_url):
    on_qr = {"card_class_x": 80, "card_class_y": 70}
    qr = QrLayer.ready(decode_image_bytes(qr_data_url))
    with_class = _render(qr=qr, positions=PositionModel(on_qr))
    without_class = _render(qr=qr, positions=PositionModel(on_qr, show_card_class=False))
    box = _qr_square(with_class, PositionModel())
    assert ImageChops.difference(with_class.image.crop(box), without_class.image.crop(box)).getbbox() is not None


def test_hidden_card_class_matches_guest_without_class():
    no_class_guest = GuestRenderContext.from_record({"id": 7, "name": "Ada Lovelace"})
    hidden = _render(positions=PositionModel(show_card_class=False))
    missing = _render(guest=no_class_guest)
    assert hidden.image.tobytes() == missing.image.tobytes()


def test_complete_qr_paints_over_previous_frame(qr_data_url):
    surface = _render(qr=QrLayer.loading())
    qr = QrLayer.ready(decode_image_bytes(qr_data_url))
    CardCompositor().complete_qr(surface, _background(), GUEST, PositionModel(), qr)
    assert surface.image.tobytes() == _render(qr=qr).image.tobytes()


def test_preview_marks_missing_card_class_inside_its_box():
    no_class_guest = GuestRenderContext.from_record({"id": 7, "name": "Ada Lovelace"})
    plain = _render(guest=no_class_guest)
    marked = _render(guest=no_class_guest, preview=True)
    diff = ImageChops.difference(plain.image, marked.image).getbbox()
    assert diff is not None

    anchor = PositionModel().to_pixels(3000, 4200)["card_class"]
    left, top, right, bottom = CardCompositor().text_bbox(
        RenderSurface(), CARD_CLASS_PLACEHOLDER, anchor, CARD_CLASS_FONT_SIZE
    )
    assert diff[0] >= left - 1 and diff[1] >= top - 1
    assert diff[2] <= right + 1 and diff[3] <= bottom + 1


def test_preview_placeholder_respects_visibility_and_real_class():
    no_class_guest = GuestRenderContext.from_record({"id": 7, "name": "Ada Lovelace"})
    hidden = PositionModel(show_card_class=False)
    assert (
        _render(guest=no_class_guest, positions=hidden, preview=True).image.tobytes()
        == _render(guest=no_class_guest, positions=hidden).image.tobytes()
    )
    assert _render(preview=True).image.tobytes() == _render().image.tobytes()
