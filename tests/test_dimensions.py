import struct
import zlib

import pytest

from config import MAX_TEMPLATE_BYTES
from dimensions import (
    ALLOWED_TIERS,
    dimension_error_message,
    format_dimension_list,
    read_image_size,
    validate_dimensions,
    validate_upload,
)
from errors import DimensionError, UploadRejected


@pytest.mark.parametrize("width,height", [(3000, 4200), (1500, 2100), (1000, 1400), (750, 1050), (600, 840)])
def test_allowed_tiers_validate(width, height):
    tier = validate_dimensions(width, height)
    assert (tier.width, tier.height) == (width, height)
    assert str(tier) == f"{width}x{height}"


def test_tiers_ordered_largest_first():
    assert [t.width for t in ALLOWED_TIERS] == [3000, 1500, 1000, 750, 600]
    assert format_dimension_list() == "3000x4200, 1500x2100, 1000x1400, 750x1050, 600x840"


def test_rejection_lists_every_tier_and_actual_size():
    with pytest.raises(DimensionError) as exc:
        validate_dimensions(1600, 2200)
    msg = str(exc.value)
    for tier in ALLOWED_TIERS:
        assert str(tier) in msg
    assert "Your image is 1600x2200 pixels." in msg
    assert "Aspect ratio mismatch" in msg
    assert "0.714" in msg
    assert exc.value.width == 1600 and exc.value.height == 2200
    assert (3000, 4200) in exc.value.allowed_dimensions


def test_matching_ratio_wrong_size_has_no_ratio_line():
    msg = dimension_error_message(2000, 2800)
    assert "2000x2800" in msg
    assert "Aspect ratio mismatch" not in msg
    assert "1500x2100 pixels (recommended for web)" in msg


def test_non_positive_size_rejected():
    with pytest.raises(DimensionError):
        validate_dimensions(0, 0)
    with pytest.raises(DimensionError):
        validate_dimensions(-600, 840)


def test_upload_accepts_gif_and_jpeg(make_png):
    assert str(validate_upload(make_png((600, 840), fmt="GIF"), "image/gif")) == "600x840"
    assert str(validate_upload(make_png((750, 1050), fmt="JPEG"), "image/jpeg")) == "750x1050"


def test_upload_rejects_mime_before_reading(make_png):
    with pytest.raises(UploadRejected) as exc:
        validate_upload(make_png((600, 840)), "image/bmp")
    assert "JPEG, PNG, JPG, or GIF" in str(exc.value)
    assert not isinstance(exc.value, DimensionError)


def test_upload_rejects_oversized_file_without_decoding():
    with pytest.raises(UploadRejected) as exc:
        validate_upload(b"\0" * (MAX_TEMPLATE_BYTES + 1), "image/png")
    assert "File size must be less than 2MB" in str(exc.value)


def test_upload_rejects_undecodable_bytes():
    with pytest.raises(UploadRejected) as exc:
        validate_upload(b"definitely not an image", "image/png")
    assert str(exc.value).startswith("Invalid image file")


def test_upload_rejects_wrong_dimensions(make_png):
    with pytest.raises(DimensionError) as exc:
        validate_upload(make_png((1600, 2200)), "image/png")
    assert "1600x2200" in str(exc.value)


def test_read_image_size(make_png):
    assert tuple(read_image_size(make_png((1000, 1400)))) == (1000, 1400)


def _png_header(width, height):
    """Signature and IHDR chunk only; enough for Pillow to read the size."""
    ihdr = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
    chunk = b"IHDR" + ihdr
    return b"\x89PNG\r\n\x1a\n" + struct.pack(">I", len(ihdr)) + chunk + struct.pack(">I", zlib.crc32(chunk))


def test_upload_rejects_oversized_header_as_invalid_image():
    data = _png_header(30000, 42000)
    assert len(data) < 1024
    with pytest.raises(UploadRejected) as exc:
        validate_upload(data, "image/png")
    assert str(exc.value).startswith("Invalid image file")
    assert not isinstance(exc.value, DimensionError)
