import base64
from io import BytesIO

import pytest
from PIL import Image


def _png(size, color=(0, 128, 0), fmt="PNG"):
    buf = BytesIO()
    Image.new("RGB", size, color).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def make_png():
    """Factory: make_png((w, h), color) -> encoded image bytes."""
    return _png


@pytest.fixture
def qr_data_url():
    """Solid blue stand-in for a QR code, as an inline data URL."""
    return "data:image/png;base64," + base64.b64encode(_png((50, 50), (0, 0, 255))).decode("ascii")
