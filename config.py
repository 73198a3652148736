"""
Central configuration for the guest card compositor.

Keep runtime-safe (no secrets). Deployment values come from the environment.
"""

import os

# Backend
API_BASE_URL = os.environ.get("CARD_API_BASE_URL", "http://localhost:8000/api").rstrip("/")
STORAGE_BASE_URL = os.environ.get("CARD_STORAGE_BASE_URL", "http://localhost:8000").rstrip("/")
API_TOKEN = os.environ.get("CARD_API_TOKEN", "")
API_TIMEOUT_S = int(os.environ.get("CARD_API_TIMEOUT_S", "30"))
API_MAX_ATTEMPTS = 2

# Template uploads
ALLOWED_DIMENSIONS = (
    (3000, 4200),  # print
    (1500, 2100),  # web
    (1000, 1400),  # testing
    (750, 1050),
    (600, 840),
)
REQUIRED_ASPECT_RATIO = 3000 / 4200
ASPECT_RATIO_TOLERANCE = 0.01
ALLOWED_MIME_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/gif")
MAX_TEMPLATE_BYTES = 2 * 1024 * 1024

# Render surface (always the largest tier)
SURFACE_WIDTH = 3000
SURFACE_HEIGHT = 4200
SURFACE_CLEAR_COLOR = (255, 255, 255)

# Card rendering
NAME_FONT_SIZE = 98  # ~3.27% of surface width
CARD_CLASS_FONT_SIZE = 60
MIN_FONT_SIZE = 12
MAX_FONT_SIZE = 200
NAME_TEXT_COLOR = "#000000"
CARD_CLASS_TEXT_COLOR = "#333333"
QR_SIZE_RATIO = 0.20  # 600px on the 3000px surface
PLACEHOLDER_FILL = (255, 0, 0)
PLACEHOLDER_TEXT_COLOR = (255, 255, 255)
QR_FAILED_LABEL = "QR"
QR_ABSENT_LABEL = "NO QR"
CARD_CLASS_PLACEHOLDER = "CARD CLASS"  # editor preview only, never exported

DEFAULT_POSITIONS = {
    "name_x": 50,
    "name_y": 30,
    "qr_x": 80,
    "qr_y": 70,
    "card_class_x": 20,
    "card_class_y": 90,
}

# Image acquisition
BACKGROUND_GRACE_S = 0.1
BACKGROUND_POLL_INTERVAL_S = 0.2
BACKGROUND_LOAD_TIMEOUT_S = 15.0
RENDER_DEBOUNCE_S = 0.05

# Export (card is 5:7; PDF page in points)
PDF_PAGE_WIDTH_PT = 5 * 72.0
PDF_PAGE_HEIGHT_PT = 7 * 72.0

# UI
MAX_INDIVIDUAL_DOWNLOADS = 10  # <= this: individual downloads + previews; > this: ZIP download
ZIP_SPOOL_MAX_BYTES = 25 * 1024 * 1024  # spill ZIP to disk after ~25MB
PREVIEW_WIDTH = 360
PREVIEW_COLUMNS = 4
PREVIEW_THUMB_WIDTH = 170
