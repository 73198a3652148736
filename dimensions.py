"""
Template dimension validation.

A template is accepted only when its decoded size is exactly one of the
allowed tiers. All tiers share the 3000:4200 aspect ratio; nothing is cropped
or interpolated to make an upload fit.
"""

from io import BytesIO
from typing import NamedTuple, Optional

from config import (
    ALLOWED_DIMENSIONS,
    ALLOWED_MIME_TYPES,
    ASPECT_RATIO_TOLERANCE,
    MAX_TEMPLATE_BYTES,
    REQUIRED_ASPECT_RATIO,
)
from errors import DimensionError, UploadRejected


class AllowedDimension(NamedTuple):
    width: int
    height: int

    def __str__(self) -> str:
        return f"{self.width}x{self.height}"


ALLOWED_TIERS = tuple(AllowedDimension(w, h) for w, h in ALLOWED_DIMENSIONS)


def format_dimension_list() -> str:
    return ", ".join(str(d) for d in ALLOWED_TIERS)


def dimension_error_message(width: int, height: int) -> str:
    """Build the diagnostic shown when an upload has the wrong size."""
    message = (
        f"Image dimensions must be exactly one of: {format_dimension_list()}. "
        f"Your image is {width}x{height} pixels."
    )

    if width > 0 and height > 0:
        actual_ratio = width / height
        if abs(REQUIRED_ASPECT_RATIO - actual_ratio) > ASPECT_RATIO_TOLERANCE:
            message += (
                f"\n\nAspect ratio mismatch: Your image ratio is {actual_ratio:.3f}, "
                f"required is {REQUIRED_ASPECT_RATIO:.3f} "
                f"(difference {abs(REQUIRED_ASPECT_RATIO - actual_ratio):.3f})"
            )

    message += (
        "\n\nTo fix this:"
        "\n• Resize your image to one of the allowed dimensions above"
        f"\n• Maintain the aspect ratio of 3000:4200 ({REQUIRED_ASPECT_RATIO:.3f})"
        "\n• Use an image editing tool like Photoshop, GIMP, or online resizers"
    )
    message += (
        "\n\nRecommended dimensions:"
        "\n• 1500x2100 pixels (recommended for web)"
        "\n• 1000x1400 pixels (good for testing)"
        "\n• 3000x4200 pixels (best for printing)"
    )
    return message


def validate_dimensions(width: int, height: int) -> AllowedDimension:
    """
    Return the matching tier for (width, height).

    Raises DimensionError with the full diagnostic when there is no exact match.
    """
    for tier in ALLOWED_TIERS:
        if width == tier.width and height == tier.height:
            return tier
    raise DimensionError(
        dimension_error_message(width, height),
        width=width,
        height=height,
        allowed_dimensions=ALLOWED_DIMENSIONS,
    )


def read_image_size(data: bytes) -> AllowedDimension:
    """Read (width, height) from the image container header."""
    from PIL import Image, UnidentifiedImageError

    try:
        with Image.open(BytesIO(data)) as img:
            width, height = img.size
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise UploadRejected(f"Invalid image file: {e}") from e
    return AllowedDimension(int(width), int(height))


def validate_upload(data: bytes, mime_type: Optional[str]) -> AllowedDimension:
    """
    Validate a template upload: MIME type, then byte size, then dimensions.

    Each check short-circuits, so an oversized file is never decoded.
    """
    mime = (mime_type or "").strip().lower()
    if mime not in ALLOWED_MIME_TYPES:
        raise UploadRejected("Please select a valid image file (JPEG, PNG, JPG, or GIF)")

    if len(data) > MAX_TEMPLATE_BYTES:
        limit_mb = MAX_TEMPLATE_BYTES / 1024 / 1024
        raise UploadRejected(
            f"File size must be less than {limit_mb:.0f}MB (got {len(data) / 1024 / 1024:.1f}MB)"
        )

    size = read_image_size(data)
    return validate_dimensions(size.width, size.height)
