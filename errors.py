"""Error types raised by the card compositor."""

from typing import Optional, Sequence, Tuple


class CardError(Exception):
    """Base class for every error raised here."""


class UploadRejected(CardError):
    """Template upload refused (MIME type, size or dimensions)."""

    def __init__(self, message: str, allowed_dimensions: Optional[Sequence[Tuple[int, int]]] = None):
        super().__init__(message)
        self.allowed_dimensions = list(allowed_dimensions or [])


class DimensionError(UploadRejected):
    """Template dimensions are not one of the allowed tiers."""

    def __init__(self, message: str, width: int, height: int, allowed_dimensions=None):
        super().__init__(message, allowed_dimensions)
        self.width = width
        self.height = height


class ImageDecodeError(CardError):
    """Bytes could not be decoded into a displayable image."""


class BackgroundDecodeFailed(ImageDecodeError):
    pass


class QrDecodeFailed(ImageDecodeError):
    pass


class BackgroundLoadTimeout(CardError):
    """Background never became ready within the poll budget."""


class BackendError(CardError):
    """The REST backend (or local store) failed a fetch or command."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
