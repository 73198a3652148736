"""
Asynchronous image acquisition for the card background and the QR overlay.

Each image lives in its own ImageSlot with an independent readiness state.
Every request bumps the slot's generation; completions carrying an older
generation are dropped, so a slow decode for a previous guest can never paint
over the current one.

The background is observed by polling (decoded and non-zero size) after a
short grace delay, bounded by BACKGROUND_LOAD_TIMEOUT_S. The QR overlay is
event-driven: its task reports success or failure through a callback.

Methods that start work must be called from inside a running event loop.
"""

import asyncio
import base64
import binascii
import logging
from enum import Enum
from io import BytesIO
from typing import Any, Callable, List, NamedTuple, Optional, Set, Union

from config import (
    BACKGROUND_GRACE_S,
    BACKGROUND_LOAD_TIMEOUT_S,
    BACKGROUND_POLL_INTERVAL_S,
    STORAGE_BASE_URL,
)
from errors import (
    BackendError,
    BackgroundDecodeFailed,
    BackgroundLoadTimeout,
    ImageDecodeError,
    QrDecodeFailed,
)

logger = logging.getLogger(__name__)

QR_INLINE = "inline"
QR_REMOTE = "remote"
QR_ABSENT = "absent"


class ImageReadiness(Enum):
    NOT_REQUESTED = "not_requested"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


def _payload_bytes(payload: Union[bytes, bytearray, str]) -> bytes:
    """Accept raw bytes, a bare base64 string or a data: URL."""
    if isinstance(payload, (bytes, bytearray)):
        raw = bytes(payload)
    elif isinstance(payload, str):
        text = payload.strip()
        if text.startswith("data:"):
            header, _, text = text.partition(",")
            if ";base64" not in header:
                raise ImageDecodeError("Only base64 data URLs are supported")
        try:
            raw = base64.b64decode("".join(text.split()), validate=True)
        except (binascii.Error, ValueError) as e:
            raise ImageDecodeError(f"Invalid base64 image payload: {e}") from e
    else:
        raise ImageDecodeError(f"Unsupported image payload type: {type(payload).__name__}")
    if not raw:
        raise ImageDecodeError("Empty image payload")
    return raw


def decode_image_bytes(payload: Union[bytes, bytearray, str]) -> "Image.Image":
    """
    Fully decode an image payload into an RGB Pillow image.

    Transparent pixels are flattened onto white so the result is the same
    regardless of the source format (PNG, GIF palette, JPEG).
    """
    from PIL import Image, UnidentifiedImageError

    raw = _payload_bytes(payload)
    try:
        with Image.open(BytesIO(raw)) as src:
            src.load()
            rgba = src.convert("RGBA")
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise ImageDecodeError(f"Could not decode image: {e}") from e

    flat = Image.new("RGB", rgba.size, (255, 255, 255))
    flat.paste(rgba, mask=rgba.getchannel("A"))
    return flat


class QrSource(NamedTuple):
    kind: str
    value: Optional[str] = None

    @property
    def identity(self):
        return (self.kind, self.value)


def build_qr_url(path: str, storage_base_url: str = STORAGE_BASE_URL) -> str:
    """Absolute URL for a stored QR path; absolute http(s) paths pass through."""
    path = path.strip()
    if path.startswith("http"):
        return path
    return f"{storage_base_url.rstrip('/')}/storage/{path.lstrip('/')}"


def resolve_qr_source(
    qr_code_base64: Optional[str],
    qr_code_path: Optional[str],
    storage_base_url: str = STORAGE_BASE_URL,
) -> QrSource:
    """Inline payload first, then a constructed URL, otherwise absent."""
    if qr_code_base64 and str(qr_code_base64).strip():
        return QrSource(QR_INLINE, str(qr_code_base64).strip())
    if qr_code_path and str(qr_code_path).strip():
        return QrSource(QR_REMOTE, build_qr_url(str(qr_code_path), storage_base_url))
    return QrSource(QR_ABSENT)


class ImageSlot:
    """Readiness-tracked holder for one decoded image."""

    def __init__(self, label: str):
        self.label = label
        self.state = ImageReadiness.NOT_REQUESTED
        self.image = None
        self.error: Optional[Exception] = None
        self.generation = 0
        self.identity: Any = None

    def begin(self, identity: Any = None) -> int:
        self.generation += 1
        self.state = ImageReadiness.LOADING
        self.image = None
        self.error = None
        self.identity = identity
        return self.generation

    def reset(self, identity: Any = None) -> int:
        self.generation += 1
        self.state = ImageReadiness.NOT_REQUESTED
        self.image = None
        self.error = None
        self.identity = identity
        return self.generation

    def _accepts(self, generation: int) -> bool:
        return generation == self.generation and self.state is ImageReadiness.LOADING

    def offer(self, generation: int, image) -> bool:
        """Attach a decoded image without changing state (the watcher promotes it)."""
        if not self._accepts(generation):
            return False
        self.image = image
        return True

    def mark_ready(self, generation: int) -> bool:
        if not self._accepts(generation) or not self.is_decoded():
            return False
        self.state = ImageReadiness.READY
        return True

    def resolve(self, generation: int, image) -> bool:
        return self.offer(generation, image) and self.mark_ready(generation)

    def fail(self, generation: int, error: Exception) -> bool:
        if not self._accepts(generation):
            return False
        self.state = ImageReadiness.FAILED
        self.image = None
        self.error = error
        return True

    def is_decoded(self) -> bool:
        img = self.image
        return img is not None and img.width > 0 and img.height > 0

    @property
    def ready(self) -> bool:
        return self.state is ImageReadiness.READY

    def __repr__(self) -> str:
        return f"ImageSlot({self.label!r}, state={self.state.value}, generation={self.generation})"


class AcquisitionPipeline:
    """Drives background and QR decodes and reports their transitions."""

    def __init__(
        self,
        *,
        storage_base_url: str = STORAGE_BASE_URL,
        fetch_bytes: Optional[Callable[[str], bytes]] = None,
        grace_s: float = BACKGROUND_GRACE_S,
        poll_interval_s: float = BACKGROUND_POLL_INTERVAL_S,
        load_timeout_s: Optional[float] = BACKGROUND_LOAD_TIMEOUT_S,
        on_background: Optional[Callable[[ImageReadiness], None]] = None,
        on_qr: Optional[Callable[[int, ImageReadiness], None]] = None,
    ):
        if fetch_bytes is None:
            from data_loaders import fetch_image_bytes

            fetch_bytes = fetch_image_bytes
        self.storage_base_url = storage_base_url
        self.background = ImageSlot("background")
        self.qr = ImageSlot("qr")
        self.qr_source = QrSource(QR_ABSENT)
        self.on_background = on_background
        self.on_qr = on_qr
        self._fetch_bytes = fetch_bytes
        self._grace_s = grace_s
        self._poll_interval_s = poll_interval_s
        self._load_timeout_s = load_timeout_s
        self._tasks: Set[asyncio.Task] = set()

    # -- task bookkeeping -------------------------------------------------

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Image acquisition task crashed", exc_info=task.exception())

    def pending(self) -> List[asyncio.Task]:
        return [t for t in self._tasks if not t.done()]

    # -- background -------------------------------------------------------

    def load_background(self, payload, identity: Any = None) -> Optional[asyncio.Task]:
        """
        Start decoding a template. Returns the readiness watcher task, or None
        when the same template identity is already loading or ready.
        """
        slot = self.background
        if (
            identity is not None
            and identity == slot.identity
            and slot.state in (ImageReadiness.LOADING, ImageReadiness.READY)
        ):
            return None
        generation = slot.begin(identity)
        logger.debug("Background decode requested (generation %d)", generation)
        self._spawn(self._decode_background(generation, payload))
        return self._spawn(self._watch_background(generation))

    def clear_background(self) -> None:
        self.background.reset()

    async def _decode_background(self, generation: int, payload) -> None:
        try:
            image = await asyncio.to_thread(decode_image_bytes, payload)
        except ImageDecodeError as e:
            if self.background.fail(generation, BackgroundDecodeFailed(str(e))):
                logger.warning("Background decode failed: %s", e)
                self._notify_background()
            return
        if not self.background.offer(generation, image):
            logger.debug("Discarding stale background decode (generation %d)", generation)

    async def _watch_background(self, generation: int) -> ImageReadiness:
        slot = self.background
        loop = asyncio.get_running_loop()
        deadline = None if self._load_timeout_s is None else loop.time() + self._load_timeout_s
        await asyncio.sleep(self._grace_s)
        while slot.generation == generation and slot.state is ImageReadiness.LOADING:
            if slot.is_decoded():
                slot.mark_ready(generation)
                logger.info("Background ready (%dx%d)", slot.image.width, slot.image.height)
                self._notify_background()
                break
            if deadline is not None and loop.time() >= deadline:
                err = BackgroundLoadTimeout(f"Background not ready after {self._load_timeout_s:g}s")
                slot.fail(generation, err)
                logger.error("%s", err)
                self._notify_background()
                break
            await asyncio.sleep(self._poll_interval_s)
        if slot.generation != generation:
            return ImageReadiness.NOT_REQUESTED
        return slot.state

    def _notify_background(self) -> None:
        if self.on_background is not None:
            self.on_background(self.background.state)

    # -- QR overlay -------------------------------------------------------

    def request_qr(self, source: QrSource) -> Optional[asyncio.Task]:
        """
        Start acquiring a QR image for source. An absent source is a terminal
        state, not a failure; it still invalidates any in-flight request.
        """
        self.qr_source = source
        if source.kind == QR_ABSENT:
            self.qr.reset(source.identity)
            return None
        generation = self.qr.begin(source.identity)
        logger.debug("QR %s acquisition requested (generation %d)", source.kind, generation)
        return self._spawn(self._acquire_qr(generation, source))

    async def _acquire_qr(self, generation: int, source: QrSource) -> None:
        try:
            if source.kind == QR_REMOTE:
                raw = await asyncio.to_thread(self._fetch_bytes, source.value)
            else:
                raw = source.value
            image = await asyncio.to_thread(decode_image_bytes, raw)
        except (ImageDecodeError, BackendError) as e:
            if self.qr.fail(generation, QrDecodeFailed(str(e))):
                logger.warning("QR %s failed: %s", source.kind, e)
                self._notify_qr(generation)
            else:
                logger.debug("Discarding stale QR failure (generation %d)", generation)
            return
        if self.qr.resolve(generation, image):
            self._notify_qr(generation)
        else:
            logger.debug("Discarding stale QR image (generation %d)", generation)

    def _notify_qr(self, generation: int) -> None:
        if self.on_qr is not None:
            self.on_qr(generation, self.qr.state)
