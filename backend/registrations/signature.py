"""Signature capture and signature data URL handling.

`SignaturePad` is the drawing surface behind the signature modal: it keeps an
opaque white Pillow raster the size of the displayed canvas times the device
pixel ratio and strokes black round-capped lines into it as pointer input
arrives. Input is a small state machine (idle -> drawing -> idle) fed by
begin/move/end from any pointer source.

The module-level helpers normalize and decode the `data:` URLs that travel in
the `signature` field of a registration.
"""
import base64
import binascii
import io
import logging
import re
from dataclasses import dataclass
from typing import Optional, Tuple

from PIL import Image, ImageDraw

from .exceptions import SignatureError, SignaturePadConfigError

logger = logging.getLogger(__name__)

PNG_DATA_URL_PREFIX = 'data:image/png;base64,'

_IMAGE_MEDIA_TYPE_RE = re.compile(r'^data:image/[^;,]*')

MIN_DISPLAY_WIDTH = 300
MIN_DISPLAY_HEIGHT = 150
STROKE_WIDTH = 2
BACKGROUND = (255, 255, 255)
INK = (0, 0, 0)


def normalize_signature(value: Optional[str]) -> str:
    """Return `value` as a PNG-labelled data URL.

    Raw base64 is wrapped, any `data:image/<subtype>` label is renamed to
    `data:image/png` (the payload is left as is). A `data:` URL carrying a
    non-image media type is rejected.
    """
    if not value:
        return ''
    if not value.startswith('data:'):
        return PNG_DATA_URL_PREFIX + value
    if not value.startswith('data:image/'):
        media_type = value[len('data:'):].split(',', 1)[0].split(';', 1)[0]
        raise SignatureError(f"signature must be an image, got '{media_type or 'text/plain'}'")
    return _IMAGE_MEDIA_TYPE_RE.sub('data:image/png', value, count=1)


def decode_signature(value: str) -> bytes:
    """Decode the payload of a signature data URL."""
    if not value:
        raise SignatureError('signature is empty')
    header, sep, payload = value.partition(',')
    if not sep or not header.startswith('data:'):
        raise SignatureError('signature is not a data URL')
    if not header.endswith(';base64'):
        raise SignatureError('signature payload is not base64 encoded')
    try:
        return base64.b64decode(''.join(payload.split()), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise SignatureError(f'signature payload is not valid base64: {exc}') from exc


def encode_png_data_url(png_bytes: bytes) -> str:
    return PNG_DATA_URL_PREFIX + base64.b64encode(png_bytes).decode('ascii')


@dataclass(frozen=True)
class Surface:
    """Displayed size of the drawing canvas and the device pixel ratio."""

    width: float
    height: float
    pixel_ratio: float = 1.0

    @property
    def ratio(self) -> float:
        return max(self.pixel_ratio or 1.0, 1.0)

    @property
    def display_size(self) -> Tuple[int, int]:
        return max(int(self.width), MIN_DISPLAY_WIDTH), max(int(self.height), MIN_DISPLAY_HEIGHT)

    @property
    def raster_size(self) -> Tuple[int, int]:
        width, height = self.display_size
        return int(width * self.ratio), int(height * self.ratio)


class SignaturePad:
    IDLE = 'idle'
    DRAWING = 'drawing'

    def __init__(self, surface: Optional[Surface]) -> None:
        if surface is None:
            logger.error('Signature pad set up without a drawing surface')
            raise SignaturePadConfigError('signature pad requires a drawing surface')
        self.visible = False
        self._state = self.IDLE
        self._last: Optional[Tuple[float, float]] = None
        self._init_surface(surface)

    @property
    def state(self) -> str:
        return self._state

    @property
    def size(self) -> Tuple[int, int]:
        return self.image.size

    def _init_surface(self, surface: Surface, preserve: Optional[Image.Image] = None) -> None:
        self.surface = surface
        self.image = Image.new('RGB', surface.raster_size, BACKGROUND)
        self._draw = ImageDraw.Draw(self.image)
        if preserve is not None:
            self.image.paste(preserve.resize(self.image.size, Image.Resampling.LANCZOS), (0, 0))

    # Visibility: resizes only apply while the pad is on screen.
    def show(self) -> None:
        self.visible = True

    def hide(self) -> None:
        self.visible = False

    def resize(self, surface: Surface) -> bool:
        """Reinitialize at `surface` and redraw the current drawing scaled to fit."""
        if not self.visible:
            return False
        snapshot = self.image.copy()
        self._init_surface(surface, preserve=snapshot)
        logger.debug('Signature pad resized to %sx%s', *self.image.size)
        return True

    # ------ input ------
    def _to_raster(self, x: float, y: float) -> Tuple[float, float]:
        ratio = self.surface.ratio
        return x * ratio, y * ratio

    def _dot(self, point: Tuple[float, float], width: float) -> None:
        r = width / 2.0
        x, y = point
        self._draw.ellipse([x - r, y - r, x + r, y + r], fill=INK)

    def begin(self, x: float, y: float) -> None:
        self._state = self.DRAWING
        self._last = (x, y)

    def move(self, x: float, y: float) -> bool:
        """Extend the current path to (x, y). Ignored unless drawing."""
        if self._state != self.DRAWING or self._last is None:
            return False
        width = STROKE_WIDTH * self.surface.ratio
        start = self._to_raster(*self._last)
        end = self._to_raster(x, y)
        self._draw.line([start, end], fill=INK, width=max(1, round(width)))
        # round caps
        self._dot(start, width)
        self._dot(end, width)
        self._last = (x, y)
        return True

    def end(self) -> None:
        self._state = self.IDLE
        self._last = None

    def clear(self) -> None:
        self._draw.rectangle([(0, 0), self.image.size], fill=BACKGROUND)
        self.end()

    def is_blank(self) -> bool:
        return all(low == 255 for low, _ in self.image.getextrema())

    # ------ export ------
    def to_png(self) -> bytes:
        buf = io.BytesIO()
        self.image.save(buf, format='PNG')
        return buf.getvalue()

    def save(self) -> str:
        """Snapshot the current drawing as a PNG data URL."""
        return encode_png_data_url(self.to_png())
