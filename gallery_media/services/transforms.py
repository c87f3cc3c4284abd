"""Pillow implementations of the three derivation units.

Each unit is a stateless transform from original image bytes to JPEG bytes.
The geometry helpers (``contain_size``, ``cover_box``, ``watermark_layout``)
are pure so the layout rules can be checked without decoding any image.
"""

import math
from dataclasses import dataclass
from functools import lru_cache
from io import BytesIO
from typing import Any, Protocol

from PIL import Image, ImageDraw, ImageFont, ImageOps, UnidentifiedImageError

from gallery_media.config import Settings
from gallery_media.models.asset import DerivedKind
from gallery_media.services.errors import ProcessingError
from gallery_media.validators.common import validate_label

OUTPUT_CONTENT_TYPE = "image/jpeg"
RESAMPLE = Image.Resampling.LANCZOS

MIN_FONT_SIZE = 24
MAX_FONT_SIZE = 96
FONT_WIDTH_DIVISOR = 20
CHAR_WIDTH_RATIO = 0.5
LINE_HEIGHT_RATIO = 1.2
PADDING_RATIO = 0.02
PLATE_INFLATION = 0.25
PLATE_FILL = (0, 0, 0, 128)
TEXT_FILL = (255, 255, 255, 235)
WATERMARK_PREFIX = "© "
DEFAULT_FONT_PATH = "DejaVuSans.ttf"


class DerivationUnit(Protocol):
    kind: DerivedKind

    def params(self) -> dict[str, Any]: ...

    def render(self, source_bytes: bytes, label: str | None = None) -> bytes: ...


def open_image(data: bytes) -> Image.Image:
    try:
        img = Image.open(BytesIO(data))
        img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as exc:
        raise ProcessingError(f"Unreadable image: {exc}") from exc
    img = ImageOps.exif_transpose(img)
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        flattened = Image.new("RGB", rgba.size, (255, 255, 255))
        flattened.paste(rgba, mask=rgba.getchannel("A"))
        return flattened
    if img.mode != "RGB":
        img = img.convert("RGB")
    return img


def encode_jpeg(img: Image.Image, quality: int) -> bytes:
    buffer = BytesIO()
    img.save(buffer, format="JPEG", quality=quality)
    return buffer.getvalue()


def contain_size(width: int, height: int, box_width: int, box_height: int, upscale: bool = False) -> tuple[int, int]:
    scale = min(box_width / width, box_height / height)
    if not upscale:
        scale = min(scale, 1.0)
    return (
        min(box_width, max(1, round(width * scale))),
        min(box_height, max(1, round(height * scale))),
    )


def cover_box(width: int, height: int, size: int) -> tuple[tuple[int, int], tuple[int, int, int, int]]:
    scale = size / min(width, height)
    scaled = (max(size, round(width * scale)), max(size, round(height * scale)))
    left = (scaled[0] - size) // 2
    top = (scaled[1] - size) // 2
    return scaled, (left, top, left + size, top + size)


def font_size(image_width: int) -> int:
    return max(MIN_FONT_SIZE, min(MAX_FONT_SIZE, image_width // FONT_WIDTH_DIVISOR))


@dataclass(frozen=True)
class WatermarkLayout:
    text: str
    font_size: int
    padding: int
    text_x: float
    text_y: float
    text_width: float
    text_height: float
    plate: tuple[int, int, int, int]


def watermark_layout(image_width: int, image_height: int, label: str) -> WatermarkLayout:
    size = font_size(image_width)
    text = WATERMARK_PREFIX + label
    text_width = len(text) * size * CHAR_WIDTH_RATIO
    text_height = size * LINE_HEIGHT_RATIO
    padding = math.floor(image_width * PADDING_RATIO)
    text_x = max(0, image_width - text_width - padding)
    text_y = max(0, image_height - text_height - padding)

    grow_x = text_width * PLATE_INFLATION / 2
    grow_y = text_height * PLATE_INFLATION / 2
    plate = (
        max(0, math.floor(text_x - grow_x)),
        max(0, math.floor(text_y - grow_y)),
        min(image_width, math.ceil(text_x + text_width + grow_x)),
        min(image_height, math.ceil(text_y + text_height + grow_y)),
    )
    return WatermarkLayout(
        text=text,
        font_size=size,
        padding=padding,
        text_x=text_x,
        text_y=text_y,
        text_width=text_width,
        text_height=text_height,
        plate=plate,
    )


@lru_cache(maxsize=32)
def _load_font(path: str, size: int) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    try:
        return ImageFont.truetype(path, size=size)
    except OSError:
        return ImageFont.load_default(size=size)


class ThumbnailDerivation:
    kind = DerivedKind.THUMBNAIL

    def __init__(self, width: int = 400, height: int = 400, quality: int = 80):
        self.width = width
        self.height = height
        self.quality = quality

    def params(self) -> dict[str, Any]:
        return {"width": self.width, "height": self.height, "quality": self.quality}

    def apply(self, source_bytes: bytes, target_width: int | None = None, target_height: int | None = None) -> bytes:
        box = (target_width or self.width, target_height or self.height)
        img = open_image(source_bytes)
        # Sources already inside the box keep their size.
        size = contain_size(img.width, img.height, *box)
        if size != img.size:
            img = img.resize(size, RESAMPLE)
        return encode_jpeg(img, self.quality)

    def render(self, source_bytes: bytes, label: str | None = None) -> bytes:
        return self.apply(source_bytes)


class IconDerivation:
    kind = DerivedKind.ICON

    def __init__(self, size: int = 128, quality: int = 80):
        self.size = size
        self.quality = quality

    def params(self) -> dict[str, Any]:
        return {"size": self.size, "quality": self.quality}

    def apply(self, source_bytes: bytes, size: int | None = None) -> bytes:
        size = size or self.size
        img = open_image(source_bytes)
        scaled, crop = cover_box(img.width, img.height, size)
        img = img.resize(scaled, RESAMPLE).crop(crop)
        return encode_jpeg(img, self.quality)

    def render(self, source_bytes: bytes, label: str | None = None) -> bytes:
        return self.apply(source_bytes)


class WatermarkDerivation:
    kind = DerivedKind.DISPLAY

    def __init__(self, quality: int = 85, max_size: int | None = 1200, font_path: str = DEFAULT_FONT_PATH):
        self.quality = quality
        self.max_size = max_size
        self.font_path = font_path

    def params(self) -> dict[str, Any]:
        return {"quality": self.quality, "max_size": self.max_size}

    def apply(self, source_bytes: bytes, label: str) -> bytes:
        validate_label(label)
        img = open_image(source_bytes)
        if self.max_size:
            size = contain_size(img.width, img.height, self.max_size, self.max_size)
            if size != img.size:
                img = img.resize(size, RESAMPLE)

        layout = watermark_layout(img.width, img.height, label)
        overlay = Image.new("RGBA", img.size, (0, 0, 0, 0))
        draw = ImageDraw.Draw(overlay)
        draw.rectangle(layout.plate, fill=PLATE_FILL)
        draw.text(
            (math.floor(layout.text_x), math.floor(layout.text_y)),
            layout.text,
            font=_load_font(self.font_path, layout.font_size),
            fill=TEXT_FILL,
        )
        composed = Image.alpha_composite(img.convert("RGBA"), overlay).convert("RGB")
        return encode_jpeg(composed, self.quality)

    def render(self, source_bytes: bytes, label: str | None = None) -> bytes:
        return self.apply(source_bytes, label)


UNIT_CLASSES: dict[DerivedKind, type] = {
    DerivedKind.DISPLAY: WatermarkDerivation,
    DerivedKind.THUMBNAIL: ThumbnailDerivation,
    DerivedKind.ICON: IconDerivation,
}


def build_units(app_settings: Settings) -> dict[DerivedKind, DerivationUnit]:
    return {
        DerivedKind.DISPLAY: WatermarkDerivation(
            quality=app_settings.display_quality,
            max_size=app_settings.display_max_size,
            font_path=app_settings.watermark_font_path,
        ),
        DerivedKind.THUMBNAIL: ThumbnailDerivation(
            width=app_settings.thumbnail_width,
            height=app_settings.thumbnail_height,
            quality=app_settings.thumbnail_quality,
        ),
        DerivedKind.ICON: IconDerivation(size=app_settings.icon_size, quality=app_settings.icon_quality),
    }


def unit_from_params(
    kind: DerivedKind,
    kind_params: dict[str, Any],
    font_path: str = DEFAULT_FONT_PATH,
) -> DerivationUnit:
    # The font comes from the worker's own settings, never from the request.
    if "font_path" in kind_params:
        raise ProcessingError(f"Invalid parameters for {kind.value}: font_path is not accepted")
    extra = {"font_path": font_path} if kind == DerivedKind.DISPLAY else {}
    try:
        return UNIT_CLASSES[kind](**kind_params, **extra)
    except TypeError as exc:
        raise ProcessingError(f"Invalid parameters for {kind.value}: {exc}") from exc
