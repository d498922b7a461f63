"""Image probing and square preview thumbnails using Pillow."""

from __future__ import annotations

import io
from dataclasses import dataclass
from typing import Protocol

from PIL import Image, ImageOps

from assets_backend.config import settings

_PIL_FORMATS = {
    "webp": "WEBP",
    "jpeg": "JPEG",
    "jpg": "JPEG",
    "png": "PNG",
}


@dataclass(frozen=True)
class ImageInfo:
    mime: str
    width: int | None
    height: int | None


class ThumbnailEncoder(Protocol):
    format: str

    def encode(self, source: bytes, size: int, quality: int) -> tuple[bytes, int, int]: ...


def detect_image_content_type(data: bytes) -> str | None:
    """Detect image content type from magic bytes.

    Returns ``None`` if the data does not match a known image signature.
    """
    if data[:3] == b"\xff\xd8\xff":
        return "image/jpeg"
    if data[:8] == b"\x89PNG\r\n\x1a\n":
        return "image/png"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    return None


def probe_image(data: bytes) -> ImageInfo | None:
    mime = detect_image_content_type(data)
    if mime is None:
        return None
    try:
        with Image.open(io.BytesIO(data)) as img:
            width, height = img.size
    except (OSError, Image.DecompressionBombError):
        # Right signature, unreadable body: keep the type, drop the dimensions.
        return ImageInfo(mime=mime, width=None, height=None)
    return ImageInfo(mime=mime, width=int(width), height=int(height))


class PillowThumbnailEncoder:
    def __init__(self, *, fmt: str = "webp") -> None:
        fmt = fmt.lower()
        if fmt not in _PIL_FORMATS:
            raise ValueError(f"unsupported thumbnail format: {fmt}")
        self.format = fmt

    def encode(self, source: bytes, size: int, quality: int) -> tuple[bytes, int, int]:
        """Center-crop ``source`` to a ``size`` x ``size`` square.

        Raises ``OSError`` (``UnidentifiedImageError``) when the bytes are not an image.
        """
        with Image.open(io.BytesIO(source)) as img:
            img = ImageOps.exif_transpose(img)
            pil_format = _PIL_FORMATS[self.format]
            if pil_format == "JPEG":
                img = img.convert("RGB")
            elif img.mode not in ("RGB", "RGBA"):
                img = img.convert("RGBA")

            thumb = ImageOps.fit(img, (size, size), Image.Resampling.LANCZOS)

            buf = io.BytesIO()
            save_kwargs: dict[str, object] = {}
            if pil_format in ("WEBP", "JPEG"):
                save_kwargs["quality"] = quality
            if pil_format in ("JPEG", "PNG"):
                save_kwargs["optimize"] = True
            thumb.save(buf, format=pil_format, **save_kwargs)
            width, height = thumb.size
            return buf.getvalue(), int(width), int(height)


def get_thumbnail_encoder() -> ThumbnailEncoder:
    return PillowThumbnailEncoder(fmt=settings.library_preview_thumb_format)
