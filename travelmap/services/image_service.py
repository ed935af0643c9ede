import enum
import io
import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from threading import Lock
from PIL import Image, ImageOps
from flask import current_app, has_app_context
from pillow_heif import register_heif_opener
from .format_service import ImageFamily, detect_family


# HEIC/HEIF uploads from iOS devices
register_heif_opener()

logger = logging.getLogger(__name__)

SUPPORTED_TYPES = {"image/jpeg", "image/png", "image/webp"}

_CANONICAL_TYPES = {
    ImageFamily.JPEG: "image/jpeg",
    ImageFamily.PNG: "image/png",
    ImageFamily.WEBP: "image/webp",
}


_executor = None
_executor_lock = Lock()


def get_executor() -> ThreadPoolExecutor:
    """Bounded pool for decode/encode work, sized by COMPRESS_MAX_WORKERS.

    Build CompressionOptions before submitting; pool threads have no app
    context.
    """
    global _executor
    with _executor_lock:
        if _executor is None:
            workers = 2
            if has_app_context():
                workers = int(current_app.config.get("COMPRESS_MAX_WORKERS", workers))
            _executor = ThreadPoolExecutor(max_workers=max(1, workers), thread_name_prefix="compress")
        return _executor


class ImageVariant(str, enum.Enum):
    # Bounded to IMAGE_MAX_SIDE for map popups and the detail view
    DISPLAY = "display"
    # Original dimensions, used when re-optimizing already stored images
    FULL = "full"


@dataclass(frozen=True)
class CompressionOptions:
    max_side: int = 800
    quality: int = 60
    png_compress_level: int = 9
    thumbnail_size: int = 100
    thumbnail_quality: int = 70

    @classmethod
    def from_config(cls) -> "CompressionOptions":
        """Read tunables from the active app, falling back to the defaults.

        Must be called on the request/job thread; the executor threads that
        run compress_image() have no app context.
        """
        if not has_app_context():
            return cls()
        cfg = current_app.config
        return cls(
            max_side=int(cfg.get("IMAGE_MAX_SIDE", cls.max_side)),
            quality=int(cfg.get("IMAGE_QUALITY", cls.quality)),
            png_compress_level=int(cfg.get("PNG_COMPRESS_LEVEL", cls.png_compress_level)),
            thumbnail_size=int(cfg.get("THUMBNAIL_SIZE", cls.thumbnail_size)),
            thumbnail_quality=int(cfg.get("THUMBNAIL_QUALITY", cls.thumbnail_quality)),
        )


@dataclass
class CompressedImage:
    data: bytes
    mime_type: str
    thumbnail: bytes | None = None
    original_size: int = 0
    compressed_size: int = 0

    @property
    def savings_percent(self) -> float:
        if not self.original_size:
            return 0.0
        return (1 - self.compressed_size / self.original_size) * 100


def format_bytes(size: int, decimals: int = 2) -> str:
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB", "TB"]
    i = min(int(math.floor(math.log(size, 1024))), len(units) - 1)
    value = round(size / (1024 ** i), max(decimals, 0))
    return f"{value:g} {units[i]}"


def _flatten(img: Image.Image) -> Image.Image:
    """Drop alpha onto white so the image can be written as JPEG."""
    if img.mode == "P":
        img = img.convert("RGBA")
    if img.mode in ("RGBA", "LA"):
        background = Image.new("RGB", img.size, (255, 255, 255))
        background.paste(img, mask=img.split()[-1])
        return background
    if img.mode not in ("RGB", "L"):
        return img.convert("RGB")
    return img


def _bound(img: Image.Image, max_side: int) -> tuple[Image.Image, bool]:
    w, h = img.size
    if max(w, h) <= max_side:
        return img, False
    if w > h:
        new_w = max_side
        new_h = max(1, int(h * (max_side / w)))
    else:
        new_h = max_side
        new_w = max(1, int(w * (max_side / h)))
    return img.resize((new_w, new_h), Image.LANCZOS), True


def _encode(img: Image.Image, family: ImageFamily, options: CompressionOptions) -> tuple[bytes, str]:
    out = io.BytesIO()
    if family is ImageFamily.PNG:
        # PNG stays lossless; level 9 plus an optimize pass
        if img.mode not in ("1", "L", "LA", "P", "RGB", "RGBA", "I"):
            img = img.convert("RGBA")
        img.save(out, format="PNG", optimize=True, compress_level=options.png_compress_level)
        return out.getvalue(), "image/png"
    if family is ImageFamily.WEBP:
        if img.mode not in ("RGB", "RGBA"):
            img = img.convert("RGBA" if "A" in img.getbands() else "RGB")
        img.save(out, format="WEBP", quality=options.quality, method=6)
        return out.getvalue(), "image/webp"
    # JPEG, HEIC and every other image type end up as JPEG
    _flatten(img).save(out, format="JPEG", quality=options.quality, optimize=True, progressive=True)
    return out.getvalue(), "image/jpeg"


def _square_thumbnail(img: Image.Image, options: CompressionOptions) -> bytes:
    size = options.thumbnail_size
    thumb = ImageOps.fit(_flatten(img), (size, size), Image.LANCZOS)
    out = io.BytesIO()
    thumb.save(out, format="JPEG", quality=options.thumbnail_quality, optimize=True)
    return out.getvalue()


def create_thumbnail(data: bytes, options: CompressionOptions | None = None) -> bytes | None:
    """Square JPEG thumbnail for sidebars and map markers, None if undecodable."""
    options = options or CompressionOptions.from_config()
    try:
        with Image.open(io.BytesIO(data)) as src:
            return _square_thumbnail(ImageOps.exif_transpose(src), options)
    except Exception:
        logger.warning("Could not create thumbnail from %s", format_bytes(len(data or b"")), exc_info=True)
        return None


def compress_image(
    data: bytes,
    declared_type: str | None,
    family: ImageFamily | None = None,
    variant: ImageVariant = ImageVariant.DISPLAY,
    thumbnail: bool = True,
    options: CompressionOptions | None = None,
) -> CompressedImage:
    """Normalize an image buffer for storage.

    Never raises: if the buffer cannot be decoded or encoded, the original
    bytes and the declared type come back unchanged, without a thumbnail.
    """
    options = options or CompressionOptions.from_config()
    family = family or detect_family(data, declared_type)
    original_size = len(data)
    declared_type = declared_type or ""

    if family is ImageFamily.UNKNOWN:
        logger.info("Not an image we can compress (%r), keeping %s unchanged", declared_type, format_bytes(original_size))
        return CompressedImage(data, declared_type, None, original_size, original_size)

    try:
        with Image.open(io.BytesIO(data)) as src:
            img = ImageOps.exif_transpose(src)
            resized = False
            if variant is ImageVariant.DISPLAY:
                img, resized = _bound(img, options.max_side)
            output, mime_type = _encode(img, family, options)

            thumb = None
            if thumbnail:
                try:
                    thumb = _square_thumbnail(img, options)
                except Exception:
                    logger.warning("Thumbnail creation failed", exc_info=True)
    except Exception:
        logger.warning(
            "Image compression failed for %r (%s), keeping original",
            declared_type, format_bytes(original_size), exc_info=True,
        )
        return CompressedImage(data, declared_type, None, original_size, original_size)

    # Re-encoding an already tight file in its own format can grow it
    if not resized and _CANONICAL_TYPES.get(family) == mime_type and len(output) >= original_size:
        output = data

    if thumb is not None and len(thumb) > len(output):
        thumb = None

    result = CompressedImage(output, mime_type, thumb, original_size, len(output))
    logger.info(
        "Image compressed: %s -> %s (%.2f%% saved), %s -> %s",
        format_bytes(original_size), format_bytes(result.compressed_size),
        result.savings_percent, declared_type or "untyped", mime_type,
    )
    return result
