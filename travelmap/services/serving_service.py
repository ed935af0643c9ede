import base64
import logging
import mimetypes
import os
from dataclasses import dataclass
from functools import lru_cache
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from .blob_store import ImageAsset, LocationImageStore, LocationNotFound
from .image_service import CompressionOptions, create_thumbnail, get_executor


logger = logging.getLogger(__name__)

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, private",
    "Pragma": "no-cache",
    "Expires": "0",
}


@dataclass
class ServedImage:
    data: bytes
    mime_type: str
    is_fallback: bool = False


@lru_cache(maxsize=4)
def _load_fallback(path: str) -> ImageAsset:
    with open(path, "rb") as fh:
        data = fh.read()
    mime_type = mimetypes.guess_type(path)[0] or "image/png"
    return ImageAsset(data, mime_type)


def load_fallback(path: str | None = None) -> ImageAsset:
    """The bundled placeholder shown whenever a location has no image."""
    if path is None:
        path = current_app.config["FALLBACK_IMAGE_PATH"]
    return _load_fallback(os.path.abspath(path))


def no_cache_headers() -> dict:
    return dict(NO_CACHE_HEADERS)


def _read_or_none(store: LocationImageStore, location_id) -> ImageAsset | None:
    # LocationNotFound is the only error a reader sees; everything else
    # degrades to the placeholder.
    try:
        return store.read(location_id)
    except LocationNotFound:
        raise
    except SQLAlchemyError:
        logger.exception("Image read failed for location %s, serving fallback", location_id)
        return None


def serve_image(store: LocationImageStore, location_id, fallback: ImageAsset | None = None) -> ServedImage:
    asset = _read_or_none(store, location_id)
    if asset is not None:
        return ServedImage(asset.data, asset.mime_type)
    fallback = fallback or load_fallback()
    logger.info("Location %s has no image, serving fallback", location_id)
    return ServedImage(fallback.data, fallback.mime_type, is_fallback=True)


def _thumbnail_in_pool(data: bytes, options: CompressionOptions) -> bytes | None:
    return get_executor().submit(create_thumbnail, data, options).result()


@lru_cache(maxsize=4)
def _fallback_thumbnail(data: bytes, options: CompressionOptions) -> bytes | None:
    return _thumbnail_in_pool(data, options)


def serve_thumbnail(store: LocationImageStore, location_id, fallback: ImageAsset | None = None) -> ServedImage:
    asset = _read_or_none(store, location_id)
    options = CompressionOptions.from_config()
    if asset is not None:
        if asset.thumbnail:
            return ServedImage(asset.thumbnail, "image/jpeg")
        # Generated for this response only; the thumbnails job persists them
        thumb = _thumbnail_in_pool(asset.data, options)
        if thumb:
            return ServedImage(thumb, "image/jpeg")
        return ServedImage(asset.data, asset.mime_type)

    fallback = fallback or load_fallback()
    thumb = _fallback_thumbnail(fallback.data, options)
    if thumb:
        return ServedImage(thumb, "image/jpeg", is_fallback=True)
    return ServedImage(fallback.data, fallback.mime_type, is_fallback=True)


def image_payload(store: LocationImageStore, location_id, fallback: ImageAsset | None = None) -> dict:
    served = serve_image(store, location_id, fallback)
    return {
        "success": True,
        "imageType": served.mime_type,
        "imageData": base64.b64encode(served.data).decode("ascii"),
    }
