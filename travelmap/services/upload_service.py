import logging
from flask import current_app, has_app_context
from .blob_store import ImageAsset, LocationImageStore, LocationNotFound
from .format_service import ImageFamily, detect_family
from .image_service import CompressionOptions, ImageVariant, compress_image, get_executor


logger = logging.getLogger(__name__)


def ingest_upload(store: LocationImageStore, location_id, data: bytes, declared_type: str | None) -> ImageAsset:
    """Compress an uploaded image and make it the image of one location.

    Raises ValueError for uploads we refuse, LocationNotFound for unknown
    locations and StoreWriteError when the database rejects the write.
    """
    max_mb = int(current_app.config.get("MAX_IMAGE_MB", 10)) if has_app_context() else 10
    if not data:
        raise ValueError("Empty file")
    if len(data) > max_mb * 1024 * 1024:
        raise ValueError("Image exceeds size limit")

    family = detect_family(data, declared_type)
    if family is ImageFamily.UNKNOWN:
        raise ValueError("Unsupported image type")

    if not store.exists(location_id):
        raise LocationNotFound(location_id)

    # Decoding/encoding is CPU bound; keep it off the request thread and
    # bound how many run at once.
    options = CompressionOptions.from_config()
    future = get_executor().submit(compress_image, data, declared_type, family, ImageVariant.DISPLAY, True, options)
    result = future.result()

    asset = ImageAsset(result.data, result.mime_type, result.thumbnail)
    store.write(location_id, asset)
    logger.info("Location %s image updated (%s, %d bytes)", location_id, asset.mime_type, len(asset.data))
    return asset
