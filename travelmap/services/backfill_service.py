import logging
import mimetypes
from dataclasses import dataclass, field
from .blob_store import ImageAsset, LocationImageStore, THUMBNAIL_COLUMN
from .image_service import SUPPORTED_TYPES, CompressionOptions, ImageVariant, compress_image, create_thumbnail
from ..utils.resolvers import BlobResolver


logger = logging.getLogger(__name__)


@dataclass
class BackfillReport:
    attempted: int = 0
    succeeded: int = 0
    fallback_ids: list = field(default_factory=list)
    failed_ids: list = field(default_factory=list)

    def __str__(self):
        return f"{self.succeeded} succeeded of {self.attempted} attempted"


@dataclass
class OptimizeReport:
    examined: int = 0
    optimized: int = 0
    failed_ids: list = field(default_factory=list)


@dataclass
class ThumbnailReport:
    examined: int = 0
    generated: int = 0
    failed_ids: list = field(default_factory=list)


def _compress_legacy(path: str, data: bytes, options: CompressionOptions) -> ImageAsset | None:
    declared = mimetypes.guess_type(path)[0]
    result = compress_image(data, declared, options=options)
    if result.mime_type not in SUPPORTED_TYPES:
        return None
    return ImageAsset(result.data, result.mime_type, result.thumbnail)


def run_backfill(store: LocationImageStore, resolver: BlobResolver, fallback: ImageAsset) -> BackfillReport:
    """Give every location without a stored image one.

    The legacy file reference is used when it still resolves; otherwise the
    fallback image is written so the record is not picked up again. Records
    are handled one at a time and a failure only affects its own record.
    """
    options = CompressionOptions.from_config()
    report = BackfillReport()

    fallback_result = compress_image(fallback.data, fallback.mime_type, options=options)
    fallback_asset = ImageAsset(fallback_result.data, fallback_result.mime_type, fallback_result.thumbnail)

    missing = store.missing_images()
    logger.info("%d locations without an image", len(missing))

    for record in missing:
        report.attempted += 1
        try:
            asset = None
            if record.legacy_path:
                data = resolver.resolve(record.legacy_path)
                if data:
                    asset = _compress_legacy(record.legacy_path, data, options)
            if asset is not None:
                store.write(record.location_id, asset)
                report.succeeded += 1
                logger.info("Location %s restored from %s", record.location_id, record.legacy_path)
            else:
                store.write(record.location_id, fallback_asset)
                report.fallback_ids.append(record.location_id)
                logger.warning("Location %s: legacy image %r unavailable, fallback stored", record.location_id, record.legacy_path)
        except Exception:
            report.failed_ids.append(record.location_id)
            logger.exception("Repair failed for location %s", record.location_id)

    logger.info("Backfill finished: %s", report)
    return report


def optimize_images(store: LocationImageStore) -> OptimizeReport:
    """Recompress stored images, keeping the new version only if it is smaller."""
    options = CompressionOptions.from_config()
    report = OptimizeReport()
    for location_id in store.ids_with_images():
        report.examined += 1
        try:
            asset = store.read(location_id)
            if asset is None:
                continue
            result = compress_image(asset.data, asset.mime_type, variant=ImageVariant.FULL, thumbnail=False, options=options)
            if len(result.data) >= len(asset.data):
                continue
            thumb = asset.thumbnail if asset.thumbnail and len(asset.thumbnail) <= len(result.data) else None
            store.write(location_id, ImageAsset(result.data, result.mime_type, thumb))
            report.optimized += 1
        except Exception:
            report.failed_ids.append(location_id)
            logger.exception("Optimizing image of location %s failed", location_id)
    logger.info("Optimized %d of %d images", report.optimized, report.examined)
    return report


def generate_thumbnails(store: LocationImageStore, overwrite: bool = False) -> ThumbnailReport:
    report = ThumbnailReport()
    if not store.has_column(THUMBNAIL_COLUMN):
        logger.warning("%s has no %s column, nothing to do", store.table_name, THUMBNAIL_COLUMN)
        return report

    options = CompressionOptions.from_config()
    for location_id in store.ids_with_images():
        report.examined += 1
        try:
            asset = store.read(location_id)
            if asset is None or (asset.thumbnail and not overwrite):
                continue
            thumb = create_thumbnail(asset.data, options)
            if thumb is None or len(thumb) > len(asset.data):
                continue
            store.write(location_id, ImageAsset(asset.data, asset.mime_type, thumb))
            report.generated += 1
        except Exception:
            report.failed_ids.append(location_id)
            logger.exception("Thumbnail generation failed for location %s", location_id)
    logger.info("Generated %d thumbnails (%d images examined)", report.generated, report.examined)
    return report
