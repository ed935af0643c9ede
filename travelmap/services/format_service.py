import enum


class ImageFamily(str, enum.Enum):
    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"
    HEIC = "heic"
    OTHER = "other"
    UNKNOWN = "unknown"


GENERIC_TYPES = {"", "application/octet-stream", "binary/octet-stream"}

_HEIF_BRANDS = {b"heic", b"heix", b"hevc", b"hevx", b"heim", b"heis", b"mif1", b"msf1", b"heif"}

_FAMILY_MIME = {
    ImageFamily.JPEG: "image/jpeg",
    ImageFamily.PNG: "image/png",
    ImageFamily.WEBP: "image/webp",
    ImageFamily.HEIC: "image/heic",
}


def _sniff(data: bytes) -> ImageFamily | None:
    head = bytes(data[:16])
    if head.startswith(b"\xff\xd8\xff"):
        return ImageFamily.JPEG
    if head.startswith(b"\x89PNG\r\n\x1a\n"):
        return ImageFamily.PNG
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return ImageFamily.WEBP
    if head[4:8] == b"ftyp" and head[8:12] in _HEIF_BRANDS:
        return ImageFamily.HEIC
    if head[:6] in (b"GIF87a", b"GIF89a") or head[:2] == b"BM":
        return ImageFamily.OTHER
    return None


def sniff_mime_type(data) -> str | None:
    """Best-effort MIME type from magic bytes, None when unrecognised."""
    if not data:
        return None
    family = _sniff(data)
    if family is None:
        return None
    if family is ImageFamily.OTHER:
        return "image/gif" if bytes(data[:3]) == b"GIF" else "image/bmp"
    return _FAMILY_MIME[family]


def detect_family(data: bytes, declared_type: str | None) -> ImageFamily:
    """Classify an upload into the family that selects its compression policy.

    The declared type wins whenever it names an image; magic bytes are only
    consulted when the client sent no type or a generic binary one.
    """
    if not data:
        return ImageFamily.UNKNOWN

    declared = (declared_type or "").strip().lower()
    if declared in GENERIC_TYPES:
        sniffed = _sniff(data)
        if sniffed is not None:
            return sniffed
        return ImageFamily.OTHER if not declared else ImageFamily.UNKNOWN

    if "jpeg" in declared or "jpg" in declared:
        return ImageFamily.JPEG
    if "png" in declared:
        return ImageFamily.PNG
    if "webp" in declared:
        return ImageFamily.WEBP
    if "heic" in declared or "heif" in declared:
        return ImageFamily.HEIC
    if declared.startswith("image/"):
        return ImageFamily.OTHER
    return ImageFamily.UNKNOWN
