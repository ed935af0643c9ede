import base64
import binascii
import logging
from dataclasses import dataclass
from flask import current_app
from sqlalchemy import MetaData, Table, LargeBinary, select, update, and_, or_, func
from sqlalchemy.exc import SQLAlchemyError, NoSuchTableError
from ..extensions import db
from .format_service import sniff_mime_type


logger = logging.getLogger(__name__)

PAYLOAD_COLUMN = "image"
# Written by an older code path as raw BYTEA; read-only here
LEGACY_PAYLOAD_COLUMNS = ("image_data",)
TYPE_COLUMN = "image_type"
THUMBNAIL_COLUMN = "thumbnail"
LEGACY_PATH_COLUMN = "image_path"

DEFAULT_MIME_TYPE = "image/jpeg"
# Payload values shorter than this are decoded while selecting rows to repair
SHORT_VALUE_LENGTH = 1024


class LocationNotFound(Exception):
    def __init__(self, location_id):
        super().__init__(f"Location {location_id} not found")
        self.message = f"Location {location_id} not found"
        self.location_id = location_id


class StoreWriteError(Exception):
    def __init__(self, message):
        super().__init__(message)
        self.message = message


class DecodeFailure(Exception):
    def __init__(self, message):
        super().__init__(message)
        self.message = message


@dataclass
class ImageAsset:
    data: bytes
    mime_type: str
    thumbnail: bytes | None = None


@dataclass
class DecodedValue:
    data: bytes
    mime_type: str | None = None


def _looks_like_image(raw: bytes) -> bool:
    return sniff_mime_type(raw) is not None


def decode_value(value) -> DecodedValue | None:
    """Turn a stored column value into bytes.

    Returns None for NULL and empty values. Raises DecodeFailure when a
    text value is not valid base64.

    Binary values are returned as-is, except when they hold base64 text of an
    image (older writers stored the base64 string in a BYTEA column).
    Text values may be bare base64 or a data URI.
    """
    if value is None:
        return None

    if isinstance(value, (bytes, bytearray, memoryview)):
        raw = bytes(value)
        if not raw:
            return None
        if _looks_like_image(raw):
            return DecodedValue(raw)
        try:
            text = raw.decode("ascii")
        except UnicodeDecodeError:
            return DecodedValue(raw)
        try:
            return decode_value(text)
        except DecodeFailure:
            return DecodedValue(raw)

    text = str(value).strip()
    if not text:
        return None

    mime_type = None
    if text.startswith("data:"):
        header, sep, text = text.partition(",")
        if not sep or ";base64" not in header:
            raise DecodeFailure("Unsupported data URI")
        mime_type = header[len("data:"):].split(";", 1)[0] or None

    try:
        raw = base64.b64decode("".join(text.split()), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecodeFailure(f"Invalid base64 payload: {exc}") from exc
    if not raw:
        return None
    return DecodedValue(raw, mime_type)


def _holds_image(value) -> bool:
    try:
        return decode_value(value) is not None
    except DecodeFailure:
        return False


def _stray_reference(value) -> str | None:
    # Some rows carry the old file reference in the payload column itself
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text or text.startswith("data:"):
        return None
    return text


def _encode_for(column, data: bytes | None):
    if data is None:
        return None
    if isinstance(column.type, LargeBinary):
        return data
    return base64.b64encode(data).decode("ascii")


@dataclass
class MissingImage:
    location_id: int
    legacy_path: str | None = None


class LocationImageStore:
    """Image columns of the locations table, whatever schema version it is.

    The table is reflected once per store instance so that columns added by
    later migrations are used when present and skipped when not.
    """

    def __init__(self, engine, table_name: str = "locations"):
        self.engine = engine
        self.table_name = table_name
        self._table = None

    def table(self) -> Table:
        if self._table is None:
            self._table = Table(self.table_name, MetaData(), autoload_with=self.engine)
        return self._table

    def refresh(self):
        self._table = None

    def columns(self) -> set[str]:
        return set(self.table().c.keys())

    def has_column(self, name: str) -> bool:
        return name in self.columns()

    def _payload_columns(self, table):
        names = (PAYLOAD_COLUMN,) + LEGACY_PAYLOAD_COLUMNS
        return [table.c[name] for name in names if name in table.c]

    def exists(self, location_id) -> bool:
        table = self.table()
        with self.engine.connect() as conn:
            found = conn.execute(select(table.c.id).where(table.c.id == location_id)).first()
        return found is not None

    def write(self, location_id, asset: ImageAsset):
        """Replace the stored image of one record in a single UPDATE."""
        try:
            table = self.table()
        except NoSuchTableError as exc:
            raise StoreWriteError(f"Table {self.table_name!r} does not exist") from exc
        except SQLAlchemyError as exc:
            raise StoreWriteError(f"Could not inspect {self.table_name!r}: {exc}") from exc
        if PAYLOAD_COLUMN not in table.c:
            raise StoreWriteError(f"Table {self.table_name!r} has no {PAYLOAD_COLUMN!r} column")

        values = {PAYLOAD_COLUMN: _encode_for(table.c[PAYLOAD_COLUMN], asset.data)}
        skipped = []
        if TYPE_COLUMN in table.c:
            values[TYPE_COLUMN] = asset.mime_type
        else:
            skipped.append(TYPE_COLUMN)
        if THUMBNAIL_COLUMN in table.c:
            values[THUMBNAIL_COLUMN] = _encode_for(table.c[THUMBNAIL_COLUMN], asset.thumbnail)
        elif asset.thumbnail is not None:
            skipped.append(THUMBNAIL_COLUMN)
        if skipped:
            logger.warning("Columns %s missing from %s, writing image of location %s without them", ", ".join(skipped), self.table_name, location_id)

        stmt = update(table).where(table.c.id == location_id).values(**values)
        try:
            with self.engine.begin() as conn:
                matched = conn.execute(stmt).rowcount
        except SQLAlchemyError as exc:
            raise StoreWriteError(f"Could not store image for location {location_id}: {exc}") from exc
        if matched == 0:
            raise LocationNotFound(location_id)
        logger.debug("Stored %d bytes (%s) for location %s", len(asset.data), asset.mime_type, location_id)

    def read(self, location_id) -> ImageAsset | None:
        table = self.table()
        payload_columns = self._payload_columns(table)
        wanted = [table.c.id] + payload_columns
        wanted += [table.c[name] for name in (TYPE_COLUMN, THUMBNAIL_COLUMN) if name in table.c]

        with self.engine.connect() as conn:
            row = conn.execute(select(*wanted).where(table.c.id == location_id)).mappings().first()
        if row is None:
            raise LocationNotFound(location_id)

        decoded = None
        for column in payload_columns:
            decoded = self._decode(row[column.name], location_id, column.name)
            if decoded is not None:
                break
        if decoded is None:
            return None

        mime_type = row.get(TYPE_COLUMN) or decoded.mime_type or sniff_mime_type(decoded.data) or DEFAULT_MIME_TYPE
        thumb = self._decode(row.get(THUMBNAIL_COLUMN), location_id, THUMBNAIL_COLUMN)
        return ImageAsset(decoded.data, mime_type, thumb.data if thumb else None)

    def _decode(self, value, location_id, column_name):
        try:
            return decode_value(value)
        except DecodeFailure as exc:
            logger.warning("Unreadable %s for location %s: %s", column_name, location_id, exc.message)
            return None

    def _empty(self, column):
        return or_(column.is_(None), func.length(column) == 0)

    def _filled(self, column):
        return and_(column.is_not(None), func.length(column) > 0)

    def missing_images(self) -> list[MissingImage]:
        """Records without a readable image in any payload column.

        Evaluated fresh on every call. Besides NULL/empty rows this picks up
        short values that do not decode, such as whitespace or a leftover
        "/uploads/..." reference written where the payload belongs. Such a
        reference is used as the legacy path when image_path is empty.
        """
        table = self.table()
        if PAYLOAD_COLUMN not in table.c:
            return []
        payload_columns = self._payload_columns(table)
        has_path = LEGACY_PATH_COLUMN in table.c
        cols = [table.c.id] + payload_columns + ([table.c[LEGACY_PATH_COLUMN]] if has_path else [])
        unfilled = and_(*[self._empty(column) for column in payload_columns])
        short = func.length(table.c[PAYLOAD_COLUMN]) < SHORT_VALUE_LENGTH
        stmt = select(*cols).where(or_(unfilled, short)).order_by(table.c.id)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).mappings().all()

        missing = []
        for row in rows:
            if any(_holds_image(row[column.name]) for column in payload_columns):
                continue
            legacy_path = row.get(LEGACY_PATH_COLUMN) or _stray_reference(row[PAYLOAD_COLUMN])
            missing.append(MissingImage(row["id"], legacy_path))
        return missing

    def missing_image_ids(self) -> list[int]:
        return [m.location_id for m in self.missing_images()]

    def ids_with_images(self) -> list[int]:
        table = self.table()
        if PAYLOAD_COLUMN not in table.c:
            return []
        filled = or_(*[self._filled(column) for column in self._payload_columns(table)])
        stmt = select(table.c.id).where(filled).order_by(table.c.id)
        with self.engine.connect() as conn:
            return [row[0] for row in conn.execute(stmt)]


def get_image_store() -> LocationImageStore:
    return LocationImageStore(db.engine, current_app.config.get("LOCATIONS_TABLE", "locations"))
