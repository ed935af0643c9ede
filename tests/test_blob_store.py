import base64
import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from travelmap.extensions import db
from travelmap.services.blob_store import (
    DecodeFailure, ImageAsset, LocationImageStore, LocationNotFound, StoreWriteError, decode_value,
)
from conftest import make_image


def _raw(table, location_id, column):
    with db.engine.connect() as conn:
        return conn.execute(text(f"SELECT {column} FROM {table} WHERE id = :id"), {"id": location_id}).scalar()


def test_write_then_read_round_trip(store, add_location):
    location_id = add_location()
    jpeg = make_image("JPEG", size=(64, 48))
    thumb = jpeg[:10]
    store.write(location_id, ImageAsset(jpeg, "image/jpeg", thumb))

    asset = store.read(location_id)
    assert asset.data == jpeg
    assert asset.mime_type == "image/jpeg"
    assert asset.thumbnail == thumb


def test_forward_writes_are_base64_text(store, add_location):
    location_id = add_location()
    png = make_image("PNG", size=(8, 8))
    store.write(location_id, ImageAsset(png, "image/png"))
    assert _raw("locations", location_id, "image") == base64.b64encode(png).decode("ascii")
    assert _raw("locations", location_id, "image_type") == "image/png"
    assert _raw("locations", location_id, "thumbnail") is None


def test_write_replaces_previous_thumbnail(store, add_location):
    location_id = add_location()
    jpeg = make_image("JPEG", size=(16, 16))
    store.write(location_id, ImageAsset(jpeg, "image/jpeg", b"old-thumb"))
    store.write(location_id, ImageAsset(jpeg, "image/jpeg"))
    assert store.read(location_id).thumbnail is None


def test_empty_string_and_null_read_as_absent(store, add_location):
    empty_id = add_location(image="")
    null_id = add_location(image=None)
    assert store.read(empty_id) is None
    assert store.read(null_id) is None


def test_undecodable_value_reads_as_absent(store, add_location):
    location_id = add_location(image="/uploads/1699999999-photo.jpg")
    assert store.read(location_id) is None
    missing = store.missing_images()
    assert [m.location_id for m in missing] == [location_id]
    assert missing[0].legacy_path == "/uploads/1699999999-photo.jpg"
    assert store.ids_with_images() == [location_id]


def test_legacy_column_counts_as_stored_image(app, binary_table):
    with db.engine.begin() as conn:
        conn.execute(text("INSERT INTO binary_locations (id, name, image_data) VALUES (1, 'Evora', :v)"), {"v": make_image("JPEG", size=(8, 8))})
        conn.execute(text("INSERT INTO binary_locations (id, name, image_data) VALUES (2, 'Tavira', NULL)"))
    store = LocationImageStore(db.engine, binary_table)
    assert store.missing_image_ids() == [2]
    assert store.ids_with_images() == [1]


def test_unknown_location(store):
    with pytest.raises(LocationNotFound):
        store.read(9999)
    with pytest.raises(LocationNotFound):
        store.write(9999, ImageAsset(b"x", "image/jpeg"))
    assert store.exists(9999) is False


def test_data_uri_values_are_read(store, add_location):
    png = make_image("PNG", size=(8, 8))
    uri = "data:image/png;base64," + base64.b64encode(png).decode("ascii")
    location_id = add_location(image=uri)
    asset = store.read(location_id)
    assert asset.data == png
    assert asset.mime_type == "image/png"


def test_missing_type_is_sniffed(store, add_location):
    png = make_image("PNG", size=(8, 8))
    location_id = add_location(image=base64.b64encode(png).decode("ascii"), image_type=None)
    assert store.read(location_id).mime_type == "image/png"


def test_old_schema_write_skips_missing_columns(app, legacy_table):
    with db.engine.begin() as conn:
        conn.execute(text("INSERT INTO legacy_locations (id, name, image) VALUES (1, 'Porto', NULL)"))
    store = LocationImageStore(db.engine, legacy_table)
    assert store.columns() == {"id", "name", "image"}

    jpeg = make_image("JPEG", size=(32, 32))
    store.write(1, ImageAsset(jpeg, "image/jpeg", b"thumb"))

    asset = store.read(1)
    assert asset.data == jpeg
    assert asset.mime_type == "image/jpeg"
    assert asset.thumbnail is None
    assert [m.legacy_path for m in store.missing_images()] == []


def test_binary_columns_are_written_natively(app, binary_table):
    with db.engine.begin() as conn:
        conn.execute(text("INSERT INTO binary_locations (id, name) VALUES (1, 'Faro')"))
    store = LocationImageStore(db.engine, binary_table)
    webp = make_image("WEBP", size=(16, 16))
    store.write(1, ImageAsset(webp, "image/webp", b"\xff\xd8\xffthumb"))

    assert bytes(_raw(binary_table, 1, "image")) == webp
    asset = store.read(1)
    assert asset.data == webp
    assert asset.mime_type == "image/webp"
    assert asset.thumbnail == b"\xff\xd8\xffthumb"


def test_mixed_representations_in_one_table(app, binary_table):
    jpeg = make_image("JPEG", size=(16, 16))
    b64 = base64.b64encode(jpeg)
    with db.engine.begin() as conn:
        conn.execute(text("INSERT INTO binary_locations (id, name, image) VALUES (1, 'native', :v)"), {"v": jpeg})
        # base64 text that an older writer pushed into the BYTEA column
        conn.execute(text("INSERT INTO binary_locations (id, name, image) VALUES (2, 'b64', :v)"), {"v": b64})
        # only the legacy image_data column is populated
        conn.execute(text("INSERT INTO binary_locations (id, name, image, image_data) VALUES (3, 'legacy', NULL, :v)"), {"v": jpeg})

    store = LocationImageStore(db.engine, binary_table)
    for location_id in (1, 2, 3):
        asset = store.read(location_id)
        assert asset.data == jpeg
        assert asset.mime_type == "image/jpeg"


def test_selection_queries(store, add_location):
    with_image = add_location(image=base64.b64encode(make_image("JPEG", size=(8, 8))).decode("ascii"))
    empty = add_location(image="", image_path="/uploads/a.jpg")
    null = add_location(image=None)

    missing = store.missing_images()
    assert [m.location_id for m in missing] == [empty, null]
    assert missing[0].legacy_path == "/uploads/a.jpg"
    assert store.missing_image_ids() == [empty, null]
    assert store.ids_with_images() == [with_image]


class _DisconnectedEngine:
    def begin(self):
        raise OperationalError("UPDATE locations", {}, Exception("connection lost"))


def test_write_failure_is_surfaced(store, add_location):
    location_id = add_location()
    store.table()
    store.engine = _DisconnectedEngine()
    with pytest.raises(StoreWriteError) as exc_info:
        store.write(location_id, ImageAsset(b"data", "image/jpeg"))
    assert isinstance(exc_info.value.__cause__, OperationalError)


def test_missing_table_is_a_write_error(app):
    store = LocationImageStore(db.engine, "no_such_table")
    with pytest.raises(StoreWriteError):
        store.write(1, ImageAsset(b"data", "image/jpeg"))


def test_decode_value():
    assert decode_value(None) is None
    assert decode_value("") is None
    assert decode_value(b"") is None
    assert decode_value("  ") is None
    assert decode_value(base64.b64encode(b"abc").decode()).data == b"abc"
    assert decode_value(b"\x00\x01\x02").data == b"\x00\x01\x02"
    with pytest.raises(DecodeFailure):
        decode_value("not base64!")
    with pytest.raises(DecodeFailure):
        decode_value("data:image/png,rawtext")
