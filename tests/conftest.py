import io
import os
import pytest
from PIL import Image
from sqlalchemy import text
from travelmap import create_app
from travelmap.extensions import db
from travelmap.models import Location
from travelmap.services.blob_store import LocationImageStore


def make_image(fmt="JPEG", size=(1200, 900), mode="RGB", noise=False, **save_kwargs) -> bytes:
    if noise:
        img = Image.frombytes("RGB", size, os.urandom(size[0] * size[1] * 3))
        if mode != "RGB":
            img = img.convert(mode)
    else:
        img = Image.new(mode, size, (200, 120, 40, 255)[: len(mode)] if mode in ("RGB", "RGBA") else 128)
    out = io.BytesIO()
    img.save(out, format=fmt, **save_kwargs)
    return out.getvalue()


class MappingResolver:
    """Resolves legacy references from an in-memory dict."""

    def __init__(self, blobs=None):
        self.blobs = dict(blobs or {})

    def resolve(self, path):
        return self.blobs.get(path) or None


@pytest.fixture
def app(tmp_path):
    uploads = tmp_path / "uploads"
    uploads.mkdir()
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "RATELIMIT_ENABLED": False,
        "UPLOADS_DIR": str(uploads),
    })
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def add_location(app):
    def _add(name="Lisbon", **fields):
        loc = Location(name=name, **fields)
        db.session.add(loc)
        db.session.commit()
        return loc.id
    return _add


@pytest.fixture
def store(app):
    return LocationImageStore(db.engine, "locations")


@pytest.fixture
def legacy_table(app):
    """A locations table from before image_type/thumbnail/image_path existed."""
    with db.engine.begin() as conn:
        conn.execute(text("CREATE TABLE legacy_locations (id INTEGER PRIMARY KEY, name TEXT NOT NULL, image TEXT)"))
    yield "legacy_locations"
    with db.engine.begin() as conn:
        conn.execute(text("DROP TABLE legacy_locations"))


@pytest.fixture
def binary_table(app):
    """A locations table storing native binary, with the old image_data column."""
    with db.engine.begin() as conn:
        conn.execute(text(
            "CREATE TABLE binary_locations ("
            "id INTEGER PRIMARY KEY, name TEXT NOT NULL, image BLOB, "
            "image_type VARCHAR(50), thumbnail BLOB, image_data BLOB)"
        ))
    yield "binary_locations"
    with db.engine.begin() as conn:
        conn.execute(text("DROP TABLE binary_locations"))
