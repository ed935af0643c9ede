from datetime import datetime
from .extensions import db


class Location(db.Model):
    """Newest schema of a map location.

    Deployed databases may be older: image_type, thumbnail and image_path
    were added later, and some environments still carry a BYTEA image column
    or a separate image_data column. Image columns are therefore accessed
    through services.blob_store, which reflects the live table instead of
    trusting this model.
    """

    __tablename__ = "locations"
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.Text, nullable=False)
    description = db.Column(db.Text, nullable=True)
    highlight = db.Column(db.Text, nullable=True)
    date = db.Column(db.Text, nullable=True)
    latitude = db.Column(db.Text, nullable=True)
    longitude = db.Column(db.Text, nullable=True)
    # base64 text; see services.blob_store for the read-side dispatch
    image = db.Column(db.Text, nullable=True)
    image_type = db.Column(db.String(50), nullable=True)
    thumbnail = db.Column(db.Text, nullable=True)
    image_path = db.Column(db.String(512), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
