import os


PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__))


class Config:
    """
    Base configuration object.

    Reads from environment at *instance* creation time so that values
    loaded via python-dotenv in create_app() are honored.
    """

    def __init__(self):
        # Environment / mode
        self.ENV = os.getenv("FLASK_ENV", os.getenv("ENV", "development"))
        self.DEBUG = bool(int(os.getenv("FLASK_DEBUG", "0"))) if os.getenv("FLASK_DEBUG") is not None else self.ENV != "production"
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG" if self.DEBUG else "INFO").upper()

        self.SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret")

        # Database: production must point at the real locations database
        uri = os.getenv("SQLALCHEMY_DATABASE_URI") or os.getenv("DATABASE_URL")
        if uri:
            # Heroku/Render style URLs still use the old scheme name
            if uri.startswith("postgres://"):
                uri = "postgresql://" + uri[len("postgres://"):]
            self.SQLALCHEMY_DATABASE_URI = uri
        else:
            if self.ENV == "production":
                raise RuntimeError("SQLALCHEMY_DATABASE_URI must be set in production")
            self.SQLALCHEMY_DATABASE_URI = "sqlite:///dev.db"

        self.SQLALCHEMY_TRACK_MODIFICATIONS = False
        self.SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}
        self.LOCATIONS_TABLE = os.getenv("LOCATIONS_TABLE", "locations")

        # Uploads
        self.MAX_IMAGE_MB = int(os.getenv("MAX_IMAGE_MB", "10"))
        self.MAX_CONTENT_LENGTH = (self.MAX_IMAGE_MB + 1) * 1024 * 1024
        # Directory holding files referenced by the legacy image_path column.
        # On hosts with ephemeral disks most of these references are stale.
        self.UPLOADS_DIR = os.getenv("UPLOADS_DIR", "./uploads")
        self.FALLBACK_IMAGE_PATH = os.getenv("FALLBACK_IMAGE_PATH", os.path.join(PACKAGE_DIR, "static", "placeholder.png"))

        # Compression
        self.IMAGE_MAX_SIDE = int(os.getenv("IMAGE_MAX_SIDE", "800"))
        self.IMAGE_QUALITY = int(os.getenv("IMAGE_QUALITY", "60"))
        self.PNG_COMPRESS_LEVEL = int(os.getenv("PNG_COMPRESS_LEVEL", "9"))
        self.THUMBNAIL_SIZE = int(os.getenv("THUMBNAIL_SIZE", "100"))
        self.THUMBNAIL_QUALITY = int(os.getenv("THUMBNAIL_QUALITY", "70"))
        self.COMPRESS_MAX_WORKERS = int(os.getenv("COMPRESS_MAX_WORKERS", "2"))

        # Rate limiting
        self.RATELIMIT_DEFAULT = os.getenv("RATELIMIT_DEFAULT", "100 per minute")
        self.UPLOAD_RATELIMIT = os.getenv("UPLOAD_RATELIMIT", "10 per minute")
        self.RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")

    def __call__(self):
        # Allows Config() to be passed to app.config.from_object
        return self
