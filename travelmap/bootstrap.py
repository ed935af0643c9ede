import logging
import os
from contextlib import contextmanager
from flask_migrate import stamp, upgrade
from sqlalchemy import inspect, text
from .extensions import db


logger = logging.getLogger(__name__)

MIGRATION_LOCK_KEY = 734120917

_ENABLED_VALUES = {"1", "true", "yes", "on"}


def auto_migrate_enabled(environ=None) -> bool:
    environ = os.environ if environ is None else environ
    return environ.get("AUTO_MIGRATE", "").strip().lower() in _ENABLED_VALUES


@contextmanager
def migration_lock(engine):
    """Yield True when this process may change the schema.

    On PostgreSQL several web workers boot at once; a session advisory lock
    lets one of them migrate while the rest skip. Other databases always
    yield True.
    """
    if engine.dialect.name != "postgresql":
        yield True
        return
    with engine.connect() as conn:
        acquired = bool(conn.execute(text("SELECT pg_try_advisory_lock(:key)"), {"key": MIGRATION_LOCK_KEY}).scalar())
        try:
            yield acquired
        finally:
            if acquired:
                conn.execute(text("SELECT pg_advisory_unlock(:key)"), {"key": MIGRATION_LOCK_KEY})


def _create_if_missing(engine, table_name: str) -> bool:
    with engine.begin() as conn:
        if inspect(conn).has_table(table_name):
            return False
        db.metadata.create_all(bind=conn)
    return True


def migrate_schema(app) -> str:
    """Bring the database to the latest revision.

    An empty database gets the current models and is stamped at head, an
    existing one is upgraded. Returns "created", "upgraded" or "skipped".
    """
    table_name = app.config.get("LOCATIONS_TABLE", "locations")
    with app.app_context():
        with migration_lock(db.engine) as acquired:
            if not acquired:
                logger.info("Migration lock held by another process, skipping")
                return "skipped"
            if _create_if_missing(db.engine, table_name):
                stamp(revision="head")
                logger.info("Created schema and stamped head")
                return "created"
            upgrade()
            logger.info("Schema upgraded")
            return "upgraded"


def run_startup_migrations(app, environ=None) -> str | None:
    if not auto_migrate_enabled(environ):
        return None
    return migrate_schema(app)
