from travelmap.bootstrap import auto_migrate_enabled, migration_lock, run_startup_migrations
from travelmap.extensions import db


def test_auto_migrate_flag():
    assert auto_migrate_enabled({"AUTO_MIGRATE": "1"})
    assert auto_migrate_enabled({"AUTO_MIGRATE": " True "})
    assert not auto_migrate_enabled({"AUTO_MIGRATE": "0"})
    assert not auto_migrate_enabled({})


def test_startup_migrations_are_off_by_default(app):
    assert run_startup_migrations(app, environ={}) is None


def test_lock_is_always_granted_outside_postgres(app):
    with migration_lock(db.engine) as acquired:
        assert acquired is True
