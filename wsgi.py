from travelmap import create_app
from travelmap.bootstrap import run_startup_migrations

app = create_app()
# AUTO_MIGRATE=1 creates or upgrades the schema before serving
run_startup_migrations(app)
