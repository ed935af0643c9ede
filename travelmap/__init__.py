import logging
from flask import Flask, jsonify
from dotenv import load_dotenv
from sqlalchemy import inspect
from .extensions import db, migrate, limiter
from .config import Config


def create_app(overrides=None):
    load_dotenv()
    app = Flask(__name__, instance_relative_config=True)

    app.config.from_object(Config())
    if overrides:
        app.config.update(overrides)

    logging.basicConfig(
        level=getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    from .routes.images import images_bp

    app.register_blueprint(images_bp)

    # Auto-create tables only for local SQLite dev if schema missing
    uri = str(app.config.get("SQLALCHEMY_DATABASE_URI", "") or "")
    if uri.startswith("sqlite:///") and app.config.get("ENV") != "production":
        with app.app_context():
            insp = inspect(db.engine)
            if not insp.has_table(app.config.get("LOCATIONS_TABLE", "locations")):
                db.create_all()

    @app.shell_context_processor
    def make_shell_context():
        from . import models
        return {"db": db, "Location": models.Location}

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({"success": False, "message": "Not found"}), 404

    @app.errorhandler(500)
    def server_error(error):
        return jsonify({"success": False, "message": "Internal server error"}), 500

    return app
