import logging
import os
from datetime import datetime, timezone

from flask import Flask, abort, jsonify, send_from_directory
from flask_cors import CORS

from backend.auth import auth_bp, seed_admin
from backend.config import BASE_DIR, load_config
from backend.errors import register_error_handlers
from backend.storage import TimetableStore, connect_mongo
from backend.timetables import timetables_bp

logger = logging.getLogger(__name__)

# React production build, served for client-side routing
FRONTEND_BUILD_DIR = os.path.join(BASE_DIR, "..", "frontend", "dist")


def utc_timestamp():
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def configure_logging(level):
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )


def create_app(config=None, db=None):
    """
    Build the API. ``db`` is an already-open database handle; when omitted a
    MongoClient is created from MONGO_URI and owned by the app.
    """
    settings = load_config()
    settings.update(config or {})
    configure_logging(settings["LOG_LEVEL"])

    app = Flask(__name__, static_folder=None)
    app.config.update(settings)
    CORS(
        app,
        supports_credentials=True,
        origins=settings["FRONTEND_ORIGINS"],
        methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"]
    )

    client = None
    if db is None:
        client, db = connect_mongo(settings["MONGO_URI"], settings["MONGO_DB_NAME"])
    store = TimetableStore(db)
    store.ensure_indexes()
    seed_admin(db, settings["DEFAULT_ADMIN_PASSWORD"])

    app.extensions["mongo_client"] = client
    app.extensions["mongo_db"] = db
    app.extensions["timetable_store"] = store

    register_error_handlers(app)
    app.register_blueprint(auth_bp, url_prefix="/api/auth")
    app.register_blueprint(timetables_bp, url_prefix="/api/timetables")

    @app.route("/api/health", methods=["GET"])
    def health_check():
        try:
            db.command("ping")
            database = "up"
        except Exception as exc:
            logger.warning("[health] database ping failed: %s", exc)
            database = "down"
        return jsonify({
            "status": "success",
            "message": "Server is running",
            "time": utc_timestamp(),
            "database": database
        })

    @app.route("/", defaults={"path": ""})
    @app.route("/<path:path>")
    def serve_react(path):
        if path.startswith("api/"):
            abort(404)
        build_dir = FRONTEND_BUILD_DIR
        if path != "" and os.path.exists(os.path.join(build_dir, path)):
            return send_from_directory(build_dir, path)
        if os.path.exists(os.path.join(build_dir, "index.html")):
            return send_from_directory(build_dir, "index.html")
        return jsonify({
            "message": "Smart Timetable API is running",
            "time": utc_timestamp()
        })

    return app


def close_mongo(app):
    client = app.extensions.get("mongo_client")
    if client is not None:
        client.close()
        logger.info("[storage] MongoDB connection closed")


def main():
    app = create_app()
    logger.info("Starting Smart Timetable API...")
    logger.info("Available endpoints:")
    for rule in sorted(app.url_map.iter_rules(), key=lambda r: r.rule):
        if rule.rule.startswith("/api"):
            methods = ",".join(sorted(m for m in rule.methods if m not in ("HEAD", "OPTIONS")))
            logger.info("- %s %s", methods, rule.rule)
    try:
        app.run(debug=app.config["DEBUG"], host="0.0.0.0", port=app.config["PORT"])
    finally:
        close_mongo(app)


if __name__ == "__main__":
    main()
