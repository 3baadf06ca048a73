from datetime import timedelta

from flask import Flask, g, jsonify, request
from dotenv import load_dotenv

from app.docflow.config import load_config
from app.docflow.db import init_db, teardown_db_session
from app.docflow.errors import DocflowError
from app.docflow.routes import bp as routes_bp
from app.docflow.auth import bp as auth_bp, load_current_user
from app.docflow.admin import bp as admin_bp
from app.docflow.modules.documents.api import approvals_bp, documents_bp, share_bp, versions_bp
from app.docflow.storage import StorageError

# Transport status per engine error category.
ERROR_STATUS = {
    "validation": 400,
    "forbidden": 403,
    "not_found": 404,
    "conflict": 409,
    "duplicate_approval": 409,
    "expired": 410,
    "internal_consistency": 500,
}


def _error(message: str, status: int, category: str):
    return jsonify({"success": False, "error": message, "category": category}), status


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    # Storage config check (fail loudly on misconfiguration)
    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [
            key
            for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
            if not app.config.get(key)
        ]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(admin_bp, url_prefix="/admin")
    app.register_blueprint(documents_bp, url_prefix="/api/documents")
    app.register_blueprint(versions_bp, url_prefix="/api/versions")
    app.register_blueprint(approvals_bp, url_prefix="/api/approvals")
    app.register_blueprint(share_bp, url_prefix="/api/share")

    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(DocflowError)
    def _err_docflow(e: DocflowError):  # type: ignore[no-redef]
        status = ERROR_STATUS.get(e.category, 500)
        rid = getattr(g, "request_id", None)
        if status >= 500:
            app.logger.critical("Engine consistency failure on %s (request_id=%s): %s", request.path, rid, e.message)
        elif status != 404:
            app.logger.info("%s rejected on %s (request_id=%s): %s", e.category, request.path, rid, e.message)
        return jsonify(e.to_dict()), status

    @app.errorhandler(StorageError)
    def _err_storage(e: StorageError):  # type: ignore[no-redef]
        app.logger.error("Storage failure on %s (request_id=%s): %s", request.path, getattr(g, "request_id", None), e)
        return _error("File storage is unavailable.", 500, "storage")

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return _error("Internal server error", 500, "error")

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return _error("Not found", 404, "not_found")

    @app.errorhandler(405)
    def _err_405(e):  # type: ignore[no-redef]
        return _error("Method not allowed", 405, "error")

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        return _error(f"File too large. Maximum size is {app.config['MAX_CONTENT_LENGTH'] // (1024 * 1024)}MB.", 413, "validation")

    # Startup logging
    import logging
    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
