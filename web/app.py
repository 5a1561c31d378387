"""Flask web app for the bicycle storefront.

Serves the public catalog API (listings, search, cart, gear advice) and
the token-guarded admin API on top of the ``storefront`` package.
"""

import logging
import time
import uuid
from pathlib import Path
from typing import Any, Mapping, Optional, Tuple

from dotenv import load_dotenv
from flask import Flask, Response, g, jsonify, request, send_from_directory
from werkzeug.exceptions import HTTPException

# Load environment variables from .env file (explicitly specify path)
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

from storefront.errors import (  # noqa: E402
    CategoryError,
    NotFoundError,
    ProductValidationError,
    RetryCancelled,
    StorageError,
    StoreError,
)
from storefront.retry import is_retryable_error  # noqa: E402
from storefront.storage import LocalObjectStorage  # noqa: E402

from .config import (  # noqa: E402
    ADMIN_AUTH_MODE,
    ADMIN_TOKEN,
    FLASK_DEBUG,
    FLASK_HOST,
    FLASK_PORT,
)
from .services import Services, build_services, get_services  # noqa: E402

__all__ = ["create_app", "store_error_status"]

logger = logging.getLogger(__name__)

FORBIDDEN_CODES = {"permission-denied", "unauthenticated", 401, 403}


def store_error_status(error: StoreError) -> Tuple[int, str]:
    """HTTP status and client message for a store failure."""
    code = error.code.lower() if isinstance(error.code, str) else error.code
    if code in FORBIDDEN_CODES:
        return 403, "Permission denied. Please check your authentication."
    if code in {"failed-precondition", "resource-exhausted"} or is_retryable_error(error):
        return 503, "Service temporarily unavailable. Please try again."
    return 500, "Database operation failed"


def _log_error(error_type: str, error: BaseException) -> None:
    get_services().error_logger.log_error(
        error_type=error_type,
        error_message=str(error),
        request_id=g.get("request_id"),
        endpoint=request.path,
        method=request.method,
        params=request.args.to_dict(flat=False) or None,
        context={"exception": type(error).__name__},
    )


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ProductValidationError)
    def handle_validation(e: ProductValidationError):
        return jsonify({"error": "Validation failed", "details": e.first_errors()}), 400

    @app.errorhandler(NotFoundError)
    def handle_not_found(e: NotFoundError):
        return jsonify({"error": str(e)}), 404

    @app.errorhandler(CategoryError)
    def handle_category(e: CategoryError):
        return jsonify({"error": str(e)}), e.status

    @app.errorhandler(StoreError)
    def handle_store(e: StoreError):
        status, message = store_error_status(e)
        logger.error(f"Store error on {request.path} (code={e.code}): {e}")
        _log_error("store_error", e)
        return jsonify({"error": message, "code": e.code if isinstance(e.code, str) else None}), status

    @app.errorhandler(RetryCancelled)
    def handle_cancelled(e: RetryCancelled):
        return jsonify({"error": "Request cancelled"}), 503

    @app.errorhandler(StorageError)
    def handle_storage(e: StorageError):
        logger.error(f"Storage error on {request.path}: {e}")
        _log_error("storage_error", e)
        return jsonify({"error": str(e)}), 500

    @app.errorhandler(Exception)
    def handle_unexpected(e: Exception):
        if isinstance(e, HTTPException):
            return e
        logger.exception(f"Unexpected error on {request.path}")
        _log_error("unexpected_error", e)
        return jsonify({"error": "Internal server error", "request_id": g.get("request_id")}), 500


def create_app(services: Optional[Services] = None, config: Optional[Mapping[str, Any]] = None) -> Flask:
    """Build the Flask app.

    Args:
        services: Prebuilt services (tests); built from the environment if None
        config: Extra Flask config values, applied last
    """
    app = Flask(__name__)
    app.config.update(ADMIN_AUTH_MODE=ADMIN_AUTH_MODE, ADMIN_TOKEN=ADMIN_TOKEN)
    if config:
        app.config.update(config)

    services = services or build_services()
    app.extensions["storefront"] = services

    from .admin import admin
    from .api import api
    from .gear import gear

    app.register_blueprint(api)
    app.register_blueprint(gear)
    app.register_blueprint(admin)
    _register_error_handlers(app)

    @app.before_request
    def assign_request_id() -> None:
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
        g.start_time = time.perf_counter()

    @app.after_request
    def add_request_id(response: Response) -> Response:
        response.headers["X-Request-ID"] = g.get("request_id", "")
        if "start_time" in g:
            elapsed_ms = (time.perf_counter() - g.start_time) * 1000
            logger.debug(f"{request.method} {request.path} -> {response.status_code} ({elapsed_ms:.1f}ms)")
        return response

    @app.route("/health", methods=["GET"])
    def health():
        return jsonify({"status": "ok"})

    # Serve locally stored uploads in development
    if isinstance(services.storage, LocalObjectStorage) and services.storage.base_url.startswith("/"):
        storage = services.storage

        @app.route(f"{storage.base_url.rstrip('/')}/<path:path>", methods=["GET"])
        def uploaded_file(path: str):
            return send_from_directory(storage.root.resolve(), path)

    return app


if __name__ == "__main__":
    from storefront.logging_config import setup_logging

    setup_logging(level=logging.DEBUG if FLASK_DEBUG else logging.INFO)
    create_app().run(host=FLASK_HOST, port=FLASK_PORT, debug=FLASK_DEBUG)
