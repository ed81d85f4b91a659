import logging

from flask import jsonify
from pymongo.errors import DuplicateKeyError
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


class ApiError(Exception):
    status_code = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class NotFound(ApiError):
    status_code = 404


class ValidationError(ApiError):
    """Raised for malformed or incomplete write payloads and query filters."""
    status_code = 400

    def __init__(self, messages):
        if isinstance(messages, str):
            messages = [messages]
        self.messages = list(messages)
        super().__init__(", ".join(self.messages))


class Unauthorized(ApiError):
    status_code = 401


class Forbidden(ApiError):
    status_code = 403


def error_response(message, status_code):
    return jsonify({"success": False, "message": message}), status_code


def register_error_handlers(app):
    @app.errorhandler(ApiError)
    def handle_api_error(exc):
        if exc.status_code >= 500:
            logger.error("[api] %s", exc.message)
        return error_response(exc.message, exc.status_code)

    @app.errorhandler(DuplicateKeyError)
    def handle_duplicate_key(exc):
        logger.warning("[api] duplicate key: %s", exc)
        return error_response("Duplicate field value entered", 400)

    @app.errorhandler(HTTPException)
    def handle_http_exception(exc):
        return error_response(exc.description or exc.name, exc.code)

    @app.errorhandler(Exception)
    def handle_unexpected(exc):
        logger.exception("[api] unexpected error")
        return error_response(str(exc) or "Server Error", 500)
