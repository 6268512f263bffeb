"""Error taxonomy and the JSON error handlers registered on the app."""
import logging

from flask import jsonify
from flask_wtf.csrf import CSRFError
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


class ConfigurationError(RuntimeError):
    """Raised at startup when required settings are absent."""


class AppError(Exception):
    status_code = 500
    code = "INTERNAL_SERVER_ERROR"
    message = "Server error occurred"

    def __init__(self, message=None, details=None):
        super().__init__(message or self.message)
        if message:
            self.message = message
        self.details = details

    def to_dict(self):
        body = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"
    message = "Invalid request"


class NotFound(AppError):
    status_code = 404
    code = "NOT_FOUND"
    message = "Resource not found"


class Conflict(AppError):
    status_code = 409
    code = "CONFLICT"
    message = "Resource already exists"


class DuplicateCompletion(Conflict):
    code = "DUPLICATE_COMPLETION"
    message = "Course already marked as completed"


class DuplicateCourse(Conflict):
    code = "DUPLICATE_COURSE"
    message = "Course code already exists"


class SemesterOrderingViolation(AppError):
    status_code = 422
    code = "SEMESTER_ORDERING_VIOLATION"
    message = "Course belongs to a later semester than the student's current semester"


class AuthError(AppError):
    status_code = 401
    code = "AUTH_ERROR"
    message = "Authentication required"


class MissingToken(AuthError):
    code = "MISSING_TOKEN"
    message = "No authentication token found"


class InvalidOrExpiredToken(AuthError):
    code = "INVALID_TOKEN"
    message = "Invalid or expired authentication token"


class InvalidCredentials(AuthError):
    code = "INVALID_CREDENTIALS"
    message = "Invalid credentials"


class WrongIdentityType(AuthError):
    status_code = 403
    code = "WRONG_IDENTITY_TYPE"
    message = "This action is not available to this account type"


class AccessDenied(AuthError):
    status_code = 403
    code = "ACCESS_DENIED"
    message = "Access denied"


class AccountLocked(AuthError):
    status_code = 423
    code = "ACCOUNT_LOCKED"
    message = "Account is temporarily locked. Please try again later."


class DataStoreError(AppError):
    status_code = 500
    code = "DATA_STORE_ERROR"
    message = "Internal server error"


def _error_body(code, message, details=None):
    error = {"code": code, "message": message}
    if details:
        error["details"] = details
    return {"success": False, "error": error}


def register_error_handlers(app):
    from . import db

    @app.errorhandler(AppError)
    def handle_app_error(err):
        if isinstance(err, DataStoreError):
            db.session.rollback()
            logger.exception("Data store failure: %s", err)
            return jsonify(_error_body(err.code, DataStoreError.message)), err.status_code
        if isinstance(err, AuthError):
            logger.info("Auth rejected (%s): %s", err.code, err.message)
        return jsonify({"success": False, "error": err.to_dict()}), err.status_code

    @app.errorhandler(SQLAlchemyError)
    def handle_store_error(err):
        db.session.rollback()
        logger.exception("Unhandled data store error")
        return jsonify(_error_body(DataStoreError.code, DataStoreError.message)), 500

    @app.errorhandler(CSRFError)
    def handle_csrf_error(err):
        return jsonify(_error_body("CSRF_FAILED", err.description)), 400

    @app.errorhandler(HTTPException)
    def handle_http_error(err):
        code = (err.name or "error").upper().replace(" ", "_")
        return jsonify(_error_body(code, err.description)), err.code
