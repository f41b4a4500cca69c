from __future__ import annotations

from typing import Any

from flask import Flask, jsonify
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError
from werkzeug.exceptions import HTTPException

from ..extensions import db


class APIError(Exception):
    def __init__(self, status_code: int, code: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details or {}


class NotFoundError(APIError):
    """Node, version or account is absent, or invisible to the caller."""

    def __init__(self, message: str = "File or folder not found.", details: dict[str, Any] | None = None) -> None:
        super().__init__(404, "NOT_FOUND", message, details)


class NameConflictError(APIError):
    def __init__(
        self,
        message: str = "A file or folder with this name already exists.",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(409, "NAME_CONFLICT", message, details)


class InvalidMoveError(APIError):
    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(400, "INVALID_MOVE", message, details)


class InvalidOperationError(APIError):
    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(400, "INVALID_OPERATION", message, details)


class ForbiddenError(APIError):
    """The caller can see the node but its permission is insufficient."""

    def __init__(self, message: str = "Insufficient permissions.", details: dict[str, Any] | None = None) -> None:
        super().__init__(403, "FORBIDDEN", message, details)


class StorageUnavailableError(APIError):
    """Backing store failed; never retried here since the mutation may not be idempotent."""

    def __init__(
        self,
        message: str = "Storage is temporarily unavailable.",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(503, "STORAGE_UNAVAILABLE", message, details)


class ConcurrentModificationError(APIError):
    def __init__(
        self,
        message: str = "The item was modified concurrently. Reload and try again.",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(409, "CONCURRENT_MODIFICATION", message, details)


def error_payload(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "detail": message,
        "error": {
            "code": code,
            "message": message,
            "details": details or {},
        },
    }


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(APIError)
    def handle_api_error(error: APIError):  # type: ignore[no-untyped-def]
        if error.status_code >= 500:
            db.session.rollback()
            app.logger.warning("%s: %s", error.code, error.message)
        return jsonify(error_payload(error.code, error.message, error.details)), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):  # type: ignore[no-untyped-def]
        return (
            jsonify(error_payload("HTTP_ERROR", error.description, {"status": error.code})),
            error.code or 500,
        )

    @app.errorhandler(StaleDataError)
    def handle_stale_data(error: StaleDataError):  # type: ignore[no-untyped-def]
        db.session.rollback()
        app.logger.info("Concurrent modification rejected: %s", error)
        conflict = ConcurrentModificationError()
        return jsonify(error_payload(conflict.code, conflict.message)), conflict.status_code

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(error: IntegrityError):  # type: ignore[no-untyped-def]
        db.session.rollback()
        app.logger.info("Integrity conflict: %s", error.orig)
        return jsonify(error_payload("CONFLICT", "The request conflicts with the current state.")), 409

    @app.errorhandler(OperationalError)
    def handle_storage_error(error: OperationalError):  # type: ignore[no-untyped-def]
        db.session.rollback()
        app.logger.warning("Database unavailable: %s", error.orig)
        unavailable = StorageUnavailableError()
        return jsonify(error_payload(unavailable.code, unavailable.message)), unavailable.status_code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):  # type: ignore[no-untyped-def]
        app.logger.exception("Unhandled exception", exc_info=error)
        return jsonify(error_payload("INTERNAL_ERROR", "An unexpected error occurred.")), 500
