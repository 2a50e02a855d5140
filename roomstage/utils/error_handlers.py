"""
HTTP Error Handlers
-------------------
Every error leaves the API in one envelope:

    {"ok": false, "error": {"code": ..., "message": ..., "details": ...}}

Usage:
    from roomstage.utils.error_handlers import register_error_handlers
    register_error_handlers(app)
"""

from __future__ import annotations

import traceback
from typing import Any, Dict, Optional

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from roomstage.db import DatabaseError
from roomstage.errors import StagingError

_HTTP_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    413: "PAYLOAD_TOO_LARGE",
    415: "UNSUPPORTED_MEDIA_TYPE",
    429: "RATE_LIMITED",
}


def make_error_response(code: str, message: str, status: int, details: Optional[Dict[str, Any]] = None):
    body: Dict[str, Any] = {"ok": False, "error": {"code": code, "message": message}}
    if details:
        body["error"]["details"] = details
    return jsonify(body), status


def handle_staging_error(e: StagingError):
    return make_error_response(e.code, e.message, e.http_status, e.details)


def handle_database_error(e: DatabaseError):
    print(f"[ERROR] Database error: {type(e).__name__}: {e}")
    return make_error_response("DATABASE_ERROR", "Database error occurred", 500)


def handle_http_exception(e: HTTPException):
    status = e.code or 500
    return make_error_response(_HTTP_CODES.get(status, "HTTP_ERROR"), e.description or e.name, status)


def handle_internal_error(e: Exception):
    print(f"[ERROR] Unhandled exception: {type(e).__name__}: {e}")
    traceback.print_exc()
    return make_error_response("INTERNAL_ERROR", "An unexpected error occurred", 500)


def register_error_handlers(app: Flask) -> None:
    app.register_error_handler(StagingError, handle_staging_error)
    app.register_error_handler(DatabaseError, handle_database_error)
    app.register_error_handler(HTTPException, handle_http_exception)
    app.register_error_handler(Exception, handle_internal_error)
