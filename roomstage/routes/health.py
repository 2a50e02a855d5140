"""
Health check routes.

- GET /api/health            - liveness
- GET /api/db-check          - database round trip
- GET /api/providers/health  - staging provider diagnostics
"""

from __future__ import annotations

from flask import Blueprint, jsonify

from roomstage import db
from roomstage.services.provider_router import provider_router

bp = Blueprint("health", __name__)


@bp.route("/health", methods=["GET"])
def health():
    return jsonify({"ok": True, "service": "roomstage"})


@bp.route("/db-check", methods=["GET"])
def db_check():
    if not db.USE_DB:
        return jsonify({"ok": False, "error": "db_disabled"}), 503
    if not db.verify_connection():
        return jsonify({"ok": False, "error": "db_query_failed"}), 503
    return jsonify({"ok": True, "db": "connected"})


@bp.route("/providers/health", methods=["GET"])
def providers_health():
    health = provider_router.get_all_providers_health()
    return jsonify({
        "ok": True,
        "providers": health,
        "any_available": any(h.get("available") and not h.get("rate_limited") for h in health.values()),
    })
