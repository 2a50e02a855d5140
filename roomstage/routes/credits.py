"""
/api/credits routes - credit balance for the active identity.

Handles:
- GET /api/credits/balance
- GET /api/credits/ledger?limit=50&offset=0
"""

from flask import Blueprint, request, jsonify, g

from roomstage.config import config
from roomstage.middleware import require_session
from roomstage.services.wallet_service import WalletService
from roomstage.utils.helpers import iso

bp = Blueprint("credits", __name__)


@bp.route("/balance", methods=["GET"])
@require_session
def get_balance():
    balance = WalletService.get_balance(g.identity_id)
    response = jsonify({
        "ok": True,
        "balance": balance,
        "low_credits": balance <= config.LOW_CREDITS_THRESHOLD,
        "credits_per_staging": config.CREDITS_PER_STAGING,
    })
    response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
    return response


@bp.route("/ledger", methods=["GET"])
@require_session
def get_ledger():
    limit = min(max(request.args.get("limit", 50, type=int), 1), 100)
    offset = max(request.args.get("offset", 0, type=int), 0)
    entries = WalletService.get_ledger_entries(g.identity_id, limit=limit, offset=offset)
    return jsonify({
        "ok": True,
        "entries": [
            {
                "id": str(e["id"]),
                "entry_type": e["entry_type"],
                "amount_credits": e["amount_credits"],
                "ref_type": e.get("ref_type"),
                "ref_id": e.get("ref_id"),
                "created_at": iso(e.get("created_at")),
            }
            for e in entries
        ],
        "limit": limit,
        "offset": offset,
    })
