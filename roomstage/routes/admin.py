"""
/api/admin routes - operational endpoints (X-Admin-Token).

POST /api/admin/jobs/sweep
    Body (optional): {"max_age_minutes": 60}
    Fails jobs stuck in 'processing' past the threshold after one last
    vendor poll. Meant to be hit by an external cron.

POST /api/admin/credits/grant
    Body: {"identity_id": "...", "amount": 10, "reason": "..."}
"""

from flask import Blueprint, request, jsonify

from roomstage.errors import ValidationError
from roomstage.middleware import require_admin
from roomstage.services.reconciler import reconciler
from roomstage.services.wallet_service import LedgerEntryType, WalletService

bp = Blueprint("admin", __name__)


@bp.route("/jobs/sweep", methods=["POST"])
@require_admin
def sweep_jobs():
    body = request.get_json(silent=True) or {}
    max_age = body.get("max_age_minutes")
    if max_age is not None:
        if isinstance(max_age, bool) or not isinstance(max_age, int) or max_age < 1:
            raise ValidationError("max_age_minutes must be a positive integer")
    summary = reconciler.sweep_stale_jobs(max_age)
    return jsonify({"ok": True, **summary})


@bp.route("/credits/grant", methods=["POST"])
@require_admin
def grant_credits():
    """Top up an identity's wallet. Charges only ever come from completed jobs."""
    data = request.get_json(silent=True) or {}
    identity_id = data.get("identity_id")
    amount = data.get("amount")
    reason = (data.get("reason") or "").strip()

    if not identity_id:
        raise ValidationError("identity_id is required")
    if isinstance(amount, bool) or not isinstance(amount, int) or amount < 1:
        raise ValidationError("amount must be a positive integer")
    if not reason:
        raise ValidationError("reason is required")

    result = WalletService.add_credits(identity_id, amount, LedgerEntryType.ADMIN_ADJUST, meta={"reason": reason})
    print(f"[ADMIN] Credits granted: {amount} to {identity_id} - {reason}")
    return jsonify({
        "ok": True,
        "identity_id": identity_id,
        "previous_balance": result["previous_balance"],
        "new_balance": result["new_balance"],
    })
