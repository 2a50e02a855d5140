"""
/api/webhooks routes - vendor completion callbacks.

POST /api/webhooks/replicate
    Signed with REPLICATE_WEBHOOK_SECRET (webhook-signature header).
    Bad signature → 401, nothing mutated. Unknown predictions and duplicate
    deliveries are acknowledged with 200 so the vendor stops retrying.
"""

from flask import Blueprint, request, jsonify

from roomstage.services.reconciler import reconciler

bp = Blueprint("webhooks", __name__)


@bp.route("/replicate", methods=["POST"])
def replicate_webhook():
    raw_body = request.get_data(cache=False)
    result = reconciler.handle_webhook(raw_body, request.headers)
    return jsonify(result), 200
