"""
Route decorators for session and admin authentication.

    @bp.route("", methods=["POST"])
    @require_session
    def submit_staging():
        owner_id = g.identity_id
        ...

Failures raise UnauthorizedError; utils/error_handlers.py renders the 401.
A database outage during the session lookup surfaces as DATABASE_ERROR (500)
through the same handlers.
"""

import hmac
import os
from functools import wraps
from flask import request, g

from roomstage.config import config
from roomstage.errors import UnauthorizedError
from roomstage.services.identity_service import IdentityService

# SESSION_DEBUG=1 logs why each 401 happened
SESSION_DEBUG = os.getenv("SESSION_DEBUG", "").lower() in ("1", "true", "yes")


def _short(session_id):
    return f"{session_id[:8]}..." if session_id else "none"


def require_session(f):
    """
    Resolve the caller's session. Sets g.session_id, g.identity_id (str) and
    g.identity before calling the view.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        session_id = IdentityService.get_session_id_from_request(request)
        identity = IdentityService.validate_session(session_id) if session_id else None
        if not identity:
            if SESSION_DEBUG:
                print(f"[AUTH] 401 path={request.path} session={_short(session_id)}")
            raise UnauthorizedError("Valid session required")

        g.session_id = session_id
        g.identity_id = str(identity["id"])
        g.identity = identity
        return f(*args, **kwargs)

    return decorated


def require_admin(f):
    """X-Admin-Token must equal ADMIN_TOKEN. No ADMIN_TOKEN configured means no admin access."""
    @wraps(f)
    def decorated(*args, **kwargs):
        token = request.headers.get("X-Admin-Token", "")
        if not config.ADMIN_TOKEN or not hmac.compare_digest(token, config.ADMIN_TOKEN):
            print(f"[AUTH] Rejected admin call path={request.path}")
            raise UnauthorizedError("Admin token required")
        return f(*args, **kwargs)

    return decorated
