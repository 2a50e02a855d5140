"""
Identities and sessions.

A session id travels in the rs_sid cookie (browser) or as
"Authorization: Bearer <sid>" (API clients). It is valid until expires_at
unless revoked. Job ownership is always the identity behind the session.
"""

from typing import Optional, Dict, Any
from datetime import timedelta
import json
import uuid

from roomstage.config import config
from roomstage.db import query_one, execute, execute_returning, Tables, now_utc, DatabaseError
from roomstage.services.wallet_service import LedgerEntryType


class IdentityService:

    @staticmethod
    def get_session_id_from_request(request) -> Optional[str]:
        """Cookie wins over the Authorization header."""
        sid = (request.cookies.get(config.SESSION_COOKIE_NAME) or "").strip()
        if sid:
            return sid
        scheme, _, token = request.headers.get("Authorization", "").partition(" ")
        if scheme.lower() == "bearer" and token.strip():
            return token.strip()
        return None

    @staticmethod
    def validate_session(session_id: str) -> Optional[Dict[str, Any]]:
        """Identity row for a live session, else None."""
        if not session_id:
            return None
        return query_one(
            f"""
            SELECT i.*, s.id AS session_id, s.expires_at AS session_expires_at
            FROM {Tables.SESSIONS} s
            JOIN {Tables.IDENTITIES} i ON i.id = s.identity_id
            WHERE s.id = %s AND s.revoked_at IS NULL AND s.expires_at > NOW()
            """,
            (session_id,),
        )

    @staticmethod
    def create_identity(email: Optional[str] = None) -> Dict[str, Any]:
        """
        New identity, its wallet, and the signup grant as one statement, so a
        wallet never exists without the ledger row that explains its balance.

        Raises:
            DatabaseIntegrityError: email already registered
        """
        email = email.strip().lower() if email else None
        grant = max(0, config.FREE_CREDITS_ON_SIGNUP)
        identity = execute_returning(
            f"""
            WITH ident AS (
                INSERT INTO {Tables.IDENTITIES} (email, last_seen_at)
                VALUES (%s, NOW())
                RETURNING *
            ),
            wallet AS (
                INSERT INTO {Tables.WALLETS} (identity_id, balance_credits)
                SELECT id, %s FROM ident
            ),
            signup AS (
                INSERT INTO {Tables.LEDGER_ENTRIES}
                    (identity_id, entry_type, amount_credits, ref_type, ref_id, meta)
                SELECT id, %s, %s, 'signup', id::text, %s FROM ident
                WHERE %s > 0
            )
            SELECT * FROM ident
            """,
            (email, grant, LedgerEntryType.SIGNUP_GRANT, grant,
             json.dumps({"reason": "welcome_credits"}), grant),
        )
        if not identity:
            raise DatabaseError("Failed to create identity")
        print(f"[IDENTITY] Created identity={identity['id']} email={email or 'anonymous'} credits={grant}")
        return identity

    @staticmethod
    def create_session(identity_id: str) -> Dict[str, Any]:
        session = execute_returning(
            f"""
            INSERT INTO {Tables.SESSIONS} (id, identity_id, expires_at)
            VALUES (%s, %s, %s)
            RETURNING *
            """,
            (str(uuid.uuid4()), identity_id, now_utc() + timedelta(days=config.SESSION_TTL_DAYS)),
        )
        if not session:
            raise DatabaseError("Failed to create session")
        return session

    @staticmethod
    def revoke_session(session_id: str) -> bool:
        count = execute(
            f"UPDATE {Tables.SESSIONS} SET revoked_at = NOW() WHERE id = %s AND revoked_at IS NULL",
            (session_id,),
        )
        return count > 0
