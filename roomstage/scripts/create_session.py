#!/usr/bin/env python3
"""
Create an identity (with its signup credits) and a session, then print the
session id for use as the rs_sid cookie or a Bearer token.

    python -m roomstage.scripts.create_session --email agent@example.com
    python -m roomstage.scripts.create_session --identity-id <uuid>
    python -m roomstage.scripts.create_session --revoke <session-id>

Environment variables:
    DATABASE_URL: PostgreSQL connection string
"""
import argparse
import sys


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Create a RoomStage session")
    parser.add_argument("--email", default=None, help="Email for a new identity")
    parser.add_argument("--identity-id", default=None, help="Reuse an existing identity")
    parser.add_argument("--revoke", default=None, metavar="SESSION_ID", help="Revoke a session instead")
    args = parser.parse_args(argv)

    from roomstage.db import USE_DB, DatabaseError
    from roomstage.services.identity_service import IdentityService

    if not USE_DB:
        print("ERROR: DATABASE_URL not set")
        return 1

    if args.revoke:
        try:
            revoked = IdentityService.revoke_session(args.revoke)
        except DatabaseError as e:
            print(f"ERROR: {e}")
            return 2
        print("revoked" if revoked else "session not found or already revoked")
        return 0 if revoked else 1

    try:
        identity_id = args.identity_id
        if not identity_id:
            identity_id = str(IdentityService.create_identity(args.email)["id"])
        session = IdentityService.create_session(identity_id)
    except DatabaseError as e:
        print(f"ERROR: {e}")
        return 2

    print(f"identity_id={identity_id}")
    print(f"session_id={session['id']}")
    print(f"expires_at={session['expires_at'].isoformat()}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
