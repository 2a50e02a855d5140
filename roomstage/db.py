"""
Postgres access for RoomStage (psycopg 3, dict rows).

Every helper opens a short transaction of its own; multi-statement work goes
through transaction() directly:

    from roomstage.db import transaction, fetch_one

    with transaction() as cur:
        cur.execute("UPDATE ... WHERE id = %s AND status = 'processing' RETURNING *", (job_id,))
        job = fetch_one(cur)   # None: another writer finished the job first

Failures surface as DatabaseError subclasses. Nothing here swallows errors
except verify_connection(), which answers a yes/no question.
"""

import os
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Any, Dict, List

import psycopg
from psycopg.rows import dict_row

# Read straight from the environment so db stays importable without config
DATABASE_URL = os.getenv("DATABASE_URL", "").replace("postgres://", "postgresql://", 1)
CONNECT_TIMEOUT = int(os.getenv("DB_CONNECT_TIMEOUT", "10"))
APP_SCHEMA = os.getenv("APP_SCHEMA", "roomstage")
SCHEMA_FILE = Path(__file__).resolve().parent / "schema.sql"

USE_DB = bool(DATABASE_URL)
print(f"[DB] DATABASE_URL configured: {USE_DB}, schema: {APP_SCHEMA}")


class DatabaseError(Exception):
    """Base class for everything raised from this module."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.original_error = original_error


class DatabaseNotConfiguredError(DatabaseError):
    pass


class DatabaseConnectionError(DatabaseError):
    pass


class DatabaseQueryError(DatabaseError):
    pass


class DatabaseIntegrityError(DatabaseError):
    """
    A constraint rejected the write. kind is one of "unique", "foreign_key",
    "check" or "integrity"; constraint is the violated constraint's name.
    """

    def __init__(self, message: str, kind: str, constraint: Optional[str] = None,
                 original_error: Optional[Exception] = None):
        super().__init__(message, original_error)
        self.kind = kind
        self.constraint = constraint


_INTEGRITY_KINDS = (
    (psycopg.errors.UniqueViolation, "unique"),
    (psycopg.errors.ForeignKeyViolation, "foreign_key"),
    (psycopg.errors.CheckViolation, "check"),
)


def _integrity_error(e: psycopg.IntegrityError) -> DatabaseIntegrityError:
    kind = next((name for cls, name in _INTEGRITY_KINDS if isinstance(e, cls)), "integrity")
    constraint = getattr(e.diag, "constraint_name", None)
    return DatabaseIntegrityError(f"{kind} violation ({constraint}): {e}", kind, constraint, e)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def connect() -> psycopg.Connection:
    if not USE_DB:
        raise DatabaseNotConfiguredError("DATABASE_URL is not set")
    try:
        return psycopg.connect(
            DATABASE_URL,
            connect_timeout=CONNECT_TIMEOUT,
            row_factory=dict_row,
            options=f"-c search_path={APP_SCHEMA},public",
        )
    except psycopg.OperationalError as e:
        raise DatabaseConnectionError(f"Failed to connect to database: {e}", e) from e


@contextmanager
def transaction():
    """
    Yield a dict_row cursor. Commits when the block exits cleanly, rolls
    back on any exception. psycopg errors are re-raised as
    DatabaseIntegrityError / DatabaseQueryError; anything else propagates
    unchanged.
    """
    conn = connect()
    try:
        with conn.cursor() as cur:
            yield cur
        conn.commit()
    except psycopg.IntegrityError as e:
        conn.rollback()
        raise _integrity_error(e) from e
    except psycopg.Error as e:
        conn.rollback()
        raise DatabaseQueryError(f"Database error: {e}", e) from e
    except BaseException:
        conn.rollback()
        raise
    finally:
        conn.close()


def fetch_one(cur) -> Optional[Dict[str, Any]]:
    row = cur.fetchone()
    return dict(row) if row is not None else None


def fetch_all(cur) -> List[Dict[str, Any]]:
    return [dict(row) for row in cur.fetchall()]


def query_one(sql: str, params: tuple = None) -> Optional[Dict[str, Any]]:
    with transaction() as cur:
        cur.execute(sql, params or ())
        return fetch_one(cur)


def query_all(sql: str, params: tuple = None) -> List[Dict[str, Any]]:
    with transaction() as cur:
        cur.execute(sql, params or ())
        return fetch_all(cur)


def execute(sql: str, params: tuple = None) -> int:
    """Run one statement, return the affected row count."""
    with transaction() as cur:
        cur.execute(sql, params or ())
        return cur.rowcount


# Same as query_one; the separate name marks writes with RETURNING. None
# means the WHERE guard matched nothing.
execute_returning = query_one


class Tables:
    IDENTITIES = f"{APP_SCHEMA}.identities"
    SESSIONS = f"{APP_SCHEMA}.sessions"
    WALLETS = f"{APP_SCHEMA}.wallets"
    LEDGER_ENTRIES = f"{APP_SCHEMA}.ledger_entries"
    CREDIT_RESERVATIONS = f"{APP_SCHEMA}.credit_reservations"
    STAGING_JOBS = f"{APP_SCHEMA}.staging_jobs"
    VERSION_GROUPS = f"{APP_SCHEMA}.version_groups"
    NOTIFICATIONS = f"{APP_SCHEMA}.notifications"


def verify_connection() -> bool:
    if not USE_DB:
        return False
    try:
        row = query_one("SELECT 1 AS ok")
    except DatabaseError as e:
        print(f"[DB] Connection check failed: {e}")
        return False
    return bool(row and row.get("ok") == 1)


def ensure_schema() -> None:
    """Apply schema.sql (idempotent: IF NOT EXISTS throughout)."""
    ddl = SCHEMA_FILE.read_text(encoding="utf-8").replace("{schema}", APP_SCHEMA)
    with transaction() as cur:
        cur.execute(ddl)
    print(f"[DB] Schema {APP_SCHEMA} ensured")


def init_db() -> bool:
    """
    Startup hook. False when no DATABASE_URL is set (the app still serves
    /api/health). Raises DatabaseConnectionError when a configured database
    is unreachable.
    """
    if not USE_DB:
        print("[DB] DATABASE_URL not set - running without database")
        return False
    if not verify_connection():
        raise DatabaseConnectionError("Connection test query failed")
    try:
        ensure_schema()
    except DatabaseError as e:
        # The app role may lack DDL rights on a managed database
        print(f"[DB] Warning: could not apply schema: {e}")
    return True


__all__ = [
    "USE_DB",
    "DatabaseError",
    "DatabaseNotConfiguredError",
    "DatabaseConnectionError",
    "DatabaseQueryError",
    "DatabaseIntegrityError",
    "connect",
    "transaction",
    "now_utc",
    "fetch_one",
    "fetch_all",
    "query_one",
    "query_all",
    "execute",
    "execute_returning",
    "Tables",
    "verify_connection",
    "ensure_schema",
    "init_db",
]
