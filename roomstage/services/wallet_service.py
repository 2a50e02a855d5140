"""
Credit wallet, append-only ledger and per-job credit holds.

    wallets.balance_credits == SUM(ledger_entries.amount_credits) per identity
    wallets.balance_credits >= SUM(held credit_reservations) per identity
    at most one ledger row per (ref_type, ref_id); a job is charged once

Flow for a billable job:
    reserve()  - hold the cost when the job is created
    deduct()   - job completed: write the charge and capture the hold
    release()  - job failed: drop the hold, nothing is charged

Every step that reads or moves credits locks the wallet row
(SELECT ... FOR UPDATE), so two jobs of the same identity can never hold
or spend the same credit.
"""

from typing import Optional, Dict, Any, List
import json

from roomstage.db import fetch_one, transaction, query_one, query_all, execute_returning, Tables

JOB_REF_TYPE = "staging_job"


class LedgerEntryType:
    SIGNUP_GRANT = "signup_grant"
    PURCHASE_CREDIT = "purchase_credit"
    STAGING_CHARGE = "staging_charge"      # negative
    ADMIN_ADJUST = "admin_adjust"


class ReservationStatus:
    HELD = "held"
    CAPTURED = "captured"
    RELEASED = "released"


class InsufficientBalance(ValueError):

    def __init__(self, current: int, delta: int):
        self.current = current
        self.delta = delta
        super().__init__(f"Insufficient balance: current={current}, delta={delta}")


def _lock_wallet(cur, identity_id: str) -> int:
    cur.execute(
        f"SELECT balance_credits FROM {Tables.WALLETS} WHERE identity_id = %s FOR UPDATE",
        (identity_id,),
    )
    wallet = fetch_one(cur)
    if wallet is None:
        raise ValueError(f"Wallet not found for identity {identity_id}")
    return wallet["balance_credits"] or 0


def _held_total(cur, identity_id: str) -> int:
    cur.execute(
        f"""
        SELECT COALESCE(SUM(amount_credits), 0) AS held
        FROM {Tables.CREDIT_RESERVATIONS}
        WHERE identity_id = %s AND status = %s
        """,
        (identity_id, ReservationStatus.HELD),
    )
    return int(fetch_one(cur)["held"] or 0)


class WalletService:

    @staticmethod
    def get_wallet(identity_id: str) -> Optional[Dict[str, Any]]:
        return query_one(
            f"SELECT identity_id, balance_credits, updated_at FROM {Tables.WALLETS} WHERE identity_id = %s",
            (identity_id,),
        )

    @staticmethod
    def ensure_wallet(identity_id: str) -> None:
        """Zero-balance wallet for identities created before wallets existed."""
        with transaction() as cur:
            cur.execute(
                f"INSERT INTO {Tables.WALLETS} (identity_id, balance_credits) VALUES (%s, 0) "
                f"ON CONFLICT (identity_id) DO NOTHING",
                (identity_id,),
            )

    @staticmethod
    def get_balance(identity_id: str) -> int:
        wallet = WalletService.get_wallet(identity_id)
        return (wallet or {}).get("balance_credits") or 0

    @staticmethod
    def get_reserved(identity_id: str) -> int:
        row = query_one(
            f"""
            SELECT COALESCE(SUM(amount_credits), 0) AS held
            FROM {Tables.CREDIT_RESERVATIONS}
            WHERE identity_id = %s AND status = %s
            """,
            (identity_id, ReservationStatus.HELD),
        )
        return int((row or {}).get("held") or 0)

    @staticmethod
    def check(identity_id: str, amount: int) -> Dict[str, Any]:
        """
        Pre-flight check: balance minus credits held by running jobs.
        reserve() repeats it under the row lock.
        """
        balance = WalletService.get_balance(identity_id)
        reserved = WalletService.get_reserved(identity_id)
        available = max(0, balance - reserved)
        return {"available": available, "reserved": reserved, "sufficient": available >= amount}

    @staticmethod
    def get_ledger_entries(identity_id: str, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
        return query_all(
            f"""
            SELECT id, entry_type, amount_credits, ref_type, ref_id, meta, created_at
            FROM {Tables.LEDGER_ENTRIES}
            WHERE identity_id = %s
            ORDER BY created_at DESC
            LIMIT %s OFFSET %s
            """,
            (identity_id, limit, offset),
        )

    # ─────────────────────────────────────────────────────────────
    # Holds
    # ─────────────────────────────────────────────────────────────

    @staticmethod
    def reserve(identity_id: str, amount: int, job_id: str) -> Dict[str, Any]:
        """
        Hold amount credits for job_id. Idempotent per job id.

        Returns {"balance", "reserved", "available", "is_existing"}.

        Raises:
            ValueError: no wallet for identity_id
            InsufficientBalance: balance minus existing holds is below amount
                (current is the available amount)
        """
        job_id = str(job_id)
        with transaction() as cur:
            balance = _lock_wallet(cur, identity_id)
            held = _held_total(cur, identity_id)

            cur.execute(
                f"SELECT status FROM {Tables.CREDIT_RESERVATIONS} WHERE job_id = %s",
                (job_id,),
            )
            if fetch_one(cur) is not None:
                return {"balance": balance, "reserved": held, "available": max(0, balance - held), "is_existing": True}

            available = balance - held
            if available < amount:
                print(f"[WALLET] Hold rejected job={job_id}: need {amount}, available {available}")
                raise InsufficientBalance(max(0, available), -amount)

            cur.execute(
                f"""
                INSERT INTO {Tables.CREDIT_RESERVATIONS} (identity_id, job_id, amount_credits, status)
                VALUES (%s, %s, %s, %s)
                """,
                (identity_id, job_id, amount, ReservationStatus.HELD),
            )

        print(f"[WALLET] Held {amount} for job={job_id} (balance={balance}, held={held + amount})")
        return {
            "balance": balance,
            "reserved": held + amount,
            "available": available - amount,
            "is_existing": False,
        }

    @staticmethod
    def release(job_id: str, reason: str = "failed") -> bool:
        """Drop the hold for job_id. False when there was no live hold."""
        row = execute_returning(
            f"""
            UPDATE {Tables.CREDIT_RESERVATIONS}
            SET status = %s, released_at = NOW()
            WHERE job_id = %s AND status = %s
            RETURNING amount_credits
            """,
            (ReservationStatus.RELEASED, str(job_id), ReservationStatus.HELD),
        )
        if row is None:
            return False
        print(f"[WALLET] Released {row['amount_credits']} for job={job_id} ({reason})")
        return True

    # ─────────────────────────────────────────────────────────────
    # Ledger
    # ─────────────────────────────────────────────────────────────

    @staticmethod
    def _apply_entry(
        cur,
        identity_id: str,
        entry_type: str,
        delta: int,
        ref_type: Optional[str],
        ref_id: Optional[str],
        meta: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        current = _lock_wallet(cur, identity_id)

        cur.execute(
            f"""
            INSERT INTO {Tables.LEDGER_ENTRIES}
                (identity_id, entry_type, amount_credits, ref_type, ref_id, meta)
            VALUES (%s, %s, %s, %s, %s, %s)
            ON CONFLICT (ref_type, ref_id) WHERE ref_id IS NOT NULL DO NOTHING
            RETURNING id
            """,
            (identity_id, entry_type, delta, ref_type, ref_id, json.dumps(meta) if meta else None),
        )
        if fetch_one(cur) is None:
            print(f"[WALLET] {ref_type}:{ref_id} already recorded, balance unchanged")
            return {"previous_balance": current, "new_balance": current, "duplicate": True}

        if current + delta < 0:
            # Raising inside the transaction rolls the ledger insert back
            raise InsufficientBalance(current, delta)

        cur.execute(
            f"""
            UPDATE {Tables.WALLETS}
            SET balance_credits = balance_credits + %s, updated_at = NOW()
            WHERE identity_id = %s
            RETURNING balance_credits
            """,
            (delta, identity_id),
        )
        new_balance = fetch_one(cur)["balance_credits"]
        print(f"[WALLET] identity={identity_id} {entry_type} {delta:+d}: {current} -> {new_balance}")
        return {"previous_balance": current, "new_balance": new_balance, "duplicate": False}

    @staticmethod
    def add_ledger_entry(
        identity_id: str,
        entry_type: str,
        delta: int,
        ref_type: Optional[str] = None,
        ref_id: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Record delta and move the balance in one transaction.

        Returns {"previous_balance", "new_balance", "duplicate"}. duplicate is
        True when (ref_type, ref_id) was already recorded; nothing changes.

        Raises:
            ValueError: no wallet for identity_id
            InsufficientBalance: delta would take the balance below zero
        """
        with transaction() as cur:
            return WalletService._apply_entry(cur, identity_id, entry_type, delta, ref_type, ref_id, meta)

    @staticmethod
    def add_credits(identity_id: str, amount: int, entry_type: str, meta: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if amount <= 0:
            raise ValueError(f"Amount must be positive, got {amount}")
        WalletService.ensure_wallet(identity_id)
        return WalletService.add_ledger_entry(identity_id, entry_type, amount, meta=meta)

    @staticmethod
    def deduct(identity_id: str, amount: int, job_id: str) -> Dict[str, Any]:
        """
        Charge a completed job and capture its hold. Idempotent per job id.

        Returns {"previous_balance", "new_balance", "success"}. success is
        False only when the balance could not cover the charge; nothing was
        written then and the job's hold is released.
        """
        if amount <= 0:
            balance = WalletService.get_balance(identity_id)
            return {"previous_balance": balance, "new_balance": balance, "success": True}

        job_id = str(job_id)
        try:
            with transaction() as cur:
                result = WalletService._apply_entry(
                    cur,
                    identity_id,
                    LedgerEntryType.STAGING_CHARGE,
                    -amount,
                    JOB_REF_TYPE,
                    job_id,
                    {"job_id": job_id},
                )
                cur.execute(
                    f"""
                    UPDATE {Tables.CREDIT_RESERVATIONS}
                    SET status = %s, captured_at = NOW()
                    WHERE job_id = %s AND status = %s
                    """,
                    (ReservationStatus.CAPTURED, job_id, ReservationStatus.HELD),
                )
        except InsufficientBalance as e:
            print(f"[WALLET] Insufficient balance for job={job_id}: {e}")
            WalletService.release(job_id, "charge_shortfall")
            return {"previous_balance": e.current, "new_balance": e.current, "success": False}

        return {
            "previous_balance": result["previous_balance"],
            "new_balance": result["new_balance"],
            "success": True,
        }
