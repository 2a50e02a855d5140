"""
Job Store - persistence for staging jobs and version groups.

Terminal writes are status-guarded:

    UPDATE staging_jobs SET status = 'completed', ...
    WHERE id = %s AND status = 'processing'
    RETURNING *

A None return means another writer (webhook, poll, sweep) already finalized
the job. Callers must skip side effects (charge, notification) in that case.
"""

from typing import Optional, Dict, Any, List
from datetime import datetime

from roomstage.db import fetch_one, transaction, query_one, query_all, execute_returning, Tables

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_FAILED)

_JOB_COLUMNS = (
    "id", "owner_id", "property_id", "original_image_url", "room_type", "style",
    "status", "provider", "credits_used", "version_group_id", "parent_job_id",
    "is_primary_version",
)


class JobStore:
    """Record store adapter for staging_jobs and version_groups."""

    # ─────────────────────────────────────────────────────────────
    # Jobs
    # ─────────────────────────────────────────────────────────────

    @staticmethod
    def _insert(cur, job: Dict[str, Any]) -> Dict[str, Any]:
        values = tuple(job.get(col) if col != "is_primary_version" else bool(job.get(col)) for col in _JOB_COLUMNS)
        placeholders = ", ".join(["%s"] * len(_JOB_COLUMNS))
        cur.execute(
            f"""
            INSERT INTO {Tables.STAGING_JOBS} ({", ".join(_JOB_COLUMNS)}, created_at)
            VALUES ({placeholders}, NOW())
            RETURNING *
            """,
            values,
        )
        return fetch_one(cur)

    @staticmethod
    def insert_job(job: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a new job row. Missing optional columns default to NULL/false."""
        with transaction() as cur:
            return JobStore._insert(cur, job)

    @staticmethod
    def insert_free_remix_job(job: Dict[str, Any], limit: int) -> Optional[Dict[str, Any]]:
        """
        Consume one free remix of job's version group and insert job, in one
        transaction. None when the quota is used up; nothing is written then.
        """
        with transaction() as cur:
            cur.execute(
                f"""
                UPDATE {Tables.VERSION_GROUPS}
                SET free_remixes_used = free_remixes_used + 1
                WHERE id = %s AND free_remixes_used < %s
                RETURNING id
                """,
                (job["version_group_id"], limit),
            )
            if fetch_one(cur) is None:
                return None
            return JobStore._insert(cur, job)

    @staticmethod
    def get_job(job_id: str, owner_id: str) -> Optional[Dict[str, Any]]:
        """Owner-scoped read. A job owned by someone else is indistinguishable from a missing one."""
        return query_one(
            f"SELECT * FROM {Tables.STAGING_JOBS} WHERE id = %s AND owner_id = %s",
            (job_id, owner_id),
        )

    @staticmethod
    def get_job_by_id(job_id: str) -> Optional[Dict[str, Any]]:
        return query_one(f"SELECT * FROM {Tables.STAGING_JOBS} WHERE id = %s", (job_id,))

    @staticmethod
    def get_job_by_external_id(external_job_id: str) -> Optional[Dict[str, Any]]:
        return query_one(
            f"SELECT * FROM {Tables.STAGING_JOBS} WHERE external_job_id = %s",
            (external_job_id,),
        )

    @staticmethod
    def set_external_id(job_id: str, external_job_id: str) -> Optional[Dict[str, Any]]:
        return execute_returning(
            f"""
            UPDATE {Tables.STAGING_JOBS}
            SET external_job_id = %s
            WHERE id = %s AND status = %s
            RETURNING *
            """,
            (external_job_id, job_id, STATUS_PROCESSING),
        )

    @staticmethod
    def mark_completed(job_id: str, staged_image_url: str, processing_time_ms: Optional[int]) -> Optional[Dict[str, Any]]:
        return execute_returning(
            f"""
            UPDATE {Tables.STAGING_JOBS}
            SET status = %s, staged_image_url = %s, error_message = NULL,
                processing_time_ms = %s, completed_at = NOW()
            WHERE id = %s AND status = %s
            RETURNING *
            """,
            (STATUS_COMPLETED, staged_image_url, processing_time_ms, job_id, STATUS_PROCESSING),
        )

    @staticmethod
    def mark_failed(job_id: str, error_message: str, processing_time_ms: Optional[int]) -> Optional[Dict[str, Any]]:
        """Failed jobs are never charged, so credits_used drops to 0."""
        return execute_returning(
            f"""
            UPDATE {Tables.STAGING_JOBS}
            SET status = %s, error_message = %s, staged_image_url = NULL,
                credits_used = 0, processing_time_ms = %s, completed_at = NOW()
            WHERE id = %s AND status = %s
            RETURNING *
            """,
            (STATUS_FAILED, error_message, processing_time_ms, job_id, STATUS_PROCESSING),
        )

    @staticmethod
    def list_stale_processing_jobs(older_than: datetime, limit: int = 100) -> List[Dict[str, Any]]:
        return query_all(
            f"""
            SELECT * FROM {Tables.STAGING_JOBS}
            WHERE status = %s AND created_at < %s
            ORDER BY created_at ASC
            LIMIT %s
            """,
            (STATUS_PROCESSING, older_than, limit),
        )

    @staticmethod
    def assign_property(job_id: str, owner_id: str, property_id: Optional[str]) -> Optional[Dict[str, Any]]:
        return execute_returning(
            f"""
            UPDATE {Tables.STAGING_JOBS}
            SET property_id = %s
            WHERE id = %s AND owner_id = %s
            RETURNING *
            """,
            (property_id, job_id, owner_id),
        )

    # ─────────────────────────────────────────────────────────────
    # Version groups
    # ─────────────────────────────────────────────────────────────

    @staticmethod
    def get_group(group_id: str, owner_id: str) -> Optional[Dict[str, Any]]:
        return query_one(
            f"SELECT * FROM {Tables.VERSION_GROUPS} WHERE id = %s AND owner_id = %s",
            (group_id, owner_id),
        )

    @staticmethod
    def find_group(owner_id: str, original_image_hash: str) -> Optional[Dict[str, Any]]:
        return query_one(
            f"""
            SELECT * FROM {Tables.VERSION_GROUPS}
            WHERE owner_id = %s AND original_image_hash = %s
            """,
            (owner_id, original_image_hash),
        )

    @staticmethod
    def ensure_group_for_parent(owner_id: str, parent: Dict[str, Any], original_image_hash: str) -> Dict[str, Any]:
        """
        Find-or-create the lineage for parent's original image and link the
        parent into it. The parent becomes primary only when this call
        created the group.

        Returns the group row with an extra "created" flag.
        """
        with transaction() as cur:
            cur.execute(
                f"""
                INSERT INTO {Tables.VERSION_GROUPS}
                    (owner_id, original_image_hash, original_image_url, free_remixes_used, created_at)
                VALUES (%s, %s, %s, 0, NOW())
                ON CONFLICT (owner_id, original_image_hash) DO NOTHING
                RETURNING *
                """,
                (owner_id, original_image_hash, parent["original_image_url"]),
            )
            group = fetch_one(cur)
            created = group is not None
            if not created:
                cur.execute(
                    f"""
                    SELECT * FROM {Tables.VERSION_GROUPS}
                    WHERE owner_id = %s AND original_image_hash = %s
                    """,
                    (owner_id, original_image_hash),
                )
                group = fetch_one(cur)

            if not parent.get("version_group_id"):
                cur.execute(
                    f"""
                    UPDATE {Tables.STAGING_JOBS}
                    SET version_group_id = %s, is_primary_version = %s
                    WHERE id = %s AND version_group_id IS NULL
                    """,
                    (group["id"], created, parent["id"]),
                )

        group["created"] = created
        return group

    @staticmethod
    def list_group_jobs(group_id: str, owner_id: str) -> List[Dict[str, Any]]:
        return query_all(
            f"""
            SELECT * FROM {Tables.STAGING_JOBS}
            WHERE version_group_id = %s AND owner_id = %s
            ORDER BY created_at ASC
            """,
            (group_id, owner_id),
        )

    @staticmethod
    def set_primary(job_id: str, owner_id: str) -> Optional[Dict[str, Any]]:
        """
        Make job the primary version of its lineage. Clearing the old flag
        and setting the new one happen in one transaction.
        """
        with transaction() as cur:
            cur.execute(
                f"""
                SELECT id, version_group_id FROM {Tables.STAGING_JOBS}
                WHERE id = %s AND owner_id = %s
                FOR UPDATE
                """,
                (job_id, owner_id),
            )
            job = fetch_one(cur)
            if not job:
                return None

            if job.get("version_group_id"):
                # Lock the lineage so concurrent set-primary calls serialize
                cur.execute(
                    f"SELECT id FROM {Tables.VERSION_GROUPS} WHERE id = %s FOR UPDATE",
                    (job["version_group_id"],),
                )
                cur.execute(
                    f"""
                    UPDATE {Tables.STAGING_JOBS}
                    SET is_primary_version = FALSE
                    WHERE version_group_id = %s AND is_primary_version AND id <> %s
                    """,
                    (job["version_group_id"], job_id),
                )

            cur.execute(
                f"""
                UPDATE {Tables.STAGING_JOBS}
                SET is_primary_version = TRUE
                WHERE id = %s
                RETURNING *
                """,
                (job_id,),
            )
            return fetch_one(cur)

