"""
In-app notifications.

Fire-and-forget: a failed insert is logged and never propagates, so a
notification problem can't undo a job state change that already committed.
"""

from typing import Optional

from roomstage.config import config
from roomstage.db import DatabaseError, execute, Tables
from roomstage.services.staging_prompts import room_label
from roomstage.utils.helpers import log_db_continue


class NotificationType:
    STAGING_COMPLETE = "staging_complete"
    STAGING_FAILED = "staging_failed"
    LOW_CREDITS = "low_credits"


class NotificationService:

    @staticmethod
    def notify(owner_id: str, type: str, title: str, message: str, link: Optional[str] = None) -> bool:
        try:
            execute(
                f"""
                INSERT INTO {Tables.NOTIFICATIONS} (owner_id, type, title, message, link, created_at)
                VALUES (%s, %s, %s, %s, %s, NOW())
                """,
                (owner_id, type, title, message, link),
            )
            print(f"[NOTIFY] {type} -> owner={owner_id}")
            return True
        except DatabaseError as e:
            log_db_continue(f"notify:{type}", e)
            return False

    @staticmethod
    def staging_complete(owner_id: str, room_type: str, job_id: str) -> bool:
        return NotificationService.notify(
            owner_id,
            NotificationType.STAGING_COMPLETE,
            "Staging Complete",
            f"Your {room_label(room_type)} staging is ready to view!",
            "/history",
        )

    @staticmethod
    def staging_failed(owner_id: str, room_type: str, job_id: str) -> bool:
        return NotificationService.notify(
            owner_id,
            NotificationType.STAGING_FAILED,
            "Staging Failed",
            f"Your {room_label(room_type)} staging could not be completed. Please try again.",
            "/history",
        )

    @staticmethod
    def low_credits(owner_id: str, balance: int) -> bool:
        if balance > config.LOW_CREDITS_THRESHOLD:
            return False
        return NotificationService.notify(
            owner_id,
            NotificationType.LOW_CREDITS,
            "Low Credits",
            f"You have {balance} credit{'s' if balance != 1 else ''} remaining. Top up to keep staging.",
            "/billing",
        )
