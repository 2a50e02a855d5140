"""
Version / Remix Manager.

A remix re-stages a completed job's original photo with a different room
type or style. Jobs sharing an original photo form a lineage (version group)
keyed by the content hash of the original image reference.

Pricing:
    the first FREE_REMIXES_PER_IMAGE remixes of a lineage are free,
    later ones cost CREDITS_PER_REMIX and go through the balance check.

A free slot is claimed (conditional UPDATE) in the same transaction that
inserts the remix job, so a failed insert never burns a slot. A remix that
loses the last free slot to a concurrent request is billed instead; billed
remixes hold their cost on the wallet like fresh submissions.
"""

from __future__ import annotations

import uuid
from typing import Any, Dict, Optional

from roomstage.config import config
from roomstage.errors import JobNotFoundError, NotFoundError, ValidationError
from roomstage.services.job_store import STATUS_COMPLETED, STATUS_PROCESSING
from roomstage.services.staging_pipeline import staging_pipeline, validate_selection
from roomstage.utils.helpers import compute_sha256


def identify_lineage(original_image_url: str) -> str:
    """Same original reference, same lineage key."""
    return compute_sha256(original_image_url or "")


def free_remixes_remaining(group: Optional[Dict[str, Any]]) -> int:
    used = (group or {}).get("free_remixes_used") or 0
    return max(0, config.FREE_REMIXES_PER_IMAGE - used)


class RemixService:

    def __init__(self, pipeline=None, store=None):
        self.pipeline = pipeline or staging_pipeline
        self.store = store or self.pipeline.store

    def remix(
        self,
        owner_id: str,
        job_id: str,
        room_type: str,
        style: str,
        property_id: Optional[str] = None,
        preferred_provider: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a new version of job_id's original photo.

        Raises (before any job row exists):
            JobNotFoundError, ValidationError, InsufficientCreditsError,
            ProviderUnavailableError
        """
        parent = self.store.get_job(job_id, owner_id)
        if not parent:
            raise JobNotFoundError(job_id)
        if parent.get("status") != STATUS_COMPLETED:
            raise ValidationError(
                "Only completed stagings can be remixed",
                details={"status": parent.get("status")},
            )
        validate_selection(room_type, style)

        lineage = identify_lineage(parent["original_image_url"])
        existing_group = self.store.find_group(owner_id, lineage)
        is_free = free_remixes_remaining(existing_group) > 0
        if not is_free:
            self.pipeline.ensure_credits(owner_id, config.CREDITS_PER_REMIX)

        provider, fallback_used = self.pipeline.router.select_provider(preferred_provider)

        group = self.store.ensure_group_for_parent(owner_id, parent, lineage)
        if group.get("created"):
            print(f"[REMIX] Created version group {group['id']} for job={parent['id']}")

        new_id = str(uuid.uuid4())
        row = {
            "id": new_id,
            "owner_id": owner_id,
            "property_id": property_id if property_id is not None else parent.get("property_id"),
            "original_image_url": parent["original_image_url"],
            "room_type": room_type,
            "style": style,
            "status": STATUS_PROCESSING,
            "provider": provider.provider_id,
            "credits_used": 0,
            "version_group_id": group["id"],
            "parent_job_id": parent["id"],
            "is_primary_version": False,
        }

        job = None
        if is_free:
            job = self.store.insert_free_remix_job(row, config.FREE_REMIXES_PER_IMAGE)
            if job is None:
                print(f"[REMIX] Free remix quota exhausted concurrently for group={group['id']}, billing")
                is_free = False

        if job is None:
            row["credits_used"] = config.CREDITS_PER_REMIX
            self.pipeline.hold_credits(owner_id, row["credits_used"], new_id)
            try:
                job = self.store.insert_job(row)
            except Exception:
                self.pipeline.wallet.release(new_id, "remix_aborted")
                raise

        cost = job.get("credits_used") or 0
        group = self.store.get_group(group["id"], owner_id) or group
        print(
            f"[REMIX] job={new_id} parent={parent['id']} group={group['id']} "
            f"free={is_free} cost={cost} provider={provider.provider_id}"
        )

        try:
            image_bytes, mime_type = self.pipeline.storage.fetch(parent["original_image_url"])
        except Exception as e:
            print(f"[REMIX] ERROR: original fetch failed job={new_id}: {e}")
            final = self.pipeline.reconciler.fail_job(job, f"Failed to load original image: {e}")
            result = self.pipeline.build_result(final, provider, fallback_used)
        else:
            result = self.pipeline.dispatch(
                job, provider, image_bytes, mime_type or "image/jpeg", fallback_used
            )

        result.update({
            "is_free_remix": is_free,
            "free_remixes_remaining": free_remixes_remaining(group),
            "version_group_id": str(group["id"]),
            "parent_job_id": str(parent["id"]),
        })
        return result

    def set_primary(self, owner_id: str, job_id: str) -> Dict[str, Any]:
        job = self.store.set_primary(job_id, owner_id)
        if not job:
            raise JobNotFoundError(job_id)
        print(f"[REMIX] Primary version set job={job_id} group={job.get('version_group_id')}")
        return job

    def assign_property(self, owner_id: str, job_id: str, property_id: Optional[str]) -> Dict[str, Any]:
        job = self.store.assign_property(job_id, owner_id, property_id)
        if not job:
            raise JobNotFoundError(job_id)
        return job

    def list_versions(
        self,
        owner_id: str,
        group_id: Optional[str] = None,
        job_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        All versions of a lineage, oldest first. Looked up by group id, or by
        any member job id. A job that was never remixed is its own lineage.
        """
        if not group_id and not job_id:
            raise ValidationError("group_id or job_id is required")

        if not group_id:
            job = self.store.get_job(job_id, owner_id)
            if not job:
                raise JobNotFoundError(job_id)
            group_id = job.get("version_group_id")
            if not group_id:
                return {
                    "versions": [job],
                    "version_group": None,
                    "free_remixes_remaining": config.FREE_REMIXES_PER_IMAGE,
                    "total_versions": 1,
                }

        group = self.store.get_group(group_id, owner_id)
        if not group:
            raise NotFoundError("Version group not found")
        versions = self.store.list_group_jobs(group["id"], owner_id)
        return {
            "versions": versions,
            "version_group": group,
            "free_remixes_remaining": free_remixes_remaining(group),
            "total_versions": len(versions),
        }


# Singleton instance used by the rest of the app
remix_service = RemixService()
