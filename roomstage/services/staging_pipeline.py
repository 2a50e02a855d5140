"""
Job Submission Pipeline.

    validate → balance check → pick provider → hold credits → store original
    → insert job → dispatch on provider capability:
        sync  : stage inline, reconciler completes or fails the job
        async : record the vendor handle, job stays 'processing'

The job's cost is held on the wallet before the row exists. The reconciler
captures the hold on completion and releases it on failure, so overlapping
jobs can never spend the same credit.
"""

from __future__ import annotations

import time
import uuid
from typing import Any, Dict, Optional

from roomstage.config import config
from roomstage.errors import InsufficientCreditsError, ValidationError
from roomstage.services.job_store import STATUS_PROCESSING, JobStore
from roomstage.services.provider_router import provider_router
from roomstage.services.reconciler import reconciler as default_reconciler
from roomstage.services.staging_prompts import FURNITURE_STYLES, ROOM_TYPES
from roomstage.services.staging_providers import StagingProvider
from roomstage.services.storage_service import build_image_key, storage_service
from roomstage.services.wallet_service import InsufficientBalance, WalletService


def status_poll_url(job_id: str) -> str:
    return f"/api/staging/{job_id}/status"


def validate_selection(room_type: Any, style: Any) -> None:
    if room_type not in ROOM_TYPES:
        raise ValidationError(
            f"Invalid room_type: {room_type!r}",
            details={"allowed": sorted(ROOM_TYPES)},
        )
    if style not in FURNITURE_STYLES:
        raise ValidationError(
            f"Invalid style: {style!r}",
            details={"allowed": sorted(FURNITURE_STYLES)},
        )


def validate_image(image_bytes: Optional[bytes], mime_type: Optional[str]) -> None:
    if not image_bytes:
        raise ValidationError("image is required")
    if (mime_type or "").lower() not in config.ACCEPTED_IMAGE_TYPES:
        raise ValidationError(
            f"Unsupported image type: {mime_type}",
            details={"allowed": list(config.ACCEPTED_IMAGE_TYPES)},
        )
    if len(image_bytes) > config.MAX_IMAGE_BYTES:
        raise ValidationError(
            f"Image too large: {len(image_bytes)} bytes (max {config.MAX_IMAGE_BYTES})",
            details={"max_bytes": config.MAX_IMAGE_BYTES},
        )


class StagingPipeline:

    def __init__(self, router=None, store=None, wallet=None, storage=None, reconciler=None):
        self.router = router or provider_router
        self.store = store or JobStore
        self.wallet = wallet or WalletService
        self.storage = storage or storage_service
        self.reconciler = reconciler or default_reconciler

    def ensure_credits(self, owner_id: str, amount: int) -> int:
        """Raise InsufficientCreditsError unless the owner can cover amount. Returns the balance."""
        check = self.wallet.check(owner_id, amount)
        if not check["sufficient"]:
            raise InsufficientCreditsError(required=amount, available=check["available"])
        return check["available"]

    def hold_credits(self, owner_id: str, amount: int, job_id: str) -> None:
        """Reserve amount for job_id under the wallet lock. Raises InsufficientCreditsError."""
        if amount <= 0:
            return
        try:
            self.wallet.reserve(owner_id, amount, job_id)
        except InsufficientBalance as e:
            raise InsufficientCreditsError(required=amount, available=e.current)

    def submit(
        self,
        owner_id: str,
        image_bytes: bytes,
        mime_type: str,
        room_type: str,
        style: str,
        property_id: Optional[str] = None,
        preferred_provider: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Submit a fresh staging job.

        Raises (all before any job row exists):
            ValidationError, InsufficientCreditsError,
            ProviderUnavailableError, StorageError
        """
        mime_type = (mime_type or "").lower()
        validate_selection(room_type, style)
        validate_image(image_bytes, mime_type)

        cost = config.CREDITS_PER_STAGING
        self.ensure_credits(owner_id, cost)

        provider, fallback_used = self.router.select_provider(preferred_provider)

        job_id = str(uuid.uuid4())
        self.hold_credits(owner_id, cost, job_id)
        try:
            original_url = self.storage.upload(
                build_image_key(owner_id, job_id, "original", mime_type), image_bytes, mime_type
            )
            job = self.store.insert_job({
                "id": job_id,
                "owner_id": owner_id,
                "property_id": property_id,
                "original_image_url": original_url,
                "room_type": room_type,
                "style": style,
                "status": STATUS_PROCESSING,
                "provider": provider.provider_id,
                "credits_used": cost,
                "is_primary_version": False,
            })
        except Exception:
            self.wallet.release(job_id, "submit_aborted")
            raise
        print(
            f"[PIPELINE] job={job_id} owner={owner_id} provider={provider.provider_id} "
            f"fallback={fallback_used} room={room_type} style={style}"
        )
        return self.dispatch(job, provider, image_bytes, mime_type, fallback_used)

    def _webhook_url(self, provider: StagingProvider) -> Optional[str]:
        if not provider.webhook_path or not config.WEBHOOK_BASE_URL:
            return None
        return f"{config.WEBHOOK_BASE_URL}{provider.webhook_path}"

    def dispatch(
        self,
        job: Dict[str, Any],
        provider: StagingProvider,
        image_bytes: bytes,
        mime_type: str,
        fallback_used: bool = False,
    ) -> Dict[str, Any]:
        """
        Run an inserted job against its provider. Shared by submit and remix.
        Any exception here fails the job; nothing is left in 'processing'
        because of a local error.
        """
        started = time.monotonic()
        try:
            if provider.supports_sync:
                result = provider.stage_image_sync(
                    image_bytes, mime_type, job["room_type"], job["style"], job["id"]
                )
                elapsed_ms = int((time.monotonic() - started) * 1000)
                if result.success and result.image_data:
                    final = self.reconciler.complete_job(
                        job, result.image_data, result.mime_type or "image/png", elapsed_ms, inline_fallback=True
                    )
                else:
                    final = self.reconciler.fail_job(job, result.error or "Staging failed", elapsed_ms)
            elif provider.supports_async:
                handle = provider.stage_image_async(
                    image_bytes, mime_type, job["room_type"], job["style"], job["id"],
                    webhook_url=self._webhook_url(provider),
                )
                final = self.store.set_external_id(job["id"], handle.prediction_id) or self.store.get_job_by_id(job["id"])
            else:
                raise RuntimeError(f"Provider {provider.provider_id} supports neither sync nor async staging")
        except Exception as e:
            print(f"[PIPELINE] ERROR: job={job['id']} provider={provider.provider_id}: {type(e).__name__}: {e}")
            final = self.reconciler.fail_job(
                job, f"Staging failed: {e}", int((time.monotonic() - started) * 1000)
            )

        return self.build_result(final, provider, fallback_used)

    def build_result(self, job: Dict[str, Any], provider: StagingProvider, fallback_used: bool = False) -> Dict[str, Any]:
        status = job.get("status")
        result = {
            "success": status != "failed",
            "job_id": str(job["id"]),
            "status": status,
            "provider": provider.provider_id,
            "async": status == STATUS_PROCESSING,
            "fallback_used": fallback_used,
            "credits_used": job.get("credits_used", 0),
            "staged_image_url": job.get("staged_image_url"),
            "error": job.get("error_message"),
        }
        if status == STATUS_PROCESSING:
            result["poll_url"] = status_poll_url(job["id"])
            result["estimated_seconds"] = provider.estimated_processing_seconds
        return result


# Singleton instance used by the rest of the app
staging_pipeline = StagingPipeline()
