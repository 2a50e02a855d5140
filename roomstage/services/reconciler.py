"""
Completion Reconciler.

Moves staging jobs out of 'processing' exactly once, whichever path gets
there first:

  - the sync pipeline (inline result from the provider)
  - the vendor webhook           (POST /api/webhooks/replicate)
  - a status poll                (GET /api/staging/<id>/status)
  - the stale-job sweep          (POST /api/admin/jobs/sweep)

Every terminal write goes through JobStore.mark_completed / mark_failed,
which only match rows still in 'processing'. The charge (capturing the
credits held at submit), the hold release on failure and the notification
run only for the caller whose write returned a row, so duplicate webhook
deliveries and webhook/poll races never double-charge or double-notify.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Mapping, Optional

from roomstage.config import config
from roomstage.db import now_utc
from roomstage.errors import StorageError, ValidationError, WebhookSignatureError
from roomstage.services.job_store import STATUS_PROCESSING, TERMINAL_STATUSES, JobStore
from roomstage.services.notification_service import NotificationService
from roomstage.services.provider_router import provider_router
from roomstage.services.storage_service import build_image_key, storage_service
from roomstage.services.staging_providers import PredictionStatus
from roomstage.services.wallet_service import WalletService
from roomstage.utils.helpers import log_event, to_data_url, truncate_error

SIGNATURE_HEADER = "webhook-signature"
TOTAL_STEPS = 4
DEFAULT_ESTIMATE_SECONDS = 10

# status -> (step, step_number, message, progress fraction for the time estimate)
_PROGRESS_STEPS = {
    "pending": ("queued", 1, "Job queued, waiting to start...", 0.0),
    "queued": ("queued", 1, "Job queued, waiting to start...", 0.0),
    "preprocessing": ("preprocessing", 2, "Analyzing room...", 0.2),
    "processing": ("generating", 3, "Generating staged image with AI...", 0.5),
    "uploading": ("uploading", 4, "Uploading final image...", 0.9),
    "completed": ("completed", 4, "Staging complete!", 1.0),
    "failed": ("failed", 0, "Staging failed", 0.0),
}


def _elapsed_ms(job: Dict[str, Any], now: datetime) -> Optional[int]:
    created_at = job.get("created_at")
    if not isinstance(created_at, datetime):
        return None
    return max(0, int((now - created_at).total_seconds() * 1000))


def _digest_matches(candidate: str, expected: str) -> bool:
    # Header values may carry non-ASCII text; compare_digest only takes ASCII str
    return hmac.compare_digest(candidate.encode("utf-8", "replace"), expected.encode("ascii"))


class CompletionReconciler:

    def __init__(
        self,
        store=None,
        wallet=None,
        storage=None,
        notifier=None,
        router=None,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.store = store or JobStore
        self.wallet = wallet or WalletService
        self.storage = storage or storage_service
        self.notifier = notifier or NotificationService
        self.router = router or provider_router
        self.clock = clock

    # ─────────────────────────────────────────────────────────────
    # Terminal transitions
    # ─────────────────────────────────────────────────────────────

    def _current(self, job: Dict[str, Any]) -> Dict[str, Any]:
        return self.store.get_job_by_id(job["id"]) or job

    def complete_job(
        self,
        job: Dict[str, Any],
        image_bytes: bytes,
        mime_type: str,
        processing_time_ms: Optional[int] = None,
        inline_fallback: bool = False,
    ) -> Dict[str, Any]:
        """
        Persist the staged image and move the job to completed.

        inline_fallback: keep the image as a data: URL when storage is down
        (sync path). Without it a storage failure fails the job.
        """
        current = self._current(job)
        if current.get("status") in TERMINAL_STATUSES:
            print(f"[RECONCILE] job={job['id']} already {current['status']}, skipping completion")
            return current

        key = build_image_key(job["owner_id"], job["id"], "staged", mime_type)
        try:
            staged_url = self.storage.upload(key, image_bytes, mime_type)
        except StorageError as e:
            if not inline_fallback:
                return self.fail_job(job, f"Failed to store staged image: {e.message}", processing_time_ms)
            print(f"[RECONCILE] job={job['id']} storage failed, keeping inline image: {e.message}")
            staged_url = to_data_url(image_bytes, mime_type)

        if processing_time_ms is None:
            processing_time_ms = _elapsed_ms(current, self.clock())

        updated = self.store.mark_completed(job["id"], staged_url, processing_time_ms)
        if updated is None:
            print(f"[RECONCILE] job={job['id']} lost completion race, no side effects")
            return self._current(job)

        self._charge(updated)
        self.notifier.staging_complete(updated["owner_id"], updated["room_type"], updated["id"])
        print(f"[RECONCILE] job={updated['id']} completed in {processing_time_ms}ms")
        return updated

    def fail_job(
        self,
        job: Dict[str, Any],
        error: Any,
        processing_time_ms: Optional[int] = None,
    ) -> Dict[str, Any]:
        if processing_time_ms is None:
            processing_time_ms = _elapsed_ms(job, self.clock())
        message = truncate_error(error)

        updated = self.store.mark_failed(job["id"], message, processing_time_ms)
        if updated is None:
            return self._current(job)

        self.wallet.release(updated["id"], "job_failed")
        self.notifier.staging_failed(updated["owner_id"], updated["room_type"], updated["id"])
        print(f"[RECONCILE] job={updated['id']} failed: {message}")
        return updated

    def _charge(self, job: Dict[str, Any]) -> None:
        amount = job.get("credits_used") or 0
        if amount <= 0:
            return
        result = self.wallet.deduct(job["owner_id"], amount, job["id"])
        if not result.get("success"):
            # Only reachable for jobs without a hold; the job stays completed
            print(
                f"[RECONCILE] WARNING: charge failed job={job['id']} owner={job['owner_id']} "
                f"amount={amount} balance={result.get('previous_balance')}"
            )
            log_event("charge_shortfall", {"job_id": str(job["id"]), "amount": amount})
            return
        self.notifier.low_credits(job["owner_id"], result["new_balance"])

    # ─────────────────────────────────────────────────────────────
    # Async results (shared by webhook, poll, sweep)
    # ─────────────────────────────────────────────────────────────

    def apply_prediction(self, job: Dict[str, Any], prediction: PredictionStatus) -> Dict[str, Any]:
        if job.get("status") != STATUS_PROCESSING:
            return job
        if not prediction.is_terminal:
            return job

        if prediction.predict_time:
            processing_time_ms = int(round(prediction.predict_time * 1000))
        else:
            processing_time_ms = _elapsed_ms(job, self.clock())

        if prediction.status == "succeeded":
            if not prediction.output:
                return self.fail_job(job, "Prediction succeeded without output", processing_time_ms)
            try:
                image_bytes, content_type = self._download(job, prediction.output[0])
            except Exception as e:
                print(f"[RECONCILE] job={job['id']} output download failed: {e}")
                return self.fail_job(job, f"Failed to process result: {e}", processing_time_ms)
            return self.complete_job(job, image_bytes, content_type, processing_time_ms)

        return self.fail_job(job, prediction.error or f"Prediction {prediction.status}", processing_time_ms)

    def _download(self, job: Dict[str, Any], url: str):
        provider = self.router.get_provider(job.get("provider") or "")
        if provider is not None:
            return provider.download_output(url)
        return self.storage.fetch(url)

    def refresh_job(self, job: Dict[str, Any]) -> Dict[str, Any]:
        """
        Poll path. Queries the vendor for a processing async job and applies
        the result. Vendor errors are logged and the stored state returned.
        """
        if job.get("status") != STATUS_PROCESSING or not job.get("external_job_id"):
            return job
        provider = self.router.get_provider(job.get("provider") or "")
        if provider is None or not provider.supports_async:
            return job
        try:
            prediction = provider.get_prediction_status(job["external_job_id"])
        except Exception as e:
            print(f"[RECONCILE] poll failed job={job['id']} provider={provider.provider_id}: {e}")
            return job
        return self.apply_prediction(job, prediction)

    # ─────────────────────────────────────────────────────────────
    # Webhook
    # ─────────────────────────────────────────────────────────────

    def verify_webhook_signature(
        self,
        raw_body: bytes,
        signature: Optional[str],
        secret: Optional[str] = None,
        now: Optional[float] = None,
    ) -> None:
        """
        Accepts either "t=<unix>,v1=<hex>" (HMAC over "<t>.<body>", replay
        window WEBHOOK_TOLERANCE_SECONDS) or "sha256=<hex>" (HMAC over body).

        Raises:
            WebhookSignatureError
        """
        secret = config.REPLICATE_WEBHOOK_SECRET if secret is None else secret
        if not secret:
            if config.IS_DEV:
                print("[WEBHOOK] No REPLICATE_WEBHOOK_SECRET configured, skipping validation (dev)")
                return
            raise WebhookSignatureError("Webhook secret not configured")
        if not signature:
            raise WebhookSignatureError(f"Missing {SIGNATURE_HEADER} header")

        key = secret.encode("utf-8")
        signature = signature.strip()

        if signature.startswith("sha256="):
            expected = hmac.new(key, raw_body, hashlib.sha256).hexdigest()
            if _digest_matches(signature[len("sha256="):], expected):
                return
            raise WebhookSignatureError("Invalid signature")

        parts = dict(p.split("=", 1) for p in signature.split(",") if "=" in p)
        timestamp = parts.get("t")
        provided = [p.split("=", 1)[1] for p in signature.split(",") if p.startswith("v1=")]
        if not timestamp or not provided:
            raise WebhookSignatureError("Invalid signature format")
        try:
            ts = int(timestamp)
        except ValueError:
            raise WebhookSignatureError("Invalid signature timestamp")

        current = time.time() if now is None else now
        if abs(current - ts) > config.WEBHOOK_TOLERANCE_SECONDS:
            raise WebhookSignatureError("Webhook timestamp too old")

        expected = hmac.new(key, f"{timestamp}.".encode("utf-8") + raw_body, hashlib.sha256).hexdigest()
        if not any(_digest_matches(candidate, expected) for candidate in provided):
            raise WebhookSignatureError("Invalid signature")

    def handle_webhook(self, raw_body: bytes, headers: Mapping[str, str]) -> Dict[str, Any]:
        """
        Returns the acknowledgement body (HTTP 200).

        Raises:
            WebhookSignatureError – 401, nothing mutated
            ValidationError       – 400, malformed body
        """
        self.verify_webhook_signature(raw_body, headers.get(SIGNATURE_HEADER))

        try:
            payload = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError):
            raise ValidationError("Invalid JSON")
        if not isinstance(payload, dict) or not payload.get("id"):
            raise ValidationError("Webhook payload missing prediction id")

        prediction = PredictionStatus.from_payload(payload)
        print(f"[WEBHOOK] prediction={prediction.id} status={prediction.status}")

        job = self.store.get_job_by_external_id(prediction.id)
        if job is None:
            # 200 so the vendor stops retrying
            print(f"[WEBHOOK] No job for prediction {prediction.id}, ignoring")
            return {"ok": True, "message": "Job not found, ignoring"}

        if job.get("status") in TERMINAL_STATUSES:
            return {"ok": True, "message": "Already processed", "job_id": str(job["id"])}

        final = self.apply_prediction(job, prediction)
        return {"ok": True, "job_id": str(final["id"]), "status": final.get("status")}

    # ─────────────────────────────────────────────────────────────
    # Progress projection
    # ─────────────────────────────────────────────────────────────

    def _estimate_seconds(self, job: Dict[str, Any]) -> int:
        provider = self.router.get_provider(job.get("provider") or "")
        if provider is None:
            return DEFAULT_ESTIMATE_SECONDS
        return provider.estimated_processing_seconds

    def project_progress(self, job: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
        """Advisory step label and remaining-time estimate for pollers."""
        status = job.get("status") or ""
        step, number, message, fraction = _PROGRESS_STEPS.get(status, ("unknown", 0, "Unknown status", 0.0))

        remaining = None
        if status not in TERMINAL_STATUSES:
            now = now or self.clock()
            elapsed_ms = _elapsed_ms(job, now) or 0
            estimate = self._estimate_seconds(job)
            remaining = int(round(max(0.0, estimate * (1 - fraction) - (elapsed_ms / 1000.0) * fraction)))

        return {
            "progress": {
                "step": step,
                "step_number": number,
                "total_steps": TOTAL_STEPS,
                "message": message,
            },
            "estimated_time_remaining": remaining,
        }

    # ─────────────────────────────────────────────────────────────
    # Stale sweep
    # ─────────────────────────────────────────────────────────────

    def sweep_stale_jobs(self, max_age_minutes: Optional[int] = None) -> Dict[str, int]:
        """
        Fail jobs stuck in 'processing'. Async jobs get one last poll first.
        Never scheduled in-process; run from the admin route or the CLI.
        """
        max_age = config.STALE_JOB_TIMEOUT_MINUTES if max_age_minutes is None else max_age_minutes
        cutoff = self.clock() - timedelta(minutes=max_age)
        stale = self.store.list_stale_processing_jobs(cutoff)

        summary = {"checked": len(stale), "completed": 0, "failed": 0, "timed_out": 0}
        for job in stale:
            job = self.refresh_job(job)
            if job.get("status") == STATUS_PROCESSING:
                job = self.fail_job(job, "Staging timed out")
                if job.get("status") == "failed":
                    summary["timed_out"] += 1
                continue
            if job.get("status") == "completed":
                summary["completed"] += 1
            elif job.get("status") == "failed":
                summary["failed"] += 1

        print(f"[RECONCILE] Sweep cutoff={cutoff.isoformat()} {summary}")
        return summary


# Singleton instance used by the rest of the app
reconciler = CompletionReconciler()
