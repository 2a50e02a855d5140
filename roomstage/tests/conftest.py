"""
Shared fixtures: in-memory stand-ins for the record store, wallet, object
storage and notifier, plus stub sync/async providers.

The fakes mirror the guarded writes of the real adapters (status-guarded
terminal updates, conditional free-remix claim, idempotent per-job charge)
under a lock, so race tests exercise the same contract the SQL enforces.

Run locally:
    python -m pytest roomstage/tests -v
"""

from __future__ import annotations

import os

os.environ.setdefault("FLASK_ENV", "testing")
os.environ.pop("DATABASE_URL", None)

import copy
import threading
import uuid
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

import pytest

from roomstage.config import config
from roomstage.db import DatabaseQueryError, now_utc
from roomstage.errors import StorageError
from roomstage.services.job_store import STATUS_COMPLETED, STATUS_FAILED, STATUS_PROCESSING
from roomstage.services.provider_router import ProviderRouter
from roomstage.services.reconciler import CompletionReconciler
from roomstage.services.remix_service import RemixService
from roomstage.services.staging_pipeline import StagingPipeline
from roomstage.services.staging_providers import (
    AsyncStagingResult,
    PredictionStatus,
    ProviderHealth,
    StagingProvider,
    SyncStagingResult,
)
from roomstage.services.wallet_service import InsufficientBalance
from roomstage.utils.helpers import parse_data_url

OWNER = "owner-1"
OTHER_OWNER = "owner-2"
ORIGINAL_BYTES = b"\xff\xd8\xff\xe0original-room-photo"
STAGED_BYTES = b"\x89PNG\r\n\x1a\nstaged-room"


# ─────────────────────────────────────────────────────────────
# Record store
# ─────────────────────────────────────────────────────────────

class FakeJobStore:

    def __init__(self):
        self.jobs: Dict[str, Dict[str, Any]] = {}
        self.groups: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()
        self._seq = 0
        self.fail_inserts = False

    def _next_created_at(self):
        self._seq += 1
        return now_utc() + timedelta(microseconds=self._seq)

    def _insert_row(self, job: Dict[str, Any]) -> Dict[str, Any]:
        if self.fail_inserts:
            raise DatabaseQueryError("insert into staging_jobs failed")
        row = {
            "external_job_id": None,
            "staged_image_url": None,
            "error_message": None,
            "processing_time_ms": None,
            "completed_at": None,
            "version_group_id": None,
            "parent_job_id": None,
            "property_id": None,
            "created_at": self._next_created_at(),
        }
        row.update(job)
        row["is_primary_version"] = bool(job.get("is_primary_version"))
        self.jobs[row["id"]] = row
        return copy.deepcopy(row)

    def insert_job(self, job: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            return self._insert_row(job)

    def insert_free_remix_job(self, job: Dict[str, Any], limit: int) -> Optional[Dict[str, Any]]:
        # One transaction in SQL: a failed insert leaves the counter untouched
        with self._lock:
            group = self.groups.get(job["version_group_id"])
            if not group or group["free_remixes_used"] >= limit:
                return None
            row = self._insert_row(job)
            group["free_remixes_used"] += 1
            return row

    def backdate(self, job_id: str, minutes: int) -> None:
        with self._lock:
            self.jobs[job_id]["created_at"] = now_utc() - timedelta(minutes=minutes)

    def get_job(self, job_id: str, owner_id: str) -> Optional[Dict[str, Any]]:
        row = self.jobs.get(job_id)
        if not row or row["owner_id"] != owner_id:
            return None
        return copy.deepcopy(row)

    def get_job_by_id(self, job_id: str) -> Optional[Dict[str, Any]]:
        row = self.jobs.get(job_id)
        return copy.deepcopy(row) if row else None

    def get_job_by_external_id(self, external_job_id: str) -> Optional[Dict[str, Any]]:
        for row in self.jobs.values():
            if row["external_job_id"] == external_job_id:
                return copy.deepcopy(row)
        return None

    def _guarded_update(self, job_id: str, **fields) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self.jobs.get(job_id)
            if not row or row["status"] != STATUS_PROCESSING:
                return None
            row.update(fields)
            return copy.deepcopy(row)

    def set_external_id(self, job_id: str, external_job_id: str):
        return self._guarded_update(job_id, external_job_id=external_job_id)

    def mark_completed(self, job_id: str, staged_image_url: str, processing_time_ms):
        return self._guarded_update(
            job_id,
            status=STATUS_COMPLETED,
            staged_image_url=staged_image_url,
            error_message=None,
            processing_time_ms=processing_time_ms,
            completed_at=now_utc(),
        )

    def mark_failed(self, job_id: str, error_message: str, processing_time_ms):
        return self._guarded_update(
            job_id,
            status=STATUS_FAILED,
            error_message=error_message,
            staged_image_url=None,
            credits_used=0,
            processing_time_ms=processing_time_ms,
            completed_at=now_utc(),
        )

    def list_stale_processing_jobs(self, older_than, limit: int = 100) -> List[Dict[str, Any]]:
        rows = [
            r for r in self.jobs.values()
            if r["status"] == STATUS_PROCESSING and r["created_at"] < older_than
        ]
        rows.sort(key=lambda r: r["created_at"])
        return [copy.deepcopy(r) for r in rows[:limit]]

    def assign_property(self, job_id: str, owner_id: str, property_id):
        with self._lock:
            row = self.jobs.get(job_id)
            if not row or row["owner_id"] != owner_id:
                return None
            row["property_id"] = property_id
            return copy.deepcopy(row)

    def get_group(self, group_id: str, owner_id: str):
        group = self.groups.get(group_id)
        if not group or group["owner_id"] != owner_id:
            return None
        return dict(group)

    def find_group(self, owner_id: str, original_image_hash: str):
        for group in self.groups.values():
            if group["owner_id"] == owner_id and group["original_image_hash"] == original_image_hash:
                return dict(group)
        return None

    def ensure_group_for_parent(self, owner_id: str, parent: Dict[str, Any], original_image_hash: str):
        with self._lock:
            group = next(
                (g for g in self.groups.values()
                 if g["owner_id"] == owner_id and g["original_image_hash"] == original_image_hash),
                None,
            )
            created = group is None
            if created:
                group = {
                    "id": str(uuid.uuid4()),
                    "owner_id": owner_id,
                    "original_image_hash": original_image_hash,
                    "original_image_url": parent["original_image_url"],
                    "free_remixes_used": 0,
                    "created_at": now_utc(),
                }
                self.groups[group["id"]] = group
            stored_parent = self.jobs[parent["id"]]
            if not stored_parent.get("version_group_id"):
                stored_parent["version_group_id"] = group["id"]
                stored_parent["is_primary_version"] = created
            result = dict(group)
            result["created"] = created
            return result

    def list_group_jobs(self, group_id: str, owner_id: str) -> List[Dict[str, Any]]:
        rows = [
            r for r in self.jobs.values()
            if r.get("version_group_id") == group_id and r["owner_id"] == owner_id
        ]
        rows.sort(key=lambda r: r["created_at"])
        return [copy.deepcopy(r) for r in rows]

    def set_primary(self, job_id: str, owner_id: str):
        with self._lock:
            row = self.jobs.get(job_id)
            if not row or row["owner_id"] != owner_id:
                return None
            if row.get("version_group_id"):
                for other in self.jobs.values():
                    if other["version_group_id"] == row["version_group_id"]:
                        other["is_primary_version"] = False
            row["is_primary_version"] = True
            return copy.deepcopy(row)

    def primaries(self, group_id: str) -> List[str]:
        return [r["id"] for r in self.jobs.values() if r.get("version_group_id") == group_id and r["is_primary_version"]]


# ─────────────────────────────────────────────────────────────
# Wallet, storage, notifications
# ─────────────────────────────────────────────────────────────

class FakeWallet:

    def __init__(self, balances: Optional[Dict[str, int]] = None):
        self.balances = dict(balances or {})
        self.charges: Dict[str, int] = {}
        self.entries: List[Dict[str, Any]] = []
        # job_id -> {"identity_id", "amount", "status"}
        self.holds: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def get_balance(self, identity_id: str) -> int:
        return self.balances.get(identity_id, 0)

    def held(self, identity_id: str) -> int:
        return sum(
            h["amount"] for h in self.holds.values()
            if h["identity_id"] == identity_id and h["status"] == "held"
        )

    def check(self, identity_id: str, amount: int) -> Dict[str, Any]:
        with self._lock:
            reserved = self.held(identity_id)
            available = max(0, self.get_balance(identity_id) - reserved)
        return {"available": available, "reserved": reserved, "sufficient": available >= amount}

    def reserve(self, identity_id: str, amount: int, job_id: str) -> Dict[str, Any]:
        with self._lock:
            balance = self.get_balance(identity_id)
            reserved = self.held(identity_id)
            if str(job_id) in self.holds:
                return {"balance": balance, "reserved": reserved, "available": balance - reserved, "is_existing": True}
            available = balance - reserved
            if available < amount:
                raise InsufficientBalance(max(0, available), -amount)
            self.holds[str(job_id)] = {"identity_id": identity_id, "amount": amount, "status": "held"}
            return {"balance": balance, "reserved": reserved + amount, "available": available - amount, "is_existing": False}

    def _release(self, job_id: str) -> bool:
        hold = self.holds.get(job_id)
        if not hold or hold["status"] != "held":
            return False
        hold["status"] = "released"
        return True

    def release(self, job_id: str, reason: str = "failed") -> bool:
        with self._lock:
            return self._release(str(job_id))

    def deduct(self, identity_id: str, amount: int, job_id: str) -> Dict[str, Any]:
        with self._lock:
            job_id = str(job_id)
            current = self.balances.get(identity_id, 0)
            if amount <= 0 or job_id in self.charges:
                return {"previous_balance": current, "new_balance": current, "success": True}
            if current < amount:
                self._release(job_id)
                return {"previous_balance": current, "new_balance": current, "success": False}
            self.balances[identity_id] = current - amount
            self.charges[job_id] = amount
            if job_id in self.holds and self.holds[job_id]["status"] == "held":
                self.holds[job_id]["status"] = "captured"
            self._record(identity_id, "staging_charge", -amount, "staging_job", job_id)
            return {"previous_balance": current, "new_balance": current - amount, "success": True}

    def _record(self, identity_id, entry_type, amount, ref_type=None, ref_id=None):
        self.entries.append({
            "id": len(self.entries) + 1,
            "identity_id": identity_id,
            "entry_type": entry_type,
            "amount_credits": amount,
            "ref_type": ref_type,
            "ref_id": ref_id,
            "created_at": now_utc(),
        })

    def add_credits(self, identity_id: str, amount: int, entry_type: str, meta=None) -> Dict[str, Any]:
        with self._lock:
            current = self.balances.get(identity_id, 0)
            self.balances[identity_id] = current + amount
            self._record(identity_id, entry_type, amount)
            return {"previous_balance": current, "new_balance": current + amount, "duplicate": False}

    def get_ledger_entries(self, identity_id: str, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
        mine = [e for e in reversed(self.entries) if e["identity_id"] == identity_id]
        return mine[offset:offset + limit]


class FakeStorage:

    BASE = "https://test-bucket.s3.eu-west-2.amazonaws.com"

    def __init__(self):
        self.objects: Dict[str, Tuple[bytes, str]] = {}
        self.fail_uploads = False
        self.fail_fetch = False

    def upload(self, key: str, data: bytes, content_type: str) -> str:
        if self.fail_uploads:
            raise StorageError("S3 upload failed: service unavailable")
        url = f"{self.BASE}/{key}"
        self.objects[url] = (data, content_type)
        return url

    def fetch(self, url: str) -> Tuple[bytes, str]:
        if self.fail_fetch:
            raise StorageError("S3 fetch failed")
        parsed = parse_data_url(url)
        if parsed:
            return parsed
        if url not in self.objects:
            raise StorageError(f"Object not found: {url}")
        return self.objects[url]


class FakeNotifier:

    def __init__(self):
        self.events: List[Tuple[str, str, Any]] = []
        self._lock = threading.Lock()

    def _record(self, kind: str, owner_id: str, ref: Any) -> bool:
        with self._lock:
            self.events.append((kind, owner_id, ref))
        return True

    def staging_complete(self, owner_id: str, room_type: str, job_id: str) -> bool:
        return self._record("staging_complete", owner_id, job_id)

    def staging_failed(self, owner_id: str, room_type: str, job_id: str) -> bool:
        return self._record("staging_failed", owner_id, job_id)

    def low_credits(self, owner_id: str, balance: int) -> bool:
        if balance > config.LOW_CREDITS_THRESHOLD:
            return False
        return self._record("low_credits", owner_id, balance)

    def of_kind(self, kind: str) -> List[Tuple[str, str, Any]]:
        return [e for e in self.events if e[0] == kind]


# ─────────────────────────────────────────────────────────────
# Stub providers
# ─────────────────────────────────────────────────────────────

class StubSyncProvider(StagingProvider):
    supports_sync = True
    supports_async = False

    def __init__(self, provider_id: str = "stub-sync", result: Optional[SyncStagingResult] = None,
                 available: bool = True, rate_limited: bool = False, raises: Optional[Exception] = None,
                 estimated_seconds: int = 10):
        self.provider_id = provider_id
        self.display_name = provider_id
        self.result = result or SyncStagingResult(success=True, image_data=STAGED_BYTES, mime_type="image/png")
        self.available = available
        self.rate_limited = rate_limited
        self.raises = raises
        self.estimated_processing_seconds = estimated_seconds
        self.calls: List[str] = []
        self.health_checks = 0

    def is_configured(self):
        return True, None

    def check_health(self) -> ProviderHealth:
        self.health_checks += 1
        return ProviderHealth(
            provider=self.provider_id,
            available=self.available,
            rate_limited=self.rate_limited,
            error_message=None if self.available else "down",
        )

    def stage_image_sync(self, image_bytes, mime_type, room_type, style, job_id):
        self.calls.append(job_id)
        if self.raises:
            raise self.raises
        return self.result


class StubAsyncProvider(StagingProvider):
    supports_sync = False
    supports_async = True
    webhook_path = "/api/webhooks/replicate"

    def __init__(self, provider_id: str = "stub-async", available: bool = True, estimated_seconds: int = 30):
        self.provider_id = provider_id
        self.display_name = provider_id
        self.available = available
        self.estimated_processing_seconds = estimated_seconds
        self.predictions: Dict[str, PredictionStatus] = {}
        self.webhook_urls: List[Optional[str]] = []
        self.poll_error: Optional[Exception] = None
        self.polls = 0
        self.downloads: List[str] = []
        self._counter = 0
        self._counter_lock = threading.Lock()

    def is_configured(self):
        return True, None

    def check_health(self) -> ProviderHealth:
        return ProviderHealth(provider=self.provider_id, available=self.available)

    def stage_image_async(self, image_bytes, mime_type, room_type, style, job_id, webhook_url=None):
        with self._counter_lock:
            self._counter += 1
            prediction_id = f"pred-{self._counter}"
        self.webhook_urls.append(webhook_url)
        self.predictions[prediction_id] = PredictionStatus(id=prediction_id, status="starting")
        return AsyncStagingResult(prediction_id=prediction_id, estimated_seconds=self.estimated_processing_seconds)

    def finish(self, prediction_id: str, status: str = "succeeded", error: Optional[str] = None,
               predict_time: Optional[float] = None) -> PredictionStatus:
        output = [f"https://replicate.delivery/{prediction_id}/out.png"] if status == "succeeded" else []
        prediction = PredictionStatus(
            id=prediction_id, status=status, output=output, error=error, predict_time=predict_time,
        )
        self.predictions[prediction_id] = prediction
        return prediction

    def get_prediction_status(self, external_id: str) -> PredictionStatus:
        self.polls += 1
        if self.poll_error:
            raise self.poll_error
        return self.predictions.get(external_id) or PredictionStatus(id=external_id, status="processing")

    def download_output(self, url: str):
        self.downloads.append(url)
        return STAGED_BYTES, "image/png"


# ─────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def pinned_config(monkeypatch):
    monkeypatch.setattr(config, "FLASK_ENV", "testing")
    monkeypatch.setattr(config, "CREDITS_PER_STAGING", 1)
    monkeypatch.setattr(config, "CREDITS_PER_REMIX", 1)
    monkeypatch.setattr(config, "FREE_REMIXES_PER_IMAGE", 2)
    monkeypatch.setattr(config, "LOW_CREDITS_THRESHOLD", 3)
    monkeypatch.setattr(config, "MAX_IMAGE_BYTES", 10 * 1024 * 1024)
    monkeypatch.setattr(config, "PUBLIC_BASE_URL", "https://api.roomstage.test")
    monkeypatch.setattr(config, "REPLICATE_WEBHOOK_SECRET", "whsec_test")
    monkeypatch.setattr(config, "WEBHOOK_TOLERANCE_SECONDS", 300)
    monkeypatch.setattr(config, "STALE_JOB_TIMEOUT_MINUTES", 60)
    monkeypatch.setattr(config, "ADMIN_TOKEN", "admin-secret")
    return config


@pytest.fixture
def store():
    return FakeJobStore()


@pytest.fixture
def wallet():
    return FakeWallet({OWNER: 10, OTHER_OWNER: 10})


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def sync_provider():
    return StubSyncProvider()


@pytest.fixture
def async_provider():
    return StubAsyncProvider()


@pytest.fixture
def router(sync_provider, async_provider):
    return ProviderRouter(
        providers=[sync_provider, async_provider],
        default_provider="stub-sync",
        fallback_order=["stub-sync", "stub-async"],
        fallback_enabled=True,
        health_ttl_seconds=60,
    )


@pytest.fixture
def reconciler(store, wallet, storage, notifier, router):
    return CompletionReconciler(store=store, wallet=wallet, storage=storage, notifier=notifier, router=router)


@pytest.fixture
def pipeline(router, store, wallet, storage, reconciler):
    return StagingPipeline(router=router, store=store, wallet=wallet, storage=storage, reconciler=reconciler)


@pytest.fixture
def remix(pipeline, store):
    return RemixService(pipeline=pipeline, store=store)


@pytest.fixture
def submit(pipeline):
    """Submit a living-room/modern job for OWNER."""
    def _submit(preferred_provider: Optional[str] = None, owner_id: str = OWNER, **overrides):
        kwargs = dict(
            owner_id=owner_id,
            image_bytes=ORIGINAL_BYTES,
            mime_type="image/jpeg",
            room_type="living-room",
            style="modern",
            preferred_provider=preferred_provider,
        )
        kwargs.update(overrides)
        return pipeline.submit(**kwargs)
    return _submit
