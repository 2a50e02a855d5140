"""
Staging provider interface.

Every backend declares its capabilities (supports_sync / supports_async) and
the pipeline dispatches on those flags, never on the provider id.

Expected vendor failures come back as results with success=False. Only
missing credentials raise (ProviderConfigError).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import requests
from requests.exceptions import RequestException

from roomstage.errors import ProviderConfigError

CONNECT_TIMEOUT = 15        # seconds
READ_TIMEOUT = 120          # seconds for generation calls
HEALTH_TIMEOUT = (5, 10)
DOWNLOAD_TIMEOUT = (15, 120)


@dataclass
class ProviderHealth:
    provider: str
    available: bool
    rate_limited: bool = False
    error_message: Optional[str] = None
    reset_at: Optional[datetime] = None

    @property
    def usable(self) -> bool:
        return self.available and not self.rate_limited

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "available": self.available,
            "rate_limited": self.rate_limited,
            "error_message": self.error_message,
            "reset_at": self.reset_at.isoformat() if self.reset_at else None,
        }


@dataclass
class SyncStagingResult:
    success: bool
    image_data: Optional[bytes] = None
    mime_type: Optional[str] = None
    error: Optional[str] = None


@dataclass
class AsyncStagingResult:
    prediction_id: str
    estimated_seconds: int


@dataclass
class PredictionStatus:
    """Vendor-side state of an async prediction."""

    id: str
    status: str                      # starting | processing | succeeded | failed | canceled
    output: List[str] = field(default_factory=list)
    error: Optional[str] = None
    predict_time: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in ("succeeded", "failed", "canceled")

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "PredictionStatus":
        output = payload.get("output")
        if isinstance(output, str):
            output = [output]
        metrics = payload.get("metrics") or {}
        return cls(
            id=str(payload.get("id") or ""),
            status=str(payload.get("status") or ""),
            output=[o for o in (output or []) if isinstance(o, str)],
            error=payload.get("error"),
            predict_time=metrics.get("predict_time"),
        )


class StagingProvider:
    """Base interface every staging provider must implement."""

    provider_id: str = "unknown"
    display_name: str = "Unknown"
    supports_sync: bool = False
    supports_async: bool = False
    estimated_processing_seconds: int = 10
    # Route the vendor calls back on; None for providers without webhooks
    webhook_path: Optional[str] = None

    def is_configured(self) -> Tuple[bool, Optional[str]]:
        return False, "Not implemented"

    def require_configured(self) -> None:
        ok, err = self.is_configured()
        if not ok:
            raise ProviderConfigError(err or f"{self.provider_id} is not configured")

    def check_health(self) -> ProviderHealth:
        ok, err = self.is_configured()
        return ProviderHealth(provider=self.provider_id, available=ok, error_message=err)

    def stage_image_sync(
        self, image_bytes: bytes, mime_type: str, room_type: str, style: str, job_id: str
    ) -> SyncStagingResult:
        raise NotImplementedError(f"{self.provider_id} does not support sync staging")

    def stage_image_async(
        self,
        image_bytes: bytes,
        mime_type: str,
        room_type: str,
        style: str,
        job_id: str,
        webhook_url: Optional[str] = None,
    ) -> AsyncStagingResult:
        raise NotImplementedError(f"{self.provider_id} does not support async staging")

    def get_prediction_status(self, external_id: str) -> PredictionStatus:
        raise NotImplementedError(f"{self.provider_id} has no prediction status")

    def download_output(self, url: str) -> Tuple[bytes, str]:
        """Fetch a vendor output URL. Returns (bytes, content_type)."""
        try:
            r = requests.get(url, timeout=DOWNLOAD_TIMEOUT, allow_redirects=True)
        except RequestException as e:
            raise RuntimeError(f"Failed to download output: {e}") from e
        if not r.ok:
            raise RuntimeError(f"Failed to download output: HTTP {r.status_code}")
        content_type = r.headers.get("Content-Type", "image/png").split(";", 1)[0]
        print(f"[{self.display_name}] Downloaded {len(r.content)} bytes, type={content_type}")
        return r.content, content_type


def fetch_health(provider_id: str, url: str, headers: Dict[str, str]) -> ProviderHealth:
    """GET a cheap authenticated endpoint and translate the response into health."""
    try:
        r = requests.get(url, headers=headers, timeout=HEALTH_TIMEOUT)
    except RequestException as e:
        return ProviderHealth(provider=provider_id, available=False, error_message=str(e))

    if r.status_code == 429:
        reset_at = None
        retry_after = r.headers.get("Retry-After")
        if retry_after and retry_after.isdigit():
            reset_at = datetime.now(timezone.utc) + timedelta(seconds=int(retry_after))
        return ProviderHealth(
            provider=provider_id,
            available=False,
            rate_limited=True,
            error_message="Rate limited",
            reset_at=reset_at,
        )
    return ProviderHealth(
        provider=provider_id,
        available=r.ok,
        error_message=None if r.ok else f"HTTP {r.status_code}",
    )
