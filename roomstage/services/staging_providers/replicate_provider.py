"""
Replicate (Stable Diffusion) provider (asynchronous).

Base URL: https://api.replicate.com/v1
Auth:     Authorization: Bearer <REPLICATE_API_TOKEN>

Endpoints used:
  GET  /account              → health (429 means rate limited)
  POST /predictions          → start a prediction, optional completion webhook
  GET  /predictions/{id}     → poll prediction status

Output URLs are ephemeral. The reconciler downloads and persists them as soon
as a prediction succeeds.
"""

from __future__ import annotations

import base64
from typing import Any, Dict, Optional, Tuple

import requests
from requests.exceptions import RequestException

from roomstage.config import config
from roomstage.services.staging_prompts import NEGATIVE_PROMPT, build_keyword_prompt
from roomstage.services.staging_providers.base import (
    CONNECT_TIMEOUT,
    READ_TIMEOUT,
    AsyncStagingResult,
    PredictionStatus,
    ProviderHealth,
    StagingProvider,
    fetch_health,
)

DEFAULT_MODEL_VERSION = "lucataco/sdxl-controlnet:latest"


class ReplicateError(Exception):
    """Typed exception for Replicate API errors."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"Replicate API error {status_code}: {message}")


def _parse_error(r: requests.Response) -> ReplicateError:
    body_text = r.text[:500] if r.text else ""
    try:
        body = r.json()
        msg = body.get("detail") or body.get("error") or body_text
    except ValueError:
        msg = body_text
    return ReplicateError(r.status_code, str(msg))


class ReplicateProvider(StagingProvider):
    provider_id = "stable-diffusion"
    display_name = "Stable Diffusion"
    supports_sync = False
    supports_async = True
    estimated_processing_seconds = 30
    webhook_path = "/api/webhooks/replicate"

    def is_configured(self) -> Tuple[bool, Optional[str]]:
        if not config.REPLICATE_API_TOKEN:
            return False, "REPLICATE_API_TOKEN not configured"
        return True, None

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {config.REPLICATE_API_TOKEN}",
            "Content-Type": "application/json",
        }

    def check_health(self) -> ProviderHealth:
        ok, err = self.is_configured()
        if not ok:
            return ProviderHealth(provider=self.provider_id, available=False, error_message=err)
        return fetch_health(self.provider_id, f"{config.REPLICATE_API_BASE}/account", self._headers())

    def stage_image_async(
        self,
        image_bytes: bytes,
        mime_type: str,
        room_type: str,
        style: str,
        job_id: str,
        webhook_url: Optional[str] = None,
    ) -> AsyncStagingResult:
        """
        Start a prediction. Raises ReplicateError when the vendor refuses it;
        the pipeline turns that into a failed job.
        """
        self.require_configured()

        encoded = base64.b64encode(image_bytes).decode("ascii")
        body: Dict[str, Any] = {
            "version": config.REPLICATE_MODEL_VERSION or DEFAULT_MODEL_VERSION,
            "input": {
                "prompt": build_keyword_prompt(room_type, style),
                "negative_prompt": NEGATIVE_PROMPT,
                "image": f"data:{mime_type};base64,{encoded}",
                "num_inference_steps": 30,
                "guidance_scale": 7.5,
            },
        }
        if webhook_url:
            body["webhook"] = webhook_url
            body["webhook_events_filter"] = ["completed"]

        try:
            r = requests.post(
                f"{config.REPLICATE_API_BASE}/predictions",
                headers=self._headers(),
                json=body,
                timeout=(CONNECT_TIMEOUT, READ_TIMEOUT),
            )
        except RequestException as e:
            raise ReplicateError(0, f"Connection error: {e}") from e
        if not r.ok:
            raise _parse_error(r)

        prediction = r.json()
        print(f"[Replicate] Prediction created job={job_id} prediction={prediction.get('id')}")
        return AsyncStagingResult(
            prediction_id=prediction["id"],
            estimated_seconds=self.estimated_processing_seconds,
        )

    def get_prediction_status(self, external_id: str) -> PredictionStatus:
        self.require_configured()
        headers = self._headers()
        headers.pop("Content-Type", None)
        try:
            r = requests.get(
                f"{config.REPLICATE_API_BASE}/predictions/{external_id}",
                headers=headers,
                timeout=(CONNECT_TIMEOUT, 30),
            )
        except RequestException as e:
            raise ReplicateError(0, f"Connection error: {e}") from e
        if not r.ok:
            raise _parse_error(r)
        return PredictionStatus.from_payload(r.json())
