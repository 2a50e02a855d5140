"""
Gemini image-edit provider (synchronous).

Endpoint: POST https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent
Auth:     x-goog-api-key: <GEMINI_API_KEY>

The response carries the staged image as an inlineData part; a text-only
response means the model declined to edit and is reported as a failure.
"""

from __future__ import annotations

import base64
from typing import Any, Dict, Optional, Tuple

import requests
from requests.exceptions import RequestException

from roomstage.config import config
from roomstage.services.staging_prompts import build_edit_prompt
from roomstage.services.staging_providers.base import (
    CONNECT_TIMEOUT,
    READ_TIMEOUT,
    ProviderHealth,
    StagingProvider,
    SyncStagingResult,
)

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"


def _extract_image(result: Dict[str, Any]) -> Tuple[Optional[bytes], Optional[str], str]:
    """Return (image_bytes, mime_type, text) from a generateContent response."""
    text_parts = []
    for candidate in result.get("candidates") or []:
        for part in (candidate.get("content") or {}).get("parts") or []:
            inline = part.get("inlineData") or part.get("inline_data")
            if inline and inline.get("data"):
                mime = inline.get("mimeType") or inline.get("mime_type") or "image/png"
                return base64.b64decode(inline["data"]), mime, ""
            if part.get("text"):
                text_parts.append(part["text"])
    return None, None, " ".join(text_parts).strip()


class GeminiProvider(StagingProvider):
    provider_id = "gemini"
    display_name = "Google Gemini"
    supports_sync = True
    supports_async = False
    estimated_processing_seconds = 10

    def is_configured(self) -> Tuple[bool, Optional[str]]:
        if not config.GEMINI_API_KEY:
            return False, "GEMINI_API_KEY not configured"
        return True, None

    def check_health(self) -> ProviderHealth:
        # No dedicated health endpoint; a configured key counts as available
        ok, err = self.is_configured()
        return ProviderHealth(provider=self.provider_id, available=ok, error_message=err)

    def stage_image_sync(
        self, image_bytes: bytes, mime_type: str, room_type: str, style: str, job_id: str
    ) -> SyncStagingResult:
        self.require_configured()

        url = f"{GEMINI_API_BASE}/models/{config.GEMINI_IMAGE_MODEL}:generateContent"
        payload = {
            "contents": [{
                "parts": [
                    {"inline_data": {"mime_type": mime_type, "data": base64.b64encode(image_bytes).decode("ascii")}},
                    {"text": build_edit_prompt(room_type, style)},
                ]
            }],
            "generationConfig": {"responseModalities": ["TEXT", "IMAGE"]},
        }
        headers = {"x-goog-api-key": config.GEMINI_API_KEY, "Content-Type": "application/json"}

        print(f"[Gemini] Staging job={job_id} room={room_type} style={style}")
        try:
            r = requests.post(url, headers=headers, json=payload, timeout=(CONNECT_TIMEOUT, READ_TIMEOUT))
        except RequestException as e:
            return SyncStagingResult(success=False, error=f"Gemini connection error: {e}")

        if not r.ok:
            body = r.text[:500] if r.text else ""
            print(f"[Gemini] ERROR: HTTP {r.status_code}: {body[:200]}")
            return SyncStagingResult(success=False, error=f"Gemini API error: {r.status_code} - {body}")

        try:
            image, out_mime, text = _extract_image(r.json())
        except ValueError as e:
            return SyncStagingResult(success=False, error=f"Gemini returned invalid JSON: {e}")

        if image is None:
            return SyncStagingResult(success=False, error=text or "No staged image was generated.")
        return SyncStagingResult(success=True, image_data=image, mime_type=out_mime)
