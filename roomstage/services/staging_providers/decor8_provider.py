"""
Decor8 AI provider (synchronous).

Endpoint: POST {DECOR8_API_BASE}/generate_designs_for_room
Health:   GET  {DECOR8_API_BASE}/speak_friend_and_enter

Decor8 answers with a URL to the generated image; the adapter downloads it
so the pipeline always receives bytes.
"""

from __future__ import annotations

import base64
from typing import Dict, Optional, Tuple

import requests
from requests.exceptions import RequestException

from roomstage.config import config
from roomstage.services.staging_prompts import STRUCTURE_NEGATIVE_PROMPT, room_label, style_label
from roomstage.services.staging_providers.base import (
    CONNECT_TIMEOUT,
    READ_TIMEOUT,
    ProviderHealth,
    StagingProvider,
    SyncStagingResult,
    fetch_health,
)

_ROOM_MAP: Dict[str, str] = {
    "living-room": "livingroom",
    "bedroom-master": "bedroom",
    "bedroom-guest": "bedroom",
    "bedroom-kids": "kidsroom",
    "dining-room": "diningroom",
    "kitchen": "kitchen",
    "home-office": "homeoffice",
    "bathroom": "bathroom",
    "outdoor-patio": "patio",
}

_STYLE_MAP: Dict[str, str] = {
    "modern": "modern",
    "traditional": "traditional",
    "minimalist": "minimalist",
    "mid-century": "midcenturymodern",
    "scandinavian": "scandinavian",
    "industrial": "industrial",
    "coastal": "coastal",
    "farmhouse": "farmhouse",
    "luxury": "luxemodern",
}


class Decor8Provider(StagingProvider):
    provider_id = "decor8"
    display_name = "Decor8 AI"
    supports_sync = True
    supports_async = False
    estimated_processing_seconds = 15

    def is_configured(self) -> Tuple[bool, Optional[str]]:
        if not config.DECOR8_API_KEY:
            return False, "DECOR8_API_KEY not configured"
        return True, None

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {config.DECOR8_API_KEY}",
            "Content-Type": "application/json",
        }

    def check_health(self) -> ProviderHealth:
        ok, err = self.is_configured()
        if not ok:
            return ProviderHealth(provider=self.provider_id, available=False, error_message=err)
        return fetch_health(self.provider_id, f"{config.DECOR8_API_BASE}/speak_friend_and_enter", self._headers())

    def stage_image_sync(
        self, image_bytes: bytes, mime_type: str, room_type: str, style: str, job_id: str
    ) -> SyncStagingResult:
        self.require_configured()

        encoded = base64.b64encode(image_bytes).decode("ascii")
        payload = {
            "input_image_url": f"data:{mime_type};base64,{encoded}",
            "room_type": _ROOM_MAP.get(room_type, "livingroom"),
            "design_style": _STYLE_MAP.get(style, "modern"),
            "num_images": 1,
            "keep_original_dimensions": True,
            "prompt": (
                f"Add {style_label(style)} style furniture to this empty {room_label(room_type)}. "
                "Professional real estate virtual staging. Only add furniture and decor, "
                "preserve all existing room features."
            ),
            "negative_prompt": STRUCTURE_NEGATIVE_PROMPT,
            "guidance_scale": 7.5,
            "num_inference_steps": 50,
        }

        print(f"[Decor8] Staging job={job_id} room={payload['room_type']} style={payload['design_style']}")
        try:
            r = requests.post(
                f"{config.DECOR8_API_BASE}/generate_designs_for_room",
                headers=self._headers(),
                json=payload,
                timeout=(CONNECT_TIMEOUT, READ_TIMEOUT),
            )
        except RequestException as e:
            return SyncStagingResult(success=False, error=f"Decor8 connection error: {e}")

        if not r.ok:
            return SyncStagingResult(success=False, error=f"Decor8 API error: {r.status_code} - {r.text[:500]}")

        try:
            data = r.json()
        except ValueError as e:
            return SyncStagingResult(success=False, error=f"Decor8 returned invalid JSON: {e}")

        images = (data.get("info") or {}).get("images") or []
        if data.get("error") or not images:
            return SyncStagingResult(success=False, error=data.get("error") or "No images generated")

        try:
            image, content_type = self.download_output(images[0]["url"])
        except (RuntimeError, KeyError) as e:
            return SyncStagingResult(success=False, error=str(e))
        return SyncStagingResult(success=True, image_data=image, mime_type=content_type)
