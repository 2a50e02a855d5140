"""
General helper utilities shared by services and routes.

These functions are intentionally dependency-light so they can be reused
without pulling in Flask app globals.
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
from datetime import datetime
from typing import Any, Optional, Tuple

_logger = logging.getLogger("roomstage.helpers")

_EXT_BY_CONTENT_TYPE = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
}


def compute_sha256(data: bytes | str) -> str:
    """Compute a SHA256 hex digest for raw bytes or a string."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def get_extension_for_content_type(content_type: str) -> str:
    """File extension (no dot) for an image content type, png when unknown."""
    base = (content_type or "").split(";", 1)[0].strip().lower()
    return _EXT_BY_CONTENT_TYPE.get(base, "png")


def to_data_url(image_bytes: bytes, mime_type: str) -> str:
    """Inline data URL used when object storage is unreachable."""
    encoded = base64.b64encode(image_bytes).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def parse_data_url(value: str) -> Optional[Tuple[bytes, str]]:
    """Decode a data: URL into (bytes, mime_type). None if not a data URL."""
    if not isinstance(value, str) or not value.startswith("data:"):
        return None
    header, _, payload = value.partition(",")
    mime_type = header[5:].split(";", 1)[0] or "application/octet-stream"
    return base64.b64decode(payload), mime_type


def decode_base64_image(value: str) -> Tuple[bytes, Optional[str]]:
    """
    Accept raw base64 or a data URL. Returns (bytes, mime_type_or_None).

    Raises ValueError on undecodable input.
    """
    if not isinstance(value, str) or not value.strip():
        raise ValueError("image is required")
    parsed = parse_data_url(value.strip())
    if parsed:
        return parsed
    try:
        return base64.b64decode(value.strip(), validate=True), None
    except (ValueError, TypeError) as e:
        raise ValueError(f"image is not valid base64: {e}")


def truncate_error(message: Any, limit: int = 500) -> str:
    """Flatten and truncate a vendor error message before it is stored."""
    text = " ".join(str(message or "").split())
    if len(text) > limit:
        return text[: limit - 1] + "…"
    return text or "Unknown error"


def iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def _mask_value(val: Any, max_len: int = 400) -> str:
    try:
        s = json.dumps(val, ensure_ascii=False, default=str)
    except Exception:
        s = str(val)
    if len(s) > max_len:
        return s[:max_len] + "…"
    return s


def _scrub_secrets(data: Any) -> Any:
    if isinstance(data, dict):
        cleaned = {}
        for k, v in data.items():
            key = str(k).lower()
            if any(t in key for t in ("key", "token", "secret", "auth", "signature")):
                cleaned[k] = "***"
            else:
                cleaned[k] = _scrub_secrets(v)
        return cleaned
    if isinstance(data, list):
        return [_scrub_secrets(x) for x in data]
    return data


def log_event(event_name: str, data: dict) -> None:
    """Lightweight debug logging that avoids leaking secrets."""
    try:
        safe_payload = _scrub_secrets(data)
        _logger.info("[debug] %s :: %s", event_name, _mask_value(safe_payload))
    except Exception as e:
        _logger.warning("[debug] %s :: failed to log (%s)", event_name, e)


def log_db_continue(op: str, err: Exception) -> None:
    """Log DB errors that should not break the request flow."""
    _logger.warning("[DB] CONTINUE: %s failed: %s: %s", op, type(err).__name__, err)
