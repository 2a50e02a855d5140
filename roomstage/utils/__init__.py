"""Utility helpers for the RoomStage backend."""

from .helpers import (
    compute_sha256,
    decode_base64_image,
    get_extension_for_content_type,
    iso,
    log_db_continue,
    log_event,
    parse_data_url,
    to_data_url,
    truncate_error,
)

__all__ = [
    "compute_sha256",
    "decode_base64_image",
    "get_extension_for_content_type",
    "iso",
    "log_db_continue",
    "log_event",
    "parse_data_url",
    "to_data_url",
    "truncate_error",
]
