"""
Object storage for original and staged images (S3).

Key layout:
    staging/{owner_id}/{job_id}-original.{ext}
    staging/{owner_id}/{job_id}-staged.{ext}

Public URLs are the plain virtual-hosted S3 form; the bucket is expected to
serve these prefixes publicly.
"""

from __future__ import annotations

from typing import Optional, Tuple
from urllib.parse import urlparse

import boto3
import requests
from botocore.exceptions import BotoCoreError, ClientError
from requests.exceptions import RequestException

from roomstage.config import config
from roomstage.errors import StorageError
from roomstage.utils.helpers import get_extension_for_content_type, parse_data_url

KEY_PREFIX = "staging"
FETCH_TIMEOUT = (10, 120)


def build_image_key(owner_id: str, job_id: str, kind: str, content_type: str) -> str:
    """kind is "original" or "staged"."""
    ext = get_extension_for_content_type(content_type)
    return f"{KEY_PREFIX}/{owner_id}/{job_id}-{kind}.{ext}"


def build_s3_url(key: str) -> str:
    return f"https://{config.AWS_BUCKET_IMAGES}.s3.{config.AWS_REGION}.amazonaws.com/{key}"


def is_s3_url(url: str) -> bool:
    if not isinstance(url, str):
        return False
    return "s3." in url and "amazonaws.com" in url


def parse_s3_key(url: str) -> Optional[str]:
    if not is_s3_url(url):
        return None
    return urlparse(url).path.lstrip("/") or None


class StorageService:
    """Thin S3 adapter. Every failure surfaces as StorageError."""

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client(
                "s3",
                region_name=config.AWS_REGION,
                aws_access_key_id=config.AWS_ACCESS_KEY_ID,
                aws_secret_access_key=config.AWS_SECRET_ACCESS_KEY,
            )
        return self._client

    def upload(self, key: str, data: bytes, content_type: str) -> str:
        """Store bytes under key, overwriting, and return the public URL."""
        if not config.AWS_BUCKET_IMAGES:
            raise StorageError("AWS_BUCKET_IMAGES not configured")
        try:
            self.client.put_object(
                Bucket=config.AWS_BUCKET_IMAGES,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            print(f"[S3] ERROR: upload failed key={key}: {e}")
            raise StorageError(f"Failed to upload image: {e}")
        url = build_s3_url(key)
        print(f"[S3] Uploaded {len(data)} bytes -> {key}")
        return url

    def fetch(self, url: str) -> Tuple[bytes, str]:
        """
        Read a stored image back as (bytes, content_type).

        Accepts our own S3 URLs, inline data URLs, and plain http(s) URLs.
        """
        inline = parse_data_url(url)
        if inline:
            return inline

        key = parse_s3_key(url)
        if key and config.AWS_BUCKET_IMAGES and url.startswith(f"https://{config.AWS_BUCKET_IMAGES}."):
            try:
                obj = self.client.get_object(Bucket=config.AWS_BUCKET_IMAGES, Key=key)
                return obj["Body"].read(), obj.get("ContentType") or "image/png"
            except (ClientError, BotoCoreError) as e:
                raise StorageError(f"Failed to read stored image: {e}")

        try:
            r = requests.get(url, timeout=FETCH_TIMEOUT)
        except RequestException as e:
            raise StorageError(f"Failed to fetch image: {e}")
        if not r.ok:
            raise StorageError(f"Failed to fetch image: HTTP {r.status_code}")
        return r.content, r.headers.get("Content-Type", "image/png")


storage_service = StorageService()
