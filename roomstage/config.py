"""
RoomStage settings, read once from the environment (and .env in local dev).

Usage:
    from roomstage.config import config

    cost = config.CREDITS_PER_STAGING
    provider_id = config.DEFAULT_PROVIDER

Database settings (DATABASE_URL, APP_SCHEMA, DB_CONNECT_TIMEOUT) are read by
roomstage.db directly.

Tests override fields with monkeypatch.setattr(config, ...); every consumer
reads config at call time, never at import.
"""

import os
from typing import List
from dataclasses import dataclass, field
from dotenv import load_dotenv

# Existing environment variables win over .env entries
load_dotenv()

_TRUTHY = ("true", "1", "yes", "on")
_FALSY = ("false", "0", "no", "off")


def _get_env(key: str, default: str = "") -> str:
    return os.getenv(key, default).strip()


def _get_env_bool(key: str, default: bool = False) -> bool:
    val = _get_env(key).lower()
    if val in _TRUTHY:
        return True
    if val in _FALSY:
        return False
    return default


def _get_env_int(key: str, default: int = 0) -> int:
    raw = _get_env(key)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        print(f"[CONFIG] {key}={raw!r} is not an integer, using {default}")
        return default


def _get_env_list(key: str, default: List[str]) -> List[str]:
    raw = _get_env(key)
    if not raw:
        return list(default)
    return [item.strip().lower() for item in raw.split(",") if item.strip()]


def _env(key: str, default: str = ""):
    return field(default_factory=lambda: _get_env(key, default))


def _env_int(key: str, default: int):
    return field(default_factory=lambda: _get_env_int(key, default))


def _env_url(key: str, default: str = ""):
    return field(default_factory=lambda: _get_env(key, default).rstrip("/"))


DEV_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
]


@dataclass
class Config:

    # Environment / server
    FLASK_ENV: str = field(default_factory=lambda: _get_env("FLASK_ENV", "production").lower())
    PORT: int = _env_int("PORT", 5001)
    HOST: str = _env("HOST", "0.0.0.0")
    # Public URL of this API; vendor webhooks are built from it
    PUBLIC_BASE_URL: str = _env_url("PUBLIC_BASE_URL")

    @property
    def IS_DEV(self) -> bool:
        """Explicit dev/testing FLASK_ENV, or no FLASK_ENV at all outside Render."""
        if self.FLASK_ENV in ("development", "dev", "local", "testing"):
            return True
        if _get_env("FLASK_ENV"):
            return False
        return not _get_env("RENDER")

    @property
    def IS_PROD(self) -> bool:
        return not self.IS_DEV

    @property
    def HAS_DATABASE(self) -> bool:
        return bool(_get_env("DATABASE_URL"))

    # Sessions / admin
    SESSION_COOKIE_NAME: str = "rs_sid"
    SESSION_TTL_DAYS: int = _env_int("SESSION_TTL_DAYS", 30)
    ADMIN_TOKEN: str = _env("ADMIN_TOKEN")

    # Credits
    CREDITS_PER_STAGING: int = _env_int("CREDITS_PER_STAGING", 1)
    CREDITS_PER_REMIX: int = _env_int("CREDITS_PER_REMIX", 1)
    FREE_REMIXES_PER_IMAGE: int = _env_int("FREE_REMIXES_PER_IMAGE", 2)
    LOW_CREDITS_THRESHOLD: int = _env_int("LOW_CREDITS_THRESHOLD", 3)
    FREE_CREDITS_ON_SIGNUP: int = _env_int("FREE_CREDITS_ON_SIGNUP", 10)

    # Uploads
    MAX_IMAGE_BYTES: int = _env_int("MAX_IMAGE_BYTES", 10 * 1024 * 1024)
    ACCEPTED_IMAGE_TYPES: List[str] = field(
        default_factory=lambda: _get_env_list(
            "ACCEPTED_IMAGE_TYPES", ["image/jpeg", "image/jpg", "image/png", "image/webp"]
        )
    )

    # Object storage (S3)
    AWS_REGION: str = _env("AWS_REGION", "eu-west-2")
    AWS_BUCKET_IMAGES: str = _env("AWS_BUCKET_IMAGES")
    AWS_ACCESS_KEY_ID: str = _env("AWS_ACCESS_KEY_ID")
    AWS_SECRET_ACCESS_KEY: str = _env("AWS_SECRET_ACCESS_KEY")

    @property
    def AWS_CONFIGURED(self) -> bool:
        return bool(self.AWS_BUCKET_IMAGES and self.AWS_ACCESS_KEY_ID and self.AWS_SECRET_ACCESS_KEY)

    # CORS: comma-separated http(s) origins, or "*"
    ALLOWED_ORIGINS_RAW: str = _env("ALLOWED_ORIGINS")

    @property
    def ALLOWED_ORIGINS(self) -> List[str]:
        raw = self.ALLOWED_ORIGINS_RAW
        if raw == "*":
            return ["*"]
        if not raw:
            return list(DEV_ORIGINS) if self.IS_DEV else []
        return [o.strip() for o in raw.split(",") if o.strip().startswith(("http://", "https://"))]

    # Providers. GOOGLE_GEMINI_API_KEY is accepted as an alias.
    GEMINI_API_KEY: str = field(
        default_factory=lambda: _get_env("GEMINI_API_KEY") or _get_env("GOOGLE_GEMINI_API_KEY")
    )
    GEMINI_IMAGE_MODEL: str = _env("GEMINI_IMAGE_MODEL", "gemini-3-pro-image-preview")
    DECOR8_API_KEY: str = _env("DECOR8_API_KEY")
    DECOR8_API_BASE: str = _env_url("DECOR8_API_BASE", "https://api.decor8.ai")
    REPLICATE_API_TOKEN: str = _env("REPLICATE_API_TOKEN")
    REPLICATE_API_BASE: str = _env_url("REPLICATE_API_BASE", "https://api.replicate.com/v1")
    REPLICATE_MODEL_VERSION: str = _env("REPLICATE_MODEL_VERSION")
    REPLICATE_WEBHOOK_SECRET: str = _env("REPLICATE_WEBHOOK_SECRET")

    # Routing
    DEFAULT_PROVIDER: str = field(default_factory=lambda: _get_env("DEFAULT_PROVIDER", "gemini").lower())
    PROVIDER_FALLBACK_ORDER: List[str] = field(
        default_factory=lambda: _get_env_list(
            "PROVIDER_FALLBACK_ORDER", ["gemini", "decor8", "stable-diffusion"]
        )
    )
    PROVIDER_FALLBACK_ENABLED: bool = field(
        default_factory=lambda: _get_env_bool("PROVIDER_FALLBACK_ENABLED", True)
    )
    PROVIDER_HEALTH_TTL_SECONDS: int = _env_int("PROVIDER_HEALTH_TTL_SECONDS", 60)

    # Reconciliation
    STALE_JOB_TIMEOUT_MINUTES: int = _env_int("STALE_JOB_TIMEOUT_MINUTES", 60)
    WEBHOOK_TOLERANCE_SECONDS: int = _env_int("WEBHOOK_TOLERANCE_SECONDS", 300)

    @property
    def WEBHOOK_BASE_URL(self) -> str:
        """Empty means async providers get no callback and are polled only."""
        return self.PUBLIC_BASE_URL

    def log_summary(self) -> None:
        rows = [
            ("Environment", f"{self.FLASK_ENV} (IS_DEV={self.IS_DEV})"),
            ("Port", self.PORT),
            ("Database", self.HAS_DATABASE),
            ("S3", self.AWS_CONFIGURED),
            ("Public base URL", self.PUBLIC_BASE_URL or "(unset, polling only)"),
            ("Default provider", self.DEFAULT_PROVIDER),
            ("Fallback order", ", ".join(self.PROVIDER_FALLBACK_ORDER)),
            ("Gemini / Decor8 / Replicate", " / ".join(
                "set" if v else "-" for v in (self.GEMINI_API_KEY, self.DECOR8_API_KEY, self.REPLICATE_API_TOKEN)
            )),
            ("Webhook secret", bool(self.REPLICATE_WEBHOOK_SECRET)),
            ("Credits staging / remix", f"{self.CREDITS_PER_STAGING} / {self.CREDITS_PER_REMIX}"),
            ("Free remixes per image", self.FREE_REMIXES_PER_IMAGE),
        ]
        print("[CONFIG] " + "-" * 50)
        for label, value in rows:
            print(f"[CONFIG] {label:<30} {value}")
        print("[CONFIG] " + "-" * 50)

    def validate(self) -> List[str]:
        """Startup warnings. Nothing here is fatal."""
        warnings = []
        if not (self.GEMINI_API_KEY or self.DECOR8_API_KEY or self.REPLICATE_API_TOKEN):
            warnings.append("No staging provider credentials set - every submission will 503")
        if self.IS_DEV:
            return warnings
        if not self.HAS_DATABASE:
            warnings.append("DATABASE_URL not set - jobs and wallets cannot be stored")
        if not self.AWS_CONFIGURED:
            warnings.append("S3 not configured - staged images fall back to inline data URLs")
        if self.REPLICATE_API_TOKEN and not self.REPLICATE_WEBHOOK_SECRET:
            warnings.append("REPLICATE_WEBHOOK_SECRET not set - webhooks will be rejected")
        if not self.ALLOWED_ORIGINS:
            warnings.append("ALLOWED_ORIGINS not set - browsers will be blocked by CORS")
        return warnings


config = Config()
print(f"[CONFIG] Loaded (IS_DEV={config.IS_DEV})")
