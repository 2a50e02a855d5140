"""
Tests for provider selection and fallback.

Run locally:
    python -m pytest roomstage/tests/test_provider_router.py -v
"""

from __future__ import annotations

import pytest

from roomstage.errors import ProviderUnavailableError, ValidationError
from roomstage.services.provider_router import ProviderRouter
from roomstage.services.staging_providers import (
    Decor8Provider,
    GeminiProvider,
    ProviderHealth,
    ReplicateProvider,
)

from conftest import StubAsyncProvider, StubSyncProvider


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _router(*providers, default=None, order=None, clock=None, fallback_enabled=True):
    ids = [p.provider_id for p in providers]
    return ProviderRouter(
        providers=list(providers),
        default_provider=default or ids[0],
        fallback_order=order or ids,
        fallback_enabled=fallback_enabled,
        health_ttl_seconds=60,
        clock=clock or FakeClock(),
    )


class TestSelectProvider:

    def test_default_provider_when_healthy(self):
        primary = StubSyncProvider("primary")
        router = _router(primary, StubSyncProvider("secondary"))
        provider, fallback_used = router.select_provider()
        assert provider is primary
        assert fallback_used is False

    def test_falls_back_in_configured_order(self):
        down = StubSyncProvider("primary", available=False)
        second = StubSyncProvider("secondary")
        third = StubAsyncProvider("third")
        router = _router(down, second, third)
        provider, fallback_used = router.select_provider()
        assert provider is second
        assert fallback_used is True

    def test_rate_limited_provider_is_skipped(self):
        limited = StubSyncProvider("primary", rate_limited=True)
        second = StubAsyncProvider("secondary")
        router = _router(limited, second)
        provider, fallback_used = router.select_provider()
        assert provider is second
        assert fallback_used is True

    def test_preferred_provider_goes_first(self):
        first = StubSyncProvider("primary")
        preferred = StubAsyncProvider("secondary")
        router = _router(first, preferred)
        provider, fallback_used = router.select_provider("secondary")
        assert provider is preferred
        assert fallback_used is False

    def test_preferred_unavailable_falls_back_to_default_order(self):
        first = StubSyncProvider("primary")
        preferred = StubAsyncProvider("secondary", available=False)
        router = _router(first, preferred)
        provider, fallback_used = router.select_provider("secondary")
        assert provider is first
        assert fallback_used is True

    def test_unknown_preferred_provider_is_rejected(self):
        router = _router(StubSyncProvider("primary"))
        with pytest.raises(ValidationError):
            router.select_provider("midjourney")

    def test_nothing_available_raises(self):
        router = _router(StubSyncProvider("a", available=False), StubAsyncProvider("b", available=False))
        with pytest.raises(ProviderUnavailableError) as exc:
            router.select_provider()
        assert exc.value.http_status == 503

    def test_fallback_disabled_only_tries_first_candidate(self):
        router = _router(
            StubSyncProvider("primary", available=False),
            StubSyncProvider("secondary"),
            fallback_enabled=False,
        )
        with pytest.raises(ProviderUnavailableError):
            router.select_provider()

    def test_registered_provider_missing_from_order_is_tried_last(self):
        down = StubSyncProvider("primary", available=False)
        extra = StubSyncProvider("extra")
        router = _router(down, extra, order=["primary"])
        provider, fallback_used = router.select_provider()
        assert provider is extra
        assert fallback_used is True


class TestHealthCache:

    def test_health_is_cached_within_ttl(self):
        clock = FakeClock()
        provider = StubSyncProvider("primary")
        router = _router(provider, clock=clock)
        router.select_provider()
        router.select_provider()
        assert provider.health_checks == 1

        clock.now += 61
        router.select_provider()
        assert provider.health_checks == 2

    def test_clear_health_cache_forces_recheck(self):
        provider = StubSyncProvider("primary")
        router = _router(provider)
        router.select_provider()
        router.clear_health_cache()
        router.select_provider()
        assert provider.health_checks == 2

    def test_crashing_health_check_counts_as_unavailable(self):
        class Exploding(StubSyncProvider):
            def check_health(self) -> ProviderHealth:
                raise RuntimeError("boom")

        healthy = StubSyncProvider("secondary")
        router = _router(Exploding("primary"), healthy)
        provider, _ = router.select_provider()
        assert provider is healthy

    def test_all_providers_health_for_diagnostics(self):
        router = _router(StubSyncProvider("primary"), StubAsyncProvider("secondary", available=False))
        health = router.get_all_providers_health()
        assert health["primary"]["available"] is True
        assert health["secondary"]["available"] is False
        assert health["secondary"]["rate_limited"] is False


class TestDefaultAdapters:

    def test_capabilities(self):
        assert GeminiProvider.supports_sync and not GeminiProvider.supports_async
        assert Decor8Provider.supports_sync and not Decor8Provider.supports_async
        assert ReplicateProvider.supports_async and not ReplicateProvider.supports_sync
        assert ReplicateProvider.provider_id == "stable-diffusion"
        assert ReplicateProvider.webhook_path == "/api/webhooks/replicate"

    def test_unconfigured_providers_report_unavailable(self, monkeypatch):
        from roomstage.config import config

        monkeypatch.setattr(config, "GEMINI_API_KEY", "")
        monkeypatch.setattr(config, "DECOR8_API_KEY", "")
        monkeypatch.setattr(config, "REPLICATE_API_TOKEN", "")
        router = ProviderRouter(
            providers=[GeminiProvider(), Decor8Provider(), ReplicateProvider()],
            default_provider="gemini",
            fallback_order=["gemini", "decor8", "stable-diffusion"],
            fallback_enabled=True,
            health_ttl_seconds=60,
        )
        with pytest.raises(ProviderUnavailableError):
            router.select_provider()

    def test_sync_provider_rejects_async_call(self):
        with pytest.raises(NotImplementedError):
            GeminiProvider().stage_image_async(b"x", "image/png", "living-room", "modern", "job-1")
