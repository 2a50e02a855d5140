"""
Staging Provider Router with Fallback.

Picks the provider for a new job: the caller's preference (or DEFAULT_PROVIDER)
first, then the remaining ids of PROVIDER_FALLBACK_ORDER. A provider is
eligible when its cached health says available and not rate limited.

Supported providers:
- gemini            (sync, default)
- decor8            (sync)
- stable-diffusion  (async, webhook + poll)
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

from roomstage.config import config
from roomstage.errors import ProviderUnavailableError, ValidationError
from roomstage.services.staging_providers import (
    Decor8Provider,
    GeminiProvider,
    ProviderHealth,
    ReplicateProvider,
    StagingProvider,
)


def _default_providers() -> List[StagingProvider]:
    return [GeminiProvider(), Decor8Provider(), ReplicateProvider()]


class ProviderRouter:
    """
    Route staging jobs to available providers with automatic fallback.

    Health checks are cached per provider for PROVIDER_HEALTH_TTL_SECONDS so a
    burst of submissions does not hammer vendor health endpoints.
    """

    def __init__(
        self,
        providers: Optional[List[StagingProvider]] = None,
        default_provider: Optional[str] = None,
        fallback_order: Optional[List[str]] = None,
        fallback_enabled: Optional[bool] = None,
        health_ttl_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.providers = providers if providers is not None else _default_providers()
        self.default_provider = default_provider or config.DEFAULT_PROVIDER
        self.fallback_order = fallback_order if fallback_order is not None else list(config.PROVIDER_FALLBACK_ORDER)
        self.fallback_enabled = config.PROVIDER_FALLBACK_ENABLED if fallback_enabled is None else fallback_enabled
        self.health_ttl_seconds = (
            config.PROVIDER_HEALTH_TTL_SECONDS if health_ttl_seconds is None else health_ttl_seconds
        )
        self._clock = clock
        self._health_cache: Dict[str, Tuple[float, ProviderHealth]] = {}
        self._lock = threading.Lock()

    # ── queries ───────────────────────────────────────────────
    def get_provider(self, provider_id: str) -> Optional[StagingProvider]:
        for p in self.providers:
            if p.provider_id == provider_id:
                return p
        return None

    def get_health(self, provider: StagingProvider) -> ProviderHealth:
        now = self._clock()
        with self._lock:
            cached = self._health_cache.get(provider.provider_id)
            if cached and now - cached[0] < self.health_ttl_seconds:
                return cached[1]

        try:
            health = provider.check_health()
        except Exception as e:
            print(f"[ROUTER] Health check crashed for {provider.provider_id}: {e}")
            health = ProviderHealth(provider=provider.provider_id, available=False, error_message=str(e))

        with self._lock:
            self._health_cache[provider.provider_id] = (now, health)
        return health

    def get_all_providers_health(self) -> Dict[str, Dict]:
        """Diagnostics only; never used for routing decisions beyond the cache."""
        return {p.provider_id: self.get_health(p).to_dict() for p in self.providers}

    def clear_health_cache(self) -> None:
        with self._lock:
            self._health_cache.clear()

    # ── routing ───────────────────────────────────────────────
    def _candidates(self, preferred: Optional[str]) -> List[str]:
        first = preferred or self.default_provider
        if not self.fallback_enabled:
            return [first]
        ordered = [first] + [pid for pid in self.fallback_order if pid != first]
        # Registered providers missing from the configured order go last
        ordered += [p.provider_id for p in self.providers if p.provider_id not in ordered]
        return ordered

    def select_provider(self, preferred: Optional[str] = None) -> Tuple[StagingProvider, bool]:
        """
        Returns:
            (provider, fallback_used)

        Raises:
            ValidationError          – preferred id is not a known provider
            ProviderUnavailableError – no candidate is healthy
        """
        if preferred and self.get_provider(preferred) is None:
            raise ValidationError(f"Unknown provider: {preferred}")

        candidates = self._candidates(preferred)
        for index, provider_id in enumerate(candidates):
            provider = self.get_provider(provider_id)
            if provider is None:
                continue
            health = self.get_health(provider)
            if not health.usable:
                reason = "rate limited" if health.rate_limited else health.error_message
                print(f"[ROUTER] Skipping {provider_id}: {reason}")
                continue
            fallback_used = index > 0
            if fallback_used:
                print(f"[ROUTER] Falling back from {candidates[0]} to {provider_id}")
            return provider, fallback_used

        raise ProviderUnavailableError("No staging providers available")


# Singleton instance used by the rest of the app
provider_router = ProviderRouter()
