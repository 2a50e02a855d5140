"""Staging provider adapters."""

from roomstage.services.staging_providers.base import (
    AsyncStagingResult,
    PredictionStatus,
    ProviderHealth,
    StagingProvider,
    SyncStagingResult,
)
from roomstage.services.staging_providers.decor8_provider import Decor8Provider
from roomstage.services.staging_providers.gemini_provider import GeminiProvider
from roomstage.services.staging_providers.replicate_provider import ReplicateError, ReplicateProvider

__all__ = [
    "AsyncStagingResult",
    "Decor8Provider",
    "GeminiProvider",
    "PredictionStatus",
    "ProviderHealth",
    "ReplicateError",
    "ReplicateProvider",
    "StagingProvider",
    "SyncStagingResult",
]
