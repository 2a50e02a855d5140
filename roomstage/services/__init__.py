"""Services package for the RoomStage backend."""

from roomstage.services.job_store import JobStore
from roomstage.services.wallet_service import WalletService
from roomstage.services.identity_service import IdentityService
from roomstage.services.notification_service import NotificationService
from roomstage.services.storage_service import StorageService, storage_service
from roomstage.services.provider_router import ProviderRouter, provider_router
from roomstage.services.reconciler import CompletionReconciler, reconciler
from roomstage.services.staging_pipeline import StagingPipeline, staging_pipeline
from roomstage.services.remix_service import RemixService, remix_service

__all__ = [
    "JobStore",
    "WalletService",
    "IdentityService",
    "NotificationService",
    "StorageService",
    "storage_service",
    "ProviderRouter",
    "provider_router",
    "CompletionReconciler",
    "reconciler",
    "StagingPipeline",
    "staging_pipeline",
    "RemixService",
    "remix_service",
]
