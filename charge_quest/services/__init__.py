"""Service layer wrapping the provider and catalog."""

from .sync_service import StationSyncService, SyncReport, SyncServiceConfig  # noqa: F401
