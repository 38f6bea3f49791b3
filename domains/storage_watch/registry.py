"""
Watcher registry: maps configured source store names to watchers.
"""

from typing import Callable, Dict, Optional

from app.models.schemas import PipelineConfig
from app.stores.watch_channels import WatchChannelStore
from app.utils.config import ConfigurationError, Settings
from domains.document_pipeline.channels import CancelScope
from domains.storage_watch.base import DocumentWatcher
from domains.storage_watch.drive_client import DriveClient
from domains.storage_watch.gdrive import GoogleDriveWatcher
from domains.storage_watch.local import LocalWatcher


def _local(config, settings, channel_store, scope):
    return LocalWatcher(config.bundles, scope, use_polling=settings.local_watch_polling)


def _google_drive(config, settings, channel_store, scope):
    settings.require("google_service_key_file", "google_webhook_url")
    client = DriveClient.from_service_account(settings.google_service_key_file)
    return GoogleDriveWatcher(
        config.bundles,
        client,
        channel_store,
        settings.google_webhook_url,
        scope,
        renewal_interval=settings.watch_renewal_interval,
    )


WATCHER_TYPES: Dict[str, Callable[..., DocumentWatcher]] = {
    "Local": _local,
    "Google Drive": _google_drive,
}


def build_watcher(
    config: PipelineConfig,
    settings: Settings,
    channel_store: WatchChannelStore,
    scope: Optional[CancelScope] = None,
) -> DocumentWatcher:
    factory = WATCHER_TYPES.get(config.source_store)
    if factory is None:
        raise ConfigurationError(
            f"Unknown source store '{config.source_store}', expected one of {sorted(WATCHER_TYPES)}"
        )
    return factory(config, settings, channel_store, scope)
