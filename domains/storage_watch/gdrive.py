"""
Google Drive watcher.

Discovery is driven by push notifications. Every notification on an active
channel triggers a fresh query for the PDFs currently sitting in the watched
folders; the pipeline's admission check makes re-discovery harmless.
"""

from enum import Enum
from typing import Any, BinaryIO, Dict, List, Optional
from urllib.parse import urlparse

from loguru import logger

from app.models.schemas import SourceDocument, StorageBundle
from app.stores.watch_channels import WatchChannelStore
from app.utils.helpers import parse_iso_timestamp
from domains.document_pipeline.channels import CancelScope, Channel
from domains.storage_watch.base import DocumentWatcher
from domains.storage_watch.channels import RENEWAL_INTERVAL, WatchChannelManager
from domains.storage_watch.drive_client import DriveClient, DriveError

PDF_MIME_TYPE = "application/pdf"


class NotificationOutcome(str, Enum):
    ORPHANED = "orphaned"
    IGNORED = "ignored"
    DISPATCHED = "dispatched"


class GoogleDriveWatcher(DocumentWatcher):
    """Watches Google Drive folders through watch channels."""

    store_name = "Google Drive"

    def __init__(
        self,
        bundles: List[StorageBundle],
        client: DriveClient,
        channel_store: WatchChannelStore,
        webhook_url: str,
        scope: Optional[CancelScope] = None,
        renewal_interval: float = RENEWAL_INTERVAL,
    ):
        super().__init__(bundles, scope)
        self.client = client
        self.renewal_interval = renewal_interval
        self.channels = WatchChannelManager(
            [bundle.source_folder for bundle in self.bundles],
            webhook_url,
            channel_store,
            client,
        )

    @property
    def webhook_path(self) -> str:
        """Path component of the webhook URL, where notifications arrive."""
        return urlparse(self.channels.webhook_url).path or "/"

    def start_watching(self) -> Channel:
        self.channels.refresh()
        self.channels.start_renewal(self.scope, self.wait_group, self.renewal_interval)
        # documents that arrived while the service was down
        self.wait_group.go(self.query_files, name="gdrive:initial-query")
        return self.documents

    def build_file_search_query(self) -> str:
        parents = " or ".join(f"'{bundle.source_folder}' in parents" for bundle in self.bundles)
        return f"mimeType='{PDF_MIME_TYPE}' and ({parents}) and trashed=false"

    def query_files(self) -> int:
        """List PDFs in the watched folders and emit each one."""
        try:
            files = self.client.list_files(self.build_file_search_query())
        except DriveError as e:
            logger.error(f"Failed to query Google Drive: {e}")
            return 0

        count = 0
        for file in files:
            document = self._to_document(file)
            if document is None:
                continue
            if not self.emit(document):
                break
            count += 1

        logger.debug(f"Drive query emitted {count} of {len(files)} files")
        return count

    def _to_document(self, file: Dict[str, Any]) -> Optional[SourceDocument]:
        watched = {bundle.source_folder for bundle in self.bundles}
        folder_id = next((parent for parent in file.get("parents", []) if parent in watched), None)
        if folder_id is None:
            logger.warning(f"Skipping {file.get('name')}: not in a watched folder")
            return None

        try:
            return SourceDocument(
                source_id=file["id"],
                name=file["name"],
                folder_id=folder_id,
                created_time=parse_iso_timestamp(file.get("createdTime")),
                modified_time=parse_iso_timestamp(file.get("modifiedTime")),
            )
        except (KeyError, ValueError) as e:
            logger.warning(f"Skipping malformed Drive file entry {file}: {e}")
            return None

    def handle_notification(
        self, channel_id: str, resource_id: Optional[str], resource_state: Optional[str]
    ) -> NotificationOutcome:
        """
        React to a push notification.

        Notifications for channels that are not active are answered by
        stopping the channel, without querying. "sync" notifications only
        confirm a new channel.
        """
        if not self.channels.is_active(channel_id):
            logger.warning(f"Watch channel does not exist: {channel_id}")
            self.channels.stop_orphan(channel_id, resource_id)
            return NotificationOutcome.ORPHANED

        if resource_state == "sync":
            logger.debug(f"Sync notification for channel {channel_id}")
            return NotificationOutcome.IGNORED

        logger.info(f"Change notification ({resource_state}) on channel {channel_id}")
        self.channels.refresh()
        self.wait_group.go(self.query_files, name="gdrive:query")
        return NotificationOutcome.DISPATCHED

    def open_stream(self, document: SourceDocument) -> BinaryIO:
        return self.client.download(document.source_id)

    def archive(self, document: SourceDocument) -> None:
        bundle = self.find_bundle(document.folder_id)
        parents = self.client.get_parents(document.source_id)
        self.client.move(document.source_id, bundle.archive_folder, parents)
        logger.info(f"Archived {document.name} to folder {bundle.archive_folder}")

    def stop(self, timeout: Optional[float] = None) -> bool:
        stopped = super().stop(timeout)
        self.client.close()
        return stopped
