"""
Abstract base class for storage watchers.
"""

from abc import ABC, abstractmethod
from typing import BinaryIO, List, Optional

from loguru import logger

from app.models.schemas import SourceDocument, StorageBundle
from domains.document_pipeline.channels import CancelScope, Channel, WaitGroup
from domains.document_pipeline.errors import BundleNotFoundError, Cancelled


class DocumentWatcher(ABC):
    """Watches a source store and emits documents on ``documents``."""

    store_name: str = ""

    def __init__(self, bundles: List[StorageBundle], scope: Optional[CancelScope] = None):
        """
        Args:
            bundles: Configured folder bundles; each source folder is watched
            scope: Parent cancellation scope
        """
        self.bundles = list(bundles)
        self.scope = scope.child() if scope is not None else CancelScope()
        self.wait_group = WaitGroup()
        self.documents = Channel(f"{self.store_name} documents")

    @abstractmethod
    def start_watching(self) -> Channel:
        """Start discovery and return the channel documents are emitted on."""

    @abstractmethod
    def open_stream(self, document: SourceDocument) -> BinaryIO:
        """Open the document's content for reading."""

    @abstractmethod
    def archive(self, document: SourceDocument) -> None:
        """Move a processed document into its bundle's archive folder."""

    def find_bundle(self, folder_id: str) -> StorageBundle:
        for bundle in self.bundles:
            if bundle.source_folder == folder_id:
                return bundle
        raise BundleNotFoundError(folder_id)

    def emit(self, document: SourceDocument) -> bool:
        """
        Hand a document to whoever reads ``documents``.

        Returns:
            False if the watcher was stopped before it was taken
        """
        try:
            self.documents.send(document, self.scope)
        except Cancelled:
            logger.debug(f"{self.store_name} watcher stopped before emitting {document.name}")
            return False
        logger.debug(f"Discovered {document.name} in {document.folder_id}")
        return True

    def stop(self, timeout: Optional[float] = None) -> bool:
        """Stop watching and wait for the watcher's threads."""
        self.scope.cancel()
        stopped = self.wait_group.wait(timeout)
        logger.info(f"{self.store_name} watcher stopped")
        return stopped
