#!/usr/bin/env python3
"""
Local folder watcher.

Monitors each bundle's source folder for PDFs and emits them as source
documents. Uses the watchdog library; the polling observer can be selected
for filesystems without native change events (network shares, containers).
"""

import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, List, Optional

from loguru import logger
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.polling import PollingObserver

from app.models.schemas import SourceDocument, StorageBundle
from app.utils.helpers import is_hidden, is_pdf
from domains.document_pipeline.channels import CancelScope, Channel
from domains.storage_watch.base import DocumentWatcher


class PdfEventHandler(FileSystemEventHandler):
    """Forwards new PDFs in one watched folder to the watcher."""

    def __init__(self, watcher: "LocalWatcher", folder_id: str):
        super().__init__()
        self.watcher = watcher
        self.folder_id = folder_id

    def on_created(self, event: FileSystemEvent):
        """Handle file creation."""
        if event.is_directory:
            return
        self.watcher.notice(Path(event.src_path), self.folder_id)

    def on_moved(self, event: FileSystemEvent):
        """Handle files moved or renamed into the folder."""
        if event.is_directory:
            return
        self.watcher.notice(Path(event.dest_path), self.folder_id)


class LocalWatcher(DocumentWatcher):
    """Watches local folders for new PDFs."""

    store_name = "Local"

    def __init__(
        self,
        bundles: List[StorageBundle],
        scope: Optional[CancelScope] = None,
        use_polling: bool = False,
        poll_interval: float = 1.0,
        settle_interval: float = 0.5,
    ):
        """
        Args:
            bundles: Bundles whose source folders are local directories
            scope: Parent cancellation scope
            use_polling: Use watchdog's PollingObserver
            poll_interval: Polling observer interval in seconds
            settle_interval: Time a new file's size must stay unchanged before it is emitted
        """
        super().__init__(bundles, scope)
        self.use_polling = use_polling
        self.poll_interval = poll_interval
        self.settle_interval = settle_interval
        self.observer = None

    def start_watching(self) -> Channel:
        """Start the observer and emit any PDFs already waiting."""
        self.observer = PollingObserver(timeout=self.poll_interval) if self.use_polling else Observer()

        for bundle in self.bundles:
            folder = Path(bundle.source_folder).expanduser()
            folder.mkdir(parents=True, exist_ok=True)
            self.observer.schedule(PdfEventHandler(self, bundle.source_folder), str(folder), recursive=False)
            logger.success(f"Started watching: {folder}")

        self.observer.daemon = True
        self.observer.start()

        self.wait_group.go(self.scan_existing, name="local:initial-scan")
        return self.documents

    def scan_existing(self) -> int:
        """Emit every PDF already present in the watched folders."""
        count = 0
        for bundle in self.bundles:
            folder = Path(bundle.source_folder).expanduser()
            for path in sorted(folder.iterdir()):
                if not path.is_file() or not self._wanted(path):
                    continue
                if not self.emit(self.to_document(path, bundle.source_folder)):
                    return count
                count += 1

        logger.debug(f"Initial scan found {count} documents")
        return count

    def notice(self, path: Path, folder_id: str) -> None:
        """Called from observer threads for every new file."""
        if not self._wanted(path):
            return
        self.wait_group.go(self._emit_when_settled, path, folder_id, name=f"local:{path.name}")

    def _emit_when_settled(self, path: Path, folder_id: str) -> None:
        # a file is emitted once its size stops changing between checks
        last_size = -1
        while True:
            try:
                size = path.stat().st_size
            except FileNotFoundError:
                logger.debug(f"{path} disappeared before it settled")
                return
            if size == last_size:
                break
            last_size = size
            if self.scope.wait(self.settle_interval):
                return

        try:
            document = self.to_document(path, folder_id)
        except FileNotFoundError:
            logger.debug(f"{path} disappeared before it was emitted")
            return
        self.emit(document)

    @staticmethod
    def _wanted(path: Path) -> bool:
        return is_pdf(path) and not is_hidden(path)

    @staticmethod
    def to_document(path: Path, folder_id: str) -> SourceDocument:
        stat = path.stat()
        return SourceDocument(
            source_id=str(path.resolve()),
            name=path.name,
            folder_id=folder_id,
            created_time=datetime.fromtimestamp(stat.st_ctime, tz=timezone.utc),
            modified_time=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        )

    def open_stream(self, document: SourceDocument) -> BinaryIO:
        return open(document.source_id, "rb")

    def archive(self, document: SourceDocument) -> None:
        bundle = self.find_bundle(document.folder_id)
        archive_folder = Path(bundle.archive_folder).expanduser()
        archive_folder.mkdir(parents=True, exist_ok=True)

        destination = archive_folder / document.name
        shutil.move(document.source_id, destination)
        logger.info(f"Archived {document.name} to {destination}")

    def stop(self, timeout: Optional[float] = None) -> bool:
        if self.observer is not None:
            self.observer.stop()
            self.observer.join()
            logger.info("File system observer stopped")
        return super().stop(timeout)
