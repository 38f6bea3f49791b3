"""In-memory collaborators and stages shared by the tests."""

import io
import threading
import time
from datetime import datetime, timezone
from typing import BinaryIO, Dict, List

from app.models.schemas import SourceDocument, StorageBundle
from domains.document_pipeline.channels import Channel
from domains.document_pipeline.stages.base import Stage
from domains.storage_watch.base import DocumentWatcher


def make_document(source_id: str, name: str = None, folder_id: str = "inbox") -> SourceDocument:
    return SourceDocument(
        source_id=source_id,
        name=name or f"{source_id}.pdf",
        folder_id=folder_id,
        created_time=datetime(2024, 1, 1, tzinfo=timezone.utc),
        modified_time=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


class FakeWatcher(DocumentWatcher):
    """Serves in-memory document content and records archive calls."""

    store_name = "Fake"

    def __init__(self, contents: Dict[str, bytes] = None, bundles: List[StorageBundle] = None):
        super().__init__(bundles or [])
        self.contents = dict(contents or {})
        self.archived: List[str] = []
        self.opened: List[BinaryIO] = []
        self.archive_error = None
        self._lock = threading.Lock()

    def start_watching(self) -> Channel:
        return self.documents

    def open_stream(self, document: SourceDocument) -> BinaryIO:
        stream = io.BytesIO(self.contents.get(document.source_id, document.source_id.encode()))
        with self._lock:
            self.opened.append(stream)
        return stream

    def archive(self, document: SourceDocument) -> None:
        if self.archive_error is not None:
            raise self.archive_error
        with self._lock:
            self.archived.append(document.source_id)


class UpperStage(Stage):
    name = "Upper"

    def __init__(self):
        super().__init__()
        self.calls: List[str] = []

    def process(self, document, stream):
        self.calls.append(document.source_id)
        return io.BytesIO(stream.read().upper())


class SuffixStage(Stage):
    """Appends the document id so outputs can be traced back to their input."""

    name = "Suffix"

    def process(self, document, stream):
        return io.BytesIO(stream.read() + b"|" + document.source_id.encode())


class FailingStage(Stage):
    name = "Failing"

    def __init__(self, error: Exception):
        super().__init__()
        self.error = error

    def process(self, document, stream):
        raise self.error


class RecordingStage(Stage):
    name = "Recording"

    def __init__(self):
        super().__init__()
        self.seen: List[str] = []
        self.outputs: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def process(self, document, stream):
        data = stream.read()
        with self._lock:
            self.seen.append(document.source_id)
            self.outputs[document.source_id] = data
        return io.BytesIO(data)


class BlockingStage(Stage):
    """Blocks in a cancellable sleep until the pipeline is cancelled."""

    name = "Blocking"

    def __init__(self):
        super().__init__()
        self.entered = threading.Semaphore(0)

    def process(self, document, stream):
        self.entered.release()
        while True:
            self.sleep(0.05)



def wait_until(predicate, timeout: float = 3.0, interval: float = 0.02) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()
