"""Stage that stages the original document in the local temp folder."""

import hashlib
from pathlib import Path
from typing import BinaryIO

from loguru import logger

from app.models.schemas import SourceDocument
from app.utils.config import ConfigurationError
from app.utils.helpers import copy_stream_to_file, sanitize_filename
from domains.document_pipeline.channels import CancelScope
from domains.document_pipeline.stages.base import Stage


def staged_path(temp_storage_folder: Path, document: SourceDocument) -> Path:
    """
    Where the staged copy of ``document`` lives.

    Names are not unique across folders, so the file is keyed on a digest of
    the source id and keeps the original name only as a suffix.
    """
    key = hashlib.sha256(document.source_id.encode("utf-8")).hexdigest()[:16]
    return Path(temp_storage_folder) / f"{key}-{sanitize_filename(document.name)}"


class TempStorageStage(Stage):
    """Copies the incoming stream to disk and hands on a reader for the copy."""

    name = "Temp Storage"

    def __init__(self, temp_storage_folder: Path):
        super().__init__()
        self.temp_storage_folder = Path(temp_storage_folder)

    def initialize(self, scope: CancelScope) -> None:
        super().initialize(scope)
        try:
            self.temp_storage_folder.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigurationError(f"Cannot create temp storage folder {self.temp_storage_folder}: {e}") from e

    def process(self, document: SourceDocument, stream: BinaryIO) -> BinaryIO:
        path = staged_path(self.temp_storage_folder, document)
        size = copy_stream_to_file(stream, path)
        logger.debug(f"Staged {document.name} at {path} ({size} bytes)")
        return open(path, "rb")
