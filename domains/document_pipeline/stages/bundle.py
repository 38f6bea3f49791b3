"""
Bundle stage.

Final stage: writes the finished note into the destination notes folder and
moves the staged original PDF into the destination attachments folder, both
resolved from the bundle configured for the document's source folder.
"""

from pathlib import Path
from typing import BinaryIO, List

from loguru import logger

from app.models.schemas import SourceDocument, StorageBundle
from app.utils.helpers import sanitize_filename
from domains.document_pipeline.destinations import Destination
from domains.document_pipeline.errors import BundleNotFoundError
from domains.document_pipeline.stages.base import Stage
from domains.document_pipeline.stages.temp_storage import staged_path


class BundleStage(Stage):
    """Places a note and its attachment in their per-source destination folders."""

    name = "Bundle"

    def __init__(self, bundles: List[StorageBundle], temp_storage_folder: Path, destination: Destination):
        super().__init__()
        self.bundles = list(bundles)
        self.temp_storage_folder = Path(temp_storage_folder)
        self.destination = destination

    def find_bundle(self, document: SourceDocument) -> StorageBundle:
        """
        Resolve the bundle for the document's folder.

        Raises:
            BundleNotFoundError: If no bundle watches that folder
        """
        for bundle in self.bundles:
            if bundle.source_folder == document.folder_id:
                return bundle
        raise BundleNotFoundError(document.folder_id)

    def process(self, document: SourceDocument, stream: BinaryIO) -> BinaryIO:
        bundle = self.find_bundle(document)

        note_path = self.destination.write(bundle.dest_notes_folder, f"{sanitize_filename(document.stem)}.md", stream)

        staged = staged_path(self.temp_storage_folder, document)
        self.destination.copy(staged, bundle.dest_attachments_folder, sanitize_filename(document.name))
        staged.unlink(missing_ok=True)

        logger.info(f"Bundled {document.name} into {bundle.dest_notes_folder}")
        return open(note_path, "rb")
