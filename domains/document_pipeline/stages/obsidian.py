"""Stage that turns cleaned markdown into an Obsidian note."""

import io
from typing import BinaryIO

from app.models.schemas import SourceDocument
from app.utils.helpers import sanitize_filename
from domains.document_pipeline.stages.base import Stage


def format_note(markdown: str, attachment_name: str) -> str:
    """Append an embed link to the original attachment."""
    return f"{markdown.rstrip()}\n\n![[{attachment_name}]]\n"


class ObsidianStage(Stage):
    """Links the note to its source PDF attachment."""

    name = "Obsidian Note"

    def process(self, document: SourceDocument, stream: BinaryIO) -> BinaryIO:
        markdown = stream.read().decode("utf-8", errors="replace")
        return io.BytesIO(format_note(markdown, sanitize_filename(document.name)).encode("utf-8"))
