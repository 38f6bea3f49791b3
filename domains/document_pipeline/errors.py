"""Exceptions raised inside the document pipeline."""

from typing import Optional


class PipelineError(Exception):
    """Base class for pipeline errors."""


class StageError(PipelineError):
    """A stage failed for a systemic reason (service down, quota exhausted, bad response)."""


class ConversionError(StageError):
    """The OCR service reported a failure."""


class ConversionTimeoutError(ConversionError):
    """The OCR service did not finish before the deadline."""

    def __init__(self, pdf_id: str, timeout: float):
        super().__init__(f"Conversion {pdf_id} did not complete within {timeout:.0f}s")
        self.pdf_id = pdf_id
        self.timeout = timeout


class CleanupError(StageError):
    """The text cleanup service returned an unusable response."""


class DocumentError(PipelineError):
    """A failure caused by the document or its configuration, not by the system."""


class BundleNotFoundError(DocumentError):
    """No storage bundle is configured for the document's folder."""

    def __init__(self, folder_id: str):
        super().__init__(f"Could not find a bundle for folder {folder_id}")
        self.folder_id = folder_id


class PipelineFailure(PipelineError):
    """Cause attached when the supervisor cancels the whole pipeline."""


class Cancelled(PipelineError):
    """A blocking operation was interrupted by cancellation."""

    def __init__(self, cause: Optional[BaseException] = None):
        super().__init__(f"Cancelled: {cause}" if cause else "Cancelled")
        self.cause = cause
