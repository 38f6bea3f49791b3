"""The unit of work that flows between pipeline stages."""

from dataclasses import dataclass, field
from typing import BinaryIO, List, Optional

from loguru import logger

from app.models.schemas import SourceDocument


@dataclass
class TransformContext:
    """
    A document in flight.

    Owned by exactly one thread at a time; ownership moves with each channel
    send. Once ``error`` is set no stage works on the context again, it is
    only passed through to the pipeline exit.
    """

    document: SourceDocument
    record_id: str
    stream: Optional[BinaryIO] = None
    error: Optional[BaseException] = None
    stages_completed: List[str] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.error is not None

    def close_stream(self) -> None:
        """Close and drop the current stream; safe to call repeatedly."""
        stream, self.stream = self.stream, None
        if stream is None:
            return
        try:
            stream.close()
        except OSError as e:
            logger.warning(f"Failed to close stream for {self.document.name}: {e}")

    def fail(self, error: BaseException) -> None:
        """Mark the context failed and release its stream."""
        self.close_stream()
        self.error = error
