"""
Failure escalation for the pipeline.

Stage failures are isolated to their document. The supervisor watches the
rate of systemic failures and cancels the whole pipeline when it is clear the
problem is not the document (e.g. an exhausted API quota).
"""

import threading
import time
from collections import deque
from typing import Callable, Deque

from loguru import logger

from domains.document_pipeline.channels import CancelScope
from domains.document_pipeline.errors import DocumentError, PipelineFailure


class FailureSupervisor:
    """Cancels a scope when too many systemic failures happen within a window."""

    def __init__(
        self,
        scope: CancelScope,
        threshold: int = 3,
        window: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            scope: Scope to cancel on escalation
            threshold: Failures within ``window`` that cancel the pipeline (0 disables)
            window: Sliding window in seconds
            clock: Monotonic time source
        """
        self.scope = scope
        self.threshold = threshold
        self.window = window
        self._clock = clock
        self._lock = threading.Lock()
        self._failures: Deque[float] = deque()

    def record_failure(self, stage_name: str, error: BaseException) -> bool:
        """
        Record a stage failure.

        Returns:
            True if this failure escalated to a pipeline cancellation
        """
        if isinstance(error, DocumentError):
            return False
        if self.threshold <= 0:
            return False

        now = self._clock()
        with self._lock:
            self._failures.append(now)
            while self._failures and now - self._failures[0] > self.window:
                self._failures.popleft()
            count = len(self._failures)

        if count < self.threshold:
            logger.warning(f"{stage_name} failure {count}/{self.threshold} within {self.window:.0f}s: {error}")
            return False

        failure = PipelineFailure(
            f"{count} stage failures within {self.window:.0f}s, last in {stage_name}: {error}"
        )
        failure.__cause__ = error
        if self.scope.cancel(failure):
            logger.error(f"Cancelling pipeline: {failure}")
        return True
