"""
Abstract base class for pipeline stages, and the runner that chains them.
"""

import time
from abc import ABC, abstractmethod
from typing import BinaryIO, Optional

from loguru import logger

from app.models.schemas import SourceDocument
from app.stores.documents import DocumentStore
from app.utils.helpers import utc_now
from domains.document_pipeline.channels import CancelScope, Channel, WaitGroup
from domains.document_pipeline.context import TransformContext
from domains.document_pipeline.errors import Cancelled
from domains.document_pipeline.supervisor import FailureSupervisor


class Stage(ABC):
    """One transformation step: takes a document's stream and returns a new one."""

    name: str = "Stage"

    def __init__(self):
        self.scope: Optional[CancelScope] = None

    def initialize(self, scope: CancelScope) -> None:
        """
        Bind the stage to the pipeline's cancellation scope.

        Subclasses validate their configuration here and raise
        ConfigurationError when it is unusable.
        """
        self.scope = scope

    @abstractmethod
    def process(self, document: SourceDocument, stream: BinaryIO) -> BinaryIO:
        """
        Transform a document.

        Args:
            document: The source document being processed
            stream: Current representation; the runner closes it afterwards

        Returns:
            A new readable stream with the stage output
        """

    def sleep(self, seconds: float) -> None:
        """Sleep that wakes up and raises Cancelled when the pipeline is cancelled."""
        if self.scope is None:
            time.sleep(seconds)
            return
        if self.scope.wait(seconds):
            raise Cancelled(self.scope.cause)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r}>"


class StageRunner:
    """
    Boundary code around a stage.

    Runs a dispatch loop reading the input channel and one worker thread per
    received context. Workers record status before and after the stage body,
    pass failed contexts through untouched and forward every context to the
    output channel.
    """

    def __init__(
        self,
        stage: Stage,
        scope: CancelScope,
        wait_group: WaitGroup,
        store: DocumentStore,
        supervisor: Optional[FailureSupervisor] = None,
    ):
        self.stage = stage
        self.scope = scope
        self.wait_group = wait_group
        self.store = store
        self.supervisor = supervisor
        self.input: Optional[Channel] = None
        self.output: Optional[Channel] = None

    @property
    def name(self) -> str:
        return self.stage.name

    def initialize(self, input_channel: Channel) -> Channel:
        """
        Start the dispatch loop on ``input_channel``.

        Returns:
            The channel this stage writes its results to
        """
        self.stage.initialize(self.scope)
        self.input = input_channel
        self.output = Channel(f"{self.name} output")
        self.wait_group.go(self._dispatch, name=f"dispatch:{self.name}")
        logger.debug(f"Stage initialized: {self.name}")
        return self.output

    def _dispatch(self) -> None:
        while True:
            try:
                context = self.input.receive(self.scope)
            except Cancelled:
                logger.debug(f"{self.name} dispatch loop cancelled")
                return

            self.wait_group.go(self._work, context, name=f"{self.name}:{context.record_id}")

    def _work(self, context: TransformContext) -> None:
        if context.failed:
            context.close_stream()
            logger.debug(f"{self.name}: passing through failed document {context.document.name}")
        elif not self._transform(context):
            return

        try:
            self.output.send(context, self.scope)
        except Cancelled:
            context.close_stream()
            logger.debug(f"{self.name}: abandoned {context.document.name} on cancellation")

    def _transform(self, context: TransformContext) -> bool:
        """Run the stage body; False if the work was cancelled."""
        self._update_status(context, "started")
        stream = context.stream

        try:
            output = self.stage.process(context.document, stream)
        except Cancelled:
            context.close_stream()
            logger.debug(f"{self.name}: cancelled while processing {context.document.name}")
            return False
        except Exception as e:
            logger.error(f"{self.name} failed for {context.document.name}: {e}")
            context.fail(e)
            self._update_status(context, f"failed: {e}")
            if self.supervisor is not None:
                self.supervisor.record_failure(self.name, e)
            return True

        if output is not stream:
            context.close_stream()
        context.stream = output
        context.stages_completed.append(self.name)
        self._update_status(context, "finished")
        logger.info(f"{self.name} finished {context.document.name}")
        return True

    def _update_status(self, context: TransformContext, message: str) -> None:
        status = f"{self.name}: {message}"
        try:
            self.store.update_status(context.record_id, utc_now(), status)
        except Exception as e:
            logger.error(f"Failed to update status for document {context.record_id}: {e}")
