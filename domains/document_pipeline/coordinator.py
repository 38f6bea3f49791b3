"""
Pipeline coordinator.

Builds the stage chain once at startup, admits each discovered document at
most once, and routes every finished context back to the thread that
admitted it.

Flow
----
1. The watcher emits a SourceDocument
2. ``admit`` creates its DocumentRecord; an existing record means the
   document was seen before and admission is skipped
3. A TransformContext carrying the record id and the source stream is sent
   into the entry channel and travels stage by stage
4. The collector reads the exit channel and hands the context to its waiter
5. The waiter closes the final stream, archives the source and records the
   terminal status
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, TimeoutError as FutureTimeout
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from loguru import logger

from app.models.schemas import SourceDocument
from app.stores.documents import DocumentExistsError, DocumentStore
from app.utils.helpers import utc_now
from domains.document_pipeline.channels import POLL_INTERVAL, CancelScope, Channel, WaitGroup
from domains.document_pipeline.context import TransformContext
from domains.document_pipeline.errors import Cancelled
from domains.document_pipeline.stages.base import Stage, StageRunner
from domains.document_pipeline.supervisor import FailureSupervisor

if TYPE_CHECKING:
    from domains.storage_watch.base import DocumentWatcher


class PipelineBuilder:
    """Collects stages in order and builds an immutable Pipeline."""

    def __init__(
        self,
        store: DocumentStore,
        source: "DocumentWatcher",
        source_store: Optional[str] = None,
        scope: Optional[CancelScope] = None,
        failure_threshold: int = 3,
        failure_window: float = 600.0,
    ):
        """
        Args:
            store: Document record store
            source: Watcher the documents come from; opens and archives them
            source_store: Name recorded on document records (defaults to the watcher's)
            scope: Parent cancellation scope
            failure_threshold: Systemic failures that cancel the pipeline (0 disables)
            failure_window: Window in seconds for ``failure_threshold``
        """
        self.store = store
        self.source = source
        self.source_store = source_store or source.store_name
        self.scope = scope
        self.failure_threshold = failure_threshold
        self.failure_window = failure_window
        self._stages: List[Stage] = []

    def add_stage(self, stage: Stage) -> "PipelineBuilder":
        self._stages.append(stage)
        return self

    def build(self) -> "Pipeline":
        scope = self.scope.child() if self.scope is not None else CancelScope()
        supervisor = FailureSupervisor(scope, self.failure_threshold, self.failure_window)
        return Pipeline(
            stages=tuple(self._stages),
            store=self.store,
            source=self.source,
            source_store=self.source_store,
            scope=scope,
            supervisor=supervisor,
        )


class Pipeline:
    """
    A running chain of stages.

    N stages are joined by N+1 unbuffered channels: ``channels[0]`` is the
    entry and ``channels[-1]`` the exit. Every thread the pipeline starts,
    including each stage's dispatch loop and workers, is counted by
    ``wait_group`` so ``shutdown`` can wait for all of them.
    """

    def __init__(
        self,
        stages: Tuple[Stage, ...],
        store: DocumentStore,
        source: "DocumentWatcher",
        source_store: str,
        scope: CancelScope,
        supervisor: Optional[FailureSupervisor] = None,
    ):
        self.store = store
        self.source = source
        self.source_store = source_store
        self.scope = scope
        self.supervisor = supervisor
        self.wait_group = WaitGroup()

        self._pending: Dict[str, Future] = {}
        self._pending_lock = threading.Lock()

        entry = Channel("pipeline entry")
        channels = [entry]
        runners = []
        current = entry
        try:
            for stage in stages:
                runner = StageRunner(stage, scope, self.wait_group, store, supervisor)
                current = runner.initialize(current)
                channels.append(current)
                runners.append(runner)
        except Exception as e:
            logger.error(f"Failed to initialize the pipeline stages: {e}")
            scope.cancel(e)
            self.wait_group.wait()
            raise

        self.stages: Tuple[Stage, ...] = tuple(stages)
        self.channels: Tuple[Channel, ...] = tuple(channels)
        self._runners: Tuple[StageRunner, ...] = tuple(runners)

        self.wait_group.go(self._collect, name="pipeline:collector")
        logger.info(f"Pipeline built: {' -> '.join(self.stage_names) or '(no stages)'}")

    @property
    def entry(self) -> Channel:
        return self.channels[0]

    @property
    def exit(self) -> Channel:
        return self.channels[-1]

    @property
    def stage_names(self) -> List[str]:
        return [stage.name for stage in self.stages]

    @property
    def running(self) -> bool:
        return not self.scope.cancelled

    @property
    def error(self) -> Optional[BaseException]:
        """Cause of cancellation, if the pipeline was cancelled by a fault."""
        return self.scope.cause

    @property
    def in_flight(self) -> int:
        """Threads currently alive in the pipeline, loops included."""
        return self.wait_group.count

    # Admission --------------------------------------------------------------------

    def submit(self, document: SourceDocument) -> threading.Thread:
        """Admit ``document`` on its own thread."""
        return self.wait_group.go(self.admit, document, name=f"submit:{document.source_id}")

    def monitor(self, watcher: "DocumentWatcher") -> threading.Thread:
        """Start the watcher and submit every document it emits."""
        documents = watcher.start_watching()

        def loop():
            while True:
                try:
                    document = documents.receive(self.scope)
                except Cancelled:
                    logger.debug("Document monitor cancelled")
                    return
                self.submit(document)

        return self.wait_group.go(loop, name="pipeline:monitor")

    def admit(self, document: SourceDocument) -> Optional[TransformContext]:
        """
        Run one document through the pipeline.

        Returns:
            The final context, or None if the document was skipped or abandoned
        """
        if self.scope.cancelled:
            logger.debug(f"Pipeline cancelled, not admitting {document.name}")
            return None

        try:
            record = self.store.create_document(self.source_store, document.source_id, document.name)
        except DocumentExistsError as e:
            logger.warning(
                f"Document exists: {document.name} ({document.source_id}) already admitted as {e.record.id}"
            )
            return None
        except Exception as e:
            logger.error(f"Failed to create the document record for {document.name}: {e}")
            return None

        logger.info(f"Admitted {document.name} as {record.id}")

        try:
            stream = self.source.open_stream(document)
        except Exception as e:
            logger.error(f"Failed to open {document.name}: {e}")
            self._set_status(record.id, f"failed: {e}")
            return None

        context = TransformContext(document=document, record_id=record.id, stream=stream)
        future: Future = Future()
        with self._pending_lock:
            self._pending[record.id] = future

        sent = False
        try:
            self.entry.send(context, self.scope)
            sent = True
            result = self._await(future)
        except Cancelled:
            with self._pending_lock:
                self._pending.pop(record.id, None)
            # once sent, the stages own the stream and close it
            if not sent:
                context.close_stream()
            self._set_status(record.id, "cancelled")
            logger.info(f"Abandoned {document.name} on cancellation")
            return None

        return self._finish(result)

    def _await(self, future: Future) -> TransformContext:
        while True:
            try:
                return future.result(timeout=POLL_INTERVAL)
            except FutureTimeout:
                if self.scope.cancelled and not future.done():
                    raise Cancelled(self.scope.cause)

    def _collect(self) -> None:
        while True:
            try:
                context = self.exit.receive(self.scope)
            except Cancelled:
                logger.debug("Pipeline collector cancelled")
                return

            with self._pending_lock:
                future = self._pending.pop(context.record_id, None)

            if future is None:
                logger.warning(f"No waiter for document {context.record_id}, dropping it")
                context.close_stream()
                continue

            future.set_result(context)

    def _finish(self, context: TransformContext) -> TransformContext:
        context.close_stream()
        document = context.document

        if context.failed:
            logger.warning(f"Processing failed for {document.name}: {context.error}")
            self._set_status(context.record_id, f"failed: {context.error}")
            return context

        try:
            self.source.archive(document)
        except Exception as e:
            logger.error(f"Failed to archive {document.name}: {e}")
            self._set_status(context.record_id, f"archive failed: {e}")
            return context

        self._set_status(context.record_id, "completed")
        logger.success(f"Finished processing the document {document.name}")
        return context

    def _set_status(self, record_id: str, status: str) -> None:
        try:
            self.store.update_status(record_id, utc_now(), status)
        except Exception as e:
            logger.error(f"Failed to update status for document {record_id}: {e}")

    # Shutdown ---------------------------------------------------------------------

    def shutdown(self, timeout: Optional[float] = None) -> bool:
        """
        Cancel the pipeline and wait for every thread it started.

        Returns:
            True if everything drained within ``timeout``
        """
        self.scope.cancel()
        drained = self.wait_group.wait(timeout)
        if drained:
            logger.info("Pipeline shut down")
        else:
            logger.warning(f"Pipeline shutdown timed out with {self.in_flight} threads running")
        return drained

    def __repr__(self) -> str:
        return f"Pipeline({self.stage_names!r}, running={self.running})"
