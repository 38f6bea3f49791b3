"""
Runtime assembly.

Wires settings and the pipeline config into stores, a watcher and a built
pipeline. Building validates everything needed to run; any problem surfaces
as ConfigurationError before the HTTP server starts.
"""

from dataclasses import dataclass
from typing import Optional

from loguru import logger

from app.models.schemas import PipelineConfig
from app.stores.documents import DocumentStore, MemoryDocumentStore, Neo4jDocumentStore
from app.stores.watch_channels import (
    MemoryWatchChannelStore,
    Neo4jWatchChannelStore,
    WatchChannelStore,
)
from app.utils.config import ConfigurationError, Settings
from app.utils.neo4j_client import Neo4jClient
from domains.document_pipeline.channels import CancelScope
from domains.document_pipeline.coordinator import Pipeline, PipelineBuilder
from domains.document_pipeline.stages.registry import build_stages
from domains.storage_watch.base import DocumentWatcher
from domains.storage_watch.registry import build_watcher


@dataclass
class Runtime:
    """Everything the service runs, built once at startup."""

    settings: Settings
    config: PipelineConfig
    scope: CancelScope
    store: DocumentStore
    channel_store: WatchChannelStore
    watcher: DocumentWatcher
    pipeline: Pipeline
    neo4j: Optional[Neo4jClient] = None

    @property
    def webhook_path(self) -> Optional[str]:
        """Path notifications are posted to, when the watcher takes them."""
        return getattr(self.watcher, "webhook_path", None)

    def start(self) -> None:
        self.pipeline.monitor(self.watcher)
        logger.success(f"Watching {self.watcher.store_name} for documents")

    def stop(self, timeout: Optional[float] = None) -> bool:
        """Stop discovery, drain the pipeline and release connections."""
        logger.info("Stopping runtime...")
        drained = self.pipeline.shutdown(timeout)
        self.watcher.stop(timeout)
        if self.neo4j is not None:
            self.neo4j.close()
        return drained


def build_stores(settings: Settings):
    """Create the record stores for the configured database backend."""
    backend = settings.database_backend.lower()

    if backend == "memory":
        logger.warning("Using in-memory stores; admission records will not survive a restart")
        return MemoryDocumentStore(), MemoryWatchChannelStore(), None

    if backend == "neo4j":
        client = Neo4jClient(settings.neo4j_uri, settings.neo4j_user, settings.neo4j_password)
        try:
            client.connect()
        except Exception as e:
            raise ConfigurationError(f"Failed to connect to Neo4j at {settings.neo4j_uri}: {e}") from e
        return Neo4jDocumentStore(client), Neo4jWatchChannelStore(client), client

    raise ConfigurationError(f"Unknown database backend '{settings.database_backend}'")


def build_runtime(settings: Settings, config: PipelineConfig) -> Runtime:
    """
    Build stores, watcher and pipeline.

    Raises:
        ConfigurationError: If anything required is missing or invalid
    """
    scope = CancelScope()
    store, channel_store, neo4j = build_stores(settings)

    try:
        watcher = build_watcher(config, settings, channel_store, scope)

        builder = PipelineBuilder(
            store,
            watcher,
            scope=scope,
            failure_threshold=settings.failure_threshold,
            failure_window=settings.failure_window,
        )
        for stage in build_stages(config, settings):
            builder.add_stage(stage)
        pipeline = builder.build()
    except Exception:
        if neo4j is not None:
            neo4j.close()
        raise

    return Runtime(
        settings=settings,
        config=config,
        scope=scope,
        store=store,
        channel_store=channel_store,
        watcher=watcher,
        pipeline=pipeline,
        neo4j=neo4j,
    )
