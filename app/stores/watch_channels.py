"""
Watch-subscription store.

Persists one WatchChannel per watched folder so channels survive restarts
and are only recreated when stale.
"""

import threading
from abc import ABC, abstractmethod
from typing import Dict

from app.models.schemas import WatchChannel
from app.utils.helpers import parse_iso_timestamp
from app.utils.neo4j_client import Neo4jClient


class WatchChannelNotFoundError(Exception):
    """No watch channel is recorded for the folder."""


class WatchChannelStore(ABC):
    """Persistence for watch channels, keyed by folder id."""

    @abstractmethod
    def get_watch_channel(self, folder_id: str) -> WatchChannel:
        """Return the channel for ``folder_id`` or raise WatchChannelNotFoundError."""

    @abstractmethod
    def upsert_watch_channel(self, channel: WatchChannel) -> WatchChannel:
        """Create or replace the channel for ``channel.folder_id``."""


class Neo4jWatchChannelStore(WatchChannelStore):
    """Watch channels stored as :WatchChannel nodes."""

    def __init__(self, client: Neo4jClient):
        self.neo4j = client

    def get_watch_channel(self, folder_id: str) -> WatchChannel:
        query = """
        MATCH (w:WatchChannel {folder_id: $folder_id})
        RETURN w {.*} AS channel
        LIMIT 1
        """
        rows = self.neo4j.execute_read(query, {"folder_id": folder_id})
        if not rows:
            raise WatchChannelNotFoundError(f"No watch channel for folder {folder_id}")
        return self._to_channel(rows[0]["channel"])

    def upsert_watch_channel(self, channel: WatchChannel) -> WatchChannel:
        query = """
        MERGE (w:WatchChannel {folder_id: $folder_id})
        SET w.channel_id = $channel_id,
            w.resource_id = $resource_id,
            w.expires_at = $expires_at,
            w.webhook_url = $webhook_url
        RETURN w {.*} AS channel
        """
        rows = self.neo4j.execute_write(
            query,
            {
                "folder_id": channel.folder_id,
                "channel_id": channel.channel_id,
                "resource_id": channel.resource_id,
                "expires_at": channel.expires_at.isoformat(),
                "webhook_url": channel.webhook_url,
            },
        )
        return self._to_channel(rows[0]["channel"])

    @staticmethod
    def _to_channel(props: Dict) -> WatchChannel:
        return WatchChannel(
            channel_id=props["channel_id"],
            folder_id=props["folder_id"],
            resource_id=props.get("resource_id"),
            expires_at=parse_iso_timestamp(props["expires_at"]),
            webhook_url=props["webhook_url"],
        )


class MemoryWatchChannelStore(WatchChannelStore):
    """In-process watch channels, used for local runs and tests."""

    def __init__(self):
        self._lock = threading.Lock()
        self._channels: Dict[str, WatchChannel] = {}

    def get_watch_channel(self, folder_id: str) -> WatchChannel:
        with self._lock:
            channel = self._channels.get(folder_id)
        if channel is None:
            raise WatchChannelNotFoundError(f"No watch channel for folder {folder_id}")
        return channel

    def upsert_watch_channel(self, channel: WatchChannel) -> WatchChannel:
        with self._lock:
            self._channels[channel.folder_id] = channel
        return channel
