"""
Google Drive watch channel lifecycle.

Each watched folder has at most one channel the service treats as active.
A channel is in one of three states:

- ABSENT: nothing recorded for the folder
- ACTIVE: recorded, points at the current webhook URL and is not about to expire
- STALE: recorded but expiring within the safety margin or aimed at another URL

``refresh`` replaces ABSENT and STALE channels. A new channel is persisted
before it is accepted as active, so a restart never forgets a channel that
is already receiving notifications.
"""

import threading
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Set

from loguru import logger

from app.models.schemas import WatchChannel
from app.stores.watch_channels import WatchChannelNotFoundError, WatchChannelStore
from app.utils.config import ConfigurationError
from app.utils.helpers import generate_uuid, utc_now
from domains.document_pipeline.channels import CancelScope, WaitGroup

CHANNEL_LIFETIME = timedelta(hours=24)
SAFETY_MARGIN = timedelta(seconds=60)
RENEWAL_INTERVAL = 30 * 60


class ChannelState(str, Enum):
    ABSENT = "absent"
    ACTIVE = "active"
    STALE = "stale"


class WatchChannelManager:
    """Creates, renews and tracks watch channels for a fixed set of folders."""

    def __init__(
        self,
        folder_ids: Iterable[str],
        webhook_url: str,
        store: WatchChannelStore,
        subscriber,
        lifetime: timedelta = CHANNEL_LIFETIME,
        safety_margin: timedelta = SAFETY_MARGIN,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Args:
            folder_ids: Folders to keep watched
            webhook_url: Public URL notifications are delivered to
            store: Persistence for channels
            subscriber: Object with ``watch`` and ``stop_channel`` (a DriveClient)
            lifetime: Requested channel lifetime
            safety_margin: Channels expiring within this margin count as stale
            clock: Returns the current aware datetime
        """
        if not webhook_url:
            raise ConfigurationError("GOOGLE_WEBHOOK_URL is required to watch Google Drive folders")

        self.folder_ids = list(folder_ids)
        self.webhook_url = webhook_url
        self.store = store
        self.subscriber = subscriber
        self.lifetime = lifetime
        self.safety_margin = safety_margin
        self._clock = clock

        self._lock = threading.Lock()
        self._refresh_lock = threading.Lock()
        self._channels: Dict[str, WatchChannel] = {}
        # ids being subscribed; Drive may notify on them before watch returns
        self._pending: Set[str] = set()

    def state_of(self, channel: Optional[WatchChannel]) -> ChannelState:
        if channel is None:
            return ChannelState.ABSENT
        if channel.webhook_url != self.webhook_url:
            return ChannelState.STALE
        if self._clock() >= channel.expires_at - self.safety_margin:
            return ChannelState.STALE
        return ChannelState.ACTIVE

    def folder_state(self, folder_id: str) -> ChannelState:
        with self._lock:
            return self.state_of(self._channels.get(folder_id))

    def is_active(self, channel_id: str) -> bool:
        """True if ``channel_id`` is the current or in-progress channel of a watched folder."""
        with self._lock:
            if channel_id in self._pending:
                return True
            return any(channel.channel_id == channel_id for channel in self._channels.values())

    def active_channel_ids(self) -> Set[str]:
        with self._lock:
            return {channel.channel_id for channel in self._channels.values()}

    def refresh(self) -> List[str]:
        """
        Ensure every folder has an active channel.

        Refreshes are serialized. A failure for one folder is logged and
        leaves the other folders unaffected.

        Returns:
            Folder ids whose channel was created or renewed
        """
        renewed = []
        with self._refresh_lock:
            for folder_id in self.folder_ids:
                try:
                    current = self._current(folder_id)
                    state = self.state_of(current)
                    if state is ChannelState.ACTIVE:
                        logger.debug(f"Watch channel for folder {folder_id} is active until {current.expires_at}")
                        continue
                    self._subscribe(folder_id, state)
                    renewed.append(folder_id)
                except Exception as e:
                    logger.error(f"Failed to refresh the watch channel for folder {folder_id}: {e}")
        return renewed

    def _current(self, folder_id: str) -> Optional[WatchChannel]:
        with self._lock:
            channel = self._channels.get(folder_id)
        if channel is not None:
            return channel

        try:
            channel = self.store.get_watch_channel(folder_id)
        except WatchChannelNotFoundError:
            return None

        with self._lock:
            self._channels.setdefault(folder_id, channel)
        return channel

    def _subscribe(self, folder_id: str, state: ChannelState) -> WatchChannel:
        channel_id = generate_uuid()
        requested_expiry = self._clock() + self.lifetime

        with self._lock:
            self._pending.add(channel_id)

        try:
            response = self.subscriber.watch(folder_id, channel_id, self.webhook_url, requested_expiry)
            channel = WatchChannel(
                channel_id=channel_id,
                folder_id=folder_id,
                resource_id=response.get("resourceId"),
                expires_at=_expiration(response.get("expiration")) or requested_expiry,
                webhook_url=self.webhook_url,
            )

            channel = self.store.upsert_watch_channel(channel)
            with self._lock:
                self._channels[folder_id] = channel
        finally:
            with self._lock:
                self._pending.discard(channel_id)

        action = "Created" if state is ChannelState.ABSENT else "Renewed"
        logger.info(f"{action} watch channel {channel_id} for folder {folder_id}, expires {channel.expires_at}")
        return channel

    def stop_orphan(self, channel_id: str, resource_id: Optional[str]) -> None:
        """Ask Drive to stop a channel nobody tracks. Failures are only logged."""
        logger.info(f"Stopping orphaned watch channel {channel_id}")
        try:
            self.subscriber.stop_channel(channel_id, resource_id)
        except Exception as e:
            logger.error(f"Failed to stop watch channel {channel_id}: {e}")

    def start_renewal(self, scope: CancelScope, wait_group: WaitGroup, interval: float = RENEWAL_INTERVAL):
        """Run ``refresh`` every ``interval`` seconds until ``scope`` is cancelled."""

        def loop():
            while not scope.wait(interval):
                self.refresh()
            logger.debug("Watch channel renewal stopped")

        return wait_group.go(loop, name="gdrive:channel-renewal")


def _expiration(value) -> Optional[datetime]:
    # Drive reports expiration as epoch milliseconds in a string
    if not value:
        return None
    try:
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
    except (TypeError, ValueError):
        return None
