"""
Google Drive v3 client built on google-api-python-client.

Provides:
- Service account authentication (google-auth)
- File search with paging
- Chunked downloads into spooled temp files
- Moving files between folders
- Watch channel creation and teardown

The discovery ``Resource`` and its httplib2 transport are not thread-safe,
so every thread gets its own service from the factory.
"""

import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, BinaryIO, Callable, Dict, Iterable, List, Optional

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseDownload
from loguru import logger

from app.utils.config import ConfigurationError

DRIVE_SCOPE = "https://www.googleapis.com/auth/drive"
FILE_FIELDS = "nextPageToken, files(id, name, parents, createdTime, modifiedTime)"
NUM_RETRIES = 3

# Downloads above this size spill from memory to disk
SPOOL_MAX_SIZE = 16 * 1024 * 1024


class DriveError(Exception):
    """A Google Drive API call failed."""


def load_service_account(path: Path):
    """
    Load service account credentials scoped for Drive.

    Raises:
        ConfigurationError: If the key file is unreadable or invalid
    """
    try:
        return service_account.Credentials.from_service_account_file(str(path), scopes=[DRIVE_SCOPE])
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Unable to load service account file {path}: {e}") from e


class DriveClient:
    """Thin wrapper over the Drive calls Scriptoria needs."""

    def __init__(self, service_factory: Callable[[], Any]):
        """
        Args:
            service_factory: Builds a Drive v3 service, called once per thread
        """
        self._service_factory = service_factory
        self._local = threading.local()
        self._services: List[Any] = []
        self._lock = threading.Lock()

    @classmethod
    def from_service_account(cls, key_file: Path) -> "DriveClient":
        credentials = load_service_account(key_file)
        return cls(lambda: build("drive", "v3", credentials=credentials, cache_discovery=False))

    @property
    def service(self):
        service = getattr(self._local, "service", None)
        if service is None:
            service = self._service_factory()
            self._local.service = service
            with self._lock:
                self._services.append(service)
        return service

    def close(self):
        with self._lock:
            services, self._services = self._services, []
        for service in services:
            service.close()

    def _execute(self, request, action: str, num_retries: int = NUM_RETRIES) -> Dict[str, Any]:
        try:
            return request.execute(num_retries=num_retries)
        except (HttpError, OSError) as e:
            raise DriveError(f"Drive request to {action} failed: {e}") from e

    def list_files(self, query: str, fields: str = FILE_FIELDS) -> List[Dict[str, Any]]:
        """Run a files.list query, following every page."""
        files: List[Dict[str, Any]] = []
        page_token = None

        while True:
            request = self.service.files().list(q=query, fields=fields, pageToken=page_token)
            data = self._execute(request, "list files")
            files.extend(data.get("files", []))

            page_token = data.get("nextPageToken")
            if not page_token:
                return files

    def download(self, file_id: str) -> BinaryIO:
        """Download file content into a rewound spooled temp file."""
        buffer = tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_SIZE)
        try:
            downloader = MediaIoBaseDownload(buffer, self.service.files().get_media(fileId=file_id))
            done = False
            while not done:
                _status, done = downloader.next_chunk(num_retries=NUM_RETRIES)
        except (HttpError, OSError) as e:
            buffer.close()
            raise DriveError(f"Unable to download file {file_id}: {e}") from e

        buffer.seek(0)
        return buffer

    def get_parents(self, file_id: str) -> List[str]:
        data = self._execute(self.service.files().get(fileId=file_id, fields="parents"), f"read file {file_id}")
        return data.get("parents", [])

    def move(self, file_id: str, add_parent: str, remove_parents: Iterable[str]) -> Dict[str, Any]:
        """Re-parent a file."""
        request = self.service.files().update(
            fileId=file_id,
            addParents=add_parent,
            removeParents=",".join(remove_parents),
            fields="id, parents",
        )
        return self._execute(request, f"move file {file_id}")

    def watch(self, folder_id: str, channel_id: str, address: str, expiration: datetime) -> Dict[str, Any]:
        """Open a web_hook watch channel on a folder."""
        body = {
            "id": channel_id,
            "type": "web_hook",
            "address": address,
            "expiration": str(int(expiration.timestamp() * 1000)),
        }
        # a retried watch could open a second channel
        data = self._execute(self.service.files().watch(fileId=folder_id, body=body), f"watch {folder_id}", 0)
        logger.debug(f"Drive watch response for {folder_id}: {data}")
        return data

    def stop_channel(self, channel_id: str, resource_id: Optional[str]) -> Dict[str, Any]:
        """Stop notifications for a watch channel."""
        body = {"id": channel_id}
        if resource_id:
            body["resourceId"] = resource_id
        return self._execute(self.service.channels().stop(body=body), f"stop channel {channel_id}")
