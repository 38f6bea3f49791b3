"""
Pydantic models for Scriptoria.

Shared data models across the application.
"""

from datetime import datetime
from pathlib import PurePath
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


# =====================================================
# Configuration Models
# =====================================================

DEFAULT_STAGES = ["temp_storage", "mathpix", "chatgpt", "obsidian", "bundle"]


class StorageBundle(BaseModel):
    """Mapping from one watched source folder to its destination folders."""
    source_folder: str
    archive_folder: str
    dest_attachments_folder: str
    dest_notes_folder: str


class PipelineConfig(BaseModel):
    """Pipeline configuration loaded from the JSON config file."""
    source_store: str
    dest_store: str = "Local"
    temp_storage_folder: str
    bundles: List[StorageBundle] = []
    stages: List[str] = Field(default_factory=lambda: list(DEFAULT_STAGES))


# =====================================================
# Document Models
# =====================================================

class SourceDocument(BaseModel):
    """A document discovered by a storage watcher."""
    model_config = ConfigDict(frozen=True)

    source_id: str
    name: str
    folder_id: str
    created_time: Optional[datetime] = None
    modified_time: Optional[datetime] = None

    @property
    def stem(self) -> str:
        """Document name without its extension."""
        return PurePath(self.name).stem


class DocumentRecord(BaseModel):
    """Persisted admission record for a source document."""
    id: str
    source_store: str
    source_id: str
    source_name: str
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    processing_status: Optional[str] = None


# =====================================================
# Watch Channel Models
# =====================================================

class WatchChannel(BaseModel):
    """Push-notification subscription for one watched folder."""
    channel_id: str
    folder_id: str
    resource_id: Optional[str] = None
    expires_at: datetime
    webhook_url: str


# =====================================================
# Response Models
# =====================================================

class NotificationAccepted(BaseModel):
    """Webhook acknowledgement."""
    status: str = "accepted"
