"""
Storage Watch Domain

Discovers newly-arrived source documents and emits them for the pipeline:
- local.py - Local folders monitored with watchdog
- gdrive.py - Google Drive folders with push notifications
- channels.py - Lifecycle of Google Drive watch channels
- drive_client.py - Google Drive v3 REST client
- registry.py - Store type names to watcher factories

Watchers do not deduplicate; the pipeline's admission check does.
"""

__all__ = ["base", "channels", "drive_client", "gdrive", "local", "registry"]
