"""
Persistence for Scriptoria

- documents.py - Document admission records
- watch_channels.py - Google Drive watch channel subscriptions
"""
