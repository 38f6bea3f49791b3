import pytest

from app.stores.documents import MemoryDocumentStore
from app.stores.watch_channels import MemoryWatchChannelStore


@pytest.fixture
def document_store():
    return MemoryDocumentStore()


@pytest.fixture
def channel_store():
    return MemoryWatchChannelStore()
