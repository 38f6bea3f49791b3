"""
Document record store.

One record per admitted source document, keyed by (source store, source id).
Records are created once and then only updated with processing status.
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Tuple

from loguru import logger

from app.models.schemas import DocumentRecord
from app.utils.helpers import generate_uuid, parse_iso_timestamp, utc_now
from app.utils.neo4j_client import Neo4jClient


class DocumentExistsError(Exception):
    """A record already exists for the source document."""

    def __init__(self, record: DocumentRecord):
        super().__init__(
            f"Document already exists: {record.source_store}/{record.source_id} ({record.id})"
        )
        self.record = record


class DocumentNotFoundError(Exception):
    """No record matches the lookup."""


class DocumentStore(ABC):
    """Persistence for document admission records."""

    @abstractmethod
    def create_document(self, source_store: str, source_id: str, source_name: str) -> DocumentRecord:
        """Create the record, raising DocumentExistsError if it is already there."""

    @abstractmethod
    def update_status(self, record_id: str, timestamp: datetime, status: str) -> DocumentRecord:
        """Set processed-at and processing status on a record."""

    @abstractmethod
    def find_by_source_id(self, source_id: str) -> DocumentRecord:
        """Look up a record by its source id."""

    def is_connected(self) -> bool:
        return True


def _to_record(props: Dict[str, Any]) -> DocumentRecord:
    return DocumentRecord(
        id=props["id"],
        source_store=props["source_store"],
        source_id=props["source_id"],
        source_name=props.get("source_name") or "",
        created_at=parse_iso_timestamp(props.get("created_at")),
        processed_at=parse_iso_timestamp(props.get("processed_at")),
        processing_status=props.get("processing_status"),
    )


class Neo4jDocumentStore(DocumentStore):
    """Document records stored as :Document nodes."""

    def __init__(self, client: Neo4jClient):
        self.neo4j = client

    def create_document(self, source_store: str, source_id: str, source_name: str) -> DocumentRecord:
        # ON CREATE only assigns our id, so a differing id means the node existed
        query = """
        MERGE (d:Document {source_store: $source_store, source_id: $source_id})
        ON CREATE SET
            d.id = $id,
            d.source_name = $source_name,
            d.created_at = $now
        RETURN d {.*} AS document, d.id = $id AS created
        """
        rows = self.neo4j.execute_write(
            query,
            {
                "source_store": source_store,
                "source_id": source_id,
                "source_name": source_name,
                "id": generate_uuid(),
                "now": utc_now().isoformat(),
            },
        )
        row = rows[0]
        record = _to_record(row["document"])
        if not row["created"]:
            raise DocumentExistsError(record)

        logger.debug(f"Document record created: {record.id} for {source_store}/{source_id}")
        return record

    def update_status(self, record_id: str, timestamp: datetime, status: str) -> DocumentRecord:
        query = """
        MATCH (d:Document {id: $id})
        SET d.processed_at = $processed_at, d.processing_status = $status
        RETURN d {.*} AS document
        """
        rows = self.neo4j.execute_write(
            query,
            {"id": record_id, "processed_at": timestamp.isoformat(), "status": status},
        )
        if not rows:
            raise DocumentNotFoundError(f"No document record with id {record_id}")
        return _to_record(rows[0]["document"])

    def find_by_source_id(self, source_id: str) -> DocumentRecord:
        query = """
        MATCH (d:Document {source_id: $source_id})
        RETURN d {.*} AS document
        LIMIT 1
        """
        rows = self.neo4j.execute_read(query, {"source_id": source_id})
        if not rows:
            raise DocumentNotFoundError(f"No document record for source id {source_id}")
        return _to_record(rows[0]["document"])

    def is_connected(self) -> bool:
        return self.neo4j.is_connected()


class MemoryDocumentStore(DocumentStore):
    """In-process document records, used for local runs and tests."""

    def __init__(self):
        self._lock = threading.Lock()
        self._records: Dict[Tuple[str, str], DocumentRecord] = {}

    def create_document(self, source_store: str, source_id: str, source_name: str) -> DocumentRecord:
        key = (source_store, source_id)
        with self._lock:
            existing = self._records.get(key)
            if existing is not None:
                raise DocumentExistsError(existing)

            record = DocumentRecord(
                id=generate_uuid(),
                source_store=source_store,
                source_id=source_id,
                source_name=source_name,
                created_at=utc_now(),
            )
            self._records[key] = record
            return record

    def update_status(self, record_id: str, timestamp: datetime, status: str) -> DocumentRecord:
        with self._lock:
            for key, record in self._records.items():
                if record.id == record_id:
                    updated = record.model_copy(
                        update={"processed_at": timestamp, "processing_status": status}
                    )
                    self._records[key] = updated
                    return updated
        raise DocumentNotFoundError(f"No document record with id {record_id}")

    def find_by_source_id(self, source_id: str) -> DocumentRecord:
        with self._lock:
            for (_, record_source_id), record in self._records.items():
                if record_source_id == source_id:
                    return record
        raise DocumentNotFoundError(f"No document record for source id {source_id}")

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
