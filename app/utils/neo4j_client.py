"""
Neo4j client with connection pooling and helper functions.

Provides:
- Connection pool management
- Read/write helpers returning plain dicts
- Connectivity checks for the health endpoint
"""

from contextlib import contextmanager
from typing import Any, Dict, List
from neo4j import GraphDatabase, Session
from loguru import logger

from app.utils.config import get_settings


class Neo4jClient:
    """Neo4j database client with connection pooling."""

    def __init__(self, uri: str = None, user: str = None, password: str = None):
        """Initialize Neo4j client."""
        settings = get_settings()
        self.uri = uri or settings.neo4j_uri
        self.user = user or settings.neo4j_user
        self.password = password or settings.neo4j_password

        self._driver = None

    def connect(self):
        """Establish connection to Neo4j."""
        if self._driver is None:
            logger.info(f"Connecting to Neo4j at {self.uri}...")
            self._driver = GraphDatabase.driver(
                self.uri,
                auth=(self.user, self.password),
                max_connection_lifetime=3600,
                max_connection_pool_size=50,
                connection_acquisition_timeout=120
            )
            self._driver.verify_connectivity()
            logger.success("Connected to Neo4j successfully")

    def close(self):
        """Close Neo4j connection."""
        if self._driver:
            logger.info("Closing Neo4j connection...")
            self._driver.close()
            self._driver = None

    @property
    def driver(self):
        """Get driver, connecting if necessary."""
        if self._driver is None:
            self.connect()
        return self._driver

    @contextmanager
    def session(self) -> Session:
        """Context manager for Neo4j session."""
        session = self.driver.session()
        try:
            yield session
        finally:
            session.close()

    def execute_write(self, query: str, parameters: Dict[str, Any] = None) -> List[Dict[str, Any]]:
        """Execute write query in a managed transaction and return records as dicts."""
        def work(tx):
            result = tx.run(query, parameters or {})
            return [dict(record) for record in result]

        with self.session() as session:
            return session.execute_write(work)

    def execute_read(self, query: str, parameters: Dict[str, Any] = None) -> List[Dict[str, Any]]:
        """Execute read query and return results as list of dicts."""
        def work(tx):
            result = tx.run(query, parameters or {})
            return [dict(record) for record in result]

        with self.session() as session:
            return session.execute_read(work)

    def is_connected(self) -> bool:
        """Check connectivity with a trivial query."""
        try:
            return len(self.execute_read("RETURN 1 AS test")) > 0
        except Exception as e:
            logger.debug(f"Neo4j connectivity check failed: {e}")
            return False

