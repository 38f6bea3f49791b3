#!/usr/bin/env python3
"""
Initialize Neo4j schema with constraints and indexes.

Reads the Cypher schema file and executes each statement so document
admission and watch channels are backed by uniqueness constraints.

Usage:
    python scripts/init_schema.py
"""

import sys
from pathlib import Path
from typing import List, Tuple

from loguru import logger
from neo4j import GraphDatabase

from app.utils.config import get_settings

SCHEMA_PATH = Path(__file__).parent.parent / "schemas" / "scriptoria.cypher"


def read_schema_file(filepath: Path) -> List[str]:
    """
    Read Cypher schema file and split into individual statements.

    Ignores comments and empty lines.
    """
    content = filepath.read_text(encoding="utf-8")

    statements = []
    for stmt in content.split(";"):
        lines = [line for line in stmt.split("\n") if not line.strip().startswith("//")]
        stmt_clean = "\n".join(lines).strip()
        if stmt_clean:
            statements.append(stmt_clean)

    return statements


def execute_schema_statements(driver, statements: List[str]) -> Tuple[int, int]:
    """Execute schema statements one by one."""
    success_count = 0
    failed_count = 0

    with driver.session() as session:
        for i, statement in enumerate(statements, 1):
            try:
                logger.info(f"Executing statement {i}/{len(statements)}...")
                session.run(statement).consume()
                success_count += 1
            except Exception as e:
                # IF NOT EXISTS covers reruns; anything else is a real failure
                if "already exists" in str(e) or "equivalent" in str(e):
                    logger.warning(f"Statement {i} already applied: {e}")
                    success_count += 1
                else:
                    logger.error(f"Statement {i} failed: {e}")
                    failed_count += 1

    return success_count, failed_count


def main() -> int:
    """Main initialization function."""
    settings = get_settings()

    logger.info(f"Connecting to Neo4j at {settings.neo4j_uri}...")
    driver = GraphDatabase.driver(settings.neo4j_uri, auth=(settings.neo4j_user, settings.neo4j_password))

    try:
        driver.verify_connectivity()
        statements = read_schema_file(SCHEMA_PATH)
        logger.info(f"Found {len(statements)} statements in {SCHEMA_PATH.name}")

        success, failed = execute_schema_statements(driver, statements)
        logger.info(f"Schema statements: {success} applied, {failed} failed")

        if failed:
            return 1
        logger.success("Schema initialization completed")
        return 0

    except Exception as e:
        logger.error(f"Schema initialization failed: {e}")
        return 1

    finally:
        driver.close()


if __name__ == "__main__":
    sys.exit(main())
