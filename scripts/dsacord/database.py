"""
Database manager with connection pooling and schema bootstrap.
Handles the PostgreSQL side of decision storage.
"""
from contextlib import contextmanager
from typing import Iterator, Optional

import psycopg2
from psycopg2 import pool
from psycopg2.extensions import connection as Connection

from .config import DECISIONS_TABLE, IngestConfig
from .logger import get_logger


SCHEMA_SQL = f"""
CREATE TABLE IF NOT EXISTS {DECISIONS_TABLE} (
    uuid uuid PRIMARY KEY,
    decision_visibility text[],
    decision_visibility_other text,
    end_date_visibility_restriction timestamptz,
    decision_monetary text[],
    decision_monetary_other text,
    end_date_monetary_restriction timestamptz,
    decision_provision text[],
    end_date_service_restriction timestamptz,
    decision_account text[],
    end_date_account_restriction timestamptz,
    account_type text,
    decision_ground text,
    decision_ground_reference_url text,
    illegal_content_legal_ground text,
    illegal_content_explanation text,
    incompatible_content_ground text,
    incompatible_content_explanation text,
    incompatible_content_illegal boolean,
    category text,
    category_addition text,
    category_specification text[],
    category_specification_other text,
    content_type text[],
    content_type_other text,
    content_language text,
    content_date timestamptz,
    territorial_scope text[],
    application_date timestamptz,
    decision_facts text,
    source_type text,
    source_identity text,
    automated_detection boolean,
    automated_decision text,
    platform_name text,
    platform_uid text,
    created_at timestamptz,
    snowflake_time timestamptz,
    entity_id text,
    entity_type text
);
CREATE INDEX IF NOT EXISTS idx_{DECISIONS_TABLE}_entity_id ON {DECISIONS_TABLE} (entity_id);
"""


class DatabaseManager:
    """
    Owns the connection pool shared by all workers.
    Each get_connection() block is one transaction.
    """

    def __init__(self, config: IngestConfig):
        self.config = config
        self.logger = get_logger()

        try:
            self.pool = pool.ThreadedConnectionPool(
                minconn=1,
                maxconn=config.connection_pool_size,
                dsn=config.dsn(),
                connect_timeout=config.db_connect_timeout
            )
            self.logger.info("Database connection pool created", size=config.connection_pool_size)
        except psycopg2.Error as e:
            self.logger.error("Failed to create connection pool", error=str(e))
            raise

    @contextmanager
    def get_connection(self) -> Iterator[Connection]:
        """
        Borrow a connection for one transaction.
        Commits on normal exit, rolls back on error, always returns it to the pool.
        """
        conn = self.pool.getconn()
        try:
            conn.autocommit = False
            yield conn
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            self.pool.putconn(conn)

    def test_connection(self) -> bool:
        """Test database connection."""
        try:
            with self.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT version()")
                    version = cur.fetchone()[0]
            self.logger.info("Database connected", version=version[:50])
            return True
        except psycopg2.Error as e:
            self.logger.error("Database connection failed", error=str(e))
            return False

    def ensure_schema(self):
        """Create the decisions table and its indexes when missing."""
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(SCHEMA_SQL)
        self.logger.info("Schema ready", table=DECISIONS_TABLE)

    def count_rows(self) -> int:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT COUNT(*) FROM {DECISIONS_TABLE}")
                return cur.fetchone()[0]

    def table_size(self) -> Optional[str]:
        """Human-readable on-disk size of the decisions table, None if unavailable."""
        try:
            with self.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        "SELECT pg_size_pretty(pg_total_relation_size(%s))",
                        (DECISIONS_TABLE,)
                    )
                    return cur.fetchone()[0]
        except psycopg2.Error as e:
            self.logger.warning("Could not read table size", error=str(e))
            return None

    def close(self):
        """Close all connections in pool."""
        if getattr(self, "pool", None) is not None:
            self.pool.closeall()
            self.logger.info("Database connection pool closed")
