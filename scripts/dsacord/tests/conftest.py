"""Shared fixtures: captured logs, test config and a fake PostgreSQL."""
import io
import threading
from contextlib import contextmanager
from typing import Dict, List, Optional

import psycopg2
import pytest
from psycopg2 import errors as pg_errors

from dsacord.config import IngestConfig
from dsacord.logger import LogLevel, StructuredLogger, set_logger


class CapturedLog:
    def __init__(self):
        self.stdout = io.StringIO()
        self.stderr = io.StringIO()

    @property
    def text(self) -> str:
        return self.stdout.getvalue() + self.stderr.getvalue()

    @property
    def warnings(self) -> List[str]:
        return [line for line in self.stderr.getvalue().splitlines() if "[WARNING]" in line]


@pytest.fixture(autouse=True)
def log_output():
    captured = CapturedLog()
    set_logger(StructuredLogger(
        min_level=LogLevel.DEBUG,
        stdout=captured.stdout,
        stderr=captured.stderr
    ))
    yield captured
    set_logger(StructuredLogger())


@pytest.fixture
def config():
    return IngestConfig(
        db_user="tester",
        db_password="secret",
        workers=2,
        extract_workers=2,
        backoff_initial_interval=0.001,
        backoff_max_interval=0.002,
        backoff_max_attempts=3,
    )


class FakeCursor:
    def __init__(self, connection: "FakeConnection"):
        self.connection = connection

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class FakeConnection:
    """Buffers writes until commit, like a transaction."""

    def __init__(self, database: "FakeDatabase"):
        self.database = database
        self.pending: Dict[str, tuple] = {}
        self.autocommit = False

    def cursor(self):
        return FakeCursor(self)

    def commit(self):
        with self.database.lock:
            self.database.rows.update(self.pending)
            self.database.commits += 1
        self.pending = {}

    def rollback(self):
        self.pending = {}
        self.database.rollbacks += 1


class FakeDatabase:
    """Stands in for DatabaseManager: rows keyed by uuid, one transaction per connection block."""

    def __init__(self):
        self.rows: Dict[str, tuple] = {}
        self.lock = threading.Lock()
        self.commits = 0
        self.rollbacks = 0
        self.statements: List[str] = []
        self.broken_keys: set = set()

    @contextmanager
    def get_connection(self):
        conn = FakeConnection(self)
        try:
            yield conn
            conn.commit()
        except BaseException:
            conn.rollback()
            raise

    def execute_values(self, cur, sql, rows, page_size: Optional[int] = None):
        conn = cur.connection
        with self.lock:
            self.statements.append(sql)
            existing = set(self.rows)
        upsert = "ON CONFLICT" in sql
        seen = set()
        for row in rows:
            key = row[0]
            if upsert and key in seen:
                raise pg_errors.CardinalityViolation(
                    "ON CONFLICT DO UPDATE command cannot affect row a second time"
                )
            seen.add(key)
            if key in self.broken_keys:
                raise psycopg2.OperationalError("server closed the connection unexpectedly")
            if not upsert and (key in existing or key in conn.pending):
                raise pg_errors.UniqueViolation(
                    f'duplicate key value violates unique constraint "decisions_pkey" ({key})'
                )
            conn.pending[key] = row


@pytest.fixture
def fake_db(monkeypatch):
    database = FakeDatabase()
    monkeypatch.setattr("dsacord.persistence.execute_values", database.execute_values)
    return database
