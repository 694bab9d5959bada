"""
Chunked, transactional persistence of decisions.

Each chunk is its own transaction: a failure in chunk K rolls back only
chunk K, chunks before it stay committed.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Optional, Sequence

import psycopg2
from psycopg2 import errors as pg_errors
from psycopg2.extras import execute_values

from .config import CHUNK_SIZE, DECISIONS_TABLE
from .errors import DuplicateKeyError, PersistenceError
from .logger import get_logger
from .metrics import AtomicCounter, MetricsCollector
from .models import COLUMNS, PRIMARY_KEY, Decision

UNIQUE_VIOLATION = "23505"


class ConflictPolicy(Enum):
    """What to do when a row's primary key already exists."""
    REJECT = "reject"
    OVERWRITE = "overwrite"


def build_insert_sql(policy: ConflictPolicy) -> str:
    """INSERT ... VALUES %s, with a full-row upsert clause for OVERWRITE."""
    sql = f"INSERT INTO {DECISIONS_TABLE} ({', '.join(COLUMNS)}) VALUES %s"
    if policy is ConflictPolicy.OVERWRITE:
        updates = ", ".join(
            f"{column}=EXCLUDED.{column}" for column in COLUMNS if column != PRIMARY_KEY
        )
        sql += f" ON CONFLICT ({PRIMARY_KEY}) DO UPDATE SET {updates}"
    return sql


def is_unique_violation(error: BaseException) -> bool:
    return (
        isinstance(error, pg_errors.UniqueViolation)
        or getattr(error, "pgcode", None) == UNIQUE_VIOLATION
    )


def chunked(items: Sequence, size: int) -> Iterator[Sequence]:
    """Consecutive slices of at most `size` items, in order."""
    for start in range(0, len(items), size):
        yield items[start:start + size]


class DecisionWriter:
    """
    Writes decision batches to the decisions table.
    Safe to share between workers: each chunk borrows its own pooled connection.
    """

    def __init__(
        self,
        database,
        counter: AtomicCounter,
        chunk_size: int = CHUNK_SIZE,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.database = database
        self.counter = counter
        self.chunk_size = chunk_size
        self.metrics = metrics or MetricsCollector()
        self.logger = get_logger()

    def write(self, decisions: Sequence[Decision], policy: ConflictPolicy) -> int:
        """
        Persist decisions chunk by chunk.

        Args:
            decisions: Decisions in the order they should be written
            policy: REJECT fails a chunk on an existing key, OVERWRITE replaces the row

        Returns:
            Number of rows written

        Raises:
            DuplicateKeyError: REJECT policy hit an existing key
            PersistenceError: Any other storage failure; `committed` holds
                the rows of earlier chunks that were already counted
        """
        sql = build_insert_sql(policy)
        written = 0

        for index, chunk in enumerate(chunked(decisions, self.chunk_size)):
            try:
                with self.metrics.timed("persist"):
                    self._write_chunk(sql, chunk, index)
            except PersistenceError as e:
                e.committed = written
                raise
            written += len(chunk)
            self.counter.add(len(chunk))

        return written

    def _write_chunk(self, sql: str, chunk: Sequence[Decision], index: int):
        rows = [decision.as_row() for decision in chunk]
        try:
            with self.database.get_connection() as conn:
                with conn.cursor() as cur:
                    execute_values(cur, sql, rows, page_size=len(rows))
        except psycopg2.Error as e:
            if is_unique_violation(e):
                raise DuplicateKeyError(
                    f"Duplicate key in chunk {index}: {str(e).strip()}",
                    chunk_index=index
                ) from e
            raise PersistenceError(
                f"Chunk {index} failed: {str(e).strip()}",
                chunk_index=index
            ) from e


@dataclass(frozen=True)
class DuplicateHandling:
    """
    Operator flags for existing keys.

    overwrite: on a duplicate, retry the whole batch once as an upsert
    skip_check: with overwrite, upsert straight away without trying a plain insert
    """
    overwrite: bool = False
    skip_check: bool = False

    def first_policy(self) -> ConflictPolicy:
        if self.overwrite and self.skip_check:
            return ConflictPolicy.OVERWRITE
        return ConflictPolicy.REJECT


def persist_batch(
    writer: DecisionWriter,
    decisions: Sequence[Decision],
    handling: DuplicateHandling,
    source: str = "",
) -> int:
    """
    Write one archive's decisions, escalating to overwrite at most once.

    Returns:
        Rows written by the attempt that succeeded

    Raises:
        DuplicateKeyError: Duplicates found and overwriting is disabled
        PersistenceError: Storage failure on either attempt
    """
    policy = handling.first_policy()
    try:
        return writer.write(decisions, policy)
    except DuplicateKeyError as e:
        if policy is ConflictPolicy.OVERWRITE or not handling.overwrite:
            raise
        # The overwrite pass rewrites and recounts the chunks that did commit
        writer.counter.add(-e.committed)
        writer.logger.warning("Duplicates detected, overwriting", source=source)
        writer.metrics.record_count("overwrite_escalations", 1)
        return writer.write(decisions, ConflictPolicy.OVERWRITE)
