"""
Concurrent ingestion of a date range of daily dumps.

A producer publishes one URL per day onto a bounded queue, a fixed pool
of worker threads runs fetch -> extract -> normalize -> persist for each
URL, and an aggregator drains one result per URL. A failed URL is
reported and never stops the run.
"""
import queue
import threading
import time
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Any, Callable, Iterator, List, Optional

from .archive import ArchiveExtractor
from .config import (
    STAGE_EXTRACT,
    STAGE_FETCH,
    STAGE_PERSIST,
    STAGE_UNEXPECTED,
    STATUS_FAILED,
    STATUS_OK,
    IngestConfig,
)
from .errors import ArchiveError, FetchError, PersistenceError
from .fetcher import DumpFetcher
from .logger import get_logger
from .metrics import AtomicCounter, MetricsCollector
from .normalizer import DecisionNormalizer
from .persistence import DecisionWriter, DuplicateHandling, persist_batch

# Marks the end of a queue; put once per reader
_CLOSED = object()


class RunState(Enum):
    GENERATING = "generating"
    DISPATCHING = "dispatching"
    DRAINING = "draining"
    REPORTING = "reporting"


@dataclass
class RunContext:
    """Everything a run shares between workers."""
    config: IngestConfig
    database: Any
    duplicates: DuplicateHandling = field(default_factory=DuplicateHandling)
    counter: AtomicCounter = field(default_factory=AtomicCounter)
    metrics: MetricsCollector = field(default_factory=MetricsCollector)


@dataclass(frozen=True)
class UrlResult:
    """Outcome of processing one dump URL."""
    url: str
    status: str
    persisted: int = 0
    stage: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK

    @classmethod
    def success(cls, url: str, persisted: int) -> "UrlResult":
        return cls(url=url, status=STATUS_OK, persisted=persisted)

    @classmethod
    def failure(cls, url: str, stage: str, error: str) -> "UrlResult":
        return cls(url=url, status=STATUS_FAILED, stage=stage, error=error)

    def describe(self) -> str:
        if self.ok:
            return f"{self.url}: {self.persisted} rows"
        return f"{self.stage} failed for {self.url}: {self.error}"


@dataclass
class RunSummary:
    """Aggregate outcome of one run."""
    urls: int
    succeeded: int
    persisted: int
    elapsed: float
    failures: List[UrlResult] = field(default_factory=list)


def iter_days(start: date, end: date) -> Iterator[date]:
    """Every calendar day from start to end inclusive, ascending."""
    day = start
    while day <= end:
        yield day
        day += timedelta(days=1)


def iter_dump_urls(config: IngestConfig, start: date, end: date) -> Iterator[str]:
    for day in iter_days(start, end):
        yield config.dump_url(day)


class IngestPipeline:
    """
    Runs the worker pool over a date range.

    Components default to the real implementations built from the context;
    tests pass fakes.
    """

    def __init__(
        self,
        ctx: RunContext,
        fetcher: Optional[DumpFetcher] = None,
        extractor: Optional[ArchiveExtractor] = None,
        normalizer: Optional[DecisionNormalizer] = None,
        writer: Optional[DecisionWriter] = None,
        on_result: Optional[Callable[[UrlResult], None]] = None,
    ):
        self.ctx = ctx
        self.fetcher = fetcher or DumpFetcher(ctx.config, metrics=ctx.metrics)
        self.extractor = extractor or ArchiveExtractor(ctx.config.extract_workers, metrics=ctx.metrics)
        self.normalizer = normalizer or DecisionNormalizer(metrics=ctx.metrics)
        self.writer = writer or DecisionWriter(
            ctx.database,
            ctx.counter,
            chunk_size=ctx.config.chunk_size,
            metrics=ctx.metrics
        )
        self.on_result = on_result
        self.logger = get_logger()
        self.state = RunState.GENERATING

    def process_url(self, url: str) -> UrlResult:
        """Fetch, extract, normalize and persist one dump. Never raises."""
        self.logger.info("Downloading", url=url)
        try:
            data = self.fetcher.fetch(url)
        except FetchError as e:
            return UrlResult.failure(url, STAGE_FETCH, str(e))

        try:
            with self.ctx.metrics.timed("extract"):
                members = self.extractor.extract(data, source=url)
        except ArchiveError as e:
            return UrlResult.failure(url, STAGE_EXTRACT, str(e))
        del data

        decisions = []
        for member in members:
            decisions.extend(self.normalizer.normalize_member(member.data, source=member.path))
        del members

        try:
            persisted = persist_batch(self.writer, decisions, self.ctx.duplicates, source=url)
        except PersistenceError as e:
            return UrlResult.failure(url, STAGE_PERSIST, str(e))

        self.logger.success("Dump ingested", url=url, rows=persisted)
        return UrlResult.success(url, persisted)

    def _worker(self, urls: "queue.Queue", results: "queue.Queue"):
        while True:
            url = urls.get()
            if url is _CLOSED:
                return
            try:
                result = self.process_url(url)
            except Exception as e:
                # One broken dump must not take the worker down with it
                self.logger.error("Unexpected failure", url=url, error=repr(e))
                result = UrlResult.failure(url, STAGE_UNEXPECTED, repr(e))
            results.put(result)

    def _aggregate(self, results: "queue.Queue", collected: List[UrlResult]):
        while True:
            result = results.get()
            if result is _CLOSED:
                return
            collected.append(result)
            if result.ok:
                self.ctx.metrics.record_count("urls_ok", 1)
            else:
                self.ctx.metrics.record_count("urls_failed", 1)
                self.logger.error("URL failed", detail=result.describe())
            if self.on_result is not None:
                try:
                    self.on_result(result)
                except Exception as e:
                    self.logger.warning("Result callback failed", error=repr(e))

    def run(self, start: date, end: date) -> RunSummary:
        """
        Ingest every daily dump from start to end inclusive.

        Args:
            start: First day (already validated, start <= end)
            end: Last day

        Returns:
            Summary with one result per day accounted for
        """
        started = time.monotonic()
        workers = self.ctx.config.workers

        self.state = RunState.GENERATING
        urls = list(iter_dump_urls(self.ctx.config, start, end))
        self.logger.info("Run planned", days=len(urls), workers=workers, first=start, last=end)

        self.state = RunState.DISPATCHING
        url_queue: "queue.Queue" = queue.Queue(maxsize=workers)
        result_queue: "queue.Queue" = queue.Queue()
        collected: List[UrlResult] = []

        aggregator = threading.Thread(
            target=self._aggregate,
            args=(result_queue, collected),
            name="aggregator",
            daemon=True
        )
        aggregator.start()

        pool = [
            threading.Thread(
                target=self._worker,
                args=(url_queue, result_queue),
                name=f"worker-{i + 1}",
                daemon=True
            )
            for i in range(workers)
        ]
        for thread in pool:
            thread.start()

        for url in urls:
            url_queue.put(url)
        for _ in pool:
            url_queue.put(_CLOSED)

        self.state = RunState.DRAINING
        for thread in pool:
            thread.join()
        result_queue.put(_CLOSED)
        aggregator.join()

        self.state = RunState.REPORTING
        failures = [result for result in collected if not result.ok]
        summary = RunSummary(
            urls=len(collected),
            succeeded=len(collected) - len(failures),
            persisted=self.ctx.counter.value,
            elapsed=time.monotonic() - started,
            failures=failures,
        )
        self.logger.info(
            "Run finished",
            urls=summary.urls,
            succeeded=summary.succeeded,
            failed=len(failures),
            persisted=summary.persisted,
            avg_fetch=f"{self.ctx.metrics.get_timer_stats('fetch')['average']:.2f}s"
        )
        return summary
