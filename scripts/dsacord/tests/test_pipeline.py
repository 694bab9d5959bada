"""Tests for the concurrent date-range pipeline."""
import threading
from datetime import date

import pytest

from dsacord.errors import PermanentFetchError
from dsacord.persistence import DuplicateHandling
from dsacord.pipeline import IngestPipeline, RunContext, RunState, iter_days, iter_dump_urls
from factories import make_csv, make_dump, make_row, make_zip

BASE = "https://dsa-sor-data-dumps.s3.eu-central-1.amazonaws.com/sor-discord-netherlands-bv-"


class FakeFetcher:
    """Serves canned dumps by URL; exceptions in the map are raised."""

    def __init__(self, dumps):
        self.dumps = dumps
        self.calls = []
        self._lock = threading.Lock()

    def fetch(self, url):
        with self._lock:
            self.calls.append(url)
        payload = self.dumps.get(url)
        if payload is None:
            raise PermanentFetchError(url, 404)
        if isinstance(payload, Exception):
            raise payload
        return payload


def run(config, fake_db, dumps, start, end, duplicates=None, on_result=None):
    ctx = RunContext(config=config, database=fake_db, duplicates=duplicates or DuplicateHandling())
    fetcher = FakeFetcher(dumps)
    pipeline = IngestPipeline(ctx, fetcher=fetcher, on_result=on_result)
    summary = pipeline.run(start, end)
    return summary, ctx, fetcher, pipeline


def test_iter_days_crosses_month_and_year():
    days = list(iter_days(date(2024, 12, 30), date(2025, 1, 2)))

    assert days == [date(2024, 12, 30), date(2024, 12, 31), date(2025, 1, 1), date(2025, 1, 2)]


def test_single_day_range():
    assert list(iter_days(date(2025, 3, 1), date(2025, 3, 1))) == [date(2025, 3, 1)]


def test_dump_urls_match_published_names(config):
    urls = list(iter_dump_urls(config, date(2024, 12, 28), date(2024, 12, 29)))

    assert urls == [BASE + "2024-12-28-full.zip", BASE + "2024-12-29-full.zip"]


def test_dump_urls_zero_pad_month_and_day(config):
    assert list(iter_dump_urls(config, date(2025, 2, 3), date(2025, 2, 3))) == [BASE + "2025-02-03-full.zip"]


def test_two_day_run_persists_every_valid_row(config, fake_db):
    day_two = make_zip({
        "sor.zip": make_zip({
            "a.csv": make_csv([make_row("b-1"), make_row(""), make_row("b-2")]),
            "b.csv": make_csv([make_row("b-3", created_at="garbage")]),
        })
    })
    dumps = {
        BASE + "2024-12-28-full.zip": make_dump("a", 7),
        BASE + "2024-12-29-full.zip": day_two,
    }

    summary, ctx, fetcher, pipeline = run(config, fake_db, dumps, date(2024, 12, 28), date(2024, 12, 29))

    assert sorted(fetcher.calls) == sorted(dumps)
    assert summary.urls == 2
    assert summary.succeeded == 2
    assert summary.failures == []
    assert summary.persisted == 7 + 2
    assert ctx.counter.value == 9
    assert len(fake_db.rows) == 9
    assert ctx.metrics.get_count("rows_skipped") == 2
    assert pipeline.state is RunState.REPORTING


def test_failed_url_is_reported_and_run_continues(config, fake_db):
    dumps = {BASE + "2024-12-29-full.zip": make_dump("b", 4)}
    seen = []

    summary, ctx, _, _ = run(
        config, fake_db, dumps, date(2024, 12, 28), date(2024, 12, 29), on_result=seen.append
    )

    assert summary.urls == 2
    assert summary.persisted == 4
    assert len(summary.failures) == 1
    failure = summary.failures[0]
    assert failure.url == BASE + "2024-12-28-full.zip"
    assert failure.stage == "fetch"
    assert "404" in failure.error
    assert sorted(result.url for result in seen) == sorted([BASE + "2024-12-28-full.zip", BASE + "2024-12-29-full.zip"])
    assert ctx.metrics.get_count("urls_failed") == 1
    assert ctx.metrics.get_count("urls_ok") == 1


def test_failures_are_classified_by_stage(config, fake_db):
    fake_db.rows["dup"] = ("dup",)
    dumps = {
        BASE + "2025-01-01-full.zip": b"not a zip at all",
        BASE + "2025-01-02-full.zip": make_zip({"x.csv": make_csv([make_row("dup")])}),
        BASE + "2025-01-03-full.zip": RuntimeError("disk on fire"),
    }

    summary, _, _, _ = run(config, fake_db, dumps, date(2025, 1, 1), date(2025, 1, 3))

    stages = {failure.url[-19:]: failure.stage for failure in summary.failures}
    assert stages == {
        "2025-01-01-full.zip": "extract",
        "2025-01-02-full.zip": "persist",
        "2025-01-03-full.zip": "unexpected",
    }
    assert summary.urls == 3


def test_overwrite_flag_escalates_duplicate_dumps(config, fake_db):
    url = BASE + "2025-01-02-full.zip"
    dumps = {url: make_zip({"x.csv": make_csv([make_row("dup", category="NEW"), make_row("fresh")])})}
    fake_db.rows["dup"] = ("dup",)

    summary, _, _, _ = run(
        config, fake_db, dumps, date(2025, 1, 2), date(2025, 1, 2),
        duplicates=DuplicateHandling(overwrite=True)
    )

    assert summary.failures == []
    assert set(fake_db.rows) == {"dup", "fresh"}
    assert len(fake_db.rows["dup"]) > 1


@pytest.mark.parametrize("workers", [1, 3, 5])
def test_every_day_produces_exactly_one_result(config, fake_db, workers):
    config.workers = workers
    start, end = date(2025, 1, 1), date(2025, 1, 20)
    urls = list(iter_dump_urls(config, start, end))
    dumps = {url: make_dump(f"d{i:02d}", 3) for i, url in enumerate(urls) if i % 4 != 0}
    seen = []

    summary, ctx, fetcher, _ = run(config, fake_db, dumps, start, end, on_result=seen.append)

    assert sorted(result.url for result in seen) == sorted(urls)
    assert sorted(fetcher.calls) == sorted(urls)
    assert summary.urls == 20
    assert len(summary.failures) == 5
    assert summary.persisted == 15 * 3


def test_result_callback_errors_do_not_stop_the_run(config, fake_db, log_output):
    def explode(result):
        raise ValueError("renderer broke")

    summary, _, _, _ = run(config, fake_db, {}, date(2025, 1, 1), date(2025, 1, 3), on_result=explode)

    assert summary.urls == 3
    assert "Result callback failed" in log_output.text


def test_run_log_reports_average_fetch_time(config, fake_db, log_output):
    ctx = RunContext(config=config, database=fake_db)
    fetcher = FakeFetcher({BASE + "2025-01-01-full.zip": make_dump("t", 1)})
    real_fetch = fetcher.fetch

    def timed_fetch(url):
        with ctx.metrics.timed("fetch"):
            return real_fetch(url)

    fetcher.fetch = timed_fetch
    IngestPipeline(ctx, fetcher=fetcher).run(date(2025, 1, 1), date(2025, 1, 2))

    assert ctx.metrics.get_timer_stats("fetch")["count"] == 2
    finished = [line for line in log_output.text.splitlines() if "Run finished" in line]
    assert len(finished) == 1
    assert "avg_fetch=" in finished[0]
