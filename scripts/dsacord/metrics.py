"""
Run metrics: thread-safe timers, counters and the persisted-rows counter.
"""
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from threading import Lock
from typing import Dict, Iterator


class AtomicCounter:
    """Integer counter shared between worker threads."""

    def __init__(self, initial: int = 0):
        self._value = initial
        self._lock = Lock()

    def add(self, amount: int = 1) -> int:
        """Increment and return the new value."""
        with self._lock:
            self._value += amount
            return self._value

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


@dataclass
class TimerMetric:
    """Accumulated duration of one kind of operation."""
    total_time: float = 0.0
    count: int = 0

    def record(self, duration: float):
        self.total_time += duration
        self.count += 1

    def average(self) -> float:
        return self.total_time / self.count if self.count > 0 else 0.0


@dataclass
class CounterMetric:
    """Tracks counts and rates."""
    count: int = 0
    start_time: float = field(default_factory=time.monotonic)

    def increment(self, amount: int = 1):
        self.count += amount

    def rate(self) -> float:
        """Items per second since the counter was created."""
        elapsed = time.monotonic() - self.start_time
        return self.count / elapsed if elapsed > 0 else 0.0


class MetricsCollector:
    """
    Collects and reports performance metrics.
    Thread-safe: every worker records into the same collector.
    """

    def __init__(self):
        self._timers: Dict[str, TimerMetric] = {}
        self._counters: Dict[str, CounterMetric] = {}
        self._lock = Lock()
        self._start_time = time.monotonic()

    @contextmanager
    def timed(self, name: str) -> Iterator[None]:
        """
        Time the enclosed block under `name`.
        The duration is recorded even when the block raises.
        """
        started = time.monotonic()
        try:
            yield
        finally:
            duration = time.monotonic() - started
            with self._lock:
                self._timers.setdefault(name, TimerMetric()).record(duration)

    def record_count(self, name: str, amount: int = 1):
        with self._lock:
            if name not in self._counters:
                self._counters[name] = CounterMetric()
            self._counters[name].increment(amount)

    def get_count(self, name: str) -> int:
        with self._lock:
            counter = self._counters.get(name)
            return counter.count if counter else 0

    def get_timer_stats(self, name: str) -> Dict[str, float]:
        with self._lock:
            timer = self._timers.get(name)
            if timer:
                return {
                    "total": timer.total_time,
                    "count": timer.count,
                    "average": timer.average(),
                }
        return {"total": 0.0, "count": 0, "average": 0.0}

    def elapsed_time(self) -> float:
        return time.monotonic() - self._start_time

    def format_summary(self) -> str:
        """Format complete metrics summary."""
        with self._lock:
            lines = ["", "Performance Metrics:", "=" * 50]
            lines.append(f"Total execution time: {format_duration(self.elapsed_time())}")
            lines.append("")

            if self._counters:
                lines.append("Throughput:")
                for name, counter in sorted(self._counters.items()):
                    lines.append(f"  {name}: {counter.count:,} ({counter.rate():.1f}/s)")
                lines.append("")

            if self._timers:
                lines.append("Operation timings:")
                for name, timer in sorted(self._timers.items()):
                    if timer.count > 0:
                        lines.append(
                            f"  {name}: {timer.count} ops, "
                            f"avg {timer.average():.3f}s, total {timer.total_time:.1f}s"
                        )
                lines.append("")

            lines.append("=" * 50)
            return "\n".join(lines)


def format_duration(seconds: float) -> str:
    """Format duration in human-readable format."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        return f"{seconds / 60:.1f}m"
    return f"{seconds / 3600:.1f}h"
