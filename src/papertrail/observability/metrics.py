"""In-process audit metrics: counters and value summaries."""

from contextlib import contextmanager
from dataclasses import dataclass
from threading import Lock
from time import perf_counter
from typing import Any, Iterator, Optional


@dataclass
class Counter:
    value: float = 0.0

    def inc(self, amount: float = 1.0) -> None:
        self.value += amount


@dataclass
class Summary:
    """Running count, sum and bounds of observed values."""

    count: int = 0
    total: float = 0.0
    low: Optional[float] = None
    high: Optional[float] = None

    def observe(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.low = value if self.low is None else min(self.low, value)
        self.high = value if self.high is None else max(self.high, value)

    @property
    def mean(self) -> float:
        return self.total / self.count if self.count else 0.0

    def as_dict(self) -> dict[str, Any]:
        return {"count": self.count, "total": self.total, "min": self.low, "max": self.high, "avg": self.mean}


class MetricsRegistry:
    """Thread-safe registry of audit counters and summaries."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._counters: dict[str, Counter] = {}
        self._summaries: dict[str, Summary] = {}

    def inc_counter(self, name: str, amount: float = 1.0) -> None:
        with self._lock:
            self._counters.setdefault(name, Counter()).inc(amount)

    def counter(self, name: str) -> float:
        """Current value of a counter (0 when never incremented)."""
        with self._lock:
            counter = self._counters.get(name)
            return counter.value if counter else 0.0

    def observe(self, name: str, value: float) -> None:
        with self._lock:
            self._summaries.setdefault(name, Summary()).observe(value)

    @contextmanager
    def timer(self, name: str) -> Iterator[None]:
        """Observe the duration of the block in milliseconds."""
        start = perf_counter()
        try:
            yield
        finally:
            self.observe(name, (perf_counter() - start) * 1000.0)

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._summaries.clear()

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "counters": {name: counter.value for name, counter in self._counters.items()},
                "histograms": {name: summary.as_dict() for name, summary in self._summaries.items()},
            }


metrics = MetricsRegistry()
