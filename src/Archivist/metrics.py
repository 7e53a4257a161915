"""Process-local counters and phase-timing histograms.

A CLI invocation is short-lived, so nothing is exported: ``snapshot`` is
written into the import log at the end of a run.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field

PHASE_BUCKETS_MS = (10, 100, 1000, 10000, 60000)


@dataclass
class Histogram:
    bounds: tuple[int, ...] = PHASE_BUCKETS_MS
    buckets: Counter[str] = field(default_factory=Counter)
    total: int = 0
    samples: int = 0

    def observe(self, value: int) -> None:
        label = next((f"le_{bound}" for bound in self.bounds if value <= bound), f"gt_{self.bounds[-1]}")
        self.buckets[label] += 1
        self.total += value
        self.samples += 1


_counters: Counter[str] = Counter()
_histograms: dict[str, Histogram] = {}


def inc_counter(name: str, value: int = 1) -> None:
    _counters[name] += int(value)


def get_counter(name: str) -> int:
    return _counters[name]


def observe_histogram(name: str, value: int) -> None:
    _histograms.setdefault(name, Histogram()).observe(int(value))


def get_histogram(name: str) -> Histogram | None:
    return _histograms.get(name)


def reset_counters() -> None:
    _counters.clear()
    _histograms.clear()


def snapshot() -> dict[str, int]:
    """Counters recorded so far, sorted by name."""
    return dict(sorted(_counters.items()))
