"""
Metrics collection and Prometheus-compatible exposition.

Counters may carry labels (``events_received_total{type="bid_placed"}``);
durations are kept as Prometheus summaries without quantiles (sum and count).
"""

from __future__ import annotations

import time
from collections import defaultdict
from typing import Any

PREFIX = "sync_"

_Key = tuple[str, tuple[tuple[str, str], ...]]


def _key(name: str, labels: dict[str, Any]) -> _Key:
    return f"{PREFIX}{name}", tuple(sorted((k, str(v)) for k, v in labels.items()))


def _render(key: _Key) -> str:
    name, labels = key
    if not labels:
        return name
    inner = ",".join(f'{k}="{v}"' for k, v in labels)
    return f"{name}{{{inner}}}"


class MetricsCollector:
    """Counters, gauges and timing summaries for one sync session."""

    def __init__(self) -> None:
        self._counters: dict[_Key, int] = defaultdict(int)
        self._gauges: dict[_Key, float] = {}
        self._summaries: dict[_Key, list[float]] = defaultdict(lambda: [0.0, 0])
        self._start_time = time.time()

    def inc(self, name: str, value: int = 1, **labels: Any) -> None:
        self._counters[_key(name, labels)] += value

    def set_gauge(self, name: str, value: float, **labels: Any) -> None:
        self._gauges[_key(name, labels)] = value

    def observe(self, name: str, seconds: float, **labels: Any) -> None:
        summary = self._summaries[_key(name, labels)]
        summary[0] += seconds
        summary[1] += 1

    def get(self, name: str, **labels: Any) -> int | float:
        """Value of one series; without labels, counters are summed across them."""
        key = _key(name, labels)
        if key in self._gauges:
            return self._gauges[key]
        if labels:
            return self._counters.get(key, 0)
        full = key[0]
        return sum(v for (n, _), v in self._counters.items() if n == full)

    def count(self, name: str, **labels: Any) -> int:
        """Number of observations recorded for a summary."""
        summary = self._summaries.get(_key(name, labels))
        return int(summary[1]) if summary else 0

    def to_prometheus(self) -> str:
        lines = []
        typed: set[str] = set()

        def header(name: str, kind: str) -> None:
            if name not in typed:
                typed.add(name)
                lines.append(f"# TYPE {name} {kind}")

        for key, value in sorted(self._counters.items()):
            header(key[0], "counter")
            lines.append(f"{_render(key)} {value}")
        for key, value in sorted(self._gauges.items()):
            header(key[0], "gauge")
            lines.append(f"{_render(key)} {value}")
        for key, (total, count) in sorted(self._summaries.items()):
            header(key[0], "summary")
            name, labels = key
            lines.append(f"{_render((name + '_sum', labels))} {total:.6f}")
            lines.append(f"{_render((name + '_count', labels))} {count}")

        uptime = time.time() - self._start_time
        lines.append(f"# TYPE {PREFIX}uptime_seconds gauge")
        lines.append(f"{PREFIX}uptime_seconds {uptime:.1f}")
        return "\n".join(lines) + "\n"
