"""Prometheus-compatible in-process metrics.

Counters are bumped by the connection manager, relay, broadcaster and
heartbeat monitor; gauges are refreshed from the registry when the
``/metrics`` endpoint is scraped.
"""

from __future__ import annotations

import re
import time
from collections import defaultdict
from threading import Lock

_METRIC_PREFIX = "signalmesh_"


class MetricsCollector:
    """In-process Prometheus-compatible metrics collector.

    Exposes counters and gauges in Prometheus text exposition format.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._counters: dict[str, float] = defaultdict(float)
        self._gauges: dict[str, float] = {}
        self._start_time = time.time()

    def inc(self, name: str, value: float = 1.0) -> None:
        """Increment a counter."""
        with self._lock:
            self._counters[name] += value

    def set_gauge(self, name: str, value: float) -> None:
        """Set a gauge value."""
        with self._lock:
            self._gauges[name] = value

    def counter(self, name: str) -> float:
        with self._lock:
            return self._counters.get(name, 0.0)

    def format_prometheus(self) -> str:
        """Export metrics in Prometheus text format."""
        with self._lock:
            lines: list[str] = []

            for name, value in sorted(self._counters.items()):
                safe = _sanitize_metric_name(name)
                lines.append(f"# TYPE {safe} counter")
                lines.append(f"{safe} {value}")

            for name, value in sorted(self._gauges.items()):
                safe = _sanitize_metric_name(name)
                lines.append(f"# TYPE {safe} gauge")
                lines.append(f"{safe} {value}")

            uptime = time.time() - self._start_time
            lines.append(f"# TYPE {_METRIC_PREFIX}uptime_seconds gauge")
            lines.append(f"{_METRIC_PREFIX}uptime_seconds {uptime:.0f}")

            return "\n".join(lines) + "\n"

    def to_dict(self) -> dict[str, object]:
        """Export metrics as a dictionary."""
        with self._lock:
            return {
                "counters": dict(self._counters),
                "gauges": dict(self._gauges),
                "uptime_seconds": time.time() - self._start_time,
            }


def _sanitize_metric_name(name: str) -> str:
    """Sanitize metric name for Prometheus format."""
    safe = re.sub(r"[^a-zA-Z0-9_]", "_", name)
    if not safe.startswith(_METRIC_PREFIX):
        safe = _METRIC_PREFIX + safe
    return safe
