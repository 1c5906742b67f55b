"""
In-process job metrics.

Counters and histograms kept per worker process:
- job_runs_total{status,queue}: jobs executed, by outcome (done / failed)
- job_duration_seconds{status}: execution time of the job body
- job_lock_contention_total{queue}: lock attempts lost to another worker
- job_misconfigured_total{queue}: runs aborted by an invalid frequency
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from typing import Any

logger = logging.getLogger("jobqueue.metrics")

_PREFIX = "jobqueue_"


class MetricsCollector:
    """Simple in-memory metrics collector."""

    def __init__(self) -> None:
        self.counters: dict[str, int] = defaultdict(int)
        self.histograms: dict[str, list[float]] = defaultdict(list)

    def increment_counter(self, name: str, value: int = 1, labels: dict[str, str] | None = None) -> None:
        self.counters[self._build_key(name, labels)] += value

    def observe_histogram(self, name: str, value: float, labels: dict[str, str] | None = None) -> None:
        self.histograms[self._build_key(name, labels)].append(value)

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> int:
        return self.counters.get(self._build_key(name, labels), 0)

    def get_histogram_stats(self, name: str, labels: dict[str, str] | None = None) -> dict[str, Any]:
        """Get histogram statistics (count, sum, min, max, avg, p95)."""
        values = self.histograms.get(self._build_key(name, labels), [])
        if not values:
            return {"count": 0, "sum": 0, "min": 0, "max": 0, "avg": 0, "p95": 0}

        sorted_vals = sorted(values)
        n = len(sorted_vals)
        p95_idx = max(0, int(n * 0.95) - 1)
        return {
            "count": n,
            "sum": sum(sorted_vals),
            "min": sorted_vals[0],
            "max": sorted_vals[-1],
            "avg": sum(sorted_vals) / n,
            "p95": sorted_vals[p95_idx],
        }

    def get_all_metrics(self) -> dict[str, Any]:
        return {
            "counters": dict(self.counters),
            "histograms": {k: self.get_histogram_stats(k) for k in self.histograms},
        }

    def reset(self) -> None:
        self.counters.clear()
        self.histograms.clear()

    @staticmethod
    def _build_key(name: str, labels: dict[str, str] | None) -> str:
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"


# Global metrics collector instance
metrics = MetricsCollector()


def record_job_run(duration_seconds: float, status: str, queue: str) -> None:
    """Record the outcome of one executed job (status: done | failed)."""
    metrics.increment_counter("job_runs_total", labels={"status": status, "queue": queue})
    metrics.observe_histogram("job_duration_seconds", duration_seconds, labels={"status": status})


def record_lock_contention(queue: str) -> None:
    metrics.increment_counter("job_lock_contention_total", labels={"queue": queue})


def record_misconfigured_job(queue: str) -> None:
    metrics.increment_counter("job_misconfigured_total", labels={"queue": queue})


def get_metrics_summary() -> dict:
    return metrics.get_all_metrics()


def _parse_metric_key(key: str) -> tuple[str, str]:
    """Split ``name{k=v,...}`` into ``("name", '{k="v",...}')``."""
    m = re.match(r"^([^{]+)(?:\{(.+)\})?$", key)
    if not m:
        return key, ""
    base_name, raw_labels = m.group(1), m.group(2) or ""
    if not raw_labels:
        return base_name, ""
    label_parts = []
    for pair in raw_labels.split(","):
        if "=" in pair:
            k, v = pair.split("=", 1)
            label_parts.append(f'{k.strip()}="{v.strip()}"')
    return base_name, "{" + ",".join(label_parts) + "}" if label_parts else ""


def _with_quantile(label_str: str, quantile: str) -> str:
    q_pair = f'quantile="{quantile}"'
    if label_str:
        return label_str[:-1] + "," + q_pair + "}"
    return "{" + q_pair + "}"


def to_prometheus_text() -> str:
    """Render all in-memory metrics in the Prometheus text exposition format.

    Each metric family gets exactly one ``# TYPE`` line; histograms are
    exposed as summaries (count, sum, p95 and max quantiles).
    """
    summary = get_metrics_summary()
    lines: list[str] = []

    counter_families: dict[str, list[tuple[str, int]]] = defaultdict(list)
    for key, val in summary["counters"].items():
        base_name, label_str = _parse_metric_key(key)
        counter_families[_PREFIX + base_name].append((label_str, val))
    for prom_name, entries in counter_families.items():
        lines.append(f"# TYPE {prom_name} counter")
        lines.extend(f"{prom_name}{label_str} {val}" for label_str, val in entries)

    summary_families: dict[str, list[tuple[str, dict]]] = defaultdict(list)
    for key, stats in summary["histograms"].items():
        base_name, label_str = _parse_metric_key(key)
        summary_families[_PREFIX + base_name].append((label_str, stats))
    for prom_name, entries in summary_families.items():
        lines.append(f"# TYPE {prom_name} summary")
        for label_str, stats in entries:
            lines.append(f"{prom_name}_count{label_str} {stats['count']}")
            lines.append(f"{prom_name}_sum{label_str} {stats['sum']:.6f}")
            lines.append(f"{prom_name}{_with_quantile(label_str, '0.95')} {stats['p95']:.6f}")
            lines.append(f"{prom_name}{_with_quantile(label_str, '1.0')} {stats['max']:.6f}")

    return "\n".join(lines) + "\n"
