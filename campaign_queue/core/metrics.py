"""
In-process metrics collector.

Counters, gauges and histograms recorded by the claim service, step engine,
stall recovery and worker loop. ``report()`` writes a summary to the log.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from campaign_queue.core.logger import get_logger

logger = get_logger(__name__)

COUNTER = "counter"
GAUGE = "gauge"
HISTOGRAM = "histogram"


@dataclass
class MetricValue:
    value: float
    tags: Optional[Dict[str, str]]
    timestamp: float


@dataclass
class Metric:
    type: str
    values: List[MetricValue] = field(default_factory=list)


class MetricsCollector:
    """Thread-safe store of metric samples."""

    def __init__(self):
        self._metrics: Dict[str, Metric] = {}
        self._lock = threading.Lock()

    def increment(self, name: str, value: float = 1, tags: Optional[Dict[str, str]] = None) -> None:
        self._record(name, COUNTER, value, tags)

    def gauge(self, name: str, value: float, tags: Optional[Dict[str, str]] = None) -> None:
        self._record(name, GAUGE, value, tags)

    def histogram(self, name: str, value: float, tags: Optional[Dict[str, str]] = None) -> None:
        self._record(name, HISTOGRAM, value, tags)

    def _record(self, name: str, metric_type: str, value: float, tags: Optional[Dict[str, str]]) -> None:
        with self._lock:
            metric = self._metrics.get(name)
            if metric is None:
                metric = self._metrics[name] = Metric(type=metric_type)
            metric.values.append(MetricValue(value=value, tags=tags, timestamp=time.time()))

    def get_metric(self, name: str) -> Optional[Metric]:
        with self._lock:
            metric = self._metrics.get(name)
            if metric is None:
                return None
            return Metric(type=metric.type, values=list(metric.values))

    def get_total(self, name: str) -> float:
        """Sum of all samples of ``name``; 0 when never recorded."""
        metric = self.get_metric(name)
        if metric is None:
            return 0
        return sum(v.value for v in metric.values)

    def get_summary(self, name: str) -> Optional[Dict[str, float]]:
        """Count, sum, average, extremes and percentiles of ``name``."""
        metric = self.get_metric(name)
        if metric is None or not metric.values:
            return None

        values = sorted(v.value for v in metric.values)
        total = sum(values)
        count = len(values)
        return {
            "count": count,
            "sum": total,
            "avg": total / count,
            "min": values[0],
            "max": values[-1],
            "p50": values[int(count * 0.5)],
            "p95": values[int(count * 0.95)],
            "p99": values[int(count * 0.99)],
        }

    def summary(self) -> Dict[str, Any]:
        """Counters as totals, gauges as latest value, histograms as summaries."""
        with self._lock:
            snapshot = {name: Metric(type=m.type, values=list(m.values)) for name, m in self._metrics.items()}

        result: Dict[str, Any] = {}
        for name, metric in snapshot.items():
            if metric.type == COUNTER:
                result[name] = sum(v.value for v in metric.values)
            elif metric.type == GAUGE:
                result[name] = metric.values[-1].value if metric.values else None
            else:
                result[name] = self.get_summary(name)
        return result

    def report(self) -> Dict[str, Any]:
        data = self.summary()
        logger.info("Metrics summary", extra={"component": "metrics", "metrics": data})
        return data

    def reset(self) -> None:
        with self._lock:
            self._metrics.clear()


metrics = MetricsCollector()
