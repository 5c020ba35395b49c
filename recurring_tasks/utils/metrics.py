"""
Metrics Collection for the recurring task service.

Counters and timers for generation runs, exposed through /metrics.
"""

import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator

import pytz


class MetricsCollector:
    """Collects and manages generation metrics."""

    def __init__(self):
        """Initialize metrics collector."""
        self.metrics = defaultdict(int)
        self.timers = defaultdict(float)
        self.lock = threading.Lock()

        # Initialize counters
        self.metrics["generation_runs_total"] = 0
        self.metrics["generation_run_failures_total"] = 0
        self.metrics["templates_processed_total"] = 0
        self.metrics["template_errors_total"] = 0
        self.metrics["instances_created_total"] = 0

    def increment_counter(self, metric_name: str, value: int = 1):
        """Increment a counter metric."""
        with self.lock:
            self.metrics[metric_name] += value

    def record_timer(self, metric_name: str, duration: float):
        """Record a timing metric."""
        with self.lock:
            self.timers[metric_name] += duration

    def get_metrics(self) -> Dict[str, Any]:
        """Get current metrics values."""
        with self.lock:
            return {
                "counters": dict(self.metrics),
                "timers": dict(self.timers),
                "timestamp": datetime.now(pytz.utc).isoformat()
            }

    def reset(self):
        with self.lock:
            for name in self.metrics:
                self.metrics[name] = 0
            self.timers.clear()

    def generation_run(self):
        self.increment_counter("generation_runs_total")

    def generation_run_failed(self):
        self.increment_counter("generation_run_failures_total")

    def template_processed(self, instances_created: int):
        """Record that a template was processed and how many instances it produced."""
        self.increment_counter("templates_processed_total")
        self.increment_counter("instances_created_total", instances_created)

    def template_error(self):
        self.increment_counter("template_errors_total")

    @contextmanager
    def time_operation(self, metric_name: str) -> Iterator[None]:
        """Context manager to time an operation."""
        start_time = time.monotonic()
        try:
            yield
        finally:
            self.record_timer(metric_name, time.monotonic() - start_time)


# Global metrics instance
metrics_collector = MetricsCollector()
