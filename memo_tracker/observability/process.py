from __future__ import annotations

import os
import platform
import time
from threading import Lock

from memo_tracker.observability.metrics import Registry


class ProcessMetrics:
    """Default process metrics, refreshed when the registry is scraped."""

    def __init__(self, registry: Registry) -> None:
        self._lock = Lock()
        self._last_cpu = 0.0

        self.start_time = registry.gauge(
            "process_start_time_seconds",
            "Start time of the process since unix epoch in seconds.",
        )
        self.cpu_seconds = registry.counter(
            "process_cpu_seconds_total",
            "Total user and system CPU time spent in seconds.",
        )
        self.python_info = registry.gauge(
            "python_info",
            "Python platform information.",
            ("implementation", "version"),
        )

        self.start_time.set(value=time.time())
        self.python_info.labels(
            implementation=platform.python_implementation(),
            version=platform.python_version(),
        ).set(1)
        self.collect()

    def collect(self) -> None:
        times = os.times()
        cpu = times.user + times.system
        with self._lock:
            delta = cpu - self._last_cpu
            if delta <= 0:
                return
            self._last_cpu = cpu
            self.cpu_seconds.increment(delta=delta)
