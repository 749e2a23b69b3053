"""
Performance monitoring for import and export runs.

A background thread samples process memory and CPU with psutil while a run is in
progress; stage timers and row counters are folded into a summary dictionary that
the pipelines attach to their results.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import psutil

from ..interfaces import PerformanceMonitorInterface


@dataclass
class RunMetrics:
    """Counters of one import or export run."""
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    rows_ok: int = 0
    rows_failed: int = 0
    # stage -> accumulated seconds (parsing, insertion, query, merge)
    stage_seconds: Dict[str, float] = field(default_factory=dict)
    peak_rss_mb: float = 0.0
    cpu_total: float = 0.0
    cpu_samples: int = 0
    rss_samples: int = 0
    custom: Dict[str, Any] = field(default_factory=dict)

    @property
    def rows_total(self) -> int:
        return self.rows_ok + self.rows_failed

    @property
    def elapsed(self) -> float:
        if self.started_at is None or self.finished_at is None:
            return 0.0
        return self.finished_at - self.started_at


class PerformanceMonitor(PerformanceMonitorInterface):
    """
    Collects throughput, stage timings and resource usage for one run.

    Usage:
        monitor = PerformanceMonitor()
        monitor.start_monitoring()
        monitor.start_stage('parsing')
        ...
        monitor.end_stage('parsing')
        summary = monitor.stop_monitoring()

    Args:
        sample_interval: Seconds between psutil samples
    """

    def __init__(self, sample_interval: float = 0.5):
        self.logger = logging.getLogger(__name__)
        self.sample_interval = sample_interval
        self.metrics = RunMetrics()
        self._running = False
        self._sampler: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._open_stages: Dict[str, float] = {}

    def start_monitoring(self) -> None:
        if self._running:
            self.logger.warning("Performance monitoring already started")
            return
        self.metrics = RunMetrics(started_at=time.perf_counter())
        self._open_stages = {}
        self._stop.clear()
        self._running = True
        self._sampler = threading.Thread(target=self._sample, name="perf-sampler", daemon=True)
        self._sampler.start()

    def stop_monitoring(self) -> Dict[str, Any]:
        """Stop sampling and return the run summary (empty if never started)."""
        if not self._running:
            self.logger.warning("Performance monitoring not started")
            return {}
        self._running = False
        self.metrics.finished_at = time.perf_counter()
        self._stop.set()
        if self._sampler is not None:
            self._sampler.join(timeout=1.0)

        summary = self.summary()
        self.logger.info(f"Processed {summary['records_processed']} rows in "
                         f"{summary['total_processing_time_seconds']:.2f}s "
                         f"({summary['records_per_second']:.1f} rows/s, "
                         f"peak memory {self.metrics.peak_rss_mb:.1f} MB)")
        return summary

    def record_metric(self, metric_name: str, value: Any) -> None:
        if not self._running:
            return
        with self._lock:
            self.metrics.custom[metric_name] = value

    def record_processing_results(self, successful: int, failed: int = 0) -> None:
        """Add row counts of a finished file or page set."""
        with self._lock:
            self.metrics.rows_ok += successful
            self.metrics.rows_failed += failed

    def start_stage(self, stage_name: str) -> None:
        self._open_stages[stage_name] = time.perf_counter()

    def end_stage(self, stage_name: str) -> float:
        """Close a stage timer; repeated stages accumulate."""
        started = self._open_stages.pop(stage_name, None)
        if started is None:
            return 0.0
        duration = time.perf_counter() - started
        with self._lock:
            seconds = self.metrics.stage_seconds
            seconds[stage_name] = seconds.get(stage_name, 0.0) + duration
        return duration

    def summary(self) -> Dict[str, Any]:
        metrics = self.metrics
        elapsed = metrics.elapsed
        total = metrics.rows_total
        return {
            'total_processing_time_seconds': elapsed,
            'records_processed': total,
            'records_per_second': total / elapsed if elapsed > 0 else 0.0,
            'success_rate_percent': metrics.rows_ok / total * 100 if total else 0.0,
            'stage_timings': dict(metrics.stage_seconds),
            'resource_usage': {
                'peak_memory_mb': metrics.peak_rss_mb,
                'avg_cpu_percent': metrics.cpu_total / metrics.cpu_samples if metrics.cpu_samples else 0.0,
                'memory_samples_count': metrics.rss_samples,
                'cpu_samples_count': metrics.cpu_samples,
            },
            'custom_metrics': dict(metrics.custom),
        }

    def _sample(self) -> None:
        process = psutil.Process()
        while not self._stop.is_set():
            try:
                rss_mb = process.memory_info().rss / (1024 * 1024)
                cpu = process.cpu_percent(interval=None)
            except psutil.Error as e:
                self.logger.warning(f"Resource sampling stopped: {e}")
                return
            with self._lock:
                self.metrics.rss_samples += 1
                self.metrics.peak_rss_mb = max(self.metrics.peak_rss_mb, rss_mb)
                self.metrics.cpu_samples += 1
                self.metrics.cpu_total += cpu
            self._stop.wait(self.sample_interval)
