"""
Stash Run Monitoring
====================

Per-stage timing and memory, plus counters for staging links and
compression decisions of one run.
"""

import json
import logging
import threading
import time
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import psutil

from resilience_patterns import LinkResult, LinkStatus, Placement, Reason, Selection

logger = logging.getLogger(__name__)


@dataclass
class StageMetrics:
    """Metrics for a run stage"""
    stage_name: str
    start_time: float
    end_time: Optional[float] = None
    items_processed: int = 0
    bytes_processed: int = 0
    errors: int = 0
    memory_start: int = 0
    memory_peak: int = 0

    @property
    def duration(self) -> float:
        if self.end_time:
            return self.end_time - self.start_time
        return time.time() - self.start_time

    @property
    def throughput_items_per_sec(self) -> float:
        if self.duration > 0:
            return self.items_processed / self.duration
        return 0.0


class StashMonitor:
    """Collects stage metrics and decision counters; safe across threads"""

    def __init__(self):
        self.stage_metrics: Dict[str, StageMetrics] = {}
        self.link_counts: Counter = Counter()
        self.reason_counts: Counter = Counter()
        self.placement_counts: Counter = Counter()
        self.bytes_original = 0
        self.bytes_stored = 0
        self._lock = threading.Lock()
        self._process = psutil.Process()

    def _rss(self) -> int:
        try:
            return self._process.memory_info().rss
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            logger.debug(f"Cannot sample memory: {e}")
            return 0

    def stage_start(self, stage_name: str) -> StageMetrics:
        rss = self._rss()
        metrics = StageMetrics(
            stage_name=stage_name,
            start_time=time.time(),
            memory_start=rss,
            memory_peak=rss,
        )
        with self._lock:
            self.stage_metrics[stage_name] = metrics
        return metrics

    def stage_end(self, stage_name: str, error: Optional[BaseException] = None):
        with self._lock:
            metrics = self.stage_metrics.get(stage_name)
            if metrics is None:
                return
            metrics.end_time = time.time()
            metrics.memory_peak = max(metrics.memory_peak, self._rss())
            if error is not None:
                metrics.errors += 1
        logger.debug(f"Stage '{stage_name}' finished in {metrics.duration:.3f}s")

    def stage(self, stage_name: str) -> 'MonitoredStage':
        return MonitoredStage(self, stage_name)

    def _bump(self, stage_name: str, items: int = 0, bytes_count: int = 0):
        metrics = self.stage_metrics.get(stage_name)
        if metrics is not None:
            metrics.items_processed += items
            metrics.bytes_processed += bytes_count

    def record_stash(self, path: Path, result: LinkResult):
        with self._lock:
            self.link_counts[result.status.value] += 1
            self._bump('stash', items=1)
            if result.status in (LinkStatus.LINKED, LinkStatus.COPIED):
                try:
                    self._bump('stash', bytes_count=path.stat().st_size)
                except OSError as e:
                    logger.debug(f"Cannot size staged {path}: {e}")

    def record_selection(self, selection: Selection):
        with self._lock:
            self.reason_counts[selection.reason.value] += 1
            self.placement_counts[selection.placement.value] += 1
            if self._measured(selection):
                self.bytes_original += selection.original_size
                self.bytes_stored += selection.stored_size
            self._bump('select', items=1, bytes_count=selection.original_size)

    @staticmethod
    def _measured(selection: Selection) -> bool:
        """Only objects placed by this run with both sizes known count toward savings"""
        if not selection.original_size or not selection.stored_size:
            return False
        if selection.placement is Placement.COMPRESSED:
            return selection.reason is Reason.RATIO_ACCEPTED
        return selection.link is not None and selection.link.placed

    def get_summary(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'stages': {
                    name: {
                        'duration': m.duration,
                        'items': m.items_processed,
                        'bytes': m.bytes_processed,
                        'errors': m.errors,
                        'memory_peak_mb': m.memory_peak / 1024 / 1024,
                    }
                    for name, m in self.stage_metrics.items()
                },
                'links': dict(self.link_counts),
                'placements': dict(self.placement_counts),
                'reasons': dict(self.reason_counts),
                'bytes_original': self.bytes_original,
                'bytes_stored': self.bytes_stored,
            }

    def get_report(self) -> str:
        """Generate a text report of the run"""
        summary = self.get_summary()
        report = ["=== Stash Run Report ==="]

        for name, stage in summary['stages'].items():
            report.append(f"{name}: {stage['items']:,} items, {stage['duration']:.2f}s, "
                          f"peak {stage['memory_peak_mb']:.1f} MB")

        if summary['links']:
            report.append("\n--- Staging ---")
            for status, count in sorted(summary['links'].items()):
                report.append(f"{status}: {count:,}")

        if summary['reasons']:
            report.append("\n--- Compression Decisions ---")
            for reason, count in sorted(summary['reasons'].items(),
                                        key=lambda x: x[1], reverse=True):
                report.append(f"{reason}: {count:,}")

        original = summary['bytes_original']
        stored = summary['bytes_stored']
        if original:
            saved = original - stored
            report.append(f"\nFinalized {original:,} bytes as {stored:,} bytes "
                          f"({saved / original * 100:.1f}% saved)")
        return "\n".join(report)

    def to_json(self) -> str:
        return json.dumps(self.get_summary(), indent=2, sort_keys=True)


class MonitoredStage:
    """Context manager for monitoring a run stage"""

    def __init__(self, monitor: StashMonitor, stage_name: str):
        self.monitor = monitor
        self.stage_name = stage_name

    def __enter__(self):
        self.monitor.stage_start(self.stage_name)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.monitor.stage_end(self.stage_name, exc_val)
        return False
