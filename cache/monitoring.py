"""
Monitoring for the zpool cache layer.

Prometheus metrics for the cache store, the request coordinator and the
chain watchers. Metrics are labelled by key category so that volatile
reads (balances) can be told apart from long-lived facts (contract
existence).
"""
import time
from typing import Any, Dict, Optional

import structlog
from prometheus_client import Counter, Gauge, Histogram

from .keys import category_label

logger = structlog.get_logger()

CACHE_HITS = Counter('zpool_cache_hits_total', 'Total number of cache hits', ['category'])
CACHE_MISSES = Counter('zpool_cache_misses_total', 'Total number of cache misses', ['category'])
CACHE_EVICTIONS = Counter('zpool_cache_evictions_total', 'Entries evicted to respect the size bound')
CACHE_EXPIRATIONS = Counter('zpool_cache_expirations_total', 'Entries removed after their TTL elapsed')
CACHE_INVALIDATIONS = Counter('zpool_cache_invalidations_total',
                              'Entries removed by explicit or pattern invalidation', ['reason'])
CACHE_PERSIST_FAILURES = Counter('zpool_cache_persist_failures_total',
                                 'Durable storage operations that failed', ['operation'])
CACHE_SIZE = Gauge('zpool_cache_size', 'Current number of entries in the cache store')

COALESCED_REQUESTS = Counter('zpool_coalesced_requests_total',
                             'Reads served by joining an in-flight fetch', ['category'])
FETCH_LATENCY = Histogram('zpool_fetch_latency_seconds', 'Latency of underlying fetches', ['category'])
FETCH_FAILURES = Counter('zpool_fetch_failures_total', 'Underlying fetches that raised', ['category'])

WATCHER_STATE = Gauge('zpool_watcher_state', 'Current watcher supervisor state (1 = active state)', ['state'])
EVENTS_PROCESSED = Counter('zpool_ledger_events_total', 'Ledger events applied to the cache', ['event', 'source'])


class CacheMonitor:
    """
    Records cache metrics for a store instance.

    The store calls into the monitor on every access; the monitor keeps
    the prometheus series and a small local tally for reports.
    """

    def __init__(self):
        self.start_time = time.time()

    def record_hit(self, key: str) -> None:
        CACHE_HITS.labels(category=category_label(key)).inc()

    def record_miss(self, key: str) -> None:
        CACHE_MISSES.labels(category=category_label(key)).inc()

    def record_evictions(self, count: int) -> None:
        if count:
            CACHE_EVICTIONS.inc(count)

    def record_expirations(self, count: int) -> None:
        if count:
            CACHE_EXPIRATIONS.inc(count)

    def record_invalidations(self, reason: str, count: int) -> None:
        if count:
            CACHE_INVALIDATIONS.labels(reason=reason).inc(count)

    def record_persist_failure(self, operation: str) -> None:
        CACHE_PERSIST_FAILURES.labels(operation=operation).inc()

    def update_size(self, size: int) -> None:
        CACHE_SIZE.set(size)

    def record_coalesced(self, key: str) -> None:
        COALESCED_REQUESTS.labels(category=category_label(key)).inc()

    def record_fetch(self, key: str, latency: float, failed: bool = False) -> None:
        category = category_label(key)
        FETCH_LATENCY.labels(category=category).observe(latency)
        if failed:
            FETCH_FAILURES.labels(category=category).inc()

    def get_metrics_report(self, stats: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Generate a metrics report.

        Args:
            stats: Optional ``CacheStore.get_stats()`` output to merge in

        Returns:
            Dictionary with cache metrics
        """
        report: Dict[str, Any] = {'uptime_seconds': time.time() - self.start_time}
        if stats:
            report.update({
                'cache_size': stats['size'],
                'max_cache_size': stats['max_size'],
                'total_hits': stats['hits'],
                'total_misses': stats['misses'],
                'overall_hit_ratio': stats['hit_ratio'],
            })
        return report


def record_watcher_state(state: str, all_states) -> None:
    """Flip the watcher-state gauge so exactly one state reads 1."""
    for candidate in all_states:
        WATCHER_STATE.labels(state=candidate).set(1 if candidate == state else 0)


def record_event(event_name: str, source: str) -> None:
    EVENTS_PROCESSED.labels(event=event_name, source=source).inc()


monitor = CacheMonitor()

def get_monitor() -> CacheMonitor:
    """Get the global cache monitor instance."""
    return monitor
