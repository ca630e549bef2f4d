"""
Prometheus Metrics and Monitoring Utilities
"""

import time
import logging
from typing import Optional

from django.conf import settings
from prometheus_client import Counter, Histogram

logger = logging.getLogger(__name__)

SERVICE_NAME = getattr(settings, 'SERVICE_NAME', 'unknown')


# =============================================================================
# METRIC DEFINITIONS
# =============================================================================

pm_work_orders_generated_total = Counter(
    'pm_work_orders_generated_total',
    'Work orders generated from due PM schedules',
    ['priority', 'service']
)

pm_generation_skipped_total = Counter(
    'pm_generation_skipped_total',
    'Generation attempts blocked by an already open work order',
    ['service']
)

pm_escalations_total = Counter(
    'pm_escalations_total',
    'Partial completions escalated into follow-up work orders',
    ['service']
)

pm_overdue_escalations_total = Counter(
    'pm_overdue_escalations_total',
    'Overdue generated work orders escalated by the sweep',
    ['service']
)

pm_work_orders_closed_total = Counter(
    'pm_work_orders_closed_total',
    'Generated work orders closed, by outcome',
    ['outcome', 'service']
)

pm_tick_duration_seconds = Histogram(
    'pm_tick_duration_seconds',
    'Duration of one scheduled evaluation/generation pass',
    ['service'],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0]
)

events_published_total = Counter(
    'events_published_total',
    'Total events published',
    ['event_type', 'service']
)


# =============================================================================
# HELPERS
# =============================================================================

def record_generated(priority: str):
    pm_work_orders_generated_total.labels(priority=priority, service=SERVICE_NAME).inc()


def record_skipped():
    pm_generation_skipped_total.labels(service=SERVICE_NAME).inc()


def record_escalation():
    pm_escalations_total.labels(service=SERVICE_NAME).inc()


def record_overdue_escalation():
    pm_overdue_escalations_total.labels(service=SERVICE_NAME).inc()


def record_closed(outcome: str):
    pm_work_orders_closed_total.labels(outcome=outcome, service=SERVICE_NAME).inc()


def record_event_published(event_type: str):
    events_published_total.labels(event_type=event_type, service=SERVICE_NAME).inc()


class MetricsTimer:
    """Context manager observing elapsed seconds into a histogram."""

    def __init__(self, histogram: Histogram = None, **labels):
        self.histogram = histogram or pm_tick_duration_seconds
        self.labels = labels or {'service': SERVICE_NAME}
        self.start_time: Optional[float] = None
        self.elapsed: Optional[float] = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed = time.perf_counter() - self.start_time
        self.histogram.labels(**self.labels).observe(self.elapsed)
        return False
