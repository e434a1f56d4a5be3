"""
Search Metrics - Stage timing and outcome counters.

Thin wrapper around ``prometheus_client``. Pass a dedicated
``CollectorRegistry`` per engine (and per test) to avoid duplicate
registration; tenant ids are never used as labels.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager

from prometheus_client import CollectorRegistry, Counter, Histogram

logger = logging.getLogger(__name__)

__all__ = ["SearchMetrics"]


class SearchMetrics:
    """Prometheus collectors for the search coordinator."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()

        self.stage_duration = Histogram(
            "meshrank_search_stage_duration_seconds",
            "Duration of a search stage",
            ["operation", "stage"],
            registry=self.registry,
        )
        self.stage_outcomes = Counter(
            "meshrank_search_stage_total",
            "Search stage executions by outcome",
            ["operation", "stage", "outcome"],
            registry=self.registry,
        )
        self.requests = Counter(
            "meshrank_search_requests_total",
            "Search operations by outcome",
            ["operation", "outcome"],
            registry=self.registry,
        )
        self.degradations = Counter(
            "meshrank_search_degradations_total",
            "Optional stages that failed and were skipped",
            ["stage"],
            registry=self.registry,
        )
        self.fanout_variants = Counter(
            "meshrank_search_fanout_variants_total",
            "Fan-out variants by outcome",
            ["outcome"],
            registry=self.registry,
        )

    @contextmanager
    def stage(self, operation: str, stage: str) -> Iterator[None]:
        """Time a stage and count its outcome; exceptions propagate."""
        start = time.perf_counter()
        outcome = "success"
        try:
            yield
        except BaseException:
            outcome = "error"
            raise
        finally:
            self.stage_duration.labels(operation, stage).observe(time.perf_counter() - start)
            self.stage_outcomes.labels(operation, stage, outcome).inc()

    def record_request(self, operation: str, outcome: str) -> None:
        self.requests.labels(operation, outcome).inc()

    def record_degradation(self, stage: str) -> None:
        self.degradations.labels(stage).inc()

    def record_variant(self, outcome: str) -> None:
        self.fanout_variants.labels(outcome).inc()

    def value(self, name: str, labels: dict[str, str]) -> float:
        """Current sample value, 0.0 when never recorded."""
        return self.registry.get_sample_value(name, labels) or 0.0
