# -*- coding: utf-8 -*-
"""
Prometheus Metrics - TraceChain

Prometheus metrics for lineage resolution, visibility filtering, and
identity snapshot refreshes.

Metrics:
    1. tc_lineage_resolutions_total (Counter)
    2. tc_lineage_resolution_duration_seconds (Histogram)
    3. tc_lineage_degraded_nodes_total (Counter)
    4. tc_time_ordering_violations_total (Counter)
    5. tc_identity_refreshes_total (Counter)
    6. tc_identity_refresh_coalesced_total (Counter)
    7. tc_visibility_filter_total (Counter)
"""

from __future__ import annotations

import logging

from prometheus_client import Counter, Histogram

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Metric definitions
# ---------------------------------------------------------------------------

# 1. Lineage resolutions by outcome
lineage_resolutions_total = Counter(
    "tc_lineage_resolutions_total",
    "Total lineage resolutions performed",
    labelnames=["result"],
)

# 2. Lineage resolution duration
lineage_resolution_duration_seconds = Histogram(
    "tc_lineage_resolution_duration_seconds",
    "Lineage resolution duration in seconds",
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

# 3. Degraded nodes by reason
lineage_degraded_nodes_total = Counter(
    "tc_lineage_degraded_nodes_total",
    "Total lineage nodes degraded during enrichment",
    labelnames=["reason"],
)

# 4. Acquisition-before-creation defects
time_ordering_violations_total = Counter(
    "tc_time_ordering_violations_total",
    "Total lineage nodes acquired before their declared creation time",
)

# 5. Identity refreshes by outcome
identity_refreshes_total = Counter(
    "tc_identity_refreshes_total",
    "Total identity snapshot refreshes executed",
    labelnames=["result"],
)

# 6. Triggers collapsed into a pending follow-up
identity_refresh_coalesced_total = Counter(
    "tc_identity_refresh_coalesced_total",
    "Total refresh triggers collapsed into an in-flight refresh",
)

# 7. Visibility filter applications by policy
visibility_filter_total = Counter(
    "tc_visibility_filter_total",
    "Total visibility filter applications",
    labelnames=["policy"],
)


# ---------------------------------------------------------------------------
# Recording helpers
# ---------------------------------------------------------------------------


def record_lineage_resolution(result: str, duration_seconds: float) -> None:
    """Record a lineage resolution.

    Args:
        result: "success" or "error".
        duration_seconds: Wall time of the resolution.
    """
    lineage_resolutions_total.labels(result=result).inc()
    lineage_resolution_duration_seconds.observe(duration_seconds)


def record_degraded_node(reason: str) -> None:
    """Record one degraded enrichment step."""
    lineage_degraded_nodes_total.labels(reason=reason).inc()


def record_time_ordering_violation() -> None:
    time_ordering_violations_total.inc()


def record_identity_refresh(result: str) -> None:
    """Record an executed identity refresh.

    Args:
        result: "success" or "fallback".
    """
    identity_refreshes_total.labels(result=result).inc()


def record_refresh_coalesced() -> None:
    identity_refresh_coalesced_total.inc()


def record_visibility_filter(policy: str) -> None:
    visibility_filter_total.labels(policy=policy).inc()


__all__ = [
    "record_lineage_resolution",
    "record_degraded_node",
    "record_time_ordering_violation",
    "record_identity_refresh",
    "record_refresh_coalesced",
    "record_visibility_filter",
]
