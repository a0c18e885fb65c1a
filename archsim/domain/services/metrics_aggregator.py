"""
Metrics Aggregator

Reduces one tick's component metrics to the system-wide GlobalMetrics
snapshot. Latency percentiles are weighted by the load each component
actually served, so an idle component does not skew the distribution.
"""

from __future__ import annotations
import logging
from typing import List, Mapping, Optional, Sequence

import numpy as np

from archsim.config.settings import SimulationSettings
from archsim.core.component_types import profile_for
from archsim.core.topology import Topology
from archsim.domain.models.constraints import ConstraintTargets
from archsim.domain.models.metrics import ComponentMetrics, GlobalMetrics
from archsim.domain.services.cost_model import total_hourly_cost
from archsim.domain.services.traffic_engine import TrafficResult


def weighted_percentile(values: Sequence[float], weights: Sequence[float], q: float) -> float:
    """
    Value below which ``q`` percent of the total weight falls.

    Returns 0.0 when there is no weight at all.
    """
    vals = np.asarray(values, dtype=float)
    w = np.asarray(weights, dtype=float)
    if vals.size == 0 or w.sum() <= 0:
        return 0.0
    order = np.argsort(vals, kind="stable")
    cumulative = np.cumsum(w[order])
    idx = int(np.searchsorted(cumulative, q / 100.0 * cumulative[-1], side="left"))
    return float(vals[order][min(idx, vals.size - 1)])


def entry_ids(topology: Topology, traffic: TrafficResult) -> List[str]:
    """
    Components where traffic enters the system.

    Pure traffic generators (clients) accept everything they emit, so for
    them the first served hop counts as the entry.
    """
    entries: List[str] = []
    for source in traffic.sources:
        if profile_for(topology.get(source).type).is_origin:
            entries.extend(c.target_id for c in topology.outbound(source))
        else:
            entries.append(source)
    return list(dict.fromkeys(entries))


class MetricsAggregator:
    """Builds GlobalMetrics from component metrics and previous counters."""

    def __init__(self, settings: Optional[SimulationSettings] = None):
        self.settings = settings or SimulationSettings()
        self.logger = logging.getLogger(__name__)

    def aggregate(
        self,
        topology: Topology,
        metrics: Mapping[str, ComponentMetrics],
        traffic: TrafficResult,
        previous: GlobalMetrics,
        targets: Optional[ConstraintTargets] = None,
    ) -> GlobalMetrics:
        dt = self.settings.tick_interval_s
        entries = entry_ids(topology, traffic)
        entry_offered = sum(traffic.load(e).offered for e in entries)
        total_rps = sum(metrics.get(e, ComponentMetrics()).accepted_rps for e in entries)

        served = [
            (m.latency_ms, m.accepted_rps)
            for cid, m in metrics.items()
            if cid in topology and m.accepted_rps > 0 and not profile_for(topology.get(cid).type).is_origin
        ]
        latencies = [lat for lat, _ in served]
        weights = [w for _, w in served]
        total_weight = sum(weights)
        avg_latency = sum(lat * w for lat, w in served) / total_weight if total_weight > 0 else 0.0

        failed_rps = sum(
            m.offered_rps * m.error_rate
            for cid, m in metrics.items()
            if cid in topology and not profile_for(topology.get(cid).type).is_origin
        )
        failed_rps = min(failed_rps, entry_offered)
        error_rate = failed_rps / entry_offered if entry_offered > 0 else 0.0

        total_requests = previous.total_requests + entry_offered * dt
        failed_requests = previous.failed_requests + failed_rps * dt
        successful_requests = max(0.0, total_requests - failed_requests)
        availability = successful_requests / total_requests if total_requests > 0 else 1.0

        return GlobalMetrics(
            total_rps=total_rps,
            avg_latency_ms=avg_latency,
            p50_latency_ms=weighted_percentile(latencies, weights, 50),
            p95_latency_ms=weighted_percentile(latencies, weights, 95),
            p99_latency_ms=weighted_percentile(latencies, weights, 99),
            eviction_rate=sum(m.eviction_rate for m in metrics.values()),
            error_rate=error_rate,
            availability=availability,
            total_cost_per_hour=total_hourly_cost(topology, metrics, targets),
            total_requests=total_requests,
            successful_requests=successful_requests,
            failed_requests=failed_requests,
        )
