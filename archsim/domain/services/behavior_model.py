"""
Component Behavior Model

Converts the load a component received during a tick, together with its
configuration and the active chaos, into derived metrics: latency
percentiles, CPU/memory proxies, error rate, cache hit rate, queue depth
and connection-pool pressure. Also decides the crash, slow, throttle and
circuit-open sub-states.

The model runs in two phases per tick:
    1. ``admission`` - before propagation, from the previous tick's state:
       how much load the component may accept and whether it is crashed,
       partitioned, circuit-open or throttled.
    2. ``evaluate`` - after propagation: the new ComponentMetrics.

Per-type behavior comes from the TypeProfile table; nothing here switches
on individual component types.
"""

from __future__ import annotations
import logging
import math
import random
from dataclasses import dataclass
from typing import Optional

from archsim.config.settings import SimulationSettings
from archsim.core.component_types import TypeProfile, profile_for
from archsim.core.models import Component
from archsim.core.topology import Topology
from archsim.domain.models.chaos import ChaosMultipliers
from archsim.domain.models.metrics import ComponentMetrics

UNLIMITED = math.inf
EVICTION_MEMORY_THRESHOLD = 0.8
EVICTIONS_PER_MEMORY_UNIT = 5000.0
MAX_POOL_UTILIZATION = 10.0


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clamp to [low, high]; NaN collapses to ``low``."""
    if value != value:
        return low
    return max(low, min(high, value))


@dataclass(frozen=True)
class Admission:
    """How much load a component may take on during one tick."""
    capacity: float
    accept_limit: float
    instances: int
    crashed: bool = False
    crash_ticks_remaining: int = 0
    recovered: bool = False
    partitioned: bool = False
    circuit_open: bool = False
    throttled: bool = False
    slowness_factor: float = 1.0

    @property
    def unavailable(self) -> bool:
        return self.crashed or self.partitioned


@dataclass(frozen=True)
class NodeLoad:
    """Load seen by a component after propagation."""
    offered: float = 0.0
    accepted: float = 0.0
    dropped: float = 0.0
    forwarded: float = 0.0
    drained: float = 0.0
    is_source: bool = False


class BehaviorModel:
    """Per-component metric derivation."""

    def __init__(self, settings: Optional[SimulationSettings] = None):
        self.settings = settings or SimulationSettings()
        self.logger = logging.getLogger(__name__)

    # =========================================================================
    # Phase 1: admission
    # =========================================================================

    def admission(
        self,
        component: Component,
        prev: ComponentMetrics,
        instances: int,
        chaos: ChaosMultipliers,
        tick: int,
    ) -> Admission:
        """Decide accept limit and sub-states from the previous tick."""
        s = self.settings
        config = component.config
        profile = profile_for(component.type)
        capacity = float(max(0, config.capacity) * max(0, instances))

        crashed = component.id in chaos.crashed
        remaining = 0
        if prev.crash_ticks_remaining > 0:
            crashed = True
            remaining = prev.crash_ticks_remaining - 1
        elif (not prev.is_crashed and not prev.is_circuit_open and not prev.is_throttled
              and prev.consecutive_overload_ticks >= s.crash_after_overload_ticks):
            self.logger.debug(f"{component.id} crashed after "
                              f"{prev.consecutive_overload_ticks} overloaded ticks")
            crashed = True
            remaining = max(0, s.crash_recovery_ticks - 1)

        partitioned = component.id in chaos.disconnected
        circuit_open = config.circuit_breaker and prev.is_circuit_open

        throttled = False
        if crashed or partitioned:
            limit = 0.0
        elif profile.is_origin:
            limit = UNLIMITED
        else:
            limit = capacity
            if circuit_open:
                limit = capacity * s.circuit_open_accept_ratio
            if config.rate_limiting:
                rate_limit = float(config.rate_limit_rps) if config.rate_limit_rps else capacity
                if rate_limit <= limit:
                    limit = rate_limit
                    throttled = True

        return Admission(
            capacity=capacity,
            accept_limit=limit,
            instances=instances,
            crashed=crashed,
            crash_ticks_remaining=remaining,
            recovered=prev.is_crashed and not crashed,
            partitioned=partitioned,
            circuit_open=circuit_open,
            throttled=throttled,
            slowness_factor=self._slowness(component.id, chaos, tick),
        )

    def forward_ratio(self, component: Component, chaos: ChaosMultipliers) -> float:
        """Share of accepted load passed on to dependencies."""
        if profile_for(component.type).caching:
            return 1.0 - self.cache_hit_rate(component, chaos)
        return 1.0

    def cache_hit_rate(self, component: Component, chaos: ChaosMultipliers) -> float:
        """Hit rate from the configured TTL, capped by any chaos override."""
        s = self.settings
        ttl = max(0.0, float(component.config.cache_ttl_seconds))
        hit = s.max_cache_hit_rate * (1.0 - math.exp(-ttl / max(s.cache_ttl_scale_s, 1e-9)))
        if chaos.cache_hit_rate is not None:
            hit = min(hit, chaos.cache_hit_rate)
        return clamp(hit)

    def _slowness(self, component_id: str, chaos: ChaosMultipliers, tick: int) -> float:
        s = self.settings
        factor = chaos.slow.get(component_id, 1.0)
        if s.slow_node_probability > 0:
            rng = random.Random(f"{s.seed}:{tick}:{component_id}")
            if rng.random() < s.slow_node_probability:
                factor = max(factor, rng.uniform(s.slow_node_min_factor, s.slow_node_max_factor))
        return factor

    # =========================================================================
    # Phase 2: metrics
    # =========================================================================

    def evaluate(
        self,
        topology: Topology,
        component_id: str,
        admission: Admission,
        load: NodeLoad,
        prev: ComponentMetrics,
        chaos: ChaosMultipliers,
    ) -> ComponentMetrics:
        """Derive this tick's metrics for one component."""
        s = self.settings
        component = topology.get(component_id)
        profile = profile_for(component.type)
        offered = max(0.0, load.offered)

        if admission.unavailable:
            return self._unavailable(admission, load, prev)

        capacity = max(admission.capacity, 1.0)
        accepted = max(0.0, load.accepted)
        utilization = 0.0 if profile.is_origin else offered / capacity
        overload_ticks = prev.consecutive_overload_ticks + 1 if utilization > s.overload_threshold else 0
        circuit_open = (component.config.circuit_breaker
                        and overload_ticks >= s.circuit_breaker_trip_ticks)
        throttled = admission.throttled and offered > admission.accept_limit

        # Latency
        protected = admission.circuit_open or throttled
        load_factor = accepted / capacity if protected else utilization
        load_factor = clamp(load_factor, 0.0, s.max_latency_utilization)
        latency = self._latency(topology, component_id, profile, load_factor, admission, chaos)
        spread = min(load_factor, 1.0)

        # Errors
        dropped = max(0.0, load.dropped)
        queue_depth, growth, lost = self._queue(profile, component, load, prev)
        dropped += lost
        error_rate = self._error_rate(component, offered, dropped, utilization, protected, chaos)

        # Resources
        busy = clamp(accepted / capacity)
        cpu = clamp(0.05 + 0.9 * busy) if accepted > 0 else 0.0
        memory = clamp(0.2 + 0.7 * busy) if accepted > 0 else 0.0
        cache_hit = self.cache_hit_rate(component, chaos) if profile.caching else 0.0
        eviction = 0.0
        if profile.caching and memory > EVICTION_MEMORY_THRESHOLD:
            eviction = (memory - EVICTION_MEMORY_THRESHOLD) * EVICTIONS_PER_MEMORY_UNIT

        # Connection pool (Little's law)
        pool_util, active, max_conn = 0.0, 0, 0
        if profile.uses_connection_pool:
            max_conn = component.config.max_connections or admission.instances * s.connections_per_instance
            max_conn = max(1, int(max_conn))
            in_flight = accepted * latency / 1000.0
            pool_util = clamp(in_flight / max_conn, 0.0, MAX_POOL_UTILIZATION)
            active = int(min(max_conn, round(in_flight)))

        return ComponentMetrics(
            offered_rps=offered,
            accepted_rps=accepted,
            dropped_rps=dropped,
            utilization=utilization,
            latency_ms=latency,
            p95_latency_ms=latency * (1.5 + 0.5 * spread),
            p99_latency_ms=latency * (2.0 + spread),
            jitter_ms=latency * 0.1 * (1.0 + spread),
            cpu_usage=cpu,
            memory_usage=memory,
            error_rate=error_rate,
            cache_hit_rate=cache_hit,
            eviction_rate=eviction,
            queue_depth=queue_depth,
            queue_growth_ticks=growth,
            is_throttled=throttled,
            is_circuit_open=circuit_open,
            connection_pool_utilization=pool_util,
            active_connections=active,
            max_connections=max_conn,
            ready_instances=admission.instances,
            target_instances=admission.instances,
            is_slow=admission.slowness_factor > 1.0,
            slowness_factor=admission.slowness_factor,
            recovered_this_tick=admission.recovered,
            consecutive_overload_ticks=overload_ticks,
            high_load_seconds=prev.high_load_seconds
            + (s.tick_interval_s if utilization > s.latency_knee else 0.0),
            # Carried autoscaler state, advanced by the Autoscaler pass
            autoscale_state=prev.autoscale_state,
            cold_starting_instances=prev.cold_starting_instances,
            scale_ticks_remaining=prev.scale_ticks_remaining,
            high_load_ticks=prev.high_load_ticks,
            low_load_ticks=prev.low_load_ticks,
        )

    def _unavailable(self, admission: Admission, load: NodeLoad, prev: ComponentMetrics) -> ComponentMetrics:
        offered = max(0.0, load.offered)
        return ComponentMetrics(
            offered_rps=offered,
            dropped_rps=offered,
            error_rate=1.0 if offered > 0 else 0.0,
            queue_depth=prev.queue_depth,
            ready_instances=admission.instances,
            target_instances=admission.instances,
            is_crashed=admission.crashed,
            crash_ticks_remaining=admission.crash_ticks_remaining,
            is_partitioned=admission.partitioned,
            high_load_seconds=prev.high_load_seconds,
            autoscale_state=prev.autoscale_state,
            cold_starting_instances=prev.cold_starting_instances,
            scale_ticks_remaining=prev.scale_ticks_remaining,
        )

    def _latency(
        self,
        topology: Topology,
        component_id: str,
        profile: TypeProfile,
        load_factor: float,
        admission: Admission,
        chaos: ChaosMultipliers,
    ) -> float:
        s = self.settings
        latency = profile.base_latency_ms * (1.0 + max(0.0, load_factor - s.latency_knee) * s.latency_k)
        latency *= chaos.latency * admission.slowness_factor
        if profile.is_storage:
            latency *= chaos.database_latency
        latency += topology.replication_edge_count(component_id) * s.replication_latency_ms
        if self._is_cross_region(topology, component_id):
            latency += s.cross_region_latency_ms
        return latency if math.isfinite(latency) else 0.0

    @staticmethod
    def _is_cross_region(topology: Topology, component_id: str) -> bool:
        inbound = topology.inbound(component_id)
        if not inbound:
            return False
        region = topology.get(component_id).config.primary_region
        remote = sum(1 for c in inbound if topology.get(c.source_id).config.primary_region != region)
        return remote / len(inbound) > 0.5

    def _queue(self, profile: TypeProfile, component: Component, load: NodeLoad, prev: ComponentMetrics):
        """Advance the backlog of buffering components; returns (depth, growth ticks, lost rps)."""
        if not profile.buffered:
            return 0.0, 0, 0.0
        dt = self.settings.tick_interval_s
        raw_depth = prev.queue_depth + (load.accepted - load.drained) * dt
        depth = clamp(raw_depth, 0.0, self.settings.max_queue_depth)
        lost = 0.0
        if raw_depth > depth and not component.config.dlq:
            lost = (raw_depth - depth) / dt
        growth = prev.queue_growth_ticks + 1 if depth > prev.queue_depth else 0
        return depth, growth, lost

    def _error_rate(
        self,
        component: Component,
        offered: float,
        dropped: float,
        utilization: float,
        protected: bool,
        chaos: ChaosMultipliers,
    ) -> float:
        s = self.settings
        if offered <= 0:
            return 0.0
        shed = clamp(dropped / offered)
        timeouts = 0.0
        if utilization > s.overload_threshold and not protected:
            timeouts = clamp((utilization - s.overload_threshold) * s.overload_error_slope)
        overload = shed + (1.0 - shed) * timeouts

        background = clamp(s.background_error_rate * chaos.failure_rate)
        if component.config.retries:
            background = background ** (1 + s.retry_attempts)
        return clamp(1.0 - (1.0 - overload) * (1.0 - background))
