"""
Failure Detector

Inspects one tick's component metrics and reports every failure condition
currently present. Checks run in a fixed priority order:

    1. Per-component conditions (capacity, network, autoscaling,
       degradation and consistency)
    2. Topology conditions (single points of failure, data-loss risk,
       configuration drift, cost overrun)
    3. Cascades walked downstream from severe primary failures

Each condition is reported at most once per (component, kind) per tick.
Whether a condition is new is decided by the controller, which keeps the
append-only failure log.
"""

from __future__ import annotations
import logging
from collections import OrderedDict, defaultdict, deque
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Mapping, Optional, Set, Tuple

from archsim.config.settings import SimulationSettings
from archsim.core.component_types import profile_for
from archsim.core.models import Component, ComponentType, ReplicationStrategy
from archsim.core.topology import Topology
from archsim.domain.models.constraints import ConstraintTargets
from archsim.domain.models.failures import (
    SYSTEM_COMPONENT_ID,
    FailureEvent,
    FailureKind,
    FixType,
)
from archsim.domain.models.metrics import AutoscaleState, ComponentMetrics
from archsim.domain.services.behavior_model import clamp
from archsim.domain.services.traffic_engine import TrafficResult, retry_amplification

#: Primary failures that can cascade to dependents.
CASCADE_ROOT_KINDS: FrozenSet[FailureKind] = frozenset({
    FailureKind.OVERLOAD,
    FailureKind.LATENCY_BREACH,
    FailureKind.CACHE_STAMPEDE,
    FailureKind.COMPONENT_CRASH,
    FailureKind.DNS_FAILURE,
    FailureKind.NETWORK_PARTITION,
})

SLOW_NODE_RECOVERY_S = 60.0
BASE_REPLICATION_LAG_MS = 50.0
REPLICATION_LAG_PER_CPU_MS = 2000.0
LOST_UPDATE_MIN_RPS = 100.0


@dataclass
class DetectionResult:
    """Conditions present this tick plus circuits tripped by cascades."""
    events: List[FailureEvent] = field(default_factory=list)
    circuit_opened: Set[str] = field(default_factory=set)

    def kinds(self, component_id: str) -> Set[FailureKind]:
        return {e.kind for e in self.events if e.component_id == component_id}


class _Collector:
    """Builds events for one tick, keeping the first per (component, kind)."""

    def __init__(self, tick: int, time: float):
        self.tick = tick
        self.time = time
        self.events: "OrderedDict[Tuple[str, FailureKind], FailureEvent]" = OrderedDict()

    def emit(
        self,
        component_id: str,
        kind: FailureKind,
        message: str,
        recommendation: str,
        severity: float,
        affected: Tuple[str, ...] = (),
        recovery: Optional[float] = None,
        user_visible: bool = True,
        fix: Optional[FixType] = None,
    ) -> Optional[FailureEvent]:
        key = (component_id, kind)
        if key in self.events:
            return None
        event = FailureEvent(
            timestamp=self.time,
            tick=self.tick,
            component_id=component_id,
            kind=kind,
            message=message,
            recommendation=recommendation,
            severity=clamp(severity),
            affected_components=tuple(affected) or (component_id,),
            expected_recovery_seconds=recovery,
            user_visible=user_visible,
            fix_type=fix,
        )
        self.events[key] = event
        return event


class FailureDetector:
    """
    Classifies failure conditions from component metrics.

    Example:
        >>> detector = FailureDetector(settings)
        >>> result = detector.detect(topology, metrics, previous, traffic, targets, tick=12)
        >>> [e.kind.value for e in result.events]
        ['overload', 'spof']
    """

    def __init__(self, settings: Optional[SimulationSettings] = None):
        self.settings = settings or SimulationSettings()
        self.logger = logging.getLogger(__name__)

    def detect(
        self,
        topology: Topology,
        metrics: Mapping[str, ComponentMetrics],
        previous: Mapping[str, ComponentMetrics],
        traffic: TrafficResult,
        targets: ConstraintTargets,
        tick: int,
        monthly_cost: float = 0.0,
    ) -> DetectionResult:
        """
        Report every condition present at ``tick``.

        Args:
            topology: Component graph
            metrics: This tick's component metrics
            previous: Previous tick's metrics (retry amplification)
            traffic: This tick's propagation result (inbound shares)
            targets: SLA, budget and scale targets
            tick: Tick index
            monthly_cost: Projected monthly cost of the design
        """
        collector = _Collector(tick, tick * self.settings.tick_interval_s)

        for cid in topology.active_ids():
            m = metrics.get(cid, ComponentMetrics())
            component = topology.get(cid)
            self._check_availability(collector, component, m)
            if m.is_crashed or m.is_partitioned:
                continue
            self._check_capacity(collector, component, m, targets)
            self._check_queue(collector, component, m)
            self._check_connections(collector, component, m)
            self._check_degradation(collector, topology, component, m, metrics)
            self._check_autoscaling(collector, component, m)
            self._check_retries(collector, topology, component, m, previous)
            self._check_consistency(collector, topology, component, m, metrics)

        self._check_topology(collector, topology, metrics, targets, monthly_cost)
        circuit_opened = self._propagate_cascades(collector, topology, metrics, traffic)

        events = list(collector.events.values())
        if events:
            self.logger.debug(f"tick {tick}: {len(events)} active condition(s)")
        return DetectionResult(events=events, circuit_opened=circuit_opened)

    # =========================================================================
    # Per-component checks
    # =========================================================================

    def _check_availability(self, out: _Collector, component: Component, m: ComponentMetrics) -> None:
        s = self.settings
        cid = component.id
        if m.is_partitioned:
            out.emit(cid, FailureKind.NETWORK_PARTITION,
                     f"{component.name} is unreachable: network partition",
                     "Deploy across regions or availability zones with failover",
                     0.9, fix=FixType.ENABLE_REPLICATION if profile_for(component.type).persistent
                     and not component.config.replication else None)
        if component.type == ComponentType.DNS and (m.is_crashed or m.is_partitioned):
            out.emit(cid, FailureKind.DNS_FAILURE,
                     f"{component.name} cannot resolve names; all downstream traffic is lost",
                     "Use a redundant DNS provider and longer record TTLs",
                     1.0, fix=FixType.INCREASE_REPLICAS)
        if m.is_crashed:
            out.emit(cid, FailureKind.COMPONENT_CRASH,
                     f"{component.name} crashed",
                     "Run more instances so a single crash does not take the component down",
                     1.0, recovery=m.crash_ticks_remaining * s.tick_interval_s,
                     fix=_capacity_fix(component))

    def _check_capacity(self, out: _Collector, component: Component, m: ComponentMetrics,
                        targets: ConstraintTargets) -> None:
        s = self.settings
        cid = component.id
        if profile_for(component.type).is_origin:
            return
        if m.utilization > s.overload_threshold:
            recovery = None
            if component.config.auto_scale:
                recovery = (s.scale_up_delay_ticks + s.cold_start_ticks) * s.tick_interval_s
            out.emit(cid, FailureKind.OVERLOAD,
                     f"{component.name} is overloaded ({m.utilization * 100:.0f}% of capacity, "
                     f"{m.cpu_usage * 100:.0f}% CPU)",
                     "Add more instances or enable autoscaling",
                     0.5 + (m.utilization - 1.0) / 2, recovery=recovery,
                     fix=_capacity_fix(component))
        if m.offered_rps > 0 and m.dropped_rps / m.offered_rps > s.traffic_overflow_ratio:
            ratio = m.dropped_rps / m.offered_rps
            out.emit(cid, FailureKind.TRAFFIC_OVERFLOW,
                     f"{component.name} is dropping {ratio * 100:.0f}% of incoming requests",
                     "Rate-limit at the edge so excess traffic is rejected early",
                     0.4 + ratio / 2,
                     fix=None if component.config.rate_limiting else FixType.ENABLE_RATE_LIMITING)
        sla = targets.latency_sla_ms_p95
        if sla > 0 and m.accepted_rps > 0 and m.p95_latency_ms > sla:
            ratio = m.p95_latency_ms / sla
            out.emit(cid, FailureKind.LATENCY_BREACH,
                     f"P95 latency {m.p95_latency_ms:.0f}ms exceeds SLA ({sla:.0f}ms)",
                     "Optimize performance or add capacity",
                     0.4 + 0.2 * (ratio - 1.0), fix=_capacity_fix(component))

    def _check_queue(self, out: _Collector, component: Component, m: ComponentMetrics) -> None:
        s = self.settings
        if not profile_for(component.type).buffered:
            return
        cid = component.id
        if m.queue_depth > s.queue_overflow_depth:
            out.emit(cid, FailureKind.QUEUE_OVERFLOW,
                     f"Queue depth at {m.queue_depth:.0f} - backpressure building",
                     "Add more consumers or a dead-letter queue for messages that cannot be processed",
                     m.queue_depth / s.max_queue_depth if s.max_queue_depth else 1.0,
                     fix=FixType.INCREASE_REPLICAS if component.config.dlq else FixType.ADD_DLQ)
        if m.queue_growth_ticks >= s.consumer_lag_ticks:
            out.emit(cid, FailureKind.CONSUMER_LAG,
                     f"Consumers of {component.name} are falling behind "
                     f"(backlog growing for {m.queue_growth_ticks} ticks)",
                     "Scale out consumers or increase their processing capacity",
                     0.3 + 0.02 * m.queue_growth_ticks, fix=FixType.INCREASE_REPLICAS)

    def _check_connections(self, out: _Collector, component: Component, m: ComponentMetrics) -> None:
        s = self.settings
        profile = profile_for(component.type)
        if not profile.uses_connection_pool or m.max_connections <= 0:
            return
        cid = component.id
        if m.connection_pool_utilization > s.connection_exhaustion_threshold:
            out.emit(cid, FailureKind.CONNECTION_EXHAUSTION,
                     f"Connection pool {min(m.connection_pool_utilization, 1.0) * 100:.0f}% full "
                     f"({m.active_connections}/{m.max_connections})",
                     "Increase connection pool size or add more instances",
                     m.connection_pool_utilization / 2, fix=FixType.INCREASE_CONNECTION_POOL)
        if profile.is_compute and m.connection_pool_utilization >= 1.0:
            out.emit(cid, FailureKind.THREAD_STARVATION,
                     f"{component.name} has more requests in flight than worker threads",
                     "Add instances or move slow calls off the request path",
                     0.5 + (m.connection_pool_utilization - 1.0) / 4, fix=FixType.INCREASE_REPLICAS)

    def _check_degradation(self, out: _Collector, topology: Topology, component: Component,
                           m: ComponentMetrics, metrics: Mapping[str, ComponentMetrics]) -> None:
        s = self.settings
        cid = component.id
        profile = profile_for(component.type)

        if m.is_slow:
            out.emit(cid, FailureKind.SLOW_NODE,
                     f"{component.name} responding {m.slowness_factor:.1f}x slower than normal",
                     "Investigate node health, restart or replace slow instance",
                     m.slowness_factor / 10.0, recovery=SLOW_NODE_RECOVERY_S)

        if profile.caching and m.accepted_rps > 0:
            if m.cache_hit_rate < s.cache_stampede_hit_rate and m.accepted_rps > s.cache_stampede_min_rps:
                out.emit(cid, FailureKind.CACHE_STAMPEDE,
                         f"Cache hit rate {m.cache_hit_rate * 100:.0f}% - misses stampede the backend",
                         "Use cache warming or probabilistic early expiration",
                         0.7, affected=(cid, *(c.target_id for c in topology.outbound(cid))))
            elif m.eviction_rate > s.eviction_alert_rate:
                out.emit(cid, FailureKind.CACHE_STAMPEDE,
                         f"High eviction rate ({m.eviction_rate:.0f}/sec) - cache is thrashing",
                         "Increase cache memory or optimize TTL strategy",
                         0.6, fix=FixType.INCREASE_REPLICAS)

        if profile.is_storage and m.accepted_rps > 0:
            capacity = component.config.capacity * max(1, m.ready_instances)
            busy = m.accepted_rps / capacity if capacity > 0 else 1.0
            if busy > s.disk_io_threshold:
                out.emit(cid, FailureKind.DISK_IO_SATURATION,
                         f"{component.name} disk I/O at {min(busy, 1.0) * 100:.0f}%",
                         "Add read replicas or shard the data set",
                         busy - 0.2, fix=FixType.INCREASE_REPLICAS)

        worst: Optional[Tuple[float, str]] = None
        for conn in topology.outbound(cid):
            callee = metrics.get(conn.target_id)
            if callee and callee.latency_ms > s.upstream_timeout_ms:
                if worst is None or callee.latency_ms > worst[0]:
                    worst = (callee.latency_ms, conn.target_id)
        if worst:
            latency, callee_id = worst
            out.emit(cid, FailureKind.UPSTREAM_TIMEOUT,
                     f"Calls from {component.name} to {callee_id} time out ({latency:.0f}ms)",
                     "Add a circuit breaker and timeouts around the slow dependency",
                     latency / (4 * s.upstream_timeout_ms), affected=(cid, callee_id),
                     fix=None if component.config.circuit_breaker else FixType.ADD_CIRCUIT_BREAKER)

        if m.recovered_this_tick and m.utilization > s.overload_threshold:
            out.emit(cid, FailureKind.THUNDERING_HERD,
                     f"{component.name} recovered into a flood of queued and retried requests",
                     "Rate-limit and use jittered backoff so clients return gradually",
                     0.7, fix=None if component.config.rate_limiting else FixType.ENABLE_RATE_LIMITING)

    def _check_autoscaling(self, out: _Collector, component: Component, m: ComponentMetrics) -> None:
        s = self.settings
        cid = component.id
        if m.autoscale_state == AutoscaleState.SCALING_UP:
            out.emit(cid, FailureKind.SCALE_UP_DELAY,
                     f"Scaling up: {m.target_instances - m.ready_instances} instance(s) provisioning",
                     "Already autoscaling - new capacity arrives after provisioning and warm-up",
                     0.4, recovery=(m.scale_ticks_remaining + s.cold_start_ticks) * s.tick_interval_s,
                     user_visible=False)
        elif m.autoscale_state == AutoscaleState.COLD_STARTING:
            out.emit(cid, FailureKind.COLD_START,
                     f"Cold start: {m.cold_starting_instances} instance(s) still warming up",
                     "Keep the minimum instance count higher to avoid cold starts",
                     0.3, recovery=m.scale_ticks_remaining * s.tick_interval_s, user_visible=False)

        config = component.config
        sharded = config.sharding or component.type in (ComponentType.SHARD_NODE,
                                                         ComponentType.PARTITION_NODE)
        if m.instances_changed and sharded:
            out.emit(cid, FailureKind.REBALANCING,
                     f"{component.name} is rebalancing data after an instance change",
                     "Use consistent hashing so only a fraction of keys move",
                     0.2 if config.consistent_hashing else 0.5, user_visible=False)

    def _check_retries(self, out: _Collector, topology: Topology, component: Component,
                       m: ComponentMetrics, previous: Mapping[str, ComponentMetrics]) -> None:
        if not component.config.retries or m.is_circuit_open:
            return
        amplification = max(
            (retry_amplification(previous.get(c.target_id, ComponentMetrics()).error_rate,
                                 self.settings.retry_attempts)
             for c in topology.outbound(component.id)),
            default=1.0,
        )
        if amplification > self.settings.retry_storm_amplification:
            out.emit(component.id, FailureKind.RETRY_STORM,
                     f"{component.name} retry storm: {amplification:.2f}x traffic amplification",
                     "Add circuit breaker to prevent retry storms, or use exponential backoff",
                     min(0.9, max(0.5, (amplification - 1.0) / 2)),
                     fix=FixType.ADD_CIRCUIT_BREAKER)

    def _check_consistency(self, out: _Collector, topology: Topology, component: Component,
                           m: ComponentMetrics, metrics: Mapping[str, ComponentMetrics]) -> None:
        s = self.settings
        cid = component.id
        config = component.config
        profile = profile_for(component.type)

        if profile.persistent and config.replication and config.replication_factor > 1:
            factor = config.replication_factor
            lag = BASE_REPLICATION_LAG_MS + m.cpu_usage * REPLICATION_LAG_PER_CPU_MS
            if lag > s.replication_lag_threshold_ms:
                out.emit(cid, FailureKind.REPLICATION_LAG,
                         f"Replication lag {lag:.0f}ms - users may see stale data",
                         "Use read-your-writes consistency or strong reads",
                         min(0.7, max(0.3, lag / 2000.0)), user_visible=False)
                quorum_read = config.quorum_read or 1
                quorum_write = config.quorum_write or 1
                if quorum_read + quorum_write <= factor:
                    out.emit(cid, FailureKind.READ_AFTER_WRITE_FAILURE,
                             f"Reads from {component.name} may miss the caller's own writes",
                             "Choose read and write quorums that overlap (R + W > N)",
                             0.5)
            if lag > s.stale_read_threshold_ms:
                out.emit(cid, FailureKind.STALE_READ,
                         f"Replicas of {component.name} serve data {lag:.0f}ms old",
                         "Route consistency-sensitive reads to the leader",
                         0.5)
            multi_writer = config.replication_strategy in (ReplicationStrategy.MULTI_LEADER.value,
                                                           ReplicationStrategy.LEADERLESS.value)
            has_write_quorum = config.quorum_write is not None and config.quorum_write > factor / 2
            if multi_writer and m.accepted_rps > LOST_UPDATE_MIN_RPS and not has_write_quorum:
                out.emit(cid, FailureKind.LOST_UPDATE,
                         "Concurrent write conflict detected",
                         "Use optimistic locking or quorum writes",
                         0.6)

        if profile.is_messaging:
            consumers = [c.target_id for c in topology.outbound(cid)]
            failing = [t for t in consumers
                       if metrics.get(t, ComponentMetrics()).error_rate > s.duplicate_delivery_error_rate]
            if failing:
                out.emit(cid, FailureKind.DUPLICATE_DELIVERY,
                         f"Messages from {component.name} are redelivered to failing consumers",
                         "Make consumers idempotent and route poison messages to a dead-letter queue",
                         0.4, affected=(cid, *failing),
                         fix=None if config.dlq else FixType.ADD_DLQ)

    # =========================================================================
    # Topology checks
    # =========================================================================

    def _check_topology(self, out: _Collector, topology: Topology,
                        metrics: Mapping[str, ComponentMetrics], targets: ConstraintTargets,
                        monthly_cost: float) -> None:
        for cid in self.single_points_of_failure(topology, metrics):
            component = topology.get(cid)
            out.emit(cid, FailureKind.SPOF,
                     f"{component.name} is a single point of failure",
                     "Increase instance count or enable autoscaling",
                     0.8, user_visible=False, fix=_capacity_fix(component))

        for cid in topology.active_ids():
            component = topology.get(cid)
            if profile_for(component.type).persistent and not component.config.replication:
                out.emit(cid, FailureKind.DATA_LOSS_RISK,
                         f"{component.name} has no replication - risk of data loss",
                         "Enable replication with factor >= 2",
                         0.7, user_visible=False, fix=FixType.ENABLE_REPLICATION)

        for group in self.drifting_siblings(topology):
            first = topology.get(group[0])
            out.emit(first.id, FailureKind.CONFIG_DRIFT,
                     f"{len(group)} {first.type.value} instances behind the same parent "
                     f"have different capacity or instance counts",
                     "Keep sibling replicas on identical configuration",
                     0.3, affected=tuple(group), user_visible=False)

        budget = targets.budget_per_month
        if budget > 0 and monthly_cost > budget:
            out.emit(SYSTEM_COMPONENT_ID, FailureKind.COST_OVERRUN,
                     f"Projected cost ${monthly_cost:,.0f}/month exceeds budget ${budget:,.0f}",
                     "Right-size instances or remove redundant components",
                     monthly_cost / budget - 1.0, user_visible=False)

    def single_points_of_failure(self, topology: Topology,
                                 metrics: Mapping[str, ComponentMetrics]) -> List[str]:
        """Non-redundant critical components whose loss cuts a sink off from traffic."""
        reachable = topology.reachable_from_sources()
        sinks = [s for s in topology.sinks() if s in reachable]
        spofs = []
        for cid in topology.active_ids():
            component = topology.get(cid)
            if not profile_for(component.type).critical_path or cid not in reachable:
                continue
            m = metrics.get(cid, ComponentMetrics())
            redundant = component.config.auto_scale or max(m.ready_instances, component.config.instances) > 1
            if redundant:
                continue
            remaining = topology.reachable_from_sources(excluded=cid)
            if any(sink not in remaining for sink in sinks):
                spofs.append(cid)
        return spofs

    @staticmethod
    def drifting_siblings(topology: Topology) -> List[List[str]]:
        """Groups of same-type siblings behind one parent with differing sizing."""
        groups: List[List[str]] = []
        seen: Set[FrozenSet[str]] = set()
        for parent in topology.active_ids():
            by_type: Dict[ComponentType, List[str]] = defaultdict(list)
            for conn in topology.outbound(parent):
                by_type[topology.get(conn.target_id).type].append(conn.target_id)
            for siblings in by_type.values():
                siblings = list(dict.fromkeys(siblings))
                if len(siblings) < 2:
                    continue
                sizing = {(topology.get(s).config.capacity, topology.get(s).config.instances)
                          for s in siblings}
                key = frozenset(siblings)
                if len(sizing) > 1 and key not in seen:
                    seen.add(key)
                    groups.append(siblings)
        return groups

    # =========================================================================
    # Cascades
    # =========================================================================

    def _propagate_cascades(self, out: _Collector, topology: Topology,
                            metrics: Mapping[str, ComponentMetrics], traffic: TrafficResult) -> Set[str]:
        s = self.settings
        circuit_opened: Set[str] = set()
        roots = [e for e in out.events.values()
                 if e.kind in CASCADE_ROOT_KINDS and e.severity >= s.cascade_min_severity
                 and e.component_id in topology]

        for root in roots:
            visited = {root.component_id}
            frontier = deque([(root.component_id, 0)])
            while frontier:
                current, depth = frontier.popleft()
                if depth >= s.max_cascade_depth:
                    continue
                for conn in topology.outbound(current):
                    dependent = conn.target_id
                    if dependent in visited:
                        continue
                    visited.add(dependent)
                    if self._share(topology, traffic, current, dependent) < s.cascade_share_threshold:
                        continue
                    component = topology.get(dependent)
                    m = metrics.get(dependent, ComponentMetrics())
                    if m.utilization < s.cascade_utilization_threshold:
                        # Dependent is coping; neither a cascade nor a tripped breaker
                        continue
                    if component.config.circuit_breaker:
                        out.emit(dependent, FailureKind.CIRCUIT_BREAKER_OPEN,
                                 f"{component.name} circuit breaker opened",
                                 "Circuit breaker protecting from cascade - good!",
                                 0.3, affected=(root.component_id,), user_visible=False)
                        circuit_opened.add(dependent)
                        continue
                    out.emit(dependent, FailureKind.CASCADING_FAILURE,
                             f"{component.name} affected by upstream failure in {root.component_id}",
                             "Add circuit breaker or fallback logic",
                             root.severity * s.cascade_decay,
                             affected=(root.component_id, dependent),
                             fix=FixType.ADD_CIRCUIT_BREAKER)
                    frontier.append((dependent, depth + 1))
        return circuit_opened

    @staticmethod
    def _share(topology: Topology, traffic: TrafficResult, source_id: str, target_id: str) -> float:
        """Inbound share of the dependent; structural when the source carries no flow."""
        if traffic.load(source_id).forwarded > 0:
            return traffic.inbound_share(source_id, target_id)
        inbound = topology.inbound(target_id)
        if not inbound:
            return 0.0
        return sum(1 for c in inbound if c.source_id == source_id) / len(inbound)


def _capacity_fix(component: Component) -> FixType:
    """Autoscaling first; more replicas once it is already on."""
    if component.config.auto_scale:
        return FixType.INCREASE_REPLICAS
    return FixType.ENABLE_AUTOSCALING
