"""
Cost Model

Hourly running cost of a component, split into five parts:

    base           cost_per_hour x capacity factor x provisioned instances x regions
    storage        scenario data volume spread over the persistent stores
                   (per replica copy), or cache memory sized from capacity and TTL
    request        per-million request pricing of managed services, plus
                   invocation and GB-second pricing for serverless
    data_transfer  egress of response bodies served by CDNs and object stores
    network        cross-region replication of writes for stateful components

Globally distributed edge services (DNS, CDN) are billed once rather than
per region. Serverless is usage-only and has no base cost.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from archsim.core.models import Component, ComponentType
from archsim.core.component_types import default_config, profile_for
from archsim.core.topology import Topology
from archsim.domain.models.constraints import ConstraintTargets
from archsim.domain.models.metrics import ComponentMetrics

HOURS_PER_MONTH = 24 * 30

EGRESS_PER_GB = 0.085
CROSS_REGION_PER_GB = 0.02
SERVERLESS_REQUEST_PER_MILLION = 0.20
SERVERLESS_GB_SECOND = 0.0000167
SERVERLESS_MEMORY_GB = 0.5
CACHE_PER_GB_MONTH = 5.0
RESPONSE_KB = 256.0
REQUEST_KB = 8.0

_GLOBAL_EDGE_TYPES = frozenset({ComponentType.DNS, ComponentType.CDN})
_USAGE_ONLY_TYPES = frozenset({ComponentType.SERVERLESS})

#: Managed-service request pricing, $ per million requests.
REQUEST_PRICE_PER_MILLION: Dict[ComponentType, float] = {
    ComponentType.API_GATEWAY: 3.50,
    ComponentType.CDN: 0.75,
    ComponentType.QUEUE: 0.40,
    ComponentType.PUBSUB: 0.40,
    ComponentType.STREAM: 0.20,
}

#: Storage pricing, $ per GB-month; databases use the default.
STORAGE_PRICE_PER_GB_MONTH: Dict[ComponentType, float] = {
    ComponentType.OBJECT_STORE: 0.023,
}
DEFAULT_STORAGE_PRICE = 0.12


@dataclass(frozen=True)
class CostEstimate:
    """Hourly cost of one component, by part."""
    base: float = 0.0
    storage: float = 0.0
    request: float = 0.0
    data_transfer: float = 0.0
    network: float = 0.0

    @property
    def total(self) -> float:
        return self.base + self.storage + self.request + self.data_transfer + self.network

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base": round(self.base, 6),
            "storage": round(self.storage, 6),
            "request": round(self.request, 6),
            "data_transfer": round(self.data_transfer, 6),
            "network": round(self.network, 6),
            "total": round(self.total, 6),
        }


def is_database_like(component: Component) -> bool:
    return profile_for(component.type).persistent


def is_persistent_store(component: Component) -> bool:
    return is_database_like(component) or component.type == ComponentType.OBJECT_STORE


def provisioned_instances(component: Component, metrics: Optional[ComponentMetrics] = None) -> int:
    """Instances being paid for: at least the configured floor, ready plus cold-starting when running."""
    config = component.config
    floor = max(1, config.min_instances) if config.auto_scale else max(1, config.instances)
    effective = floor
    if metrics is not None:
        running = max(1, metrics.ready_instances) + metrics.cold_starting_instances
        effective = max(effective, running)
        if config.auto_scale:
            effective = max(effective, metrics.target_instances)
        else:
            effective = max(effective, config.instances)
    stateful = is_persistent_store(component) or component.type == ComponentType.CACHE
    if stateful and config.replication and config.replication_factor > effective:
        effective = config.replication_factor
    return effective


def capacity_factor(component: Component) -> float:
    """Configured capacity relative to the type default, within 0.5..4."""
    baseline = default_config(component.type).capacity
    if baseline <= 0:
        return 1.0
    return min(4.0, max(0.5, component.config.capacity / baseline))


def cache_memory_gb(component: Component) -> float:
    config = component.config
    ttl_factor = min(6.0, max(0.5, config.cache_ttl_seconds / 300.0))
    return min(128.0, max(1.0, config.capacity / 20000.0 * ttl_factor))


def estimate_component_cost(
    component: Component,
    metrics: Optional[ComponentMetrics] = None,
    targets: Optional[ConstraintTargets] = None,
    storage_count: int = 1,
    database_count: int = 1,
) -> CostEstimate:
    """
    Hourly cost estimate of one component.

    Args:
        component: Component to price
        metrics: Current metrics (instances and served load); None prices the idle design
        targets: Scenario targets (data volume, read/write ratio)
        storage_count: Persistent stores sharing the scenario data volume
        database_count: Database-like stores sharing the scenario data volume
    """
    if profile_for(component.type).inert:
        return CostEstimate()
    targets = targets or ConstraintTargets()
    config = component.config
    region_factor = 1 if component.type in _GLOBAL_EDGE_TYPES else max(1, len(config.regions))

    base = 0.0
    if component.type not in _USAGE_ONLY_TYPES:
        base = (max(0.0, config.cost_per_hour) * capacity_factor(component)
                * provisioned_instances(component, metrics) * region_factor)

    storage = 0.0
    if component.type == ComponentType.CACHE:
        storage = cache_memory_gb(component) * CACHE_PER_GB_MONTH / HOURS_PER_MONTH * region_factor
    elif is_persistent_store(component):
        sharing = database_count if is_database_like(component) else storage_count
        storage_gb = max(0.0, targets.data_storage_gb) / max(1, sharing)
        price = STORAGE_PRICE_PER_GB_MONTH.get(component.type, DEFAULT_STORAGE_PRICE)
        copies = max(1, config.replication_factor) if config.replication else 1
        storage = storage_gb * price / HOURS_PER_MONTH * copies * region_factor

    request = data_transfer = network = 0.0
    rps = metrics.accepted_rps if metrics is not None else 0.0
    if rps > 0:
        requests_per_hour = rps * 3600
        millions = requests_per_hour / 1_000_000
        request += millions * REQUEST_PRICE_PER_MILLION.get(component.type, 0.0)
        if component.type == ComponentType.SERVERLESS:
            request += millions * SERVERLESS_REQUEST_PER_MILLION
            duration_s = max(0.05, metrics.latency_ms / 1000.0)
            request += requests_per_hour * duration_s * SERVERLESS_MEMORY_GB * SERVERLESS_GB_SECOND

        if component.type in (ComponentType.CDN, ComponentType.OBJECT_STORE):
            data_transfer = requests_per_hour * RESPONSE_KB / (1024 * 1024) * EGRESS_PER_GB

        stateful = is_persistent_store(component) or component.type == ComponentType.CACHE
        if stateful and region_factor > 1:
            write_rps = rps / (max(0.0, targets.read_write_ratio) + 1.0)
            write_gb = write_rps * REQUEST_KB * 3600 / (1024 * 1024)
            network = write_gb * (region_factor - 1) * CROSS_REGION_PER_GB

    return CostEstimate(base=base, storage=storage, request=request,
                        data_transfer=data_transfer, network=network)


def component_hourly_cost(component: Component, metrics: Optional[ComponentMetrics] = None,
                          targets: Optional[ConstraintTargets] = None) -> float:
    return estimate_component_cost(component, metrics, targets).total


def total_hourly_cost(topology: Topology, metrics: Mapping[str, ComponentMetrics],
                      targets: Optional[ConstraintTargets] = None) -> float:
    """Sum of component hourly costs across the topology."""
    components = list(topology)
    storage_count = sum(1 for c in components if is_persistent_store(c))
    database_count = sum(1 for c in components if is_database_like(c))
    return sum(
        estimate_component_cost(c, metrics.get(c.id), targets, storage_count, database_count).total
        for c in components
    )
