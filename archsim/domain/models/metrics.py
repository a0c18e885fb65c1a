"""
Metrics Models

Per-component metrics (rewritten every tick) and the global snapshot.
Both are frozen: a tick produces new values instead of patching old ones.
"""
from __future__ import annotations
from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Any, Dict


class AutoscaleState(Enum):
    """Autoscaler state of a component."""
    STABLE = "stable"
    SCALING_UP = "scaling_up"
    COLD_STARTING = "cold_starting"
    SCALING_DOWN = "scaling_down"


@dataclass(frozen=True)
class ComponentMetrics:
    """Derived state of one component for one tick."""
    # Load
    offered_rps: float = 0.0
    accepted_rps: float = 0.0
    dropped_rps: float = 0.0
    utilization: float = 0.0

    # Latency
    latency_ms: float = 0.0
    p95_latency_ms: float = 0.0
    p99_latency_ms: float = 0.0
    jitter_ms: float = 0.0

    # Resources
    cpu_usage: float = 0.0
    memory_usage: float = 0.0
    error_rate: float = 0.0

    # Cache
    cache_hit_rate: float = 0.0
    eviction_rate: float = 0.0

    # Queue
    queue_depth: float = 0.0
    queue_growth_ticks: int = 0

    # Protection
    is_throttled: bool = False
    is_circuit_open: bool = False

    # Connection pool
    connection_pool_utilization: float = 0.0
    active_connections: int = 0
    max_connections: int = 0

    # Autoscaling
    autoscale_state: AutoscaleState = AutoscaleState.STABLE
    is_scaling: bool = False
    target_instances: int = 0
    ready_instances: int = 0
    cold_starting_instances: int = 0
    scale_ticks_remaining: int = 0
    high_load_ticks: int = 0
    low_load_ticks: int = 0
    instances_changed: bool = False

    # Degradation
    is_slow: bool = False
    slowness_factor: float = 1.0
    is_crashed: bool = False
    crash_ticks_remaining: int = 0
    recovered_this_tick: bool = False
    is_partitioned: bool = False

    # Counters
    consecutive_overload_ticks: int = 0
    high_load_seconds: float = 0.0

    @property
    def is_overloaded(self) -> bool:
        return self.utilization > 1.0

    def evolve(self, **changes: Any) -> "ComponentMetrics":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["autoscale_state"] = self.autoscale_state.value
        return {k: round(v, 4) if isinstance(v, float) else v for k, v in data.items()}


@dataclass(frozen=True)
class GlobalMetrics:
    """System-wide reduction of one tick's component metrics."""
    total_rps: float = 0.0
    avg_latency_ms: float = 0.0
    p50_latency_ms: float = 0.0
    p95_latency_ms: float = 0.0
    p99_latency_ms: float = 0.0
    eviction_rate: float = 0.0
    error_rate: float = 0.0
    availability: float = 1.0
    total_cost_per_hour: float = 0.0

    # Cumulative since run start
    total_requests: float = 0.0
    successful_requests: float = 0.0
    failed_requests: float = 0.0

    @property
    def monthly_cost(self) -> float:
        return self.total_cost_per_hour * 24 * 30

    def to_dict(self) -> Dict[str, Any]:
        data = {k: round(v, 4) for k, v in asdict(self).items()}
        data["monthly_cost"] = round(self.monthly_cost, 2)
        return data
