"""
Failure Models

Closed failure taxonomy, one-click fix kinds and the immutable failure
event appended to a run's log.
"""
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

#: Component id used for system-wide conditions such as cost overrun.
SYSTEM_COMPONENT_ID = "system"


class FailureCategory(Enum):
    CAPACITY = "capacity"
    NETWORK = "network"
    CASCADING = "cascading"
    AUTOSCALING = "autoscaling"
    CONSISTENCY = "consistency"
    OPERATIONAL = "operational"
    DIFFERENTIATED = "differentiated"


class FailureKind(Enum):
    """Every condition the detector can report."""
    # Capacity
    OVERLOAD = "overload"
    TRAFFIC_OVERFLOW = "traffic_overflow"
    SPOF = "spof"
    LATENCY_BREACH = "latency_breach"
    DATA_LOSS_RISK = "data_loss_risk"
    COST_OVERRUN = "cost_overrun"
    QUEUE_OVERFLOW = "queue_overflow"
    # Network
    NETWORK_PARTITION = "network_partition"
    SLOW_NODE = "slow_node"
    CONNECTION_EXHAUSTION = "connection_exhaustion"
    DNS_FAILURE = "dns_failure"
    # Cascading
    CASCADING_FAILURE = "cascading_failure"
    CIRCUIT_BREAKER_OPEN = "circuit_breaker_open"
    RETRY_STORM = "retry_storm"
    THUNDERING_HERD = "thundering_herd"
    # Autoscaling
    SCALE_UP_DELAY = "scale_up_delay"
    COLD_START = "cold_start"
    REBALANCING = "rebalancing"
    # Consistency
    STALE_READ = "stale_read"
    LOST_UPDATE = "lost_update"
    READ_AFTER_WRITE_FAILURE = "read_after_write_failure"
    DUPLICATE_DELIVERY = "duplicate_delivery"
    REPLICATION_LAG = "replication_lag"
    # Operational
    BAD_DEPLOYMENT = "bad_deployment"
    SCHEMA_MIGRATION = "schema_migration"
    CONFIG_DRIFT = "config_drift"
    CACHE_STAMPEDE = "cache_stampede"
    COMPONENT_CRASH = "component_crash"
    # Differentiated
    DISK_IO_SATURATION = "disk_io_saturation"
    UPSTREAM_TIMEOUT = "upstream_timeout"
    CONSUMER_LAG = "consumer_lag"
    THREAD_STARVATION = "thread_starvation"

    @property
    def category(self) -> FailureCategory:
        return _CATEGORIES[self]


_CATEGORIES: Dict[FailureKind, FailureCategory] = {}
for _category, _kinds in {
    FailureCategory.CAPACITY: ("OVERLOAD", "TRAFFIC_OVERFLOW", "SPOF", "LATENCY_BREACH",
                               "DATA_LOSS_RISK", "COST_OVERRUN", "QUEUE_OVERFLOW"),
    FailureCategory.NETWORK: ("NETWORK_PARTITION", "SLOW_NODE", "CONNECTION_EXHAUSTION",
                              "DNS_FAILURE"),
    FailureCategory.CASCADING: ("CASCADING_FAILURE", "CIRCUIT_BREAKER_OPEN", "RETRY_STORM",
                                "THUNDERING_HERD"),
    FailureCategory.AUTOSCALING: ("SCALE_UP_DELAY", "COLD_START", "REBALANCING"),
    FailureCategory.CONSISTENCY: ("STALE_READ", "LOST_UPDATE", "READ_AFTER_WRITE_FAILURE",
                                  "DUPLICATE_DELIVERY", "REPLICATION_LAG"),
    FailureCategory.OPERATIONAL: ("BAD_DEPLOYMENT", "SCHEMA_MIGRATION", "CONFIG_DRIFT",
                                  "CACHE_STAMPEDE", "COMPONENT_CRASH"),
    FailureCategory.DIFFERENTIATED: ("DISK_IO_SATURATION", "UPSTREAM_TIMEOUT", "CONSUMER_LAG",
                                     "THREAD_STARVATION"),
}.items():
    for _name in _kinds:
        _CATEGORIES[FailureKind[_name]] = _category


class FixType(Enum):
    """Configuration toggles the controller can apply in one step."""
    ENABLE_AUTOSCALING = "enable_autoscaling"
    ADD_CIRCUIT_BREAKER = "add_circuit_breaker"
    INCREASE_REPLICAS = "increase_replicas"
    ENABLE_REPLICATION = "enable_replication"
    ENABLE_RATE_LIMITING = "enable_rate_limiting"
    INCREASE_CONNECTION_POOL = "increase_connection_pool"
    ADD_DLQ = "add_dlq"


@dataclass(frozen=True)
class FailureEvent:
    """A detected failure condition. Never mutated after creation."""
    timestamp: float
    tick: int
    component_id: str
    kind: FailureKind
    message: str
    recommendation: str
    severity: float
    affected_components: Tuple[str, ...] = ()
    expected_recovery_seconds: Optional[float] = None
    user_visible: bool = True
    fix_type: Optional[FixType] = None

    @property
    def category(self) -> FailureCategory:
        return self.kind.category

    @property
    def key(self) -> Tuple[str, FailureKind]:
        """Identity of the underlying condition across ticks."""
        return (self.component_id, self.kind)

    @property
    def root_component(self) -> Optional[str]:
        """Root named by a cascade-type event."""
        if self.kind in (FailureKind.CASCADING_FAILURE, FailureKind.CIRCUIT_BREAKER_OPEN) \
                and self.affected_components:
            return self.affected_components[0]
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": round(self.timestamp, 3),
            "tick": self.tick,
            "component_id": self.component_id,
            "kind": self.kind.value,
            "category": self.category.value,
            "message": self.message,
            "recommendation": self.recommendation,
            "severity": round(self.severity, 4),
            "affected_components": list(self.affected_components),
            "expected_recovery_seconds": self.expected_recovery_seconds,
            "user_visible": self.user_visible,
            "fix_type": self.fix_type.value if self.fix_type else None,
        }
