"""
Core Value Objects and Entities

Component, connection and configuration records of the design graph.
"""
from __future__ import annotations
import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Tuple


# =============================================================================
# Enums
# =============================================================================

class ComponentCategory(Enum):
    """Behavioral family of a component type."""
    EDGE = "edge"
    COMPUTE = "compute"
    CLIENT = "client"
    STORAGE = "storage"
    MESSAGING = "messaging"
    TECHNIQUE = "technique"
    ANNOTATION = "annotation"


class ComponentType(Enum):
    """Closed set of component types. Values match the blueprint format."""
    # Edge / traffic
    DNS = "dns"
    CDN = "cdn"
    LOAD_BALANCER = "loadBalancer"
    API_GATEWAY = "apiGateway"
    # Compute
    APP_SERVER = "appServer"
    WORKER = "worker"
    SERVERLESS = "serverless"
    CUSTOM_SERVICE = "customService"
    # Traffic origin
    CLIENT = "client"
    # Storage
    CACHE = "cache"
    DATABASE = "database"
    OBJECT_STORE = "objectStore"
    # Messaging
    QUEUE = "queue"
    PUBSUB = "pubsub"
    STREAM = "stream"
    # Techniques / infrastructure primitives
    SHARDING = "sharding"
    HASHING = "hashing"
    SHARD_NODE = "shardNode"
    PARTITION_NODE = "partitionNode"
    REPLICA_NODE = "replicaNode"
    INPUT_NODE = "inputNode"
    OUTPUT_NODE = "outputNode"
    # Hand-drawn variants
    SKETCHY_SERVICE = "sketchyService"
    SKETCHY_DATABASE = "sketchyDatabase"
    SKETCHY_LOGIC = "sketchyLogic"
    SKETCHY_QUEUE = "sketchyQueue"
    SKETCHY_CLIENT = "sketchyClient"
    # Geometric / annotation
    TEXT = "text"
    CIRCLE = "circle"
    RECTANGLE = "rectangle"
    DIAMOND = "diamond"
    ARROW = "arrow"
    LINE = "line"

    @classmethod
    def parse(cls, value: str) -> Optional["ComponentType"]:
        """Resolve a blueprint value or member name; None if unknown."""
        for member in cls:
            if value == member.value or value == member.name:
                return member
        return None


class ConnectionType(Enum):
    """Logical type of a connection."""
    REQUEST = "request"
    RESPONSE = "response"
    REPLICATION = "replication"
    ASYNC = "async"

    @property
    def carries_load(self) -> bool:
        """Whether forward propagation follows this edge."""
        return self in (ConnectionType.REQUEST, ConnectionType.ASYNC)


class ConnectionDirection(Enum):
    UNIDIRECTIONAL = "unidirectional"
    BIDIRECTIONAL = "bidirectional"


class Protocol(Enum):
    HTTP = "http"
    GRPC = "grpc"
    WEBSOCKET = "websocket"
    TCP = "tcp"
    UDP = "udp"
    CUSTOM = "custom"


class ReplicationStrategy(Enum):
    LEADER_FOLLOWER = "leader-follower"
    MULTI_LEADER = "multi-leader"
    LEADERLESS = "leaderless"


# =============================================================================
# Configuration
# =============================================================================

@dataclass(frozen=True)
class ComponentConfig:
    """Operator-controlled configuration of a component."""
    capacity: int = 10000
    instances: int = 1
    auto_scale: bool = False
    min_instances: int = 1
    max_instances: int = 10
    algorithm: Optional[str] = None
    cache_ttl_seconds: int = 300

    # Data distribution
    replication: bool = False
    replication_factor: int = 1
    replication_strategy: Optional[str] = None
    sharding: bool = False
    sharding_strategy: Optional[str] = None
    partition_count: int = 1
    consistent_hashing: bool = False

    regions: Tuple[str, ...] = ("us-east-1",)
    cost_per_hour: float = 0.10

    # Resilience
    rate_limiting: bool = False
    rate_limit_rps: Optional[int] = None
    circuit_breaker: bool = False
    retries: bool = False
    dlq: bool = False
    quorum_read: Optional[int] = None
    quorum_write: Optional[int] = None
    max_connections: Optional[int] = None

    traffic_origin: bool = False

    # camelCase blueprint key -> attribute name
    JSON_KEYS: ClassVar[Dict[str, str]] = {
        "capacity": "capacity",
        "instances": "instances",
        "autoScale": "auto_scale",
        "minInstances": "min_instances",
        "maxInstances": "max_instances",
        "algorithm": "algorithm",
        "cacheTtlSeconds": "cache_ttl_seconds",
        "replication": "replication",
        "replicationFactor": "replication_factor",
        "replicationStrategy": "replication_strategy",
        "sharding": "sharding",
        "shardingStrategy": "sharding_strategy",
        "partitionCount": "partition_count",
        "consistentHashing": "consistent_hashing",
        "regions": "regions",
        "costPerHour": "cost_per_hour",
        "rateLimiting": "rate_limiting",
        "rateLimitRps": "rate_limit_rps",
        "circuitBreaker": "circuit_breaker",
        "retries": "retries",
        "dlq": "dlq",
        "quorumRead": "quorum_read",
        "quorumWrite": "quorum_write",
        "maxConnections": "max_connections",
        "trafficOrigin": "traffic_origin",
    }

    @property
    def primary_region(self) -> str:
        return self.regions[0] if self.regions else "us-east-1"

    def with_changes(self, **changes: Any) -> "ComponentConfig":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        data = {}
        for key, attr in self.JSON_KEYS.items():
            value = getattr(self, attr)
            if value is None:
                continue
            data[key] = list(value) if isinstance(value, tuple) else value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base: Optional["ComponentConfig"] = None) -> "ComponentConfig":
        """Overlay blueprint config keys on ``base`` (or the plain defaults)."""
        changes: Dict[str, Any] = {}
        for key, value in data.items():
            attr = cls.JSON_KEYS.get(key, key if key in cls.__dataclass_fields__ else None)
            if attr is None:
                continue
            changes[attr] = _coerce_config_value(key, attr, value)
        return replace(base or cls(), **changes)


_INT_FIELDS = frozenset({
    "capacity", "instances", "min_instances", "max_instances", "cache_ttl_seconds",
    "replication_factor", "partition_count",
})
_OPTIONAL_INT_FIELDS = frozenset({"rate_limit_rps", "quorum_read", "quorum_write", "max_connections"})
_FLOAT_FIELDS = frozenset({"cost_per_hour"})
_OPTIONAL_STR_FIELDS = frozenset({"algorithm", "replication_strategy", "sharding_strategy"})


def _coerce_config_value(key: str, attr: str, value: Any) -> Any:
    """Type-check one blueprint config value; raises ValueError when malformed."""
    if attr == "regions":
        if value is None:
            return ()
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, (list, tuple)) or not all(isinstance(r, str) for r in value):
            raise ValueError(f"Config '{key}' must be a list of region names, got {value!r}")
        return tuple(value)
    if attr in _OPTIONAL_STR_FIELDS:
        if value is not None and not isinstance(value, str):
            raise ValueError(f"Config '{key}' must be a string, got {value!r}")
        return value
    if attr in _INT_FIELDS or attr in _OPTIONAL_INT_FIELDS:
        if value is None and attr in _OPTIONAL_INT_FIELDS:
            return None
        return int(_non_negative(key, value))
    if attr in _FLOAT_FIELDS:
        return _non_negative(key, value)
    # Remaining fields are flags
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise ValueError(f"Config '{key}' must be true or false, got {value!r}")


def _non_negative(key: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"Config '{key}' must be a number, got {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"Config '{key}' must be a number, got {value!r}") from None
    if not math.isfinite(number) or number < 0:
        raise ValueError(f"Config '{key}' must be a non-negative number, got {value!r}")
    return number


# =============================================================================
# Entities
# =============================================================================

@dataclass
class Component:
    """A node of the design graph."""
    id: str
    type: ComponentType
    config: ComponentConfig = field(default_factory=ComponentConfig)
    position: Tuple[float, float] = (0.0, 0.0)
    size: Tuple[float, float] = (80.0, 64.0)
    custom_name: Optional[str] = None
    # Unrecognized blueprint keys, kept for echo
    extra: Dict[str, Any] = field(default_factory=dict)
    config_extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.custom_name or self.id

    def to_dict(self) -> Dict[str, Any]:
        data = {
            **self.extra,
            "id": self.id,
            "type": self.type.value,
            "position": {"x": self.position[0], "y": self.position[1]},
            "size": {"w": self.size[0], "h": self.size[1]},
            "config": {**self.config_extra, **self.config.to_dict()},
        }
        if self.custom_name is not None:
            data["customName"] = self.custom_name
        return data


@dataclass
class Connection:
    """A directed (or two-way) edge between two components."""
    id: str
    source_id: str
    target_id: str
    type: ConnectionType = ConnectionType.REQUEST
    direction: ConnectionDirection = ConnectionDirection.UNIDIRECTIONAL
    protocol: Protocol = Protocol.HTTP
    label: Optional[str] = None
    # Optional relative weight among siblings of the same logical type
    split: Optional[float] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_bidirectional(self) -> bool:
        return self.direction == ConnectionDirection.BIDIRECTIONAL

    def to_dict(self) -> Dict[str, Any]:
        data = {
            **self.extra,
            "id": self.id,
            "sourceId": self.source_id,
            "targetId": self.target_id,
            "type": self.type.value,
            "direction": self.direction.value,
            "protocol": self.protocol.value,
        }
        if self.label is not None:
            data["label"] = self.label
        if self.split is not None:
            data["split"] = self.split
        return data
