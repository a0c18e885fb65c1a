"""
Chaos Models

Time-bounded perturbations injected by an operator and the multiplier set
they fold into.
"""
from __future__ import annotations
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional
from types import MappingProxyType


class ChaosType(Enum):
    """Types of injectable chaos events."""
    TRAFFIC_SPIKE = "traffic_spike"
    NETWORK_LATENCY = "network_latency"
    NETWORK_PARTITION = "network_partition"
    DATABASE_SLOWDOWN = "database_slowdown"
    CACHE_INVALIDATION_STORM = "cache_invalidation_storm"
    COMPONENT_CRASH = "component_crash"


#: Parameter defaults per chaos type.
DEFAULT_PARAMETERS: Dict[ChaosType, Dict[str, Any]] = {
    ChaosType.TRAFFIC_SPIKE: {"multiplier": 4.0},
    ChaosType.NETWORK_LATENCY: {"latencyMs": 300.0},
    ChaosType.NETWORK_PARTITION: {"componentIds": []},
    ChaosType.DATABASE_SLOWDOWN: {"multiplier": 8.0},
    ChaosType.CACHE_INVALIDATION_STORM: {"hitRateDrop": 0.9},
    ChaosType.COMPONENT_CRASH: {"componentIds": [], "failureRateMultiplier": 10.0},
}

#: Parameters that must be non-negative finite numbers.
NUMERIC_PARAMETERS = ("multiplier", "latencyMs", "hitRateDrop", "failureRateMultiplier")


def _number(name: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"Chaos parameter '{name}' must be a number, got {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"Chaos parameter '{name}' must be a number, got {value!r}") from None
    if not math.isfinite(number) or number < 0:
        raise ValueError(f"Chaos parameter '{name}' must be a non-negative number, got {value!r}")
    return number


def _seconds(name: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"Chaos event '{name}' must be a number of seconds, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"Chaos event '{name}' must be a number of seconds, got {value!r}") from None


def normalize_parameters(parameters: Mapping[str, Any]) -> Dict[str, Any]:
    """Coerce known chaos parameters, raising ValueError on malformed values."""
    normalized = dict(parameters)
    for name in NUMERIC_PARAMETERS:
        if name in normalized:
            normalized[name] = _number(name, normalized[name])
    if "hitRateDrop" in normalized and normalized["hitRateDrop"] > 1.0:
        raise ValueError(f"Chaos parameter 'hitRateDrop' must be within 0..1, got {normalized['hitRateDrop']}")
    if "componentIds" in normalized:
        ids = normalized["componentIds"]
        if ids is None:
            ids = []
        elif isinstance(ids, str):
            ids = [ids]
        elif not isinstance(ids, (list, tuple, set, frozenset)) or not all(isinstance(i, str) for i in ids):
            raise ValueError(f"Chaos parameter 'componentIds' must be a list of component ids, got {ids!r}")
        normalized["componentIds"] = list(ids)
    return normalized


@dataclass(frozen=True)
class ChaosEvent:
    """A perturbation active for ``duration`` simulated seconds from ``start_time``."""
    id: str
    type: ChaosType
    start_time: float
    duration: float
    parameters: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not math.isfinite(self.start_time):
            raise ValueError(f"Chaos event '{self.id}' needs a finite start time")
        if not self.duration > 0 or not math.isfinite(self.duration):
            raise ValueError(f"Chaos event '{self.id}' must have a positive duration")
        object.__setattr__(self, "parameters", normalize_parameters(self.parameters or {}))

    def is_active(self, now: float) -> bool:
        elapsed = now - self.start_time
        return 0.0 <= elapsed < self.duration

    def param(self, name: str) -> Any:
        if name in self.parameters:
            return self.parameters[name]
        return DEFAULT_PARAMETERS[self.type].get(name)

    @property
    def component_ids(self) -> List[str]:
        ids = self.param("componentIds") or []
        return [ids] if isinstance(ids, str) else list(ids)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "start_time": self.start_time,
            "duration": self.duration,
            "parameters": dict(self.parameters),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], default_start: float = 0.0) -> "ChaosEvent":
        if "id" not in data or "type" not in data or "duration" not in data:
            raise ValueError("Chaos event needs 'id', 'type' and 'duration'")
        parameters = data.get("parameters") or {}
        if not isinstance(parameters, Mapping):
            raise ValueError(f"Chaos event parameters must be an object, got {parameters!r}")
        start = data.get("start_time", data.get("startTime"))
        return cls(
            id=str(data["id"]),
            type=ChaosType(data["type"]),
            start_time=_seconds("start_time", default_start if start is None else start),
            duration=_seconds("duration", data["duration"]),
            parameters=dict(parameters),
        )


@dataclass(frozen=True)
class ChaosMultipliers:
    """Combined effect of all chaos events active at one instant."""
    traffic: float = 1.0
    latency: float = 1.0
    failure_rate: float = 1.0
    database_latency: float = 1.0
    cache_hit_rate: Optional[float] = None
    disconnected: FrozenSet[str] = frozenset()
    crashed: FrozenSet[str] = frozenset()
    slow: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def is_calm(self) -> bool:
        return self == NO_CHAOS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "traffic": round(self.traffic, 4),
            "latency": round(self.latency, 4),
            "failure_rate": round(self.failure_rate, 4),
            "database_latency": round(self.database_latency, 4),
            "cache_hit_rate": self.cache_hit_rate,
            "disconnected": sorted(self.disconnected),
            "crashed": sorted(self.crashed),
            "slow": dict(sorted(self.slow.items())),
        }


NO_CHAOS = ChaosMultipliers()
