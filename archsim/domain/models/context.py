"""
Simulation Context

Immutable state of a run after one tick. The controller owns the current
context and replaces it wholesale at the end of every tick; observers only
ever receive complete contexts.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from .chaos import NO_CHAOS, ChaosMultipliers
from .failures import FailureEvent
from .metrics import ComponentMetrics, GlobalMetrics
from .score import Score


class SimulationStatus(Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"

    @property
    def is_terminal(self) -> bool:
        return self == SimulationStatus.COMPLETED


@dataclass(frozen=True)
class EdgeFlow:
    """Load carried by one connection during a tick."""
    connection_id: str
    source_id: str
    target_id: str
    offered_rps: float = 0.0
    accepted_rps: float = 0.0
    traffic_flow: float = 0.0   # share of the source's forwarded load, 0..1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "connection_id": self.connection_id,
            "source_id": self.source_id,
            "target_id": self.target_id,
            "offered_rps": round(self.offered_rps, 3),
            "accepted_rps": round(self.accepted_rps, 3),
            "traffic_flow": round(self.traffic_flow, 4),
        }


def _frozen(mapping: Optional[Mapping] = None) -> Mapping:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class SimulationContext:
    """Published state of a run at a tick boundary."""
    tick: int = 0
    time: float = 0.0
    status: SimulationStatus = SimulationStatus.IDLE
    traffic_level: float = 1.0
    node_metrics: Mapping[str, ComponentMetrics] = field(default_factory=_frozen)
    edge_flows: Mapping[str, EdgeFlow] = field(default_factory=_frozen)
    chaos: ChaosMultipliers = NO_CHAOS
    active_failures: Tuple[FailureEvent, ...] = ()
    failure_log: Tuple[FailureEvent, ...] = ()
    global_metrics: GlobalMetrics = field(default_factory=GlobalMetrics)
    score: Optional[Score] = None
    halt_reason: Optional[str] = None

    def metrics_for(self, component_id: str) -> ComponentMetrics:
        return self.node_metrics.get(component_id, ComponentMetrics())

    def failures_of(self, component_id: str) -> Tuple[FailureEvent, ...]:
        return tuple(e for e in self.failure_log if e.component_id == component_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tick": self.tick,
            "time": round(self.time, 3),
            "status": self.status.value,
            "traffic_level": self.traffic_level,
            "node_metrics": {cid: m.to_dict() for cid, m in self.node_metrics.items()},
            "edge_flows": {cid: f.to_dict() for cid, f in self.edge_flows.items()},
            "chaos": self.chaos.to_dict(),
            "active_failures": [e.to_dict() for e in self.active_failures],
            "failure_log": [e.to_dict() for e in self.failure_log],
            "global_metrics": self.global_metrics.to_dict(),
            "score": self.score.to_dict() if self.score else None,
            "halt_reason": self.halt_reason,
        }


#: Name under which observers receive published contexts.
SimulationSnapshot = SimulationContext
