"""
Simulation Service

Application service running a design through a complete simulation in one
call. Used by the CLI and the HTTP batch endpoint; interactive sessions
drive a SimulationController directly.

Architecture:
    CLI (bin/simulate_design.py) / API (/api/v1/simulation)
      └── SimulationService          <- this module
            ├── SimulationController (application service)
            ├── DesignValidator      (domain service)
            └── LocalFileStore       (outbound adapter, optional)
"""

from __future__ import annotations
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from archsim.application.ports import IBlueprintStore, ISimulationUseCase
from archsim.application.services.simulation_controller import SimulationController
from archsim.config.settings import SimulationSettings
from archsim.core.serialization import topology_from_dict
from archsim.core.topology import Topology
from archsim.domain.models.constraints import ConstraintTargets
from archsim.domain.models.context import SimulationContext
from archsim.domain.services.design_validator import DesignValidator, ValidationResult


@dataclass
class SimulationRunResult:
    """Outcome of a batch run."""
    validation: ValidationResult
    context: SimulationContext
    ticks_run: int = 0
    timeline: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def completed(self) -> bool:
        return self.context.status.is_terminal

    def to_dict(self, include_timeline: bool = True) -> Dict[str, Any]:
        context = self.context
        data = {
            "validation": self.validation.to_dict(),
            "completed": self.completed,
            "ticks_run": self.ticks_run,
            "time": round(context.time, 3),
            "halt_reason": context.halt_reason,
            "global_metrics": context.global_metrics.to_dict(),
            "score": context.score.to_dict() if context.score else None,
            "failure_log": [e.to_dict() for e in context.failure_log],
            "node_metrics": {cid: m.to_dict() for cid, m in context.node_metrics.items()},
        }
        if include_timeline:
            data["timeline"] = list(self.timeline)
        return data


class SimulationService(ISimulationUseCase):
    """
    Batch simulation runner.

    Example:
        >>> service = SimulationService()
        >>> result = service.run(topology, ConstraintTargets(qps=2500), ticks=100)
        >>> result.context.score.grade
        'B'
    """

    def __init__(self, settings: Optional[SimulationSettings] = None,
                 store: Optional[IBlueprintStore] = None):
        self.settings = settings or SimulationSettings()
        self.store = store
        self.validator = DesignValidator()
        self.logger = logging.getLogger(__name__)

    # =========================================================================
    # Loading
    # =========================================================================

    def load_topology(self, source: Any) -> Topology:
        """Build a topology from a blueprint dict or a path readable by the store."""
        if isinstance(source, Topology):
            return source
        if isinstance(source, str):
            if self.store is None:
                raise ValueError("No blueprint store configured for loading from a path")
            source = self.store.read_json(source)
        return topology_from_dict(source)

    # =========================================================================
    # Use cases
    # =========================================================================

    def validate(self, topology: Topology, targets: Optional[ConstraintTargets] = None) -> ValidationResult:
        return self.validator.validate(topology, targets)

    def run(
        self,
        topology: Topology,
        targets: Optional[ConstraintTargets] = None,
        ticks: Optional[int] = None,
        traffic_level: float = 1.0,
        chaos_events: Iterable[Dict[str, Any]] = (),
        fixes: Iterable[Dict[str, Any]] = (),
        sample_every: int = 10,
    ) -> SimulationRunResult:
        """
        Run a design until it completes or ``ticks`` ticks have passed.

        Args:
            topology: Design to simulate (copied; the caller's graph is not changed)
            targets: Scenario targets; without them the default base RPS is used
            ticks: Tick limit (defaults to ``max_ticks``)
            traffic_level: Traffic multiplier
            chaos_events: Chaos event dicts (``start_time`` defaults to 0)
            fixes: ``{"tick", "fix_type", "component_id"}`` dicts applied before that tick
            sample_every: Record global metrics into the timeline every N ticks
        """
        controller = SimulationController(topology.copy(), targets, self.settings)
        controller.set_traffic_level(traffic_level)
        for event in chaos_events:
            controller.add_chaos_event(event)

        validation = controller.start()
        if not validation.is_valid:
            return SimulationRunResult(validation=validation, context=controller.snapshot)

        scheduled: Dict[int, List[Dict[str, Any]]] = defaultdict(list)
        for fix in fixes:
            scheduled[int(fix.get("tick", 0))].append(fix)

        limit = ticks if ticks is not None else self.settings.max_ticks
        timeline: List[Dict[str, Any]] = []
        ticks_run = 0
        while ticks_run < limit and not controller.status.is_terminal:
            for fix in scheduled.pop(controller.snapshot.tick, ()):
                controller.apply_fix(fix["fix_type"], fix["component_id"])
            context = controller.tick()
            ticks_run += 1
            if sample_every and (context.tick % sample_every == 0 or context.status.is_terminal):
                timeline.append({"tick": context.tick, **context.global_metrics.to_dict()})

        if not controller.status.is_terminal:
            controller.stop()

        final = controller.snapshot
        if final.score:
            self.logger.info(f"Run finished after {ticks_run} ticks: "
                             f"score {final.score.overall:.1f} ({final.score.grade})")
        return SimulationRunResult(
            validation=validation,
            context=final,
            ticks_run=ticks_run,
            timeline=timeline,
        )

    def run_blueprint(self, blueprint: Any, targets: Optional[ConstraintTargets] = None,
                      **kwargs) -> SimulationRunResult:
        """Load a blueprint (dict or path) and run it."""
        return self.run(self.load_topology(blueprint), targets, **kwargs)
