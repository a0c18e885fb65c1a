"""
Simulation Controller

Owns the clock of one simulation run and the current SimulationContext.
Each tick runs the passes in a fixed order:

    chaos multipliers -> admission -> traffic propagation -> behavior
    -> autoscaler -> failure detection -> global metrics -> publish

All new component metrics are computed from the previous context and the
result replaces it wholesale, so observers only ever see complete ticks.
The score is computed exactly once, when the run becomes terminal.

Run lifecycle:
    IDLE --start()--> RUNNING <--pause()/resume()--> PAUSED
    RUNNING/PAUSED --stop(), max_ticks or mass crash--> COMPLETED
    any --reset()--> IDLE
"""

from __future__ import annotations
import asyncio
import logging
import math
import random
from dataclasses import replace
from types import MappingProxyType
from typing import Callable, Dict, List, Optional, Set, Tuple, Union

from archsim.config.settings import SimulationSettings
from archsim.core.models import ComponentConfig
from archsim.core.topology import Topology
from archsim.domain.models.chaos import ChaosEvent
from archsim.domain.models.constraints import ConstraintTargets
from archsim.domain.models.context import SimulationContext, SimulationStatus
from archsim.domain.models.failures import FailureEvent, FailureKind, FixType
from archsim.domain.models.metrics import ComponentMetrics
from archsim.domain.models.score import Score
from archsim.domain.services.autoscaler import Autoscaler
from archsim.domain.services.behavior_model import Admission, BehaviorModel
from archsim.domain.services.chaos_injector import ChaosInjector
from archsim.domain.services.design_validator import DesignValidator, ValidationResult
from archsim.domain.services.failure_detector import FailureDetector
from archsim.domain.services.metrics_aggregator import MetricsAggregator
from archsim.domain.services.scorer import Scorer
from archsim.domain.services.traffic_engine import TrafficEngine

Observer = Callable[[SimulationContext], None]


def fixed_config(config: ComponentConfig, fix: FixType, settings: SimulationSettings) -> ComponentConfig:
    """Configuration after applying a one-click fix."""
    if fix == FixType.ENABLE_AUTOSCALING:
        return config.with_changes(
            auto_scale=True,
            min_instances=max(1, min(config.min_instances, config.instances)),
            max_instances=max(config.max_instances, config.instances),
        )
    if fix == FixType.ADD_CIRCUIT_BREAKER:
        return config.with_changes(circuit_breaker=True)
    if fix == FixType.INCREASE_REPLICAS:
        instances = config.instances + 1
        changes = {"instances": instances, "max_instances": max(config.max_instances, instances)}
        if config.auto_scale:
            changes["min_instances"] = min(config.min_instances + 1, changes["max_instances"])
        return config.with_changes(**changes)
    if fix == FixType.ENABLE_REPLICATION:
        return config.with_changes(replication=True,
                                   replication_factor=max(2, config.replication_factor))
    if fix == FixType.ENABLE_RATE_LIMITING:
        return config.with_changes(
            rate_limiting=True,
            rate_limit_rps=config.rate_limit_rps or config.capacity * max(1, config.instances),
        )
    if fix == FixType.INCREASE_CONNECTION_POOL:
        current = config.max_connections or max(1, config.instances) * settings.connections_per_instance
        return config.with_changes(max_connections=int(math.ceil(current * 1.5)))
    if fix == FixType.ADD_DLQ:
        return config.with_changes(dlq=True)
    raise ValueError(f"Unsupported fix '{fix}'")


class SimulationController:
    """
    Drives a simulation run over one topology.

    Example:
        >>> controller = SimulationController(topology, targets)
        >>> controller.start().is_valid
        True
        >>> controller.tick().global_metrics.total_rps
        2000.0
    """

    def __init__(
        self,
        topology: Topology,
        targets: Optional[ConstraintTargets] = None,
        settings: Optional[SimulationSettings] = None,
    ):
        self.topology = topology
        self.settings = settings or SimulationSettings()
        self.targets = targets or ConstraintTargets()
        self._base_rps_from_targets = targets is not None
        self.logger = logging.getLogger(__name__)

        self.chaos = ChaosInjector()
        self.validator = DesignValidator()
        self.behavior = BehaviorModel(self.settings)
        self.traffic = TrafficEngine(self.settings)
        self.autoscaler = Autoscaler(self.settings)
        self.detector = FailureDetector(self.settings)
        self.aggregator = MetricsAggregator(self.settings)
        self.scorer = Scorer(self.settings)

        self._context = SimulationContext()
        self._observers: List[Observer] = []
        self._active_keys: Set[Tuple[str, FailureKind]] = set()
        self._tripped: Set[str] = set()
        self.last_validation: Optional[ValidationResult] = None

    # =========================================================================
    # Observation
    # =========================================================================

    @property
    def snapshot(self) -> SimulationContext:
        return self._context

    @property
    def status(self) -> SimulationStatus:
        return self._context.status

    @property
    def time(self) -> float:
        return self._context.time

    def subscribe(self, callback: Observer) -> Callable[[], None]:
        """Register a callback for every published context; returns an unsubscribe function."""
        self._observers.append(callback)

        def unsubscribe() -> None:
            if callback in self._observers:
                self._observers.remove(callback)
        return unsubscribe

    def _publish(self, context: SimulationContext) -> SimulationContext:
        self._context = context
        for callback in list(self._observers):
            callback(context)
        return context

    # =========================================================================
    # Run control
    # =========================================================================

    def start(self) -> ValidationResult:
        """Validate the design and start the run if it passes the gate."""
        validation = self.validator.validate(self.topology, self.targets)
        self.last_validation = validation
        if not validation.is_valid:
            self.logger.warning(f"Simulation not started: {'; '.join(validation.reasons)}")
            return validation
        if self.status == SimulationStatus.RUNNING:
            return validation
        if self.status.is_terminal:
            self.reset()
        self.logger.info(f"Simulation started: {len(self.topology.active_ids())} components, "
                         f"{len(self.topology.connections)} connections")
        self._publish(replace(self._context, status=SimulationStatus.RUNNING))
        return validation

    def pause(self) -> None:
        if self.status == SimulationStatus.RUNNING:
            self._publish(replace(self._context, status=SimulationStatus.PAUSED))
            self.logger.info(f"Simulation paused at tick {self._context.tick}")

    def resume(self) -> None:
        if self.status == SimulationStatus.PAUSED:
            self._publish(replace(self._context, status=SimulationStatus.RUNNING))
            self.logger.info(f"Simulation resumed at tick {self._context.tick}")

    def stop(self) -> SimulationContext:
        """End the run early and score it."""
        if self.status in (SimulationStatus.RUNNING, SimulationStatus.PAUSED):
            self.logger.info(f"Simulation stopped at tick {self._context.tick}")
            self._publish(self._complete(self._context))
        return self._context

    def reset(self) -> SimulationContext:
        """Return to a fresh IDLE context; chaos events are cleared too."""
        self.chaos.clear()
        self._active_keys = set()
        self._tripped = set()
        self.logger.info("Simulation reset")
        return self._publish(SimulationContext(traffic_level=self._context.traffic_level))

    def set_traffic_level(self, level: float) -> None:
        level = float(level)
        if level < 0 or not math.isfinite(level):
            raise ValueError(f"Traffic level must be a non-negative number, got {level}")
        self._publish(replace(self._context, traffic_level=level))
        self.logger.info(f"Traffic level set to {level:.2f}x")

    def add_chaos_event(self, event: Union[ChaosEvent, dict]) -> ChaosEvent:
        """Register a chaos event; dict events without a start time begin now."""
        if isinstance(event, dict):
            event = ChaosEvent.from_dict(event, default_start=self.time)
        self.chaos.add_event(event)
        return event

    def remove_chaos_event(self, event_id: str) -> ChaosEvent:
        return self.chaos.remove_event(event_id)

    def apply_fix(self, fix_type: Union[FixType, str], component_id: str) -> ComponentConfig:
        """
        Apply a one-click configuration fix.

        Active failures of the component are cleared; the log is unchanged.

        Raises:
            KeyError: unknown component
            ValueError: unknown fix type
        """
        fix = FixType(fix_type)
        component = self.topology.get(component_id)
        config = fixed_config(component.config, fix, self.settings)
        self.topology.update_config(component_id, config)
        self._active_keys = {k for k in self._active_keys if k[0] != component_id}
        remaining = tuple(e for e in self._context.active_failures if e.component_id != component_id)
        self._publish(replace(self._context, active_failures=remaining))
        self.logger.info(f"Applied {fix.value} to {component_id}")
        return config

    # =========================================================================
    # Clock
    # =========================================================================

    async def run(self, realtime: bool = True) -> SimulationContext:
        """Tick every ``tick_interval_s`` until the run completes or is reset."""
        interval = self.settings.tick_interval_s if realtime else 0.0
        while self.status in (SimulationStatus.RUNNING, SimulationStatus.PAUSED):
            if self.status == SimulationStatus.RUNNING:
                self.tick()
            await asyncio.sleep(interval)
        return self._context

    def tick(self) -> SimulationContext:
        """Advance exactly one tick; a no-op unless the run is RUNNING."""
        if self.status != SimulationStatus.RUNNING:
            return self._context
        return self._publish(self._advance(self._context))

    def _advance(self, prev: SimulationContext) -> SimulationContext:
        """
        Compute the next context from ``prev``.

        Phases: chaos multipliers, admission, traffic propagation, behavior,
        autoscaler, aggregation, failure detection. Aggregation runs before
        detection because the cost-overrun check reads the projected monthly
        cost of this tick.
        """
        s = self.settings
        topology = self.topology
        tick = prev.tick + 1
        now = tick * s.tick_interval_s
        chaos = self.chaos.current_multipliers(now)
        previous = prev.node_metrics
        active = topology.active_ids()

        # Admission from the previous tick's state
        admissions: Dict[str, Admission] = {}
        ratios: Dict[str, float] = {}
        for cid in active:
            component = topology.get(cid)
            prev_m = self._carried(cid, previous)
            instances = self.autoscaler.serving_instances(component, prev_m)
            admissions[cid] = self.behavior.admission(component, prev_m, instances, chaos, tick)
            ratios[cid] = self.behavior.forward_ratio(component, chaos)

        base_rps = self._base_rps(tick, prev.traffic_level)
        traffic = self.traffic.propagate(topology, base_rps, chaos, admissions, ratios, previous)

        metrics: Dict[str, ComponentMetrics] = {}
        for cid in active:
            component = topology.get(cid)
            prev_m = self._carried(cid, previous)
            current = self.behavior.evaluate(topology, cid, admissions[cid], traffic.load(cid), prev_m, chaos)
            metrics[cid] = self.autoscaler.advance(component, current, prev_m)

        global_metrics = self.aggregator.aggregate(topology, metrics, traffic, prev.global_metrics,
                                                   self.targets)
        detection = self.detector.detect(topology, metrics, previous, traffic, self.targets, tick,
                                         monthly_cost=global_metrics.monthly_cost)
        self._tripped = detection.circuit_opened
        onset = self._onset(detection.events)

        context = SimulationContext(
            tick=tick,
            time=now,
            status=SimulationStatus.RUNNING,
            traffic_level=prev.traffic_level,
            node_metrics=MappingProxyType(metrics),
            edge_flows=MappingProxyType(dict(traffic.edges)),
            chaos=chaos,
            active_failures=tuple(detection.events),
            failure_log=prev.failure_log + onset,
            global_metrics=global_metrics,
        )
        self.logger.debug(f"tick {tick}: {global_metrics.total_rps:.0f} rps, "
                          f"error {global_metrics.error_rate:.3f}, "
                          f"{len(detection.events)} active failure(s)")

        crashed = sum(1 for m in metrics.values() if m.is_crashed)
        if s.halt_on_mass_crash and active and crashed / len(active) >= s.mass_crash_fraction:
            reason = f"{crashed} of {len(active)} components crashed"
            self.logger.warning(f"Simulation halted at tick {tick}: {reason}")
            return self._complete(context, halt_reason=reason)
        if tick >= s.max_ticks:
            self.logger.info(f"Simulation completed after {tick} ticks")
            return self._complete(context)
        return context

    # =========================================================================
    # Helpers
    # =========================================================================

    def _carried(self, component_id: str, previous) -> ComponentMetrics:
        """Previous metrics, with circuits tripped by last tick's cascades held open."""
        prev_m = previous.get(component_id, ComponentMetrics())
        if component_id in self._tripped and self.topology.get(component_id).config.circuit_breaker:
            prev_m = prev_m.evolve(is_circuit_open=True)
        return prev_m

    def _base_rps(self, tick: int, level: float) -> float:
        s = self.settings
        base = float(self.targets.effective_qps) if self._base_rps_from_targets else s.default_base_rps
        if s.traffic_pattern == "diurnal":
            phase = 2 * math.pi * tick / max(1, s.diurnal_period_ticks)
            rng = random.Random(f"{s.seed}:traffic:{tick}")
            noise = rng.uniform(-s.traffic_noise, s.traffic_noise)
            level *= (1.0 + s.diurnal_amplitude * math.sin(phase)) * (1.0 + noise)
        return max(0.0, base * level)

    def _onset(self, events: List[FailureEvent]) -> Tuple[FailureEvent, ...]:
        """Events whose condition was not active on the previous tick."""
        new = tuple(e for e in events if e.key not in self._active_keys)
        self._active_keys = {e.key for e in events}
        for event in new:
            if event.user_visible:
                self.logger.info(f"[{event.kind.value}] {event.component_id}: {event.message}")
        return new

    def _complete(self, context: SimulationContext, halt_reason: Optional[str] = None) -> SimulationContext:
        return replace(
            context,
            status=SimulationStatus.COMPLETED,
            score=self._score(context),
            halt_reason=halt_reason,
        )

    def _score(self, context: SimulationContext) -> Score:
        return self.scorer.score(
            context.global_metrics,
            context.failure_log,
            self.targets,
            component_count=len(self.topology.active_ids()),
            connection_count=len(self.topology.connections),
        )
