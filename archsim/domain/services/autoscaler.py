"""
Autoscaler State Machine

Drives the instance count of components with ``auto_scale`` enabled:

    STABLE --(sustained high load)--> SCALING_UP --(provisioning delay)-->
    COLD_STARTING --(warm-up)--> STABLE

    STABLE --(sustained low load)--> SCALING_DOWN --(next tick)--> STABLE

Instances requested by a scale-up count as cold-starting until warm-up
finishes; only ready instances contribute capacity. Scale-down removes
one instance immediately.
"""

from __future__ import annotations
import logging
import math
from typing import Optional

from archsim.config.settings import SimulationSettings
from archsim.core.models import Component, ComponentConfig
from archsim.domain.models.metrics import AutoscaleState, ComponentMetrics


def initial_instances(config: ComponentConfig) -> int:
    """Instance count a component starts (and resets) with."""
    if config.auto_scale:
        low = max(1, config.min_instances)
        return max(low, min(max(low, config.max_instances), config.instances))
    return max(0, config.instances)


class Autoscaler:
    """Per-component autoscaling transitions."""

    def __init__(self, settings: Optional[SimulationSettings] = None):
        self.settings = settings or SimulationSettings()
        self.logger = logging.getLogger(__name__)

    def serving_instances(self, component: Component, prev: ComponentMetrics) -> int:
        """Instances that contribute capacity this tick."""
        config = component.config
        if not config.auto_scale or prev.ready_instances <= 0:
            return initial_instances(config)
        return max(prev.ready_instances, config.min_instances)

    def advance(self, component: Component, current: ComponentMetrics, prev: ComponentMetrics) -> ComponentMetrics:
        """
        Advance the state machine one tick.

        Args:
            component: Component being scaled
            current: This tick's metrics from the behavior model
            prev: Previous tick's metrics (carries the state machine)

        Returns:
            ``current`` with autoscaling fields filled in
        """
        config = component.config
        if not config.auto_scale:
            fixed = initial_instances(config)
            return current.evolve(
                autoscale_state=AutoscaleState.STABLE,
                is_scaling=False,
                target_instances=fixed,
                ready_instances=fixed,
                cold_starting_instances=0,
                scale_ticks_remaining=0,
                high_load_ticks=0,
                low_load_ticks=0,
                instances_changed=False,
            )

        s = self.settings
        ready = self.serving_instances(component, prev)
        target = max(prev.target_instances, ready)
        state = prev.autoscale_state
        remaining = prev.scale_ticks_remaining
        utilization = current.utilization
        high = prev.high_load_ticks + 1 if utilization > s.scale_up_threshold else 0
        low = prev.low_load_ticks + 1 if utilization < s.scale_down_threshold else 0
        changed = False

        if current.is_crashed:
            # No scaling decisions while the component is down
            high = low = 0

        if state == AutoscaleState.SCALING_UP:
            remaining -= 1
            if remaining <= 0:
                state, remaining = AutoscaleState.COLD_STARTING, s.cold_start_ticks

        elif state == AutoscaleState.COLD_STARTING:
            remaining -= 1
            if remaining <= 0:
                self.logger.debug(f"{component.id}: {target - ready} instance(s) ready")
                ready, state, remaining, changed = target, AutoscaleState.STABLE, 0, True

        elif state == AutoscaleState.SCALING_DOWN:
            state = AutoscaleState.STABLE

        elif high >= s.scale_up_window_ticks and ready < config.max_instances:
            target = min(config.max_instances, max(ready + 1, math.ceil(ready * s.scale_up_factor)))
            state, remaining, high = AutoscaleState.SCALING_UP, s.scale_up_delay_ticks, 0
            self.logger.info(f"{component.id}: scaling up {ready} -> {target} instances")
            if remaining <= 0:
                state, remaining = AutoscaleState.COLD_STARTING, s.cold_start_ticks

        elif low >= s.scale_down_window_ticks and ready > max(1, config.min_instances):
            ready = target = ready - 1
            state, low, changed = AutoscaleState.SCALING_DOWN, 0, True
            self.logger.info(f"{component.id}: scaling down to {ready} instances")

        if state == AutoscaleState.STABLE:
            target = ready
        cold = max(0, target - ready) if state in (AutoscaleState.SCALING_UP,
                                                    AutoscaleState.COLD_STARTING) else 0
        return current.evolve(
            autoscale_state=state,
            is_scaling=state in (AutoscaleState.SCALING_UP, AutoscaleState.COLD_STARTING),
            target_instances=target,
            ready_instances=ready,
            cold_starting_instances=cold,
            scale_ticks_remaining=remaining,
            high_load_ticks=high,
            low_load_ticks=low,
            instances_changed=changed,
        )
