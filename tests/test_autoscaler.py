"""
Tests for the autoscaler state machine.

Covers:
    - Scale-up window, provisioning delay and cold start
    - Scale-down and the minimum instance floor
    - Fixed-size components
"""

import sys
import pytest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from archsim.core.models import Component, ComponentConfig, ComponentType
from archsim.domain.models.metrics import AutoscaleState, ComponentMetrics
from archsim.domain.services.autoscaler import Autoscaler, initial_instances


@pytest.fixture
def autoscaler(settings):
    return Autoscaler(settings)


@pytest.fixture
def scaled_app():
    return Component("app", ComponentType.APP_SERVER, ComponentConfig(
        capacity=1000, instances=2, auto_scale=True, min_instances=2, max_instances=10))


def run_ticks(autoscaler, component, utilization, ticks, prev=None):
    """Advance the state machine ``ticks`` times at constant utilization."""
    prev = prev or ComponentMetrics()
    history = []
    for _ in range(ticks):
        prev = autoscaler.advance(component, ComponentMetrics(utilization=utilization), prev)
        history.append(prev)
    return history


class TestInitialInstances:

    def test_autoscaled_clamped_to_bounds(self):
        assert initial_instances(ComponentConfig(instances=0, auto_scale=True, min_instances=2)) == 2
        assert initial_instances(ComponentConfig(instances=50, auto_scale=True, max_instances=10)) == 10

    def test_fixed_size_kept(self):
        assert initial_instances(ComponentConfig(instances=3)) == 3
        assert initial_instances(ComponentConfig(instances=0)) == 0


class TestScaleUp:

    def test_waits_for_sustained_high_load(self, autoscaler, scaled_app, settings):
        history = run_ticks(autoscaler, scaled_app, 0.9, settings.scale_up_window_ticks)
        assert history[-2].autoscale_state == AutoscaleState.STABLE
        assert history[-1].autoscale_state == AutoscaleState.SCALING_UP
        assert history[-1].target_instances == 3
        assert history[-1].cold_starting_instances == 1

    def test_full_scale_up_cycle(self, autoscaler, scaled_app, settings):
        window = settings.scale_up_window_ticks
        delay = settings.scale_up_delay_ticks
        cold = settings.cold_start_ticks
        history = run_ticks(autoscaler, scaled_app, 0.9, window + delay + cold)

        provisioning = history[window - 1: window + delay - 1]
        assert all(m.autoscale_state == AutoscaleState.SCALING_UP for m in provisioning)
        warming = history[window + delay - 1: window + delay + cold - 1]
        assert all(m.autoscale_state == AutoscaleState.COLD_STARTING for m in warming)
        assert all(m.ready_instances == 2 for m in provisioning + warming)

        done = history[-1]
        assert done.autoscale_state == AutoscaleState.STABLE
        assert done.ready_instances == 3
        assert done.instances_changed

    def test_never_exceeds_max_instances(self, autoscaler, settings):
        component = Component("app", ComponentType.APP_SERVER, ComponentConfig(
            instances=2, auto_scale=True, min_instances=2, max_instances=3))
        history = run_ticks(autoscaler, component, 2.0, 200)
        assert max(m.target_instances for m in history) == 3
        assert max(m.ready_instances for m in history) == 3

    def test_crash_resets_load_counters(self, autoscaler, scaled_app):
        prev = ComponentMetrics(ready_instances=2, target_instances=2, high_load_ticks=2)
        current = ComponentMetrics(utilization=0.9, is_crashed=True)
        metrics = autoscaler.advance(scaled_app, current, prev)
        assert metrics.high_load_ticks == 0
        assert metrics.autoscale_state == AutoscaleState.STABLE


class TestScaleDown:

    def test_removes_one_instance_after_window(self, autoscaler, settings):
        component = Component("app", ComponentType.APP_SERVER, ComponentConfig(
            instances=4, auto_scale=True, min_instances=2, max_instances=10))
        history = run_ticks(autoscaler, component, 0.1, settings.scale_down_window_ticks + 1)
        assert history[-2].autoscale_state == AutoscaleState.SCALING_DOWN
        assert history[-2].ready_instances == 3
        assert history[-1].autoscale_state == AutoscaleState.STABLE

    def test_respects_minimum(self, autoscaler, scaled_app):
        history = run_ticks(autoscaler, scaled_app, 0.0, 100)
        assert min(m.ready_instances for m in history) == 2


class TestFixedSize:

    def test_fixed_component_never_scales(self, autoscaler):
        component = Component("db", ComponentType.DATABASE, ComponentConfig(instances=1))
        history = run_ticks(autoscaler, component, 5.0, 30)
        assert all(m.autoscale_state == AutoscaleState.STABLE for m in history)
        assert all(m.ready_instances == 1 for m in history)

    def test_serving_instances_follow_ready(self, autoscaler, scaled_app):
        assert autoscaler.serving_instances(scaled_app, ComponentMetrics()) == 2
        assert autoscaler.serving_instances(scaled_app, ComponentMetrics(ready_instances=5)) == 5
