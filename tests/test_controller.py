"""
Tests for the simulation controller.

Covers:
    - Run lifecycle (start, pause, resume, stop, reset, max ticks)
    - Tick semantics on small reference designs
    - Failure log onset and one-click fixes
    - Chaos injection, partitions and tripped circuits
    - Observers and the async clock
"""

import sys
import asyncio
import pytest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from archsim.application.services.simulation_controller import SimulationController, fixed_config
from archsim.config.settings import SimulationSettings
from archsim.core.models import ComponentConfig, ComponentType
from archsim.core.topology import Topology
from archsim.domain.models.chaos import ChaosEvent, ChaosType
from archsim.domain.models.constraints import ConstraintTargets
from archsim.domain.models.context import SimulationContext, SimulationStatus
from archsim.domain.models.failures import SYSTEM_COMPONENT_ID, FailureKind, FixType
from archsim.domain.models.metrics import AutoscaleState


# =============================================================================
# Helpers
# =============================================================================

def run_ticks(controller, ticks):
    for _ in range(ticks):
        controller.tick()
    return controller.snapshot


def started(topology, targets=None, settings=None):
    controller = SimulationController(topology, targets, settings)
    assert controller.start().is_valid
    return controller


def log_kinds(context, component_id):
    return [e.kind for e in context.failure_log if e.component_id == component_id]


# =============================================================================
# Lifecycle
# =============================================================================

class TestLifecycle:

    def test_tick_is_noop_while_idle(self, single_app):
        controller = SimulationController(single_app)
        assert controller.tick().tick == 0
        assert controller.status == SimulationStatus.IDLE

    def test_invalid_design_stays_idle(self):
        controller = SimulationController(Topology())
        validation = controller.start()
        assert not validation.is_valid
        assert controller.status == SimulationStatus.IDLE
        assert controller.last_validation is validation

    def test_pause_and_resume(self, single_app):
        controller = started(single_app)
        controller.tick()
        controller.pause()
        assert controller.status == SimulationStatus.PAUSED
        assert controller.tick().tick == 1
        controller.resume()
        assert controller.tick().tick == 2

    def test_stop_scores_once(self, single_app):
        controller = started(single_app)
        run_ticks(controller, 5)
        context = controller.stop()
        assert context.status == SimulationStatus.COMPLETED
        assert context.score is not None
        score = context.score
        controller.stop()
        controller.tick()
        assert controller.snapshot.score is score
        assert controller.snapshot.tick == 5

    def test_completes_at_max_ticks(self, single_app):
        controller = started(single_app, settings=SimulationSettings(max_ticks=20))
        run_ticks(controller, 25)
        context = controller.snapshot
        assert context.tick == 20
        assert context.status == SimulationStatus.COMPLETED
        assert context.halt_reason is None
        assert context.score is not None

    def test_reset_returns_fresh_context(self, single_app):
        controller = started(single_app)
        controller.add_chaos_event({"id": "spike", "type": "traffic_spike", "duration": 5})
        run_ticks(controller, 10)
        controller.reset()
        assert controller.snapshot.to_dict() == SimulationContext().to_dict()
        controller.reset()
        assert controller.snapshot.to_dict() == SimulationContext().to_dict()
        assert controller.chaos.current_multipliers(0.0).is_calm

    def test_start_after_completion_restarts(self, single_app):
        controller = started(single_app)
        run_ticks(controller, 3)
        controller.stop()
        controller.start()
        assert controller.status == SimulationStatus.RUNNING
        assert controller.snapshot.tick == 0

    def test_runs_are_reproducible(self, web_topology, overload_targets):
        first = started(web_topology.copy(), overload_targets)
        second = started(web_topology.copy(), overload_targets)
        assert run_ticks(first, 30).to_dict() == run_ticks(second, 30).to_dict()


# =============================================================================
# Tick semantics
# =============================================================================

class TestTickSemantics:

    def test_overloaded_single_server(self, single_app, overload_targets):
        context = run_ticks(started(single_app, overload_targets), 1)
        app = context.metrics_for("app")
        assert app.accepted_rps == pytest.approx(2000.0)
        assert app.error_rate == pytest.approx(0.30035)
        assert context.global_metrics.total_rps == pytest.approx(2000.0)
        assert context.global_metrics.error_rate == pytest.approx(0.30035)

        overload = next(e for e in context.failure_log if e.kind == FailureKind.OVERLOAD)
        assert overload.severity == pytest.approx(0.625)
        assert overload.fix_type == FixType.ENABLE_AUTOSCALING

    def test_default_base_rps_without_targets(self, single_app):
        context = run_ticks(started(single_app), 1)
        assert context.metrics_for("app").offered_rps == pytest.approx(1000.0)

    def test_traffic_level_scales_load(self, single_app):
        controller = started(single_app)
        controller.set_traffic_level(1.5)
        assert controller.tick().metrics_for("app").offered_rps == pytest.approx(1500.0)

    @pytest.mark.parametrize("level", [-1.0, float("nan"), float("inf")])
    def test_invalid_traffic_level(self, single_app, level):
        with pytest.raises(ValueError):
            SimulationController(single_app).set_traffic_level(level)

    def test_backpressure_conserves_load(self, web_topology):
        context = run_ticks(started(web_topology, ConstraintTargets(qps=5000)), 3)
        for m in context.node_metrics.values():
            assert m.offered_rps == pytest.approx(m.accepted_rps + m.dropped_rps)
        assert context.metrics_for("app").accepted_rps == pytest.approx(3000.0)
        assert context.metrics_for("db").offered_rps == pytest.approx(3000.0)

    def test_more_capacity_never_serves_less(self, overload_targets):
        results = []
        for capacity in (1000, 1250, 1500):
            topology = Topology()
            topology.add_component("app", ComponentType.APP_SERVER,
                                   capacity=capacity, instances=2, auto_scale=False)
            results.append(run_ticks(started(topology, overload_targets), 10).global_metrics)
        for lower, higher in zip(results, results[1:]):
            assert higher.total_rps >= lower.total_rps
            assert higher.error_rate <= lower.error_rate

    def test_rate_limiting_fix_sheds_instead_of_timing_out(self, single_app, overload_targets):
        controller = started(single_app, overload_targets)
        before = controller.tick().metrics_for("app")
        controller.apply_fix(FixType.ENABLE_RATE_LIMITING, "app")
        after = controller.tick().metrics_for("app")

        assert not before.is_throttled
        assert after.is_throttled
        assert after.accepted_rps == pytest.approx(before.accepted_rps)
        # Only the 20% over the limit is shed; no overload timeouts on top
        assert after.error_rate == pytest.approx(0.2004)
        assert after.error_rate < before.error_rate
        assert after.latency_ms == pytest.approx(80.0)
        assert after.latency_ms < before.latency_ms

    def test_rate_limited_server_does_not_crash(self, single_app, overload_targets):
        single_app.update_config("app", single_app.get("app").config.with_changes(rate_limiting=True))
        settings = SimulationSettings(crash_after_overload_ticks=5)
        context = run_ticks(started(single_app, overload_targets, settings), 10)
        assert context.status == SimulationStatus.RUNNING
        assert not context.metrics_for("app").is_crashed
        assert FailureKind.COMPONENT_CRASH not in log_kinds(context, "app")

    def test_cost_overrun_uses_same_tick_cost(self, single_app):
        context = run_ticks(started(single_app, ConstraintTargets(qps=100, budget_per_month=10)), 1)
        overruns = [e for e in context.failure_log if e.kind == FailureKind.COST_OVERRUN]
        assert [(e.component_id, e.tick) for e in overruns] == [(SYSTEM_COMPONENT_ID, 1)]
        assert context.global_metrics.monthly_cost > 10

    def test_mass_crash_halts_run(self, single_app, overload_targets):
        settings = SimulationSettings(crash_after_overload_ticks=5)
        controller = started(single_app, overload_targets, settings)
        context = run_ticks(controller, 20)
        assert context.tick == 6
        assert context.status == SimulationStatus.COMPLETED
        assert "crashed" in context.halt_reason
        assert FailureKind.COMPONENT_CRASH in log_kinds(context, "app")


# =============================================================================
# Autoscaling
# =============================================================================

class TestAutoscaling:

    def test_cold_start_timeline(self):
        topology = Topology()
        topology.add_component("app", ComponentType.APP_SERVER)
        controller = started(topology, ConstraintTargets(qps=1800))
        states = {}
        for _ in range(19):
            context = controller.tick()
            states[context.tick] = context.metrics_for("app")

        assert states[2].autoscale_state == AutoscaleState.STABLE
        assert states[3].autoscale_state == AutoscaleState.SCALING_UP
        assert states[3].target_instances == 3
        assert states[8].autoscale_state == AutoscaleState.COLD_STARTING
        assert states[17].ready_instances == 2
        assert states[18].autoscale_state == AutoscaleState.STABLE
        assert states[18].ready_instances == 3
        assert states[19].utilization == pytest.approx(0.6)

        kinds = log_kinds(controller.snapshot, "app")
        assert FailureKind.SCALE_UP_DELAY in kinds
        assert FailureKind.COLD_START in kinds


# =============================================================================
# Failure log and fixes
# =============================================================================

class TestFailureLog:

    def test_condition_logged_on_onset_only(self, single_app, overload_targets):
        context = run_ticks(started(single_app, overload_targets), 5)
        assert log_kinds(context, "app").count(FailureKind.OVERLOAD) == 1
        assert any(e.kind == FailureKind.OVERLOAD for e in context.active_failures)

    def test_fix_relogs_persisting_condition(self, single_app, overload_targets):
        controller = started(single_app, overload_targets)
        run_ticks(controller, 3)
        config = controller.apply_fix(FixType.ENABLE_AUTOSCALING, "app")
        assert config.auto_scale
        assert config.min_instances == 2
        assert not any(e.component_id == "app" for e in controller.snapshot.active_failures)

        context = run_ticks(controller, 1)
        assert log_kinds(context, "app").count(FailureKind.OVERLOAD) == 2

    def test_fix_accepts_string(self, single_app):
        controller = SimulationController(single_app)
        config = controller.apply_fix("add_circuit_breaker", "app")
        assert config.circuit_breaker
        assert single_app.get("app").config.circuit_breaker

    def test_fix_unknown_component(self, single_app):
        with pytest.raises(KeyError):
            SimulationController(single_app).apply_fix(FixType.ADD_DLQ, "ghost")

    def test_fix_unknown_type(self, single_app):
        with pytest.raises(ValueError):
            SimulationController(single_app).apply_fix("teleport", "app")


class TestFixedConfig:

    def test_enable_autoscaling_keeps_current_size(self, settings):
        config = fixed_config(ComponentConfig(instances=5, min_instances=1, max_instances=3),
                              FixType.ENABLE_AUTOSCALING, settings)
        assert config.auto_scale
        assert config.min_instances == 1
        assert config.max_instances == 5

    def test_increase_replicas(self, settings):
        config = fixed_config(ComponentConfig(instances=2), FixType.INCREASE_REPLICAS, settings)
        assert config.instances == 3

    def test_enable_replication(self, settings):
        config = fixed_config(ComponentConfig(), FixType.ENABLE_REPLICATION, settings)
        assert config.replication
        assert config.replication_factor == 2

    def test_rate_limit_defaults_to_capacity(self, settings):
        config = fixed_config(ComponentConfig(capacity=500, instances=2),
                              FixType.ENABLE_RATE_LIMITING, settings)
        assert config.rate_limiting
        assert config.rate_limit_rps == 1000

    def test_connection_pool_grows(self, settings):
        config = fixed_config(ComponentConfig(instances=2), FixType.INCREASE_CONNECTION_POOL, settings)
        assert config.max_connections == 300


# =============================================================================
# Chaos
# =============================================================================

class TestChaos:

    def test_traffic_spike(self, single_app):
        controller = started(single_app)
        controller.add_chaos_event({"id": "spike", "type": "traffic_spike", "duration": 10,
                                    "parameters": {"multiplier": 3.0}})
        assert controller.tick().metrics_for("app").offered_rps == pytest.approx(3000.0)

    def test_dict_event_starts_now(self, single_app):
        controller = started(single_app)
        run_ticks(controller, 5)
        event = controller.add_chaos_event({"id": "spike", "type": "traffic_spike", "duration": 1})
        assert event.start_time == pytest.approx(0.5)

    def test_remove_unknown_event(self, single_app):
        with pytest.raises(KeyError):
            SimulationController(single_app).remove_chaos_event("nope")

    def test_partition_isolates_component(self):
        def build():
            topology = Topology()
            topology.add_component("lb", ComponentType.LOAD_BALANCER)
            topology.add_component("app1", ComponentType.APP_SERVER, instances=2, auto_scale=False)
            topology.add_component("app2", ComponentType.APP_SERVER, instances=2, auto_scale=False)
            topology.connect("lb", "app1")
            topology.connect("lb", "app2")
            return topology

        targets = ConstraintTargets(qps=1000)
        calm = run_ticks(started(build(), targets), 3)

        controller = started(build(), targets)
        controller.add_chaos_event(ChaosEvent("cut", ChaosType.NETWORK_PARTITION, 0.0, 60.0,
                                              {"componentIds": ["app1"]}))
        partitioned = run_ticks(controller, 3)

        assert partitioned.metrics_for("app1").is_partitioned
        assert partitioned.metrics_for("app1").accepted_rps == 0.0
        assert partitioned.metrics_for("app2").offered_rps == pytest.approx(
            calm.metrics_for("app2").offered_rps)
        assert partitioned.metrics_for("app2").offered_rps == pytest.approx(500.0)

    def test_tripped_circuit_sheds_load_next_tick(self, settings):
        topology = Topology()
        topology.add_component("app", ComponentType.APP_SERVER,
                               capacity=1000, instances=2, auto_scale=False)
        topology.add_component("svc", ComponentType.CUSTOM_SERVICE,
                               capacity=2000, instances=1, circuit_breaker=True)
        topology.connect("app", "svc")
        controller = started(topology, ConstraintTargets(qps=3000))

        first = controller.tick()
        assert first.metrics_for("svc").accepted_rps == pytest.approx(2000.0)
        assert FailureKind.CIRCUIT_BREAKER_OPEN in log_kinds(first, "svc")

        second = controller.tick()
        expected = 2000.0 * settings.circuit_open_accept_ratio
        assert second.metrics_for("svc").accepted_rps == pytest.approx(expected)


    def test_partition_lifts_when_event_expires(self):
        topology = Topology()
        topology.add_component("lb", ComponentType.LOAD_BALANCER)
        topology.add_component("app1", ComponentType.APP_SERVER, instances=2, auto_scale=False)
        topology.add_component("app2", ComponentType.APP_SERVER, instances=2, auto_scale=False)
        topology.connect("lb", "app1")
        topology.connect("lb", "app2")
        controller = started(topology, ConstraintTargets(qps=1000))
        controller.add_chaos_event(ChaosEvent("cut", ChaosType.NETWORK_PARTITION, 0.0, 0.25,
                                              {"componentIds": ["app1"]}))

        during = run_ticks(controller, 2).metrics_for("app1")
        assert during.is_partitioned
        assert during.accepted_rps == 0.0

        after = controller.tick().metrics_for("app1")
        assert not after.is_partitioned
        assert after.accepted_rps == pytest.approx(500.0)

    def test_crashed_queue_forwards_nothing(self):
        topology = Topology()
        topology.add_component("app", ComponentType.APP_SERVER,
                               capacity=10000, instances=1, auto_scale=False)
        topology.add_component("q", ComponentType.QUEUE)
        topology.add_component("worker", ComponentType.WORKER,
                               capacity=100, instances=1, auto_scale=False)
        topology.connect("app", "q")
        topology.connect("q", "worker")
        controller = started(topology, ConstraintTargets(qps=2000))

        backlog = run_ticks(controller, 5).metrics_for("q").queue_depth
        assert backlog > 0
        controller.add_chaos_event({"id": "crash", "type": "component_crash", "duration": 10,
                                    "parameters": {"componentIds": ["q"]}})
        for _ in range(3):
            context = controller.tick()
            assert context.metrics_for("q").is_crashed
            assert context.metrics_for("q").queue_depth == pytest.approx(backlog)
            assert context.metrics_for("worker").offered_rps == 0.0
        assert context.status == SimulationStatus.RUNNING

    def test_healthy_dependent_keeps_breaker_closed(self):
        topology = Topology()
        topology.add_component("app", ComponentType.APP_SERVER,
                               capacity=1000, instances=2, auto_scale=False)
        topology.add_component("svc", ComponentType.CUSTOM_SERVICE,
                               capacity=10000, instances=1, circuit_breaker=True)
        topology.connect("app", "svc")
        controller = started(topology, ConstraintTargets(qps=3000))

        context = run_ticks(controller, 2)
        assert FailureKind.OVERLOAD in log_kinds(context, "app")
        assert FailureKind.CIRCUIT_BREAKER_OPEN not in log_kinds(context, "svc")
        assert not context.metrics_for("svc").is_circuit_open
        assert context.metrics_for("svc").accepted_rps == pytest.approx(2000.0)

    def test_breaker_contains_cascade(self):
        def build(circuit_breaker):
            topology = Topology()
            topology.add_component("app", ComponentType.APP_SERVER,
                                   capacity=1000, instances=2, auto_scale=False)
            topology.add_component("svc", ComponentType.CUSTOM_SERVICE, capacity=2000,
                                   instances=1, circuit_breaker=circuit_breaker)
            topology.add_component("db", ComponentType.DATABASE, capacity=2500, instances=1)
            topology.connect("app", "svc")
            topology.connect("svc", "db")
            return topology

        def cascades(context, component_id):
            return [e for e in context.failure_log
                    if e.component_id == component_id and e.kind == FailureKind.CASCADING_FAILURE]

        targets = ConstraintTargets(qps=3000)
        unprotected = run_ticks(started(build(False), targets), 1)
        assert any(e.root_component == "app" for e in cascades(unprotected, "db"))

        protected = run_ticks(started(build(True), targets), 5)
        assert FailureKind.CIRCUIT_BREAKER_OPEN in log_kinds(protected, "svc")
        assert not any(e.root_component == "app" for e in cascades(protected, "db"))
        assert not cascades(protected, "svc")

    def test_malformed_event_rejected_before_tick(self, single_app):
        controller = started(single_app)
        with pytest.raises(ValueError):
            controller.add_chaos_event({"id": "spike", "type": "traffic_spike", "duration": 5,
                                        "parameters": {"multiplier": "lots"}})
        assert controller.chaos.events == []
        context = controller.tick()
        assert context.tick == 1
        assert context.metrics_for("app").offered_rps == pytest.approx(1000.0)

# =============================================================================
# Observers and clock
# =============================================================================

class TestObservers:

    def test_observers_receive_every_tick(self, single_app):
        controller = SimulationController(single_app)
        seen = []
        unsubscribe = controller.subscribe(lambda context: seen.append(context.tick))
        controller.start()
        run_ticks(controller, 3)
        assert seen == [0, 1, 2, 3]

        unsubscribe()
        controller.tick()
        assert seen == [0, 1, 2, 3]

    def test_async_run_until_complete(self, single_app):
        controller = started(single_app, settings=SimulationSettings(max_ticks=15))
        context = asyncio.run(controller.run(realtime=False))
        assert context.status == SimulationStatus.COMPLETED
        assert context.tick == 15
