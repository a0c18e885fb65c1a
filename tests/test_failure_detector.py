"""
Tests for failure detection.

Covers:
    - Per-component conditions (overload, crash, DNS, queues, retries, autoscaling)
    - Topology conditions (SPOF, data-loss risk, config drift, cost overrun)
    - Cascades and circuit breakers stopping them
"""

import sys
import pytest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from archsim.core.models import ComponentType
from archsim.core.topology import Topology
from archsim.domain.models.constraints import ConstraintTargets
from archsim.domain.models.failures import SYSTEM_COMPONENT_ID, FailureKind, FixType
from archsim.domain.models.metrics import AutoscaleState, ComponentMetrics
from archsim.domain.services.failure_detector import FailureDetector
from archsim.domain.services.traffic_engine import TrafficResult


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def detector(settings):
    return FailureDetector(settings)


def detect(detector, topology, metrics, previous=None, targets=None, monthly_cost=0.0):
    return detector.detect(topology, metrics, previous or {}, TrafficResult(),
                           targets or ConstraintTargets(), tick=1, monthly_cost=monthly_cost)


def healthy(**changes):
    return ComponentMetrics(ready_instances=1, **changes)


@pytest.fixture
def chain():
    """app -> svc -> db, nothing autoscaled."""
    topology = Topology()
    topology.add_component("app", ComponentType.APP_SERVER,
                           capacity=1000, instances=2, auto_scale=False)
    topology.add_component("svc", ComponentType.CUSTOM_SERVICE, instances=2)
    topology.add_component("db", ComponentType.DATABASE, replication=True, replication_factor=2,
                           instances=2)
    topology.connect("app", "svc")
    topology.connect("svc", "db")
    return topology


# =============================================================================
# Per-component conditions
# =============================================================================

class TestCapacityConditions:

    def test_overload_severity_and_fix(self, detector, single_app):
        metrics = {"app": ComponentMetrics(utilization=1.25, offered_rps=2500, accepted_rps=2000,
                                           dropped_rps=500, ready_instances=2)}
        result = detect(detector, single_app, metrics)
        overload = next(e for e in result.events if e.kind == FailureKind.OVERLOAD)
        assert overload.severity == pytest.approx(0.625)
        assert overload.fix_type == FixType.ENABLE_AUTOSCALING
        assert overload.user_visible

    def test_overload_on_autoscaled_component_suggests_replicas(self, detector):
        topology = Topology()
        topology.add_component("app", ComponentType.APP_SERVER)
        result = detect(detector, topology, {"app": ComponentMetrics(utilization=1.5, ready_instances=2)})
        overload = next(e for e in result.events if e.kind == FailureKind.OVERLOAD)
        assert overload.fix_type == FixType.INCREASE_REPLICAS
        assert overload.expected_recovery_seconds is not None

    def test_traffic_overflow(self, detector, single_app):
        metrics = {"app": ComponentMetrics(utilization=0.9, offered_rps=1000, accepted_rps=600,
                                           dropped_rps=400, ready_instances=2)}
        assert FailureKind.TRAFFIC_OVERFLOW in detect(detector, single_app, metrics).kinds("app")

    def test_latency_breach_against_sla(self, detector, single_app):
        metrics = {"app": ComponentMetrics(accepted_rps=100, p95_latency_ms=400, ready_instances=2)}
        result = detect(detector, single_app, metrics, targets=ConstraintTargets(latency_sla_ms_p95=200))
        breach = next(e for e in result.events if e.kind == FailureKind.LATENCY_BREACH)
        assert breach.severity == pytest.approx(0.6)

    def test_each_condition_reported_once(self, detector, chain):
        metrics = {cid: ComponentMetrics(utilization=1.5, ready_instances=2) for cid in chain.components}
        events = detect(detector, chain, metrics).events
        keys = [e.key for e in events]
        assert len(keys) == len(set(keys))


class TestAvailabilityConditions:

    def test_crash_suppresses_other_checks(self, detector, single_app):
        metrics = {"app": ComponentMetrics(is_crashed=True, utilization=3.0, crash_ticks_remaining=10)}
        kinds = detect(detector, single_app, metrics).kinds("app")
        assert FailureKind.COMPONENT_CRASH in kinds
        assert FailureKind.OVERLOAD not in kinds

    def test_crash_recovery_estimate(self, detector, settings, single_app):
        metrics = {"app": ComponentMetrics(is_crashed=True, crash_ticks_remaining=10)}
        crash = detect(detector, single_app, metrics).events[0]
        assert crash.expected_recovery_seconds == pytest.approx(10 * settings.tick_interval_s)

    def test_dns_outage(self, detector):
        topology = Topology()
        topology.add_component("dns", ComponentType.DNS)
        kinds = detect(detector, topology, {"dns": ComponentMetrics(is_crashed=True)}).kinds("dns")
        assert {FailureKind.DNS_FAILURE, FailureKind.COMPONENT_CRASH} <= kinds

    def test_partition(self, detector, single_app):
        kinds = detect(detector, single_app, {"app": ComponentMetrics(is_partitioned=True)}).kinds("app")
        assert FailureKind.NETWORK_PARTITION in kinds


class TestOtherConditions:

    def test_queue_overflow_suggests_dlq(self, detector):
        topology = Topology()
        topology.add_component("q", ComponentType.QUEUE)
        result = detect(detector, topology, {"q": healthy(queue_depth=6000)})
        overflow = next(e for e in result.events if e.kind == FailureKind.QUEUE_OVERFLOW)
        assert overflow.fix_type == FixType.ADD_DLQ

    def test_consumer_lag(self, detector, settings):
        topology = Topology()
        topology.add_component("q", ComponentType.QUEUE)
        metrics = {"q": healthy(queue_growth_ticks=settings.consumer_lag_ticks)}
        assert FailureKind.CONSUMER_LAG in detect(detector, topology, metrics).kinds("q")

    def test_connection_exhaustion(self, detector, single_app):
        metrics = {"app": ComponentMetrics(connection_pool_utilization=1.2, max_connections=200,
                                           active_connections=200, ready_instances=2)}
        kinds = detect(detector, single_app, metrics).kinds("app")
        assert FailureKind.CONNECTION_EXHAUSTION in kinds
        assert FailureKind.THREAD_STARVATION in kinds

    def test_retry_storm(self, detector, chain):
        chain.update_config("app", chain.get("app").config.with_changes(retries=True))
        metrics = {cid: healthy() for cid in chain.components}
        previous = {"svc": ComponentMetrics(error_rate=0.5)}
        result = detect(detector, chain, metrics, previous=previous)
        storm = next(e for e in result.events if e.kind == FailureKind.RETRY_STORM)
        assert storm.component_id == "app"
        assert storm.fix_type == FixType.ADD_CIRCUIT_BREAKER

    def test_scale_up_delay_is_not_user_visible(self, detector):
        topology = Topology()
        topology.add_component("app", ComponentType.APP_SERVER)
        metrics = {"app": ComponentMetrics(autoscale_state=AutoscaleState.SCALING_UP,
                                           ready_instances=2, target_instances=3)}
        event = next(e for e in detect(detector, topology, metrics).events
                     if e.kind == FailureKind.SCALE_UP_DELAY)
        assert not event.user_visible

    def test_upstream_timeout_names_slowest_callee(self, detector, chain):
        metrics = {cid: healthy() for cid in chain.components}
        metrics["svc"] = healthy(latency_ms=5000.0)
        result = detect(detector, chain, metrics)
        timeout = next(e for e in result.events if e.kind == FailureKind.UPSTREAM_TIMEOUT)
        assert timeout.component_id == "app"
        assert timeout.affected_components == ("app", "svc")

    def test_replication_lag_under_heavy_load(self, detector, chain):
        metrics = {cid: healthy() for cid in chain.components}
        metrics["db"] = healthy(cpu_usage=0.9, accepted_rps=50)
        kinds = detect(detector, chain, metrics).kinds("db")
        assert FailureKind.REPLICATION_LAG in kinds
        assert FailureKind.STALE_READ in kinds
        assert FailureKind.READ_AFTER_WRITE_FAILURE in kinds


# =============================================================================
# Topology conditions
# =============================================================================

class TestTopologyConditions:

    def test_single_instance_on_critical_path_is_spof(self, detector):
        topology = Topology()
        topology.add_component("lb", ComponentType.LOAD_BALANCER)
        topology.add_component("app", ComponentType.APP_SERVER, instances=1, auto_scale=False)
        topology.connect("lb", "app")
        spofs = detector.single_points_of_failure(topology, {})
        assert spofs == ["lb", "app"]

    def test_redundant_components_are_not_spof(self, detector, single_app):
        assert detector.single_points_of_failure(single_app, {}) == []

    def test_spof_event_is_hidden(self, detector):
        topology = Topology()
        topology.add_component("app", ComponentType.APP_SERVER, instances=1, auto_scale=False)
        event = next(e for e in detect(detector, topology, {"app": healthy()}).events
                     if e.kind == FailureKind.SPOF)
        assert not event.user_visible

    def test_unreplicated_database_risks_data_loss(self, detector):
        topology = Topology()
        topology.add_component("db", ComponentType.DATABASE)
        event = next(e for e in detect(detector, topology, {"db": healthy()}).events
                     if e.kind == FailureKind.DATA_LOSS_RISK)
        assert event.fix_type == FixType.ENABLE_REPLICATION

    def test_config_drift_between_siblings(self, detector):
        topology = Topology()
        topology.add_component("lb", ComponentType.LOAD_BALANCER)
        topology.add_component("app1", ComponentType.APP_SERVER, capacity=1000)
        topology.add_component("app2", ComponentType.APP_SERVER, capacity=2000)
        topology.connect("lb", "app1")
        topology.connect("lb", "app2")
        assert detector.drifting_siblings(topology) == [["app1", "app2"]]
        event = next(e for e in detect(detector, topology, {}).events
                     if e.kind == FailureKind.CONFIG_DRIFT)
        assert event.affected_components == ("app1", "app2")

    def test_cost_overrun_reported_on_system(self, detector, single_app):
        result = detect(detector, single_app, {"app": healthy()},
                        targets=ConstraintTargets(budget_per_month=100), monthly_cost=1000)
        assert FailureKind.COST_OVERRUN in result.kinds(SYSTEM_COMPONENT_ID)


# =============================================================================
# Cascades
# =============================================================================

class TestCascades:

    def test_overload_cascades_to_busy_dependents(self, detector, chain):
        metrics = {
            "app": ComponentMetrics(utilization=1.5, ready_instances=2),
            "svc": ComponentMetrics(utilization=0.8, ready_instances=2),
            "db": ComponentMetrics(utilization=0.9, ready_instances=2),
        }
        result = detect(detector, chain, metrics)
        cascades = [e for e in result.events if e.kind == FailureKind.CASCADING_FAILURE]
        assert [e.component_id for e in cascades] == ["svc", "db"]
        assert all(e.root_component == "app" for e in cascades)
        assert cascades[0].severity == pytest.approx(0.75 * 0.8)

    def test_idle_dependents_are_not_affected(self, detector, chain):
        metrics = {
            "app": ComponentMetrics(utilization=1.5, ready_instances=2),
            "svc": ComponentMetrics(utilization=0.1, ready_instances=2),
            "db": ComponentMetrics(utilization=0.9, ready_instances=2),
        }
        result = detect(detector, chain, metrics)
        assert not any(e.kind == FailureKind.CASCADING_FAILURE for e in result.events)

    def test_circuit_breaker_stops_cascade(self, detector, chain):
        chain.update_config("svc", chain.get("svc").config.with_changes(circuit_breaker=True))
        metrics = {
            "app": ComponentMetrics(utilization=1.5, ready_instances=2),
            "svc": ComponentMetrics(utilization=0.8, ready_instances=2),
            "db": ComponentMetrics(utilization=0.9, ready_instances=2),
        }
        result = detect(detector, chain, metrics)
        assert FailureKind.CIRCUIT_BREAKER_OPEN in result.kinds("svc")
        assert FailureKind.CASCADING_FAILURE not in result.kinds("svc")
        assert FailureKind.CASCADING_FAILURE not in result.kinds("db")
        assert result.circuit_opened == {"svc"}

    def test_breaker_stays_closed_on_coping_dependent(self, detector, chain):
        chain.update_config("svc", chain.get("svc").config.with_changes(circuit_breaker=True))
        metrics = {
            "app": ComponentMetrics(utilization=1.5, ready_instances=2),
            "svc": ComponentMetrics(utilization=0.2, ready_instances=2),
            "db": ComponentMetrics(utilization=0.9, ready_instances=2),
        }
        result = detect(detector, chain, metrics)
        assert FailureKind.CIRCUIT_BREAKER_OPEN not in result.kinds("svc")
        assert result.circuit_opened == set()

    def test_crashed_root_cascades_structurally(self, detector, chain):
        metrics = {
            "app": ComponentMetrics(is_crashed=True),
            "svc": ComponentMetrics(utilization=0.8, ready_instances=2),
            "db": ComponentMetrics(ready_instances=2),
        }
        result = detect(detector, chain, metrics)
        assert FailureKind.CASCADING_FAILURE in result.kinds("svc")
