"""
Tests for forward traffic propagation.

Covers:
    - Walk order and source splitting
    - Backpressure (headroom clamping and drop accounting)
    - Weighted splits, fan-out and cache forward ratios
    - Cycles and retry amplification
"""

import sys
import pytest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from archsim.core.models import ComponentType
from archsim.core.topology import Topology
from archsim.domain.models.chaos import NO_CHAOS, ChaosMultipliers
from archsim.domain.models.metrics import ComponentMetrics
from archsim.domain.services.behavior_model import Admission
from archsim.domain.services.traffic_engine import TrafficEngine, retry_amplification


# =============================================================================
# Helpers
# =============================================================================

def admissions(topology, limits=None, default=1_000_000.0):
    """Admission per active component; ``limits`` overrides the accept limit."""
    limits = limits or {}
    return {
        cid: Admission(capacity=limits.get(cid, default), accept_limit=limits.get(cid, default), instances=1)
        for cid in topology.active_ids()
    }


def propagate(topology, base_rps, limits=None, ratios=None, previous=None, chaos=NO_CHAOS, settings=None):
    engine = TrafficEngine(settings)
    return engine.propagate(topology, base_rps, chaos, admissions(topology, limits),
                            ratios or {}, previous or {})


@pytest.fixture
def fan_topology():
    """lb -> app1, app2"""
    topology = Topology()
    topology.add_component("lb", ComponentType.LOAD_BALANCER)
    topology.add_component("app1", ComponentType.APP_SERVER)
    topology.add_component("app2", ComponentType.APP_SERVER)
    topology.connect("lb", "app1", connection_id="to-app1")
    topology.connect("lb", "app2", connection_id="to-app2")
    return topology


# =============================================================================
# Tests
# =============================================================================

class TestWalkOrder:

    def test_upstream_before_downstream(self, web_topology):
        assert TrafficEngine().walk_order(web_topology) == ["lb", "app", "db"]

    def test_empty_topology(self):
        assert TrafficEngine().walk_order(Topology()) == []


class TestBackpressure:

    def test_excess_dropped_at_receiver(self, web_topology):
        result = propagate(web_topology, 2500.0, limits={"app": 2000.0})
        app = result.nodes["app"]
        assert app.offered == pytest.approx(2500.0)
        assert app.accepted == pytest.approx(2000.0)
        assert app.dropped == pytest.approx(500.0)
        assert result.nodes["db"].offered == pytest.approx(2000.0)

    def test_offered_equals_accepted_plus_dropped(self, web_topology):
        result = propagate(web_topology, 5000.0, limits={"lb": 4000.0, "app": 1500.0, "db": 1000.0})
        for load in result.nodes.values():
            assert load.offered == pytest.approx(load.accepted + load.dropped)

    def test_sources_share_base_load(self, fan_topology):
        fan_topology.add_component("lb2", ComponentType.LOAD_BALANCER)
        fan_topology.connect("lb2", "app2")
        result = propagate(fan_topology, 1000.0)
        assert result.nodes["lb"].offered == pytest.approx(500.0)
        assert result.nodes["lb2"].offered == pytest.approx(500.0)
        assert result.entry_offered == pytest.approx(1000.0)

    def test_traffic_multiplier_applies_at_sources(self, web_topology):
        result = propagate(web_topology, 1000.0, chaos=ChaosMultipliers(traffic=3.0))
        assert result.nodes["lb"].offered == pytest.approx(3000.0)

    def test_unavailable_component_forwards_nothing(self, web_topology):
        result = propagate(web_topology, 1000.0, limits={"app": 0.0})
        assert result.nodes["app"].dropped == pytest.approx(1000.0)
        assert result.nodes["db"].offered == pytest.approx(0.0)


class TestSplitting:

    def test_even_split(self, fan_topology):
        result = propagate(fan_topology, 1000.0)
        assert result.nodes["app1"].offered == pytest.approx(500.0)
        assert result.nodes["app2"].offered == pytest.approx(500.0)
        assert result.edges["to-app1"].traffic_flow == pytest.approx(0.5)

    def test_weighted_split(self, fan_topology):
        fan_topology.connections["to-app1"].split = 3.0
        fan_topology.connections["to-app2"].split = 1.0
        result = propagate(fan_topology, 1000.0)
        assert result.nodes["app1"].offered == pytest.approx(750.0)
        assert result.nodes["app2"].offered == pytest.approx(250.0)

    def test_fanout_copies_load(self):
        topology = Topology()
        topology.add_component("events", ComponentType.PUBSUB)
        topology.add_component("w1", ComponentType.WORKER)
        topology.add_component("w2", ComponentType.WORKER)
        topology.connect("events", "w1")
        topology.connect("events", "w2")
        result = propagate(topology, 1000.0)
        assert result.nodes["w1"].offered == pytest.approx(1000.0)
        assert result.nodes["w2"].offered == pytest.approx(1000.0)

    def test_cache_forwards_only_misses(self):
        topology = Topology()
        topology.add_component("cache", ComponentType.CACHE)
        topology.add_component("db", ComponentType.DATABASE)
        topology.connect("cache", "db")
        result = propagate(topology, 1000.0, ratios={"cache": 0.1})
        assert result.nodes["db"].offered == pytest.approx(100.0)

    def test_inbound_share(self, fan_topology):
        fan_topology.add_component("lb2", ComponentType.LOAD_BALANCER)
        fan_topology.connect("lb2", "app1")
        result = propagate(fan_topology, 2000.0)
        # app1 gets 500 from lb and 1000 from lb2
        assert result.inbound_share("lb2", "app1") == pytest.approx(2 / 3)
        assert result.inbound_share("app1", "lb") == 0.0


class TestCycles:

    def test_cycle_does_not_reenter(self):
        topology = Topology()
        topology.add_component("a", ComponentType.APP_SERVER, traffic_origin=True)
        topology.add_component("b", ComponentType.APP_SERVER)
        topology.add_component("c", ComponentType.DATABASE)
        topology.connect("a", "b")
        topology.connect("b", "a", connection_id="back")
        topology.connect("b", "c")
        result = propagate(topology, 1000.0)
        assert result.order == ["a", "b", "c"]
        assert result.nodes["a"].offered == pytest.approx(1000.0)
        assert result.edges["back"].offered_rps == 0.0
        assert result.nodes["c"].offered == pytest.approx(500.0)


class TestRetries:

    def test_retry_amplification_formula(self):
        assert retry_amplification(0.0, 3) == pytest.approx(1.0)
        assert retry_amplification(0.5, 3) == pytest.approx(1.875)
        assert retry_amplification(2.0, 3) == pytest.approx(4.0)

    def test_retries_amplify_load_on_failing_target(self, web_topology):
        web_topology.update_config("app", web_topology.get("app").config.with_changes(retries=True))
        previous = {"db": ComponentMetrics(error_rate=0.5)}
        result = propagate(web_topology, 1000.0, previous=previous)
        assert result.nodes["db"].offered == pytest.approx(1875.0)
