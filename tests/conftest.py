"""
Test Configuration and Fixtures
================================

Shared pytest fixtures for the archsim test suite.

Usage:
    pytest tests/                    # Run all tests
    pytest tests/ -v                 # Verbose output
    pytest tests/ -k "controller"    # Run only controller tests
    pytest tests/ --quick            # Quick subset
"""

import pytest
from pathlib import Path
from typing import Dict, Any

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from archsim.config.settings import SimulationSettings
from archsim.core.models import ComponentType
from archsim.core.serialization import topology_from_dict
from archsim.core.topology import Topology
from archsim.domain.models.constraints import ConstraintTargets


# =============================================================================
# Custom Markers
# =============================================================================

def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "slow: marks tests as slow")


def pytest_addoption(parser):
    """Add custom command line options"""
    parser.addoption(
        "--quick",
        action="store_true",
        default=False,
        help="Skip slow tests",
    )


def pytest_collection_modifyitems(config, items):
    """Skip slow tests if --quick is specified"""
    if config.getoption("--quick"):
        skip_slow = pytest.mark.skip(reason="Skipped with --quick")
        for item in items:
            if "slow" in item.keywords:
                item.add_marker(skip_slow)


# =============================================================================
# Settings and Targets
# =============================================================================

@pytest.fixture
def settings() -> SimulationSettings:
    """Default engine settings (steady traffic, no random slow nodes)."""
    return SimulationSettings()


@pytest.fixture
def overload_targets() -> ConstraintTargets:
    """2500 QPS against a design that can serve 2000."""
    return ConstraintTargets(qps=2500)


# =============================================================================
# Topology Fixtures
# =============================================================================

@pytest.fixture
def single_app() -> Topology:
    """One app server: 2 instances x 1000 rps, no autoscaling."""
    topology = Topology()
    topology.add_component("app", ComponentType.APP_SERVER,
                           capacity=1000, instances=2, auto_scale=False)
    return topology


@pytest.fixture
def web_topology() -> Topology:
    """Load balancer -> app server -> replicated database."""
    topology = Topology()
    topology.add_component("lb", ComponentType.LOAD_BALANCER)
    topology.add_component("app", ComponentType.APP_SERVER,
                           capacity=1000, instances=3, auto_scale=False)
    topology.add_component("db", ComponentType.DATABASE, replication=True, replication_factor=2)
    topology.connect("lb", "app")
    topology.connect("app", "db")
    return topology


@pytest.fixture
def web_blueprint() -> Dict[str, Any]:
    """Blueprint form of a small web stack, as stored by the design editor."""
    return {
        "components": [
            {"id": "lb", "type": "loadBalancer", "position": {"x": 0, "y": 0},
             "size": {"w": 80, "h": 64}, "config": {}},
            {"id": "app", "type": "appServer", "position": {"x": 200, "y": 0},
             "size": {"w": 80, "h": 64},
             "config": {"capacity": 1000, "instances": 3, "autoScale": False}},
            {"id": "db", "type": "database", "position": {"x": 400, "y": 0},
             "size": {"w": 80, "h": 64},
             "config": {"replication": True, "replicationFactor": 2}},
        ],
        "connections": [
            {"id": "c1", "sourceId": "lb", "targetId": "app", "type": "request",
             "direction": "unidirectional", "protocol": "http"},
            {"id": "c2", "sourceId": "app", "targetId": "db", "type": "request",
             "direction": "unidirectional", "protocol": "tcp"},
        ],
    }


@pytest.fixture
def single_app_blueprint() -> Dict[str, Any]:
    return {
        "components": [
            {"id": "app", "type": "appServer",
             "config": {"capacity": 1000, "instances": 2, "autoScale": False}},
        ],
        "connections": [],
    }


@pytest.fixture
def web_from_blueprint(web_blueprint) -> Topology:
    return topology_from_dict(web_blueprint)
