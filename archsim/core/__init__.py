"""
Core Package

Topology model: component and connection records, per-type profiles and
the blueprint codec.
"""

from .models import (
    Component,
    ComponentCategory,
    ComponentConfig,
    ComponentType,
    Connection,
    ConnectionDirection,
    ConnectionType,
    Protocol,
    ReplicationStrategy,
)
from .component_types import PROFILES, TypeProfile, default_config, profile_for
from .topology import Topology, validate_edge
from .serialization import load_blueprint, save_blueprint, topology_from_dict, topology_to_dict

__all__ = [
    "Component",
    "ComponentCategory",
    "ComponentConfig",
    "ComponentType",
    "Connection",
    "ConnectionDirection",
    "ConnectionType",
    "Protocol",
    "ReplicationStrategy",
    "PROFILES",
    "TypeProfile",
    "default_config",
    "profile_for",
    "Topology",
    "validate_edge",
    "load_blueprint",
    "save_blueprint",
    "topology_from_dict",
    "topology_to_dict",
]
