"""
Component Type Profiles

Per-type lookup table used for behavioral dispatch. Each ComponentType maps
to a TypeProfile describing its category, base latency, default config and
the behavioral traits the simulation passes consult. Adding a type is a
single entry here.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, FrozenSet

from .models import ComponentCategory, ComponentConfig, ComponentType


@dataclass(frozen=True)
class TypeProfile:
    """Simulation traits of a component type."""
    category: ComponentCategory
    base_latency_ms: float = 0.0
    defaults: ComponentConfig = field(default_factory=ComponentConfig)

    # Never simulated (geometric / annotation shapes)
    inert: bool = False
    # Compatible with any peer during edge validation
    always_compatible: bool = False
    # Counted for SPOF analysis
    critical_path: bool = False
    # Holds durable data (data-loss and consistency checks)
    persistent: bool = False
    uses_connection_pool: bool = False
    # Copies full load to every outbound edge instead of splitting it
    fanout: bool = False
    # Buffers load it cannot forward instead of dropping it
    buffered: bool = False
    # Generates traffic, not limited by its own capacity
    is_origin: bool = False
    # Forwards only cache misses
    caching: bool = False

    @property
    def is_storage(self) -> bool:
        return self.category == ComponentCategory.STORAGE

    @property
    def is_messaging(self) -> bool:
        return self.category == ComponentCategory.MESSAGING

    @property
    def is_compute(self) -> bool:
        return self.category == ComponentCategory.COMPUTE


def _cfg(**kwargs) -> ComponentConfig:
    return ComponentConfig(**kwargs)


_EDGE = ComponentCategory.EDGE
_COMPUTE = ComponentCategory.COMPUTE
_STORAGE = ComponentCategory.STORAGE
_MESSAGING = ComponentCategory.MESSAGING
_TECHNIQUE = ComponentCategory.TECHNIQUE
_ANNOTATION = ComponentCategory.ANNOTATION

_APP_DEFAULTS = _cfg(capacity=1000, instances=2, auto_scale=True, min_instances=2,
                     max_instances=20, cost_per_hour=0.20)
_DB_DEFAULTS = _cfg(capacity=5000, cost_per_hour=0.25)
_QUEUE_DEFAULTS = _cfg(capacity=100000, cost_per_hour=0.04)
_CLIENT_DEFAULTS = _cfg(capacity=1000, cost_per_hour=0.0)
_ANNOTATION_PROFILE = TypeProfile(_ANNOTATION, inert=True, always_compatible=True,
                                  defaults=_cfg(capacity=1000, cost_per_hour=0.0))


PROFILES: Dict[ComponentType, TypeProfile] = {
    # ---- Edge / traffic ----
    ComponentType.DNS: TypeProfile(
        _EDGE, 1.0, _cfg(capacity=1_000_000, cost_per_hour=0.01)),
    ComponentType.CDN: TypeProfile(
        _EDGE, 5.0, _cfg(capacity=500_000, regions=("us-east-1", "eu-west-1", "ap-south-1"),
                         cost_per_hour=0.05),
        caching=True),
    ComponentType.LOAD_BALANCER: TypeProfile(
        _EDGE, 1.0, _cfg(capacity=100_000, cost_per_hour=0.10), critical_path=True),
    ComponentType.API_GATEWAY: TypeProfile(
        _EDGE, 5.0, _cfg(capacity=50_000, cache_ttl_seconds=60, cost_per_hour=0.15),
        critical_path=True),

    # ---- Compute ----
    ComponentType.APP_SERVER: TypeProfile(
        _COMPUTE, 20.0, _APP_DEFAULTS, critical_path=True, uses_connection_pool=True),
    ComponentType.WORKER: TypeProfile(
        _COMPUTE, 100.0, _cfg(capacity=500, instances=2, cost_per_hour=0.15)),
    ComponentType.SERVERLESS: TypeProfile(
        _COMPUTE, 50.0, _cfg(capacity=10_000, cost_per_hour=0.0001), critical_path=True),
    ComponentType.CUSTOM_SERVICE: TypeProfile(
        _COMPUTE, 20.0, _cfg(capacity=5000, cost_per_hour=0.10),
        critical_path=True, uses_connection_pool=True),

    # ---- Traffic origin ----
    ComponentType.CLIENT: TypeProfile(
        ComponentCategory.CLIENT, 1.0, _CLIENT_DEFAULTS, is_origin=True),

    # ---- Storage ----
    ComponentType.CACHE: TypeProfile(
        _STORAGE, 2.0, _cfg(capacity=100_000, cache_ttl_seconds=3600, cost_per_hour=0.08),
        critical_path=True, caching=True),
    ComponentType.DATABASE: TypeProfile(
        _STORAGE, 10.0, _DB_DEFAULTS, critical_path=True, persistent=True,
        uses_connection_pool=True),
    ComponentType.OBJECT_STORE: TypeProfile(
        _STORAGE, 50.0, _cfg(capacity=1_000_000, cost_per_hour=0.02)),

    # ---- Messaging ----
    ComponentType.QUEUE: TypeProfile(_MESSAGING, 5.0, _QUEUE_DEFAULTS, buffered=True),
    ComponentType.PUBSUB: TypeProfile(
        _MESSAGING, 5.0, _cfg(capacity=500_000, cost_per_hour=0.05), buffered=True, fanout=True),
    ComponentType.STREAM: TypeProfile(
        _MESSAGING, 10.0, _cfg(capacity=100_000, cost_per_hour=0.08), buffered=True, fanout=True),

    # ---- Techniques ----
    ComponentType.SHARDING: TypeProfile(_TECHNIQUE, 0.0, _cfg(capacity=1_000_000, cost_per_hour=0.0)),
    ComponentType.HASHING: TypeProfile(_TECHNIQUE, 0.0, _cfg(capacity=1_000_000, cost_per_hour=0.0)),
    ComponentType.SHARD_NODE: TypeProfile(
        _STORAGE, 10.0, _DB_DEFAULTS, persistent=True, uses_connection_pool=True),
    ComponentType.PARTITION_NODE: TypeProfile(
        _STORAGE, 10.0, _DB_DEFAULTS, persistent=True, uses_connection_pool=True),
    ComponentType.REPLICA_NODE: TypeProfile(
        _STORAGE, 10.0, _DB_DEFAULTS, uses_connection_pool=True),
    ComponentType.INPUT_NODE: TypeProfile(
        _TECHNIQUE, 0.0, _cfg(capacity=1000, cost_per_hour=0.0), is_origin=True),
    ComponentType.OUTPUT_NODE: TypeProfile(_TECHNIQUE, 0.0, _cfg(capacity=1000, cost_per_hour=0.0)),

    # ---- Hand-drawn variants: behave like their analogue, validate freely ----
    ComponentType.SKETCHY_SERVICE: TypeProfile(
        _COMPUTE, 20.0, _cfg(capacity=1000, cost_per_hour=0.0), always_compatible=True),
    ComponentType.SKETCHY_DATABASE: TypeProfile(
        _STORAGE, 10.0, _cfg(capacity=1000, cost_per_hour=0.0), always_compatible=True,
        persistent=True),
    ComponentType.SKETCHY_LOGIC: TypeProfile(
        _COMPUTE, 20.0, _cfg(capacity=1000, cost_per_hour=0.0), always_compatible=True),
    ComponentType.SKETCHY_QUEUE: TypeProfile(
        _MESSAGING, 5.0, _cfg(capacity=1000, cost_per_hour=0.0), always_compatible=True,
        buffered=True),
    ComponentType.SKETCHY_CLIENT: TypeProfile(
        ComponentCategory.CLIENT, 1.0, _CLIENT_DEFAULTS, always_compatible=True, is_origin=True),

    # ---- Geometric / annotation ----
    ComponentType.TEXT: _ANNOTATION_PROFILE,
    ComponentType.CIRCLE: _ANNOTATION_PROFILE,
    ComponentType.RECTANGLE: _ANNOTATION_PROFILE,
    ComponentType.DIAMOND: _ANNOTATION_PROFILE,
    ComponentType.ARROW: _ANNOTATION_PROFILE,
    ComponentType.LINE: _ANNOTATION_PROFILE,
}

#: Types that count as a traffic entry point for design validation.
ENTRY_TYPES: FrozenSet[ComponentType] = frozenset({
    ComponentType.LOAD_BALANCER,
    ComponentType.API_GATEWAY,
    ComponentType.CDN,
    ComponentType.DNS,
    ComponentType.CUSTOM_SERVICE,
    ComponentType.CLIENT,
    ComponentType.INPUT_NODE,
})

#: Fallback for unknown blueprint types.
FALLBACK_TYPE = ComponentType.APP_SERVER


def profile_for(component_type: ComponentType) -> TypeProfile:
    """Look up the profile of a component type."""
    return PROFILES[component_type]


def default_config(component_type: ComponentType) -> ComponentConfig:
    """Default configuration for a newly placed component."""
    return PROFILES[component_type].defaults
