"""
Domain Models Package
"""

from .chaos import ChaosEvent, ChaosMultipliers, ChaosType, NO_CHAOS
from .constraints import ConstraintTargets
from .context import EdgeFlow, SimulationContext, SimulationSnapshot, SimulationStatus
from .failures import FailureCategory, FailureEvent, FailureKind, FixType, SYSTEM_COMPONENT_ID
from .metrics import AutoscaleState, ComponentMetrics, GlobalMetrics
from .score import Score

__all__ = [
    "ChaosEvent",
    "ChaosMultipliers",
    "ChaosType",
    "NO_CHAOS",
    "ConstraintTargets",
    "EdgeFlow",
    "SimulationContext",
    "SimulationSnapshot",
    "SimulationStatus",
    "FailureCategory",
    "FailureEvent",
    "FailureKind",
    "FixType",
    "SYSTEM_COMPONENT_ID",
    "AutoscaleState",
    "ComponentMetrics",
    "GlobalMetrics",
    "Score",
]
