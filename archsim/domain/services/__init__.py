"""
Domain Services Package

Tick passes of the simulation engine. Each service is deterministic given
its inputs and holds no run state of its own.
"""

from .chaos_injector import ChaosInjector
from .behavior_model import Admission, BehaviorModel, NodeLoad
from .traffic_engine import TrafficEngine, TrafficResult
from .autoscaler import Autoscaler
from .failure_detector import DetectionResult, FailureDetector
from .metrics_aggregator import MetricsAggregator
from .scorer import Scorer
from .design_validator import DesignValidator, ValidationResult

__all__ = [
    "ChaosInjector",
    "Admission",
    "BehaviorModel",
    "NodeLoad",
    "TrafficEngine",
    "TrafficResult",
    "Autoscaler",
    "DetectionResult",
    "FailureDetector",
    "MetricsAggregator",
    "Scorer",
    "DesignValidator",
    "ValidationResult",
]
