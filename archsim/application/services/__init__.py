from .simulation_controller import SimulationController
from .simulation_service import SimulationRunResult, SimulationService

__all__ = [
    "SimulationController",
    "SimulationRunResult",
    "SimulationService",
]
