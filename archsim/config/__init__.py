from .settings import SimulationSettings

__all__ = ["SimulationSettings"]
