"""
Dependency Injection Container

Wires settings, adapters and application services.
"""

from dataclasses import dataclass, field
from typing import Optional

from .settings import SimulationSettings

from archsim.adapters.inbound.display import ConsoleDisplay
from archsim.adapters.outbound.file_store import LocalFileStore
from archsim.application.ports import IBlueprintStore
from archsim.application.services.simulation_controller import SimulationController
from archsim.application.services.simulation_service import SimulationService
from archsim.core.topology import Topology
from archsim.domain.models.constraints import ConstraintTargets


@dataclass
class Container:
    """
    Dependency injection container.

    Services share one SimulationSettings instance; the file store is a
    lazily created singleton.
    """
    settings: SimulationSettings = field(default_factory=SimulationSettings)
    store_root: str = ""

    _store: Optional[IBlueprintStore] = field(default=None, repr=False)

    @classmethod
    def from_env(cls) -> "Container":
        """Create container from ARCHSIM_* environment variables."""
        return cls(settings=SimulationSettings.from_env())

    @classmethod
    def from_yaml(cls, path: str) -> "Container":
        return cls(settings=SimulationSettings.from_yaml(path))

    def file_store(self) -> IBlueprintStore:
        """Get the blueprint store singleton."""
        if not self._store:
            self._store = LocalFileStore(self.store_root)
        return self._store

    def simulation_service(self) -> SimulationService:
        return SimulationService(settings=self.settings, store=self.file_store())

    def controller(self, topology: Topology, targets: Optional[ConstraintTargets] = None) -> SimulationController:
        """Create an interactive controller for one run."""
        return SimulationController(topology, targets, self.settings)

    def display_service(self) -> ConsoleDisplay:
        """Get console display adapter."""
        return ConsoleDisplay()
