"""
Application Ports

Interfaces defining boundaries between the application layer and its
adapters.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Optional


class IBlueprintStore(ABC):
    """
    Outbound port for reading and writing JSON documents.

    Used for design blueprints, chaos schedules and run results regardless
    of where they are stored.
    """

    @abstractmethod
    def read_json(self, path: str) -> Any:
        """Read JSON file."""
        pass

    @abstractmethod
    def write_json(self, path: str, data: Any) -> str:
        """Write JSON file. Returns the written path."""
        pass

    @abstractmethod
    def exists(self, path: str) -> bool:
        """Check if path exists."""
        pass


class ISimulationUseCase(ABC):
    """
    Inbound port for simulation use cases.

    Defines the contract for validating a design and running it for a
    number of ticks.
    """

    @abstractmethod
    def validate(self, topology: Any, targets: Optional[Any] = None) -> Any:
        """
        Run the pre-simulation gate.

        Args:
            topology: Design to check
            targets: Scenario targets

        Returns:
            Validation result
        """
        pass

    @abstractmethod
    def run(
        self,
        topology: Any,
        targets: Optional[Any] = None,
        ticks: Optional[int] = None,
        traffic_level: float = 1.0,
        chaos_events: Iterable[Dict[str, Any]] = (),
        fixes: Iterable[Dict[str, Any]] = (),
    ) -> Any:
        """
        Run a simulation to completion.

        Args:
            topology: Design to simulate
            targets: Scenario targets
            ticks: Maximum ticks to run
            traffic_level: Traffic multiplier
            chaos_events: Chaos schedule
            fixes: Fixes to apply at given ticks

        Returns:
            Run result
        """
        pass
