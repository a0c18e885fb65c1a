"""
FastAPI dependency injection for API routes.

Provides:
  - ``get_container``: process-wide Container built from ARCHSIM_* settings
  - ``get_sessions``: in-memory registry of interactive simulation sessions,
    bounded in size and evicting idle sessions
"""

import logging
import threading
import time
import uuid
from collections import OrderedDict
from typing import Callable, Dict, List, Optional

from archsim.application.services.simulation_controller import SimulationController
from archsim.config.container import Container
from archsim.config.settings import SimulationSettings
from archsim.core.topology import Topology
from archsim.domain.models.constraints import ConstraintTargets

logger = logging.getLogger(__name__)

MAX_SESSIONS = 64
IDLE_TIMEOUT_S = 3600.0


class SessionRegistry:
    """
    Interactive controllers keyed by session id.

    Sessions idle for longer than ``idle_timeout_s`` are evicted, and when
    ``max_sessions`` is reached the least recently used one makes room.
    """

    def __init__(self, max_sessions: int = MAX_SESSIONS, idle_timeout_s: float = IDLE_TIMEOUT_S,
                 clock: Callable[[], float] = time.monotonic):
        if max_sessions < 1:
            raise ValueError("max_sessions must be at least 1")
        self.max_sessions = max_sessions
        self.idle_timeout_s = idle_timeout_s
        self._clock = clock
        self._sessions: "OrderedDict[str, SimulationController]" = OrderedDict()
        self._last_used: Dict[str, float] = {}
        self._lock = threading.Lock()

    def create(self, topology: Topology, targets: Optional[ConstraintTargets],
               settings: SimulationSettings) -> str:
        session_id = uuid.uuid4().hex[:12]
        with self._lock:
            self._evict_idle()
            while len(self._sessions) >= self.max_sessions:
                oldest, _ = self._sessions.popitem(last=False)
                self._last_used.pop(oldest, None)
                logger.info(f"Session {oldest} evicted (limit {self.max_sessions})")
            self._sessions[session_id] = SimulationController(topology, targets, settings)
            self._last_used[session_id] = self._clock()
        logger.info(f"Session {session_id} created ({len(topology)} components)")
        return session_id

    def get(self, session_id: str) -> SimulationController:
        with self._lock:
            self._evict_idle()
            try:
                controller = self._sessions[session_id]
            except KeyError:
                raise KeyError(f"Unknown session '{session_id}'") from None
            self._sessions.move_to_end(session_id)
            self._last_used[session_id] = self._clock()
            return controller

    def delete(self, session_id: str) -> None:
        with self._lock:
            if self._sessions.pop(session_id, None) is None:
                raise KeyError(f"Unknown session '{session_id}'")
            self._last_used.pop(session_id, None)
        logger.info(f"Session {session_id} deleted")

    def ids(self) -> List[str]:
        with self._lock:
            self._evict_idle()
            return list(self._sessions)

    def _evict_idle(self) -> None:
        # Caller holds the lock
        cutoff = self._clock() - self.idle_timeout_s
        for session_id in [sid for sid, used in self._last_used.items() if used < cutoff]:
            del self._sessions[session_id]
            del self._last_used[session_id]
            logger.info(f"Session {session_id} evicted after idling")

    def __len__(self) -> int:
        return len(self._sessions)


_container = Container.from_env()
_sessions = SessionRegistry()


def get_container() -> Container:
    return _container


def get_sessions() -> SessionRegistry:
    return _sessions


def settings_with_overrides(base: SimulationSettings, overrides: Dict) -> SimulationSettings:
    """Request-level setting overrides on top of the process settings."""
    if not overrides:
        return base
    return SimulationSettings.from_dict({**base.to_dict(), **overrides})
