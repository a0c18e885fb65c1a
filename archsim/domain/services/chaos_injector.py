"""
Chaos Injector

Holds operator-injected chaos events and folds the ones active at a given
simulated time into a single ChaosMultipliers set.

Composition rules:
    - traffic, latency, failure-rate, database-latency: multiplicative
    - disconnected and crashed sets: union
    - cache-hit-rate override: minimum across active overrides
    - slow nodes: maximum slowness factor per node
"""

from __future__ import annotations
import logging
from types import MappingProxyType
from typing import Dict, Iterable, List, Optional, Set

from archsim.domain.models.chaos import (
    NO_CHAOS,
    ChaosEvent,
    ChaosMultipliers,
    ChaosType,
)

#: Hit rate assumed by a cache-invalidation storm before the drop applies.
BASELINE_CACHE_HIT_RATE = 0.95


class ChaosInjector:
    """
    Registry of chaos events.

    ``current_multipliers`` is a pure function of the registered events and
    the simulated time passed in; pausing the clock therefore never changes
    which events are active.
    """

    def __init__(self, events: Optional[Iterable[ChaosEvent]] = None):
        self.logger = logging.getLogger(__name__)
        self._events: Dict[str, ChaosEvent] = {}
        for event in events or ():
            self.add_event(event)

    @property
    def events(self) -> List[ChaosEvent]:
        return list(self._events.values())

    def add_event(self, event: ChaosEvent) -> None:
        if event.id in self._events:
            raise ValueError(f"Chaos event '{event.id}' already exists")
        if event.duration <= 0:
            raise ValueError(f"Chaos event '{event.id}' must have a positive duration")
        self._events[event.id] = event
        self.logger.info(f"Chaos event added: {event.id} ({event.type.value}) "
                         f"at t={event.start_time:.1f}s for {event.duration:.1f}s")

    def remove_event(self, event_id: str) -> ChaosEvent:
        try:
            event = self._events.pop(event_id)
        except KeyError:
            raise KeyError(f"Unknown chaos event '{event_id}'") from None
        self.logger.info(f"Chaos event removed: {event_id}")
        return event

    def clear(self) -> None:
        self._events.clear()

    def active_events(self, now: float) -> List[ChaosEvent]:
        return [e for e in self._events.values() if e.is_active(now)]

    def current_multipliers(self, now: float) -> ChaosMultipliers:
        """Fold all events active at ``now`` into one multiplier set."""
        active = self.active_events(now)
        if not active:
            return NO_CHAOS

        traffic = latency = failure_rate = database_latency = 1.0
        hit_rate: Optional[float] = None
        disconnected: Set[str] = set()
        crashed: Set[str] = set()
        slow: Dict[str, float] = {}

        for event in active:
            if event.type == ChaosType.TRAFFIC_SPIKE:
                traffic *= max(0.0, float(event.param("multiplier")))

            elif event.type == ChaosType.NETWORK_LATENCY:
                factor = 1.0 + max(0.0, float(event.param("latencyMs"))) / 100.0
                targets = event.component_ids
                if targets:
                    for cid in targets:
                        slow[cid] = max(slow.get(cid, 1.0), factor)
                else:
                    latency *= factor

            elif event.type == ChaosType.NETWORK_PARTITION:
                disconnected.update(event.component_ids)

            elif event.type == ChaosType.DATABASE_SLOWDOWN:
                database_latency *= max(1.0, float(event.param("multiplier")))

            elif event.type == ChaosType.CACHE_INVALIDATION_STORM:
                drop = min(1.0, max(0.0, float(event.param("hitRateDrop"))))
                override = BASELINE_CACHE_HIT_RATE * (1.0 - drop)
                hit_rate = override if hit_rate is None else min(hit_rate, override)

            elif event.type == ChaosType.COMPONENT_CRASH:
                crashed.update(event.component_ids)
                failure_rate *= max(1.0, float(event.param("failureRateMultiplier")))

        return ChaosMultipliers(
            traffic=traffic,
            latency=latency,
            failure_rate=failure_rate,
            database_latency=database_latency,
            cache_hit_rate=hit_rate,
            disconnected=frozenset(disconnected),
            crashed=frozenset(crashed),
            slow=MappingProxyType(slow),
        )
