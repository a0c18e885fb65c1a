"""
Topology Model

Component graph of a system design. Components and connections are held in
insertion-ordered registries keyed by id; a networkx MultiDiGraph mirrors
them for structural queries (reachability, condensation, neighbors).

Only request and async connections carry forward load. Replication and
response connections are kept in the graph but excluded from the forward
view used by propagation and SPOF analysis.
"""

from __future__ import annotations
import itertools
import logging
from typing import Dict, Iterator, List, Optional, Set, Tuple

import networkx as nx

from .component_types import TypeProfile, default_config, profile_for
from .models import (
    Component,
    ComponentConfig,
    ComponentType,
    Connection,
    ConnectionDirection,
    ConnectionType,
    Protocol,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Edge Compatibility Rules
# =============================================================================

_STORAGE_TARGETS = frozenset({
    ComponentType.DATABASE, ComponentType.CACHE, ComponentType.OBJECT_STORE,
})
_MESSAGING_SOURCES = frozenset({
    ComponentType.QUEUE, ComponentType.PUBSUB, ComponentType.STREAM,
})

# source type -> [(rejected targets, reason)]
_EDGE_RULES: Dict[ComponentType, List[Tuple[frozenset, str]]] = {
    ComponentType.LOAD_BALANCER: [
        (_STORAGE_TARGETS | {ComponentType.QUEUE},
         "Load balancers distribute traffic to compute instances, not to storage or queues"),
    ],
    ComponentType.DNS: [
        (frozenset({ComponentType.DATABASE}),
         "DNS resolves names for edge services; it cannot route to a database"),
    ],
    ComponentType.CDN: [
        (frozenset({ComponentType.DATABASE, ComponentType.QUEUE}),
         "CDNs serve cached content from an origin server, not directly from databases or queues"),
    ],
    ComponentType.API_GATEWAY: [
        (frozenset({ComponentType.DATABASE, ComponentType.CACHE}),
         "API gateways route to services; data access belongs behind an application tier"),
    ],
}
for _messaging in _MESSAGING_SOURCES:
    _EDGE_RULES[_messaging] = [
        (_STORAGE_TARGETS,
         "Messaging systems deliver to consumers (workers, services), not directly to storage"),
        (frozenset({ComponentType.API_GATEWAY, ComponentType.LOAD_BALANCER}),
         "Messages are consumed by workers; gateways and load balancers only accept requests"),
    ]


def validate_edge(from_type: ComponentType, to_type: ComponentType) -> Optional[str]:
    """
    Check whether a connection between two component types makes sense.

    Returns:
        None when valid, otherwise a human-readable violation reason.
    """
    if profile_for(from_type).always_compatible or profile_for(to_type).always_compatible:
        return None
    for rejected, reason in _EDGE_RULES.get(from_type, ()):
        if to_type in rejected:
            return reason
    return None


# =============================================================================
# Topology
# =============================================================================

class Topology:
    """
    Mutable component graph.

    Example:
        >>> topo = Topology()
        >>> topo.add_component("lb", ComponentType.LOAD_BALANCER)
        >>> topo.add_component("app", ComponentType.APP_SERVER)
        >>> topo.connect("lb", "app")
        >>> topo.sources()
        ['lb']
    """

    def __init__(self):
        self.components: Dict[str, Component] = {}
        self.connections: Dict[str, Connection] = {}
        self.graph = nx.MultiDiGraph()
        self._forward: Optional[nx.DiGraph] = None
        self._ids = itertools.count(1)
        # Connections whose endpoints were missing on load
        self.dangling_connections: List[Connection] = []

    # =========================================================================
    # Mutation
    # =========================================================================

    def add(self, component: Component) -> Component:
        if component.id in self.components:
            raise ValueError(f"Component '{component.id}' already exists")
        self.components[component.id] = component
        self.graph.add_node(component.id)
        self._forward = None
        return component

    def add_component(
        self,
        component_id: str,
        component_type: ComponentType,
        config: Optional[ComponentConfig] = None,
        **config_changes,
    ) -> Component:
        """Add a component with its type's default config plus overrides."""
        base = config or default_config(component_type)
        if config_changes:
            base = base.with_changes(**config_changes)
        return self.add(Component(component_id, component_type, base))

    def remove_component(self, component_id: str) -> None:
        self._require(component_id)
        for conn_id in [c.id for c in self.connections.values()
                        if component_id in (c.source_id, c.target_id)]:
            del self.connections[conn_id]
        del self.components[component_id]
        self.graph.remove_node(component_id)
        self._forward = None

    def connect(
        self,
        source_id: str,
        target_id: str,
        connection_type: ConnectionType = ConnectionType.REQUEST,
        direction: ConnectionDirection = ConnectionDirection.UNIDIRECTIONAL,
        protocol: Protocol = Protocol.HTTP,
        label: Optional[str] = None,
        split: Optional[float] = None,
        connection_id: Optional[str] = None,
    ) -> Connection:
        """Add a connection between two existing components."""
        return self.add_connection(Connection(
            id=connection_id or self._next_connection_id(),
            source_id=source_id,
            target_id=target_id,
            type=connection_type,
            direction=direction,
            protocol=protocol,
            label=label,
            split=split,
        ))

    def add_connection(self, connection: Connection) -> Connection:
        self._require(connection.source_id)
        self._require(connection.target_id)
        if connection.id in self.connections:
            raise ValueError(f"Connection '{connection.id}' already exists")
        self.connections[connection.id] = connection
        self.graph.add_edge(connection.source_id, connection.target_id, key=connection.id)
        self._forward = None
        return connection

    def disconnect(self, connection_id: str) -> None:
        conn = self.connections.pop(connection_id)
        self.graph.remove_edge(conn.source_id, conn.target_id, key=connection_id)
        self._forward = None

    def update_config(self, component_id: str, config: ComponentConfig) -> None:
        self._require(component_id).config = config

    def copy(self) -> "Topology":
        clone = Topology()
        for comp in self.components.values():
            clone.add(Component(
                comp.id, comp.type, comp.config, comp.position, comp.size,
                comp.custom_name, dict(comp.extra), dict(comp.config_extra),
            ))
        for conn in self.connections.values():
            clone.add_connection(Connection(
                conn.id, conn.source_id, conn.target_id, conn.type, conn.direction,
                conn.protocol, conn.label, conn.split, dict(conn.extra),
            ))
        clone.dangling_connections = list(self.dangling_connections)
        return clone

    # =========================================================================
    # Queries
    # =========================================================================

    def __contains__(self, component_id: str) -> bool:
        return component_id in self.components

    def __iter__(self) -> Iterator[Component]:
        return iter(self.components.values())

    def __len__(self) -> int:
        return len(self.components)

    def get(self, component_id: str) -> Component:
        return self._require(component_id)

    def profile(self, component_id: str) -> TypeProfile:
        return profile_for(self._require(component_id).type)

    def is_active(self, component_id: str) -> bool:
        """Whether the component takes part in simulation."""
        return not self.profile(component_id).inert

    def active_ids(self) -> List[str]:
        return [cid for cid in self.components if self.is_active(cid)]

    def forward_connections(self) -> List[Connection]:
        """Load-carrying connections between active components."""
        return [
            c for c in self.connections.values()
            if c.type.carries_load and self.is_active(c.source_id) and self.is_active(c.target_id)
        ]

    def outbound(self, component_id: str) -> List[Connection]:
        return [c for c in self.forward_connections() if c.source_id == component_id]

    def inbound(self, component_id: str) -> List[Connection]:
        return [c for c in self.forward_connections() if c.target_id == component_id]

    def replication_edge_count(self, component_id: str) -> int:
        """Outbound replication / ack connections of a component."""
        return sum(
            1 for c in self.connections.values()
            if c.source_id == component_id and not c.type.carries_load
        )

    def forward_graph(self) -> nx.DiGraph:
        """Simple directed graph of load-carrying connections (cached)."""
        if self._forward is None:
            graph = nx.DiGraph()
            graph.add_nodes_from(self.active_ids())
            for conn in self.forward_connections():
                graph.add_edge(conn.source_id, conn.target_id)
            self._forward = graph
        return self._forward

    def neighbors(self, component_id: str, direction: str = "out") -> List[str]:
        """
        Neighboring component ids.

        Args:
            component_id: Component to inspect
            direction: "out", "in" or "both"; bidirectional connections
                count in both directions
        """
        self._require(component_id)
        if direction not in ("out", "in", "both"):
            raise ValueError(f"Unknown direction '{direction}'")
        found: List[str] = []
        for conn in self.connections.values():
            if direction in ("out", "both"):
                if conn.source_id == component_id:
                    found.append(conn.target_id)
                elif conn.is_bidirectional and conn.target_id == component_id:
                    found.append(conn.source_id)
            if direction in ("in", "both"):
                if conn.target_id == component_id:
                    found.append(conn.source_id)
                elif conn.is_bidirectional and conn.source_id == component_id:
                    found.append(conn.target_id)
        return list(dict.fromkeys(found))

    def sources(self) -> List[str]:
        """Active components with no inbound forward edge, or marked as traffic origin."""
        graph = self.forward_graph()
        result = []
        for cid in graph.nodes:
            comp = self.components[cid]
            if graph.in_degree(cid) == 0 or comp.config.traffic_origin or profile_for(comp.type).is_origin:
                result.append(cid)
        return result

    def sinks(self) -> List[str]:
        """Active components with no outbound forward edge."""
        graph = self.forward_graph()
        return [cid for cid in graph.nodes if graph.out_degree(cid) == 0]

    def reachable_from_sources(self, excluded: Optional[str] = None) -> Set[str]:
        """Components reachable from any source, optionally with one removed."""
        graph = self.forward_graph()
        if excluded is not None:
            graph = nx.restricted_view(graph, [excluded], [])
        reached: Set[str] = set()
        for source in self.sources():
            if source == excluded or source in reached:
                continue
            reached.add(source)
            reached |= nx.descendants(graph, source)
        return reached

    def invalid_connections(self) -> List[Tuple[Connection, str]]:
        """Connections whose endpoint types are incompatible."""
        invalid = []
        for conn in self.connections.values():
            reason = validate_edge(self.components[conn.source_id].type,
                                   self.components[conn.target_id].type)
            if reason:
                invalid.append((conn, reason))
        return invalid

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require(self, component_id: str) -> Component:
        try:
            return self.components[component_id]
        except KeyError:
            raise KeyError(f"Unknown component '{component_id}'") from None

    def _next_connection_id(self) -> str:
        while True:
            candidate = f"conn-{next(self._ids)}"
            if candidate not in self.connections:
                return candidate
