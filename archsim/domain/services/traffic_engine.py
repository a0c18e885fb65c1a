"""
Traffic Propagation Engine

Computes offered and accepted load for every component for one tick by
walking the forward graph (request and async connections) from the
traffic sources.

Walk order:
    Strongly connected components of the forward graph are condensed and
    visited in topological order, so a component is processed only after
    every non-cyclic upstream contributor. Inside a cycle, members are
    ordered by BFS depth from the sources. A per-tick visited-set stops
    flow from re-entering a component already processed in the pass.

Backpressure:
    Every component has a per-tick headroom (its admission limit). Each
    inbound flow is clamped to the remaining headroom; the excess is
    recorded as dropped on the receiving component. Buffering components
    (queues, streams) keep refused messages as backlog instead.
"""

from __future__ import annotations
import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

import networkx as nx

from archsim.config.settings import SimulationSettings
from archsim.core.component_types import profile_for
from archsim.core.models import Connection
from archsim.core.topology import Topology
from archsim.domain.models.chaos import ChaosMultipliers
from archsim.domain.models.context import EdgeFlow
from archsim.domain.models.metrics import ComponentMetrics
from archsim.domain.services.behavior_model import Admission, NodeLoad, clamp


@dataclass
class TrafficResult:
    """Per-component load and per-connection flow of one tick."""
    nodes: Dict[str, NodeLoad] = field(default_factory=dict)
    edges: Dict[str, EdgeFlow] = field(default_factory=dict)
    order: List[str] = field(default_factory=list)
    sources: List[str] = field(default_factory=list)

    @property
    def entry_offered(self) -> float:
        return sum(self.nodes[s].offered for s in self.sources if s in self.nodes)

    @property
    def entry_accepted(self) -> float:
        return sum(self.nodes[s].accepted for s in self.sources if s in self.nodes)

    def load(self, component_id: str) -> NodeLoad:
        return self.nodes.get(component_id, NodeLoad())

    def inbound_share(self, source_id: str, target_id: str) -> float:
        """Fraction of the target's offered load that came from ``source_id``."""
        target = self.nodes.get(target_id)
        if not target or target.offered <= 0:
            return 0.0
        from_source = sum(f.offered_rps for f in self.edges.values()
                          if f.source_id == source_id and f.target_id == target_id)
        return clamp(from_source / target.offered)


class TrafficEngine:
    """
    Forward load propagation.

    Example:
        >>> engine = TrafficEngine(settings)
        >>> result = engine.propagate(topology, 2500.0, chaos, admissions, ratios, prev)
        >>> result.nodes["app"].accepted
        2000.0
    """

    def __init__(self, settings: Optional[SimulationSettings] = None):
        self.settings = settings or SimulationSettings()
        self.logger = logging.getLogger(__name__)

    def propagate(
        self,
        topology: Topology,
        base_rps: float,
        chaos: ChaosMultipliers,
        admissions: Mapping[str, Admission],
        forward_ratios: Mapping[str, float],
        previous: Mapping[str, ComponentMetrics],
    ) -> TrafficResult:
        """
        Run one propagation pass.

        Args:
            topology: Component graph
            base_rps: Traffic entering the system, split evenly across sources
            chaos: Active chaos multipliers (traffic multiplier applies at sources)
            admissions: Accept limits from the behavior model
            forward_ratios: Share of accepted load each component passes on
            previous: Previous-tick metrics (queue backlog, retry amplification)
        """
        dt = self.settings.tick_interval_s
        sources = topology.sources()
        order = self.walk_order(topology, sources)
        source_share = max(0.0, base_rps) * chaos.traffic / len(sources) if sources else 0.0

        offered: Dict[str, float] = defaultdict(float)
        accepted: Dict[str, float] = defaultdict(float)
        dropped: Dict[str, float] = defaultdict(float)
        forwarded: Dict[str, float] = {}
        drained: Dict[str, float] = {}
        headroom = {cid: admissions[cid].accept_limit for cid in order}
        edges: Dict[str, EdgeFlow] = {}
        visited = set()

        source_set = set(sources)
        for cid in order:
            visited.add(cid)
            if cid in source_set:
                self._admit(cid, source_share, offered, accepted, dropped, headroom)

            profile = profile_for(topology.get(cid).type)
            prev = previous.get(cid, ComponentMetrics())
            out_load = accepted[cid] * clamp(forward_ratios.get(cid, 1.0))
            if admissions[cid].unavailable:
                # Unavailable components forward nothing; a buffer keeps its backlog
                out_load = 0.0
            elif profile.buffered:
                drain_cap = admissions[cid].capacity
                out_load = min(drain_cap, accepted[cid] + prev.queue_depth / dt) if drain_cap > 0 else 0.0
            forwarded[cid] = out_load

            delivered: List[float] = []
            for conn, share in self._shares(topology, cid, out_load, fanout=profile.fanout):
                if conn.target_id in visited:
                    # Cycle back into a processed component: not re-entered
                    edges[conn.id] = EdgeFlow(conn.id, conn.source_id, conn.target_id)
                    continue
                share *= self._retry_amplification(topology, cid, conn.target_id, admissions, previous)
                taken = self._admit(conn.target_id, share, offered, accepted, dropped, headroom,
                                    record_drop=not profile.buffered)
                delivered.append(taken)
                edges[conn.id] = EdgeFlow(
                    connection_id=conn.id,
                    source_id=conn.source_id,
                    target_id=conn.target_id,
                    offered_rps=share,
                    accepted_rps=taken,
                    traffic_flow=clamp(taken / out_load) if out_load > 0 else 0.0,
                )

            if not delivered:
                drained[cid] = out_load
            elif profile.fanout:
                drained[cid] = min(delivered)
            else:
                drained[cid] = sum(delivered)

        for conn in topology.connections.values():
            if conn.id not in edges:
                edges[conn.id] = EdgeFlow(conn.id, conn.source_id, conn.target_id)

        nodes = {
            cid: NodeLoad(
                offered=offered[cid],
                accepted=accepted[cid],
                dropped=dropped[cid],
                forwarded=forwarded.get(cid, 0.0),
                drained=drained.get(cid, 0.0),
                is_source=cid in source_set,
            )
            for cid in order
        }
        return TrafficResult(nodes=nodes, edges=edges, order=order, sources=sources)

    # =========================================================================
    # Walk order
    # =========================================================================

    def walk_order(self, topology: Topology, sources: Optional[List[str]] = None) -> List[str]:
        """Condensation-topological order of active components."""
        graph = topology.forward_graph()
        if graph.number_of_nodes() == 0:
            return []
        sources = topology.sources() if sources is None else sources
        index = {cid: i for i, cid in enumerate(topology.components)}
        depth = self._bfs_depth(graph, sources)

        condensed = nx.condensation(graph)
        order: List[str] = []
        first_index = {
            n: min(index[m] for m in data["members"]) for n, data in condensed.nodes(data=True)
        }
        for scc in nx.lexicographical_topological_sort(condensed, key=first_index.get):
            members = condensed.nodes[scc]["members"]
            order.extend(sorted(members, key=lambda m: (depth.get(m, math.inf), index[m])))
        return order

    @staticmethod
    def _bfs_depth(graph: nx.DiGraph, sources: List[str]) -> Dict[str, int]:
        depth: Dict[str, int] = {}
        for source in sources:
            for node, hops in nx.single_source_shortest_path_length(graph, source).items():
                if hops < depth.get(node, math.inf):
                    depth[node] = hops
        return depth

    # =========================================================================
    # Flow helpers
    # =========================================================================

    @staticmethod
    def _admit(target, amount, offered, accepted, dropped, headroom, record_drop=True) -> float:
        """Offer ``amount`` to ``target``; returns the accepted part."""
        amount = max(0.0, amount)
        offered[target] += amount
        taken = min(amount, max(0.0, headroom[target]))
        headroom[target] -= taken
        accepted[target] += taken
        if record_drop:
            dropped[target] += amount - taken
        return taken

    @staticmethod
    def _shares(topology: Topology, component_id: str, out_load: float, fanout: bool):
        """Split forwarded load across outbound connections, grouped by logical type."""
        groups: Dict[object, List[Connection]] = defaultdict(list)
        for conn in topology.outbound(component_id):
            groups[conn.type].append(conn)
        for conns in groups.values():
            if fanout:
                for conn in conns:
                    yield conn, out_load
                continue
            weights = [c.split if c.split is not None and c.split > 0 else None for c in conns]
            if any(w is not None for w in weights):
                weights = [w if w is not None else 0.0 for w in weights]
            else:
                weights = [1.0] * len(conns)
            total = sum(weights)
            for conn, weight in zip(conns, weights):
                yield conn, out_load * weight / total if total > 0 else 0.0

    def _retry_amplification(self, topology, source_id, target_id, admissions, previous) -> float:
        """Extra load from a caller retrying failed requests against ``target_id``."""
        config = topology.get(source_id).config
        if not config.retries or admissions[source_id].circuit_open:
            return 1.0
        error = previous.get(target_id, ComponentMetrics()).error_rate
        return retry_amplification(error, self.settings.retry_attempts)


def retry_amplification(error_rate: float, attempts: int) -> float:
    """Load multiplier of ``attempts`` retries against a target failing at ``error_rate``."""
    error = clamp(error_rate)
    return sum(error ** i for i in range(attempts + 1))
