"""
Design Validator

Pre-run gate. Errors (``reasons``) block the run; warnings and suggestions
are advisory and are shown alongside the results.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from archsim.core.component_types import ENTRY_TYPES, profile_for
from archsim.core.models import ComponentType
from archsim.core.topology import Topology
from archsim.domain.models.constraints import ConstraintTargets

HIGH_DAU = 1_000_000

_STORAGE_TYPES = frozenset({ComponentType.DATABASE, ComponentType.OBJECT_STORE,
                            ComponentType.SHARD_NODE, ComponentType.PARTITION_NODE})
_COMPUTE_TYPES = frozenset({ComponentType.APP_SERVER, ComponentType.SERVERLESS,
                            ComponentType.CUSTOM_SERVICE, ComponentType.WORKER})


@dataclass
class ValidationResult:
    """Outcome of the pre-run gate."""
    is_valid: bool
    reasons: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "reasons": list(self.reasons),
            "warnings": list(self.warnings),
            "suggestions": list(self.suggestions),
        }


class DesignValidator:
    """Checks a topology is simulatable and flags common design gaps."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def validate(self, topology: Topology, targets: Optional[ConstraintTargets] = None) -> ValidationResult:
        targets = targets or ConstraintTargets()
        reasons: List[str] = []
        warnings: List[str] = []
        suggestions: List[str] = []

        active = topology.active_ids()
        if not active:
            return ValidationResult(
                is_valid=False,
                reasons=["No components: add at least one component to build your system"],
                suggestions=["Start by adding a Load Balancer or App Server"],
            )

        # --- Errors ---
        for conn, reason in topology.invalid_connections():
            reasons.append(f"Invalid connection {conn.source_id} -> {conn.target_id}: {reason}")
        for conn in topology.dangling_connections:
            reasons.append(f"Connection '{conn.id}' references a missing component "
                           f"({conn.source_id} -> {conn.target_id})")
        if not topology.sources():
            reasons.append("No traffic source: every component has an inbound connection")
        if not topology.sinks():
            reasons.append("No terminal component: traffic only circulates through cycles")

        # --- Warnings ---
        types = {topology.get(cid).type for cid in active}
        if not types & ENTRY_TYPES:
            warnings.append("No entry point: add a Load Balancer, API Gateway, or CDN to receive traffic")
        if not types & _STORAGE_TYPES:
            warnings.append("No data storage: add a Database to store your data persistently")
        if not types & _COMPUTE_TYPES:
            warnings.append("No compute layer: add an App Server or Serverless function")

        connected = set()
        for conn in topology.connections.values():
            connected.update((conn.source_id, conn.target_id))
        if len(active) > 1:
            for cid in active:
                if cid not in connected:
                    warnings.append(f"{topology.get(cid).name} is not connected to anything")

        # --- Suggestions ---
        if targets.is_read_heavy and ComponentType.CACHE not in types:
            suggestions.append("This is a read-heavy system. Adding a Cache would improve performance.")
        if targets.dau > HIGH_DAU and ComponentType.LOAD_BALANCER not in types:
            suggestions.append("High traffic systems benefit from a Load Balancer")
        if any(profile_for(t).persistent for t in types) and not types & {ComponentType.REPLICA_NODE}:
            if not any(topology.get(cid).config.replication for cid in active
                       if profile_for(topology.get(cid).type).persistent):
                suggestions.append("Enable replication on databases to survive node loss")
        deployed = {region for cid in active for region in topology.get(cid).config.regions}
        missing = [region for region in targets.regions if region not in deployed]
        if missing:
            suggestions.append(f"No component is deployed in {', '.join(missing)}; "
                               f"add regions to serve users there")

        result = ValidationResult(
            is_valid=not reasons,
            reasons=reasons,
            warnings=warnings,
            suggestions=suggestions,
        )
        if reasons:
            self.logger.info(f"Design rejected: {len(reasons)} error(s)")
        return result
