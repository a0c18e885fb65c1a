"""
Blueprint Serialization

Reconstructs a Topology from the persisted blueprint format and echoes it
back. The blueprint schema is owned by the design-sharing backend:

    {
      "components": [{"id", "type", "position": {"x", "y"},
                      "size": {"w", "h"}, "config": {...}, "customName"}],
      "connections": [{"id", "sourceId", "targetId", "type",
                       "direction", "protocol", "label"}]
    }

Unknown component types fall back to an app server. Unknown keys are kept
so that an unchanged design round-trips.
"""

from __future__ import annotations
import json
import logging
from pathlib import Path
from typing import Any, Dict, Type, TypeVar, Union
from enum import Enum

from .component_types import FALLBACK_TYPE, default_config
from .models import (
    Component,
    ComponentConfig,
    ComponentType,
    Connection,
    ConnectionDirection,
    ConnectionType,
    Protocol,
)
from .topology import Topology

logger = logging.getLogger(__name__)

_E = TypeVar("_E", bound=Enum)

_COMPONENT_KEYS = {"id", "type", "position", "size", "config", "customName"}
_CONNECTION_KEYS = {"id", "sourceId", "targetId", "type", "direction", "protocol", "label", "split"}


def _enum(enum_cls: Type[_E], value: Any, default: _E) -> _E:
    try:
        return enum_cls(value)
    except ValueError:
        return default


def component_from_dict(data: Dict[str, Any]) -> Component:
    """Build a Component from its blueprint dict."""
    if "id" not in data:
        raise ValueError("Component entry is missing 'id'")
    raw_type = str(data.get("type", ""))
    comp_type = ComponentType.parse(raw_type)
    if comp_type is None:
        logger.warning(f"Unknown component type '{raw_type}' for '{data['id']}', "
                       f"using {FALLBACK_TYPE.value}")
        comp_type = FALLBACK_TYPE

    raw_config = data.get("config") or {}
    if not isinstance(raw_config, dict):
        raise ValueError(f"Config of component '{data['id']}' must be an object")
    config = ComponentConfig.from_dict(raw_config, base=default_config(comp_type))
    position = data.get("position") or {}
    size = data.get("size") or {}
    return Component(
        id=str(data["id"]),
        type=comp_type,
        config=config,
        position=(float(position.get("x", 0.0)), float(position.get("y", 0.0))),
        size=(float(size.get("w", 80.0)), float(size.get("h", 64.0))),
        custom_name=data.get("customName"),
        extra={k: v for k, v in data.items() if k not in _COMPONENT_KEYS},
        config_extra={k: v for k, v in raw_config.items()
                      if k not in ComponentConfig.JSON_KEYS
                      and k not in ComponentConfig.__dataclass_fields__},
    )


def connection_from_dict(data: Dict[str, Any], index: int) -> Connection:
    """Build a Connection from its blueprint dict."""
    try:
        source_id = str(data["sourceId"])
        target_id = str(data["targetId"])
    except KeyError as e:
        raise ValueError(f"Connection entry {index} is missing {e}") from None
    return Connection(
        id=str(data.get("id") or f"conn-{index + 1}"),
        source_id=source_id,
        target_id=target_id,
        type=_enum(ConnectionType, data.get("type"), ConnectionType.REQUEST),
        direction=_enum(ConnectionDirection, data.get("direction"), ConnectionDirection.UNIDIRECTIONAL),
        protocol=_enum(Protocol, data.get("protocol"), Protocol.HTTP),
        label=data.get("label"),
        split=data.get("split"),
        extra={k: v for k, v in data.items() if k not in _CONNECTION_KEYS},
    )


def topology_from_dict(data: Dict[str, Any]) -> Topology:
    """
    Reconstruct a Topology from a blueprint dict.

    Connections referencing missing components are not added; they are
    recorded in ``Topology.dangling_connections`` for the pre-run gate.

    Raises:
        ValueError: If the document is not a blueprint.
    """
    if not isinstance(data, dict):
        raise ValueError("Blueprint must be a JSON object")
    components = data.get("components", [])
    connections = data.get("connections", [])
    if not isinstance(components, list) or not isinstance(connections, list):
        raise ValueError("Blueprint 'components' and 'connections' must be lists")

    topology = Topology()
    for entry in components:
        topology.add(component_from_dict(entry))
    for index, entry in enumerate(connections):
        conn = connection_from_dict(entry, index)
        if conn.source_id not in topology or conn.target_id not in topology:
            logger.warning(f"Connection '{conn.id}' references a missing component")
            topology.dangling_connections.append(conn)
            continue
        topology.add_connection(conn)

    logger.info(f"Loaded blueprint: {len(topology)} components, "
                f"{len(topology.connections)} connections")
    return topology


def topology_to_dict(topology: Topology) -> Dict[str, Any]:
    """Serialize a Topology back to the blueprint format."""
    return {
        "components": [c.to_dict() for c in topology.components.values()],
        "connections": [c.to_dict() for c in topology.connections.values()]
                       + [c.to_dict() for c in topology.dangling_connections],
    }


def load_blueprint(path: Union[str, Path]) -> Topology:
    with open(path, "r") as f:
        return topology_from_dict(json.load(f))


def save_blueprint(topology: Topology, path: Union[str, Path]) -> None:
    with open(path, "w") as f:
        json.dump(topology_to_dict(topology), f, indent=2)
