# capacity_engine/panel/normalize.py

"""
Normalization of Pterodactyl application API payloads.

Panel JSON is loosely typed; everything that enters the monitor goes
through here. Unparseable numbers become 0 and unparseable booleans
become False so one bad field never breaks an aggregate.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from capacity_engine.config import MonitorSettings
from capacity_engine.node_monitor.models import NodeStatus, NodeUsage, usage_percentage

logger = logging.getLogger(__name__)


def to_int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number) or math.isinf(number):
        return default
    return int(number)


def to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return False


def unwrap(item: Any) -> Dict[str, Any]:
    """Return the ``attributes`` of a panel object, or {} if absent."""
    if not isinstance(item, dict):
        return {}
    attributes = item.get("attributes", item)
    return attributes if isinstance(attributes, dict) else {}


def extract_servers(item: Any) -> List[Dict[str, Any]]:
    """Server attributes from a node's ``servers`` relationship."""
    if not isinstance(item, dict):
        return []

    attributes = unwrap(item)
    relationships = attributes.get("relationships") or item.get("relationships") or {}
    if not isinstance(relationships, dict):
        return []

    servers = relationships.get("servers") or {}
    data = servers.get("data", []) if isinstance(servers, dict) else servers
    if not isinstance(data, list):
        return []

    return [s for s in (unwrap(entry) for entry in data) if s]


def effective_limit(total: int, overallocate: int, settings: MonitorSettings) -> int:
    """
    Capacity after the panel overallocation factor and the safety margin.

    Negative overallocation (the panel's "unlimited") counts as none.
    """
    limit = float(total)
    if settings.honor_panel_overallocation and overallocate > 0:
        limit += limit * overallocate / 100
    if settings.safety_margin_percent > 0:
        limit -= limit * settings.safety_margin_percent / 100
    return max(0, int(limit))


def node_status(
    maintenance_mode: bool,
    online: bool,
    memory_percentage: float,
    disk_percentage: float,
    settings: MonitorSettings,
) -> NodeStatus:
    if not online:
        return NodeStatus.OFFLINE
    if maintenance_mode:
        return NodeStatus.MAINTENANCE

    max_usage = max(memory_percentage, disk_percentage)
    if max_usage >= settings.full_threshold:
        return NodeStatus.FULL
    if max_usage >= settings.limited_threshold:
        return NodeStatus.LIMITED
    return NodeStatus.AVAILABLE


def normalize_node(
    item: Any,
    settings: MonitorSettings,
    servers: Optional[List[Dict[str, Any]]] = None,
    fetched_at: Optional[datetime] = None,
) -> Optional[NodeUsage]:
    """
    Build a NodeUsage from a panel node object.

    Args:
        item: Panel node object (``{"object": "node", "attributes": {...}}``)
        settings: Limit and threshold configuration
        servers: Server attributes placed on the node; read from the
            node's ``servers`` relationship when omitted
        fetched_at: Snapshot timestamp (defaults to now)

    Returns:
        NodeUsage, or None if the record has no usable node id
    """
    node = unwrap(item)
    node_id = to_int(node.get("id"), default=0)
    if node_id < 1:
        logger.warning(f"[normalize] skipping node record without id: {node!r:.200}")
        return None

    if servers is None:
        servers = extract_servers(item)

    total_memory = max(0, to_int(node.get("memory")))
    total_disk = max(0, to_int(node.get("disk")))
    memory_overallocate = to_int(node.get("memory_overallocate"))
    disk_overallocate = to_int(node.get("disk_overallocate"))

    effective_memory = effective_limit(total_memory, memory_overallocate, settings)
    effective_disk = effective_limit(total_disk, disk_overallocate, settings)

    allocated_memory = 0
    allocated_disk = 0
    suspended = 0
    for server in servers:
        limits = server.get("limits") if isinstance(server.get("limits"), dict) else {}
        allocated_memory += max(0, to_int(limits.get("memory")))
        allocated_disk += max(0, to_int(limits.get("disk")))
        if to_bool(server.get("suspended")):
            suspended += 1

    memory_percentage = usage_percentage(allocated_memory, effective_memory)
    disk_percentage = usage_percentage(allocated_disk, effective_disk)
    maintenance_mode = to_bool(node.get("maintenance_mode"))

    return NodeUsage(
        node_id=node_id,
        node_name=str(node.get("name") or f"node-{node_id}"),
        node_uuid=str(node.get("uuid") or ""),
        location_id=to_int(node.get("location_id")),
        fqdn=str(node.get("fqdn") or ""),
        maintenance_mode=maintenance_mode,
        online=True,
        total_memory=total_memory,
        total_disk=total_disk,
        memory_overallocate=memory_overallocate,
        disk_overallocate=disk_overallocate,
        effective_memory_limit=effective_memory,
        effective_disk_limit=effective_disk,
        allocated_memory=allocated_memory,
        allocated_disk=allocated_disk,
        available_memory=max(0, effective_memory - allocated_memory),
        available_disk=max(0, effective_disk - allocated_disk),
        memory_usage_percentage=memory_percentage,
        disk_usage_percentage=disk_percentage,
        total_servers=len(servers),
        active_servers=len(servers) - suspended,
        suspended_servers=suspended,
        status=node_status(maintenance_mode, True, memory_percentage, disk_percentage, settings),
        fetched_at=fetched_at or datetime.now(timezone.utc),
    )
