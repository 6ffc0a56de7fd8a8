# capacity_engine/capacity/models.py

"""Placement request and result models."""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from capacity_engine.node_monitor.models import LocationStatus


@dataclass(frozen=True)
class CapacityRequirement:
    """Resources a new server asks for (MB). CPU is informational only."""
    memory: int
    disk: int
    cpu: Optional[float] = None

    @classmethod
    def coerce(cls, value: Any) -> Optional["CapacityRequirement"]:
        """
        Build a requirement from a requirement or a mapping.

        Returns None when memory or disk is missing, not a number, or not
        positive; such a requirement cannot be evaluated.
        """
        if isinstance(value, CapacityRequirement):
            source: Mapping[str, Any] = {"memory": value.memory, "disk": value.disk, "cpu": value.cpu}
        elif isinstance(value, Mapping):
            source = value
        else:
            return None

        memory = _positive_number(source.get("memory"))
        disk = _positive_number(source.get("disk"))
        if memory is None or disk is None:
            return None

        cpu = source.get("cpu")
        if isinstance(cpu, bool) or not isinstance(cpu, (int, float)):
            cpu = None

        return cls(memory=int(memory), disk=int(disk), cpu=cpu)

    def to_dict(self) -> Dict[str, Any]:
        return {"memory": self.memory, "disk": self.disk, "cpu": self.cpu}


@dataclass(frozen=True)
class NodeCandidate:
    """A node that can host the requirement, with its projected utilization."""
    node_id: int
    node_name: str
    fqdn: str
    available_memory: int
    available_disk: int
    memory_percentage_after: float
    disk_percentage_after: float


@dataclass
class CapacityCheckResult:
    """Outcome of checking one location against one requirement."""
    location_id: int
    can_accommodate: bool
    location_status: LocationStatus
    active_nodes: int = 0
    available_nodes: List[NodeCandidate] = field(default_factory=list)
    total_capacity: Dict[str, int] = field(default_factory=lambda: {"memory": 0, "disk": 0})
    available_capacity: Dict[str, int] = field(default_factory=lambda: {"memory": 0, "disk": 0})
    required_resources: Optional[Dict[str, Any]] = None
    utilization_after_creation: Dict[str, float] = field(
        default_factory=lambda: {"memory_percentage": 0.0, "disk_percentage": 0.0}
    )
    warnings: List[str] = field(default_factory=list)

    @property
    def peak_utilization_after(self) -> float:
        return max(
            self.utilization_after_creation["memory_percentage"],
            self.utilization_after_creation["disk_percentage"],
        )


@dataclass(frozen=True)
class SelectedNode:
    node_id: int
    node_name: str
    node_uuid: str
    fqdn: str
    location_id: int
    available_memory: int
    available_disk: int
    memory_percentage_after: float
    disk_percentage_after: float
    current_load_score: float
    selection_reason: str


@dataclass(frozen=True)
class NodeAlternative:
    node_id: int
    node_name: str
    memory_percentage_after: float
    disk_percentage_after: float
    load_score: float
    reason_not_selected: str


@dataclass
class NodeSelectionResult:
    """Outcome of picking a node within a location."""
    success: bool
    selected_node: Optional[SelectedNode] = None
    alternatives: List[NodeAlternative] = field(default_factory=list)
    error: Optional[str] = None


def _positive_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if math.isnan(value) or math.isinf(value) or value <= 0:
        return None
    return value
