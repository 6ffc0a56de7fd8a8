# capacity_engine/node_monitor/models.py

"""Node and location capacity snapshot models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple


class NodeStatus(Enum):
    """Node placement status."""
    AVAILABLE = "available"
    LIMITED = "limited"
    FULL = "full"
    MAINTENANCE = "maintenance"
    OFFLINE = "offline"


class LocationStatus(Enum):
    """Location placement status."""
    AVAILABLE = "available"
    LIMITED = "limited"
    FULL = "full"
    UNAVAILABLE = "unavailable"


def usage_percentage(allocated: float, limit: float) -> float:
    """Allocated share of a limit, clamped to 0-100 and rounded to 2 dp."""
    if limit <= 0:
        return 0.0
    return round(min(100.0, max(0.0, allocated / limit * 100)), 2)


def projected_percentage(allocated: float, extra: float, limit: float) -> float:
    """Utilization after adding ``extra`` on top of ``allocated``."""
    if limit <= 0:
        return 0.0
    return round((allocated + extra) / limit * 100, 2)


@dataclass(frozen=True)
class NodeUsage:
    """Point-in-time resource snapshot of one panel node (MB)."""
    node_id: int
    node_name: str
    location_id: int
    fqdn: str
    node_uuid: str = ""

    maintenance_mode: bool = False
    online: bool = True

    # Configured capacity
    total_memory: int = 0
    total_disk: int = 0
    memory_overallocate: int = 0
    disk_overallocate: int = 0

    # Capacity after overallocation / safety margin
    effective_memory_limit: int = 0
    effective_disk_limit: int = 0

    # Sum of limits of servers placed on the node
    allocated_memory: int = 0
    allocated_disk: int = 0

    available_memory: int = 0
    available_disk: int = 0

    memory_usage_percentage: float = 0.0
    disk_usage_percentage: float = 0.0

    total_servers: int = 0
    active_servers: int = 0
    suspended_servers: int = 0

    status: NodeStatus = NodeStatus.AVAILABLE
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def is_active(self) -> bool:
        """Node can receive new placements (reachable and not in maintenance)."""
        return self.online and not self.maintenance_mode

    def can_fit(self, memory: int, disk: int) -> bool:
        """Check if node can host a server with the given limits."""
        return (
            self.is_active() and
            self.available_memory >= memory and
            self.available_disk >= disk
        )

    def projected_utilization(self, memory: int, disk: int) -> Tuple[float, float]:
        """(memory %, disk %) after hypothetically placing the given limits."""
        return (
            projected_percentage(self.allocated_memory, memory, self.effective_memory_limit),
            projected_percentage(self.allocated_disk, disk, self.effective_disk_limit),
        )


@dataclass(frozen=True)
class LocationCapacity:
    """Aggregate capacity of all nodes in one location.

    Resource sums only include active nodes; node counters include all.
    """
    location_id: int
    status: LocationStatus

    total_nodes: int = 0
    active_nodes: int = 0
    maintenance_nodes: int = 0
    offline_nodes: int = 0

    total_memory: int = 0
    total_disk: int = 0
    effective_memory_limit: int = 0
    effective_disk_limit: int = 0
    allocated_memory: int = 0
    allocated_disk: int = 0
    available_memory: int = 0
    available_disk: int = 0

    memory_usage_percentage: float = 0.0
    disk_usage_percentage: float = 0.0

    total_servers: int = 0

    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        return max(0.0, (now - self.fetched_at).total_seconds())


@dataclass(frozen=True)
class MonitoringStats:
    """Global health summary for admin dashboards."""
    total_nodes: int = 0
    online_nodes: int = 0
    active_nodes: int = 0
    nodes_in_maintenance: int = 0
    offline_nodes: int = 0
    total_locations: int = 0
    total_servers: int = 0

    total_memory: int = 0
    total_disk: int = 0
    allocated_memory: int = 0
    allocated_disk: int = 0
    total_available_memory: int = 0
    total_available_disk: int = 0

    overall_memory_usage: float = 0.0
    overall_disk_usage: float = 0.0

    fetched_at: Optional[datetime] = None
