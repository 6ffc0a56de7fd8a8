# capacity_engine/capacity/strategies.py

"""
Node ranking strategies.

A strategy is a sort key over (node, requirement); lower sorts first.
Every key ends with the node id so ties resolve the same way each time.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Tuple

from capacity_engine.capacity.models import CapacityRequirement
from capacity_engine.core.errors import CapacityValidationError
from capacity_engine.node_monitor.models import NodeStatus, NodeUsage

SortKey = Tuple[float, ...]

# Utilization the balanced strategy aims for after placement
BALANCED_TARGET_PERCENT = 70.0


@dataclass(frozen=True)
class SelectionStrategy:
    name: str
    reason: str
    key: Callable[[NodeUsage, CapacityRequirement], SortKey]


def lowest_utilization_key(node: NodeUsage, requirement: CapacityRequirement) -> SortKey:
    """Least loaded after placement, by the busier of memory and disk."""
    memory_after, disk_after = node.projected_utilization(requirement.memory, requirement.disk)
    return (max(memory_after, disk_after), memory_after + disk_after, node.node_id)


def most_headroom_key(node: NodeUsage, requirement: CapacityRequirement) -> SortKey:
    """Largest absolute memory, then disk, left over after placement."""
    return (
        -(node.available_memory - requirement.memory),
        -(node.available_disk - requirement.disk),
        node.node_id,
    )


def balanced_fit_key(node: NodeUsage, requirement: CapacityRequirement) -> SortKey:
    """Closest to the target utilization after placement."""
    memory_after, disk_after = node.projected_utilization(requirement.memory, requirement.disk)
    distance = abs(memory_after - BALANCED_TARGET_PERCENT) + abs(disk_after - BALANCED_TARGET_PERCENT)
    return (round(distance, 2), max(memory_after, disk_after), node.node_id)


STATUS_PENALTY = {
    NodeStatus.AVAILABLE: 0.0,
    NodeStatus.LIMITED: 50.0,
    NodeStatus.FULL: 100.0,
    NodeStatus.MAINTENANCE: 100.0,
    NodeStatus.OFFLINE: 100.0,
}

# Server density assumes 1GB per server on average
AVERAGE_SERVER_MEMORY = 1024


def load_score(node: NodeUsage) -> float:
    """
    Current load of a node on a 0-100 scale, lower is better.

    Weighted 40% memory, 30% disk, 20% server density and 10% status.
    Reported alongside selections; not used for ranking.
    """
    max_servers = node.effective_memory_limit // AVERAGE_SERVER_MEMORY
    density = node.total_servers / max_servers * 100 if max_servers > 0 else 0.0

    score = (
        node.memory_usage_percentage * 0.4
        + node.disk_usage_percentage * 0.3
        + density * 0.2
        + STATUS_PENALTY[node.status] * 0.1
    )
    return round(score, 2)


STRATEGIES: Dict[str, SelectionStrategy] = {
    "lowest_utilization": SelectionStrategy(
        name="lowest_utilization",
        reason="lowest utilization after allocation",
        key=lowest_utilization_key,
    ),
    "most_headroom": SelectionStrategy(
        name="most_headroom",
        reason="most free resources after allocation",
        key=most_headroom_key,
    ),
    "balanced_fit": SelectionStrategy(
        name="balanced_fit",
        reason=f"closest to {BALANCED_TARGET_PERCENT:g}% utilization after allocation",
        key=balanced_fit_key,
    ),
}


def get_strategy(name: str) -> SelectionStrategy:
    try:
        return STRATEGIES[name]
    except KeyError:
        raise CapacityValidationError(
            f"Unknown selection strategy '{name}'. Available: {', '.join(sorted(STRATEGIES))}"
        )
