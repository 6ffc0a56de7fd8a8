# capacity_engine/capacity/calculator.py
"""Capacity checks and node placement on top of node monitor snapshots."""

import logging
from typing import Any, List, Optional, Sequence

from capacity_engine.capacity.models import (
    CapacityCheckResult,
    CapacityRequirement,
    NodeAlternative,
    NodeCandidate,
    NodeSelectionResult,
    SelectedNode,
)
from capacity_engine.capacity.strategies import SelectionStrategy, get_strategy, load_score
from capacity_engine.core.validation import validate_id, validate_ids
from capacity_engine.node_monitor.models import (
    LocationCapacity,
    LocationStatus,
    NodeUsage,
    projected_percentage,
)
from capacity_engine.node_monitor.service import NodeMonitorService

logger = logging.getLogger(__name__)

MAX_ALTERNATIVES = 3

LOCATION_UNAVAILABLE = "Location not found or capacity data unavailable"
REQUIREMENT_INVALID = "Resource requirement could not be evaluated (memory and disk must be positive numbers)"


class CapacityCalculator:
    """
    Turns node snapshots into placement answers.

    "Cannot accommodate" is a normal answer, never an exception. Checks
    and selections rank nodes with the same strategy over the same
    snapshot, so a location that can accommodate always yields a node.
    """

    def __init__(self, monitor: NodeMonitorService, strategy: Optional[SelectionStrategy] = None):
        self._monitor = monitor
        self._settings = monitor.settings
        self._strategy = strategy or get_strategy(self._settings.selection_strategy)

    @property
    def strategy(self) -> SelectionStrategy:
        return self._strategy

    def rank_nodes(self, nodes: Sequence[NodeUsage], requirement: CapacityRequirement) -> List[NodeUsage]:
        """Nodes able to host the requirement, best first."""
        eligible = [node for node in nodes if node.can_fit(requirement.memory, requirement.disk)]
        return sorted(eligible, key=lambda node: self._strategy.key(node, requirement))

    # ============================================
    # CAPACITY CHECKS
    # ============================================

    def check_location_capacity(
        self,
        location_id: int,
        requirement: Any,
        force_refresh: bool = False,
    ) -> CapacityCheckResult:
        """
        Check whether a location can host the requirement right now.

        Args:
            location_id: Panel location id
            requirement: CapacityRequirement or mapping with memory/disk/cpu
            force_refresh: Bypass the snapshot cache

        Returns:
            CapacityCheckResult (can_accommodate=False when the location is
            unknown, unavailable, too full, or the requirement is invalid)
        """
        validate_id(location_id, "location_id")
        nodes, from_fallback = self._monitor.get_all_nodes_snapshot(force_refresh)
        return self._check(location_id, requirement, nodes, from_fallback)

    def get_multi_location_capacity(
        self,
        location_ids: Sequence[int],
        requirement: Any,
        force_refresh: bool = False,
    ) -> List[CapacityCheckResult]:
        """Check several locations against one snapshot, in input order."""
        location_ids = validate_ids(location_ids, "location_ids")
        nodes, from_fallback = self._monitor.get_all_nodes_snapshot(force_refresh)
        return [self._check(location_id, requirement, nodes, from_fallback) for location_id in location_ids]

    def _check(
        self,
        location_id: int,
        requirement: Any,
        nodes: Sequence[NodeUsage],
        from_fallback: bool = False,
    ) -> CapacityCheckResult:
        parsed = CapacityRequirement.coerce(requirement)
        location = self._monitor.build_location_capacity(location_id, nodes)

        if location is None:
            return CapacityCheckResult(
                location_id=location_id,
                can_accommodate=False,
                location_status=LocationStatus.UNAVAILABLE,
                required_resources=parsed.to_dict() if parsed else None,
                warnings=[LOCATION_UNAVAILABLE],
            )

        result = CapacityCheckResult(
            location_id=location_id,
            can_accommodate=False,
            location_status=location.status,
            active_nodes=location.active_nodes,
            total_capacity={"memory": location.total_memory, "disk": location.total_disk},
            available_capacity={"memory": location.available_memory, "disk": location.available_disk},
            required_resources=parsed.to_dict() if parsed else None,
        )

        if parsed is None:
            result.warnings = [REQUIREMENT_INVALID]
            return result

        location_nodes = [node for node in nodes if node.location_id == location_id]
        ranked = self.rank_nodes(location_nodes, parsed)
        result.available_nodes = [_candidate(node, parsed) for node in ranked]
        result.can_accommodate = bool(ranked)

        if ranked:
            best = result.available_nodes[0]
            memory_after, disk_after = best.memory_percentage_after, best.disk_percentage_after
        else:
            memory_after = projected_percentage(
                location.allocated_memory, parsed.memory, location.effective_memory_limit
            )
            disk_after = projected_percentage(
                location.allocated_disk, parsed.disk, location.effective_disk_limit
            )

        result.utilization_after_creation = {
            "memory_percentage": memory_after,
            "disk_percentage": disk_after,
        }
        result.warnings = self._warnings(location, result, parsed, from_fallback)
        return result

    def _warnings(
        self,
        location: LocationCapacity,
        result: CapacityCheckResult,
        requirement: CapacityRequirement,
        from_fallback: bool,
    ) -> List[str]:
        warnings = []
        threshold = self._settings.projected_warning_threshold
        memory_after = result.utilization_after_creation["memory_percentage"]
        disk_after = result.utilization_after_creation["disk_percentage"]

        if from_fallback:
            age = int(location.age_seconds())
            warnings.append(f"Capacity data is {age}s old; the panel could not be refreshed")

        if result.available_nodes:
            node_name = result.available_nodes[0].node_name
            if memory_after >= threshold:
                warnings.append(f"Memory utilization on {node_name} will reach {memory_after}% after creation")
            if disk_after >= threshold:
                warnings.append(f"Disk utilization on {node_name} will reach {disk_after}% after creation")

        if location.active_nodes == 0:
            warnings.append("Location has no active nodes (all offline or in maintenance)")
        elif location.active_nodes == 1:
            warnings.append("Location has limited redundancy (only one active node)")

        if location.status == LocationStatus.LIMITED:
            warnings.append("Location is nearing capacity")
        elif location.status == LocationStatus.FULL:
            warnings.append("Location is at or near full capacity")

        if (
            not result.can_accommodate
            and location.active_nodes > 0
            and location.available_memory >= requirement.memory
            and location.available_disk >= requirement.disk
        ):
            warnings.append("No single node can fit the request although the location has enough free capacity in total")

        return warnings

    # ============================================
    # NODE SELECTION
    # ============================================

    def select_optimal_node(
        self,
        location_id: int,
        requirement: Any,
        force_refresh: bool = False,
    ) -> NodeSelectionResult:
        """
        Pick the node a new server should be placed on.

        Strategy: online, not in maintenance, enough free memory and disk;
        best by the configured strategy, ties broken by node id.
        """
        validate_id(location_id, "location_id")

        parsed = CapacityRequirement.coerce(requirement)
        if parsed is None:
            return NodeSelectionResult(success=False, error=REQUIREMENT_INVALID)

        nodes = self._monitor.get_all_nodes_usage(force_refresh)
        location_nodes = [node for node in nodes if node.location_id == location_id]
        if not location_nodes:
            return NodeSelectionResult(success=False, error=LOCATION_UNAVAILABLE)

        ranked = self.rank_nodes(location_nodes, parsed)
        if not ranked:
            active = [node for node in location_nodes if node.is_active()]
            largest_memory = max((node.available_memory for node in active), default=0)
            largest_disk = max((node.available_disk for node in active), default=0)
            logger.info(
                f"[capacity] location {location_id}: no node fits "
                f"{parsed.memory}MB memory / {parsed.disk}MB disk"
            )
            return NodeSelectionResult(
                success=False,
                error=(
                    f"No node in location {location_id} can accommodate the required resources. "
                    f"Largest free: {largest_memory}MB memory, {largest_disk}MB disk. "
                    f"Required: {parsed.memory}MB memory, {parsed.disk}MB disk."
                ),
            )

        selected = ranked[0]
        memory_after, disk_after = selected.projected_utilization(parsed.memory, parsed.disk)

        alternatives = []
        for rank, node in enumerate(ranked[1:MAX_ALTERNATIVES + 1], start=2):
            alt_memory, alt_disk = node.projected_utilization(parsed.memory, parsed.disk)
            alternatives.append(NodeAlternative(
                node_id=node.node_id,
                node_name=node.node_name,
                memory_percentage_after=alt_memory,
                disk_percentage_after=alt_disk,
                load_score=load_score(node),
                reason_not_selected=f"ranked #{rank} by {self._strategy.name}",
            ))

        logger.debug(f"[capacity] location {location_id}: selected node {selected.node_id} ({selected.node_name})")

        return NodeSelectionResult(
            success=True,
            selected_node=SelectedNode(
                node_id=selected.node_id,
                node_name=selected.node_name,
                node_uuid=selected.node_uuid,
                fqdn=selected.fqdn,
                location_id=selected.location_id,
                available_memory=selected.available_memory,
                available_disk=selected.available_disk,
                memory_percentage_after=memory_after,
                disk_percentage_after=disk_after,
                current_load_score=load_score(selected),
                selection_reason=(
                    f"{self._strategy.reason.capitalize()} "
                    f"({memory_after}% memory, {disk_after}% disk)"
                ),
            ),
            alternatives=alternatives,
        )


# ============================================
# LOCATION RANKING
# ============================================

def rank_by_projected_utilization(
    checks: Sequence[CapacityCheckResult],
    limit: int = 3,
) -> List[CapacityCheckResult]:
    """Accommodating locations, lowest post-creation utilization first."""
    viable = [check for check in checks if check.can_accommodate]
    viable.sort(key=lambda check: (check.peak_utilization_after, check.location_id))
    return viable[:limit]


def rank_by_available_capacity(
    checks: Sequence[CapacityCheckResult],
    limit: int = 3,
) -> List[CapacityCheckResult]:
    """Accommodating locations, most free memory plus disk first."""
    viable = [check for check in checks if check.can_accommodate]
    viable.sort(key=lambda check: (
        -(check.available_capacity["memory"] + check.available_capacity["disk"]),
        check.location_id,
    ))
    return viable[:limit]


def _candidate(node: NodeUsage, requirement: CapacityRequirement) -> NodeCandidate:
    memory_after, disk_after = node.projected_utilization(requirement.memory, requirement.disk)
    return NodeCandidate(
        node_id=node.node_id,
        node_name=node.node_name,
        fqdn=node.fqdn,
        available_memory=node.available_memory,
        available_disk=node.available_disk,
        memory_percentage_after=memory_after,
        disk_percentage_after=disk_after,
    )
