# capacity_engine/api/routes/monitoring.py
"""Admin capacity monitoring API routes."""

import logging
from datetime import datetime, timezone
from typing import Annotated, Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from capacity_engine.api.container import (
    get_admin_rate_limiter,
    get_capacity_calculator,
    get_node_monitor,
)
from capacity_engine.api.rate_limit import FixedWindowRateLimiter, enforce
from capacity_engine.api.schemas.capacity import CapacityQuery
from capacity_engine.capacity.calculator import CapacityCalculator, rank_by_available_capacity
from capacity_engine.node_monitor.service import NodeMonitorService

logger = logging.getLogger(__name__)

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


def admin_rate_limit(
    request: Request,
    response: Response,
    limiter: FixedWindowRateLimiter = Depends(get_admin_rate_limiter),
) -> None:
    enforce(limiter, request, response)


router = APIRouter(
    prefix="/api/admin/monitoring",
    tags=["monitoring"],
    dependencies=[Depends(admin_rate_limit)],
)


def _envelope(message: str) -> Dict[str, Any]:
    return {
        "success": True,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/capacity")
def get_capacity(
    filters: Annotated[CapacityQuery, Query()],
    response: Response,
    monitor: NodeMonitorService = Depends(get_node_monitor),
    calculator: CapacityCalculator = Depends(get_capacity_calculator),
):
    """
    Real-time capacity of one node, one location, or every location.

    With required_memory and required_disk, also answers whether the
    target can host a server of that size and where it would go.
    """
    response.headers.update(NO_CACHE_HEADERS)
    data = _envelope("Capacity data retrieved successfully")
    requirement = filters.requirement()

    # Specific node
    if filters.node_id is not None:
        node = monitor.get_node_usage(filters.node_id, filters.force_refresh)
        if node is None:
            raise HTTPException(status_code=404, detail="Node not found or unavailable")

        data["node"] = node

        if requirement is not None:
            can_accommodate = node.can_fit(requirement.memory, requirement.disk)
            utilization_after = None
            if can_accommodate:
                memory_after, disk_after = node.projected_utilization(requirement.memory, requirement.disk)
                utilization_after = {"memory_percentage": memory_after, "disk_percentage": disk_after}

            data["capacity_check"] = {
                "can_accommodate": can_accommodate,
                "required_resources": requirement.to_dict(),
                "available_resources": {
                    "memory": node.available_memory,
                    "disk": node.available_disk,
                },
                "utilization_after": utilization_after,
            }
        return data

    # Specific location
    if filters.location_id is not None:
        location = monitor.get_location_capacity(filters.location_id, filters.force_refresh)
        if location is None:
            raise HTTPException(status_code=404, detail="Location not found or unavailable")

        data["location"] = location

        if filters.include_nodes:
            data["nodes"] = monitor.get_location_nodes(filters.location_id)

        if requirement is not None:
            data["capacity_check"] = calculator.check_location_capacity(filters.location_id, requirement)
            data["node_selection"] = calculator.select_optimal_node(filters.location_id, requirement)
        return data

    # All locations
    locations = monitor.get_all_locations_capacity(filters.force_refresh)
    if not locations:
        raise HTTPException(status_code=503, detail="Capacity data unavailable")

    data["locations"] = locations

    if filters.include_nodes:
        data["nodes"] = monitor.get_all_nodes_usage()

    if filters.include_stats:
        data["stats"] = monitor.get_monitoring_stats()

    if requirement is not None:
        checks = calculator.get_multi_location_capacity(
            [location.location_id for location in locations],
            requirement,
        )
        data["capacity_checks"] = checks
        data["recommended_locations"] = rank_by_available_capacity(checks, limit=3)

    return data


@router.post("/capacity/refresh")
def refresh_capacity(
    response: Response,
    monitor: NodeMonitorService = Depends(get_node_monitor),
):
    """Drop cached snapshots and reload everything from the panel."""
    response.headers.update(NO_CACHE_HEADERS)
    stats = monitor.refresh_all_data()
    if stats is None:
        raise HTTPException(
            status_code=503,
            detail="Panel unavailable; cached monitoring data was kept",
        )
    if stats.total_nodes == 0:
        logger.warning("[monitoring] refresh returned no nodes")

    data = _envelope("Monitoring data refreshed")
    data["stats"] = stats
    return data


@router.delete("/capacity/cache")
def clear_capacity_cache(monitor: NodeMonitorService = Depends(get_node_monitor)):
    """Clear cached snapshots; the next request reloads from the panel."""
    monitor.clear_cache()
    return _envelope("Monitoring cache cleared")
