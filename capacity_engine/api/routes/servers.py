# capacity_engine/api/routes/servers.py
"""User-facing capacity checks for server creation."""

from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from capacity_engine.api.container import (
    get_capacity_calculator,
    get_node_monitor,
    get_user_rate_limiter,
)
from capacity_engine.api.rate_limit import FixedWindowRateLimiter, enforce
from capacity_engine.api.schemas.capacity import ServerCapacityQuery
from capacity_engine.capacity.calculator import CapacityCalculator, rank_by_projected_utilization
from capacity_engine.node_monitor.models import LocationCapacity, LocationStatus
from capacity_engine.node_monitor.service import NodeMonitorService


CACHE_HEADERS = {"Cache-Control": "public, max-age=60"}

CREATABLE_STATUSES = (LocationStatus.AVAILABLE, LocationStatus.LIMITED)


def user_rate_limit(
    request: Request,
    response: Response,
    limiter: FixedWindowRateLimiter = Depends(get_user_rate_limiter),
) -> None:
    enforce(limiter, request, response)


router = APIRouter(
    prefix="/api/servers",
    tags=["servers"],
    dependencies=[Depends(user_rate_limit)],
)


@router.get("/capacity")
def get_server_capacity(
    filters: Annotated[ServerCapacityQuery, Query()],
    response: Response,
    monitor: NodeMonitorService = Depends(get_node_monitor),
    calculator: CapacityCalculator = Depends(get_capacity_calculator),
):
    """
    Can a server of the given size be created, and where.

    Served from the snapshot cache only; users cannot force a panel refresh.
    """
    response.headers.update(CACHE_HEADERS)
    data = {
        "success": True,
        "message": "Capacity information retrieved successfully",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    requirement = filters.requirement()

    # Specific location with requirements
    if filters.location_id is not None and requirement is not None:
        check = calculator.check_location_capacity(filters.location_id, requirement)

        data["location_capacity"] = {
            "location_id": check.location_id,
            "can_accommodate": check.can_accommodate,
            "location_status": check.location_status,
            "available_nodes": len(check.available_nodes),
            "utilization_after_creation": check.utilization_after_creation,
            "warnings": check.warnings,
        }

        if filters.include_recommendations and check.can_accommodate:
            selection = calculator.select_optimal_node(filters.location_id, requirement)
            if selection.success:
                node = selection.selected_node
                data["recommended_node"] = {
                    "node_id": node.node_id,
                    "node_name": node.node_name,
                    "fqdn": node.fqdn,
                    "available_memory": node.available_memory,
                    "available_disk": node.available_disk,
                    "current_load_score": node.current_load_score,
                    "selection_reason": node.selection_reason,
                }
        return data

    # Specific location without requirements
    if filters.location_id is not None:
        location = monitor.get_location_capacity(filters.location_id)
        if location is None:
            raise HTTPException(status_code=404, detail="Location not found or unavailable")

        data["location_status"] = {
            "location_id": location.location_id,
            "status": location.status,
            "active_nodes": location.active_nodes,
            "memory_usage_percentage": location.memory_usage_percentage,
            "disk_usage_percentage": location.disk_usage_percentage,
            "total_capacity": {"memory": location.total_memory, "disk": location.total_disk},
            "available_capacity": {"memory": location.available_memory, "disk": location.available_disk},
            "current_utilization": _utilization(location),
        }
        return data

    # All locations
    locations = monitor.get_all_locations_capacity()
    if not locations:
        raise HTTPException(status_code=503, detail="Capacity data unavailable")

    data["locations"] = [
        {
            "location_id": location.location_id,
            "status": location.status,
            "can_create_servers": location.status in CREATABLE_STATUSES,
            "active_nodes": location.active_nodes,
            "utilization": _utilization(location),
        }
        for location in locations
    ]

    if requirement is not None:
        checks = calculator.get_multi_location_capacity(
            [location.location_id for location in locations],
            requirement,
        )
        data["capacity_checks"] = [
            {
                "location_id": check.location_id,
                "can_accommodate": check.can_accommodate,
                "location_status": check.location_status,
                "warnings": check.warnings,
            }
            for check in checks
        ]

        if filters.include_recommendations:
            data["recommended_locations"] = [
                {
                    "location_id": check.location_id,
                    "utilization_after_creation": check.utilization_after_creation,
                }
                for check in rank_by_projected_utilization(checks, limit=3)
            ]

    return data


def _utilization(location: LocationCapacity):
    return {
        "memory_percentage": location.memory_usage_percentage,
        "disk_percentage": location.disk_usage_percentage,
    }
