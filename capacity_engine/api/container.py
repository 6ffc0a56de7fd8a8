# capacity_engine/api/container.py
from capacity_engine.api.rate_limit import FixedWindowRateLimiter
from capacity_engine.capacity.calculator import CapacityCalculator
from capacity_engine.container import (
    admin_rate_limiter,
    capacity_calculator,
    node_monitor_service,
    user_rate_limiter,
)
from capacity_engine.node_monitor.service import NodeMonitorService


def get_node_monitor() -> NodeMonitorService:
    return node_monitor_service


def get_capacity_calculator() -> CapacityCalculator:
    return capacity_calculator


def get_admin_rate_limiter() -> FixedWindowRateLimiter:
    return admin_rate_limiter


def get_user_rate_limiter() -> FixedWindowRateLimiter:
    return user_rate_limiter
