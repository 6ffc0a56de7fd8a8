# capacity_engine/container.py

"""Dependency injection container - wires all services together."""

from capacity_engine.api.rate_limit import FixedWindowRateLimiter
from capacity_engine.capacity.calculator import CapacityCalculator
from capacity_engine.config import MonitorSettings, PanelSettings
from capacity_engine.node_monitor.cache import SnapshotCache
from capacity_engine.node_monitor.service import NodeMonitorService
from capacity_engine.panel.client import PanelClient


# ============================================
# SETTINGS
# ============================================

panel_settings = PanelSettings()
monitor_settings = MonitorSettings()


# ============================================
# PANEL
# ============================================

panel_client = PanelClient(panel_settings)


# ============================================
# SERVICES
# ============================================

snapshot_cache = SnapshotCache(ttl_seconds=monitor_settings.cache_ttl_seconds)

node_monitor_service = NodeMonitorService(
    client=panel_client,
    settings=monitor_settings,
    cache=snapshot_cache,
)

capacity_calculator = CapacityCalculator(
    monitor=node_monitor_service,
)


# ============================================
# RATE LIMITERS
# ============================================

admin_rate_limiter = FixedWindowRateLimiter(
    max_requests=monitor_settings.admin_rate_limit,
    window_seconds=monitor_settings.rate_limit_window_seconds,
)

user_rate_limiter = FixedWindowRateLimiter(
    max_requests=monitor_settings.user_rate_limit,
    window_seconds=monitor_settings.rate_limit_window_seconds,
)
