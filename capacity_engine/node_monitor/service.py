# capacity_engine/node_monitor/service.py
"""Node monitor service - cached node/location capacity views of the panel."""

import dataclasses
import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence, Tuple

from capacity_engine.config import MonitorSettings
from capacity_engine.core.validation import validate_id
from capacity_engine.core.errors import (
    PanelError,
    PanelNotFoundError,
    PanelResponseError,
)
from capacity_engine.node_monitor.cache import CacheEntry, SnapshotCache
from capacity_engine.node_monitor.models import (
    LocationCapacity,
    LocationStatus,
    MonitoringStats,
    NodeStatus,
    NodeUsage,
    usage_percentage,
)
from capacity_engine.panel.client import PanelClient
from capacity_engine.panel.normalize import normalize_node

logger = logging.getLogger(__name__)

ALL_NODES_KEY = "nodes:all"


def node_key(node_id: int) -> str:
    return f"node:{node_id}"


class NodeMonitorService:
    """
    Normalized, cached view of node and location capacity.

    Panel failures never reach the caller: the last cached snapshot is
    served with the ``fetched_at`` it was loaded at, or None / [] when nothing
    was ever cached.
    """

    def __init__(
        self,
        client: PanelClient,
        settings: MonitorSettings,
        cache: Optional[SnapshotCache] = None,
    ):
        self._client = client
        self._settings = settings
        self._cache = cache or SnapshotCache(ttl_seconds=settings.cache_ttl_seconds)

    @property
    def settings(self) -> MonitorSettings:
        return self._settings

    @property
    def ttl_seconds(self) -> float:
        return self._cache.ttl_seconds

    # ============================================
    # NODES
    # ============================================

    def get_node_usage(self, node_id: int, force_refresh: bool = False) -> Optional[NodeUsage]:
        """
        Get usage snapshot of one node.

        Returns:
            NodeUsage, or None if the node does not exist or the panel is
            unreachable and nothing was cached
        """
        validate_id(node_id, "node_id")
        key = node_key(node_id)

        try:
            return self._cache.get_or_load(
                key,
                lambda previous: self._fetch_node(node_id),
                force_refresh=force_refresh,
            )
        except PanelNotFoundError:
            logger.info(f"[node_monitor] node {node_id} not found on panel")
            self._cache.delete(key)
            return None
        except PanelError as e:
            return self._fallback(key, e)

    def get_all_nodes_usage(self, force_refresh: bool = False) -> List[NodeUsage]:
        """Get usage snapshots of every node on the panel, ordered by node id."""
        nodes, _ = self.get_all_nodes_snapshot(force_refresh)
        return nodes

    def get_all_nodes_snapshot(self, force_refresh: bool = False) -> Tuple[List[NodeUsage], bool]:
        """
        Get usage snapshots of every node, and whether they were served from
        the stale cache because the panel could not be reached.
        """
        try:
            nodes = self._cache.get_or_load(
                ALL_NODES_KEY,
                self._fetch_all_nodes,
                force_refresh=force_refresh,
            )
        except PanelError as e:
            stale = self._fallback(ALL_NODES_KEY, e)
            return list(stale or ()), stale is not None
        return list(nodes), False

    def get_location_nodes(self, location_id: int, force_refresh: bool = False) -> List[NodeUsage]:
        """Get usage snapshots of the nodes in one location."""
        validate_id(location_id, "location_id")
        return [
            node for node in self.get_all_nodes_usage(force_refresh)
            if node.location_id == location_id
        ]

    # ============================================
    # LOCATIONS
    # ============================================

    def get_location_capacity(
        self,
        location_id: int,
        force_refresh: bool = False,
    ) -> Optional[LocationCapacity]:
        """
        Get aggregate capacity of one location.

        Returns None if the location has no nodes at all. A location whose
        nodes are all in maintenance or offline is ``unavailable``.
        """
        validate_id(location_id, "location_id")
        nodes = self.get_all_nodes_usage(force_refresh)
        return self.build_location_capacity(location_id, nodes)

    def get_all_locations_capacity(self, force_refresh: bool = False) -> List[LocationCapacity]:
        """Get aggregate capacity of every location that has nodes."""
        nodes = self.get_all_nodes_usage(force_refresh)
        location_ids = sorted({node.location_id for node in nodes if node.location_id > 0})
        return [self.build_location_capacity(location_id, nodes) for location_id in location_ids]

    def build_location_capacity(
        self,
        location_id: int,
        nodes: Iterable[NodeUsage],
    ) -> Optional[LocationCapacity]:
        """Aggregate the given snapshots of one location."""
        members = [node for node in nodes if node.location_id == location_id]
        if not members:
            return None

        active = [node for node in members if node.is_active()]

        effective_memory = sum(n.effective_memory_limit for n in active)
        effective_disk = sum(n.effective_disk_limit for n in active)
        allocated_memory = sum(n.allocated_memory for n in active)
        allocated_disk = sum(n.allocated_disk for n in active)

        memory_percentage = usage_percentage(allocated_memory, effective_memory)
        disk_percentage = usage_percentage(allocated_disk, effective_disk)

        return LocationCapacity(
            location_id=location_id,
            status=self._location_status(active, memory_percentage, disk_percentage),
            total_nodes=len(members),
            active_nodes=len(active),
            maintenance_nodes=sum(1 for n in members if n.online and n.maintenance_mode),
            offline_nodes=sum(1 for n in members if not n.online),
            total_memory=sum(n.total_memory for n in active),
            total_disk=sum(n.total_disk for n in active),
            effective_memory_limit=effective_memory,
            effective_disk_limit=effective_disk,
            allocated_memory=allocated_memory,
            allocated_disk=allocated_disk,
            available_memory=sum(n.available_memory for n in active),
            available_disk=sum(n.available_disk for n in active),
            memory_usage_percentage=memory_percentage,
            disk_usage_percentage=disk_percentage,
            total_servers=sum(n.total_servers for n in members),
            fetched_at=_snapshot_time(members),
        )

    def _location_status(
        self,
        active: Sequence[NodeUsage],
        memory_percentage: float,
        disk_percentage: float,
    ) -> LocationStatus:
        if not active:
            return LocationStatus.UNAVAILABLE

        full = self._settings.full_threshold
        fits_minimum = any(
            node.can_fit(self._settings.min_request_memory, self._settings.min_request_disk)
            for node in active
        )
        if (memory_percentage >= full and disk_percentage >= full) or not fits_minimum:
            return LocationStatus.FULL

        limited = self._settings.limited_threshold
        if memory_percentage >= limited or disk_percentage >= limited:
            return LocationStatus.LIMITED

        return LocationStatus.AVAILABLE

    # ============================================
    # STATISTICS
    # ============================================

    def get_monitoring_stats(self, force_refresh: bool = False) -> MonitoringStats:
        """Global node/capacity summary for admin dashboards."""
        nodes = self.get_all_nodes_usage(force_refresh)
        if not nodes:
            return MonitoringStats()

        active = [n for n in nodes if n.is_active()]
        allocated_memory = sum(n.allocated_memory for n in nodes)
        allocated_disk = sum(n.allocated_disk for n in nodes)

        return MonitoringStats(
            total_nodes=len(nodes),
            online_nodes=sum(1 for n in nodes if n.online),
            active_nodes=len(active),
            nodes_in_maintenance=sum(1 for n in nodes if n.maintenance_mode),
            offline_nodes=sum(1 for n in nodes if not n.online),
            total_locations=len({n.location_id for n in nodes}),
            total_servers=sum(n.total_servers for n in nodes),
            total_memory=sum(n.total_memory for n in nodes),
            total_disk=sum(n.total_disk for n in nodes),
            allocated_memory=allocated_memory,
            allocated_disk=allocated_disk,
            total_available_memory=sum(n.available_memory for n in active),
            total_available_disk=sum(n.available_disk for n in active),
            overall_memory_usage=usage_percentage(
                allocated_memory, sum(n.effective_memory_limit for n in nodes)
            ),
            overall_disk_usage=usage_percentage(
                allocated_disk, sum(n.effective_disk_limit for n in nodes)
            ),
            fetched_at=_snapshot_time(nodes),
        )

    # ============================================
    # CACHE MANAGEMENT
    # ============================================

    def clear_cache(self) -> None:
        self._cache.clear()
        logger.info("[node_monitor] monitoring cache cleared")

    def refresh_all_data(self) -> Optional[MonitoringStats]:
        """
        Repopulate every snapshot from the panel.

        Cached snapshots are only replaced once the panel answers; on
        failure they are kept and None is returned.
        """
        logger.info("[node_monitor] force refreshing all monitoring data")
        try:
            nodes = self._cache.get_or_load(
                ALL_NODES_KEY,
                self._fetch_all_nodes,
                force_refresh=True,
            )
        except PanelError as e:
            logger.error(f"[node_monitor] refresh failed, keeping cached snapshots: {e}")
            return None

        # Nodes deleted on the panel disappear from the per-node keys too
        self._cache.retain([ALL_NODES_KEY] + [node_key(n.node_id) for n in nodes])
        stats = self.get_monitoring_stats()
        logger.info(f"[node_monitor] ✅ refreshed {stats.total_nodes} node(s)")
        return stats

    # ============================================
    # PANEL FETCHING
    # ============================================

    def _fetch_node(self, node_id: int) -> NodeUsage:
        payload = self._client.get_node(node_id)
        usage = normalize_node(payload, self._settings)
        if usage is None:
            raise PanelResponseError(f"Node {node_id} payload could not be parsed", code="PARSE_ERROR")
        return usage

    def _fetch_all_nodes(self, previous: Optional[CacheEntry]) -> Tuple[NodeUsage, ...]:
        """
        Walk every node page. A failing first page fails the batch; later
        pages that fail only drop their nodes, which are then re-emitted
        offline from the previous batch when known.
        """
        fetched_at = datetime.now(timezone.utc)
        first = self._client.get_node_page(1)

        pages = [first]
        failed_pages = []
        for page_number in range(2, first.total_pages + 1):
            try:
                pages.append(self._client.get_node_page(page_number))
            except PanelError as e:
                logger.warning(f"[node_monitor] node page {page_number} unavailable: {e}")
                failed_pages.append(page_number)

        usages = {}
        for page in pages:
            for item in page.items:
                usage = normalize_node(item, self._settings, fetched_at=fetched_at)
                if usage is not None:
                    usages[usage.node_id] = usage

        if failed_pages and previous is not None:
            for known in previous.value:
                if known.node_id not in usages:
                    usages[known.node_id] = _mark_offline(known)

        nodes = tuple(usages[node_id] for node_id in sorted(usages))
        for usage in nodes:
            self._cache.set(node_key(usage.node_id), usage)

        logger.info(
            f"[node_monitor] updated monitoring data for {len(nodes)} node(s)"
            + (f", pages unavailable: {failed_pages}" if failed_pages else "")
        )
        return nodes

    def _fallback(self, key: str, error: Exception):
        stale = self._cache.peek(key)
        if stale is None:
            logger.error(f"[node_monitor] {key} unavailable and not cached: {error}")
            return None

        logger.warning(f"[node_monitor] {key} unavailable, serving cached snapshot: {error}")
        return stale.value


def _mark_offline(usage: NodeUsage) -> NodeUsage:
    return dataclasses.replace(usage, online=False, status=NodeStatus.OFFLINE)


def _snapshot_time(nodes: Sequence[NodeUsage]) -> datetime:
    """Oldest fetch time among nodes seen in the latest batch."""
    fetched = [n for n in nodes if n.online] or nodes
    return min(n.fetched_at for n in fetched)
