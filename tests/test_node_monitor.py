#tests/test_node_monitor.py

"""Test node monitor caching, fallback and location aggregation."""

import threading

import pytest

from capacity_engine.core.errors import CapacityValidationError, PanelUnavailableError
from capacity_engine.node_monitor.models import LocationStatus, MonitoringStats, NodeStatus
from capacity_engine.node_monitor.service import ALL_NODES_KEY, node_key

from conftest import PastDatetime, node_payload


class TestNodeUsage:
    """Test single node snapshots."""

    def test_cached_within_ttl(self, monitor, panel, clock):
        panel.nodes = [node_payload(1)]

        first = monitor.get_node_usage(1)
        clock.advance(10)
        second = monitor.get_node_usage(1)

        assert second == first
        assert second.fetched_at == first.fetched_at
        assert panel.node_calls == [1]

    def test_force_refresh_bypasses_cache(self, monitor, panel):
        panel.nodes = [node_payload(1)]

        monitor.get_node_usage(1)
        monitor.get_node_usage(1, force_refresh=True)

        assert panel.node_calls == [1, 1]

    def test_panel_failure_within_ttl_returns_cached(self, monitor, panel, clock):
        panel.nodes = [node_payload(1, servers=[(1024, 1024)])]
        cached = monitor.get_node_usage(1)

        panel.node_errors[1] = PanelUnavailableError("panel down")
        clock.advance(5)

        assert monitor.get_node_usage(1) == cached
        assert panel.node_calls == [1]

    def test_panel_failure_after_ttl_serves_stale(self, monitor, panel, clock):
        panel.nodes = [node_payload(1)]
        cached = monitor.get_node_usage(1)

        panel.node_errors[1] = PanelUnavailableError("panel down")
        clock.advance(25)
        stale = monitor.get_node_usage(1)

        assert stale == cached
        assert stale.fetched_at == cached.fetched_at
        assert panel.node_calls == [1, 1]

    def test_panel_failure_without_cache(self, monitor, panel):
        panel.node_errors[1] = PanelUnavailableError("panel down")

        assert monitor.get_node_usage(1) is None

    def test_unknown_node(self, monitor, panel):
        assert monitor.get_node_usage(42) is None

    def test_deleted_node_is_evicted(self, monitor, panel, cache):
        panel.nodes = [node_payload(1)]
        monitor.get_node_usage(1)

        panel.nodes = []

        assert monitor.get_node_usage(1, force_refresh=True) is None
        assert cache.peek(node_key(1)) is None

    @pytest.mark.parametrize("node_id", [0, -1, "1", True, 1.5])
    def test_invalid_id(self, monitor, node_id):
        with pytest.raises(CapacityValidationError):
            monitor.get_node_usage(node_id)


class TestAllNodes:
    """Test full inventory snapshots."""

    def test_walks_every_page(self, monitor, panel):
        panel.page_size = 2
        panel.nodes = [node_payload(i) for i in (5, 3, 1, 4, 2)]

        nodes = monitor.get_all_nodes_usage()

        assert [n.node_id for n in nodes] == [1, 2, 3, 4, 5]
        assert panel.page_calls == [1, 2, 3]

    def test_single_fetched_at_per_batch(self, monitor, panel):
        panel.nodes = [node_payload(1), node_payload(2)]

        nodes = monitor.get_all_nodes_usage()

        assert nodes[0].fetched_at == nodes[1].fetched_at

    def test_batch_seeds_node_snapshots(self, monitor, panel):
        panel.nodes = [node_payload(1), node_payload(2)]

        monitor.get_all_nodes_usage()
        node = monitor.get_node_usage(2)

        assert node.node_id == 2
        assert panel.node_calls == []

    def test_cached_within_ttl(self, monitor, panel, clock):
        panel.nodes = [node_payload(1)]

        monitor.get_all_nodes_usage()
        clock.advance(19)
        monitor.get_all_nodes_usage()

        assert panel.page_calls == [1]

    def test_first_page_failure_without_cache(self, monitor, panel):
        panel.page_errors[1] = PanelUnavailableError("panel down")

        assert monitor.get_all_nodes_usage() == []

    def test_first_page_failure_serves_stale(self, monitor, panel, clock):
        panel.nodes = [node_payload(1), node_payload(2)]
        cached = monitor.get_all_nodes_usage()

        panel.page_errors[1] = PanelUnavailableError("panel down")
        clock.advance(30)

        assert monitor.get_all_nodes_usage() == cached

    def test_later_page_failure_marks_missing_nodes_offline(self, monitor, panel, clock):
        panel.page_size = 2
        panel.nodes = [node_payload(i) for i in (1, 2, 3, 4)]
        monitor.get_all_nodes_usage()

        panel.page_errors[2] = PanelUnavailableError("page timeout")
        clock.advance(30)
        nodes = {n.node_id: n for n in monitor.get_all_nodes_usage()}

        assert sorted(nodes) == [1, 2, 3, 4]
        assert nodes[1].online and nodes[2].online
        assert not nodes[3].online
        assert nodes[4].status == NodeStatus.OFFLINE
        assert not nodes[4].can_fit(1, 1)

    def test_later_page_failure_without_previous_batch(self, monitor, panel):
        panel.page_size = 2
        panel.nodes = [node_payload(i) for i in (1, 2, 3)]
        panel.page_errors[2] = PanelUnavailableError("page timeout")

        nodes = monitor.get_all_nodes_usage()

        assert [n.node_id for n in nodes] == [1, 2]

    def test_location_nodes(self, monitor, panel):
        panel.nodes = [node_payload(1, location_id=1), node_payload(2, location_id=2), node_payload(3, location_id=1)]

        assert [n.node_id for n in monitor.get_location_nodes(1)] == [1, 3]


class TestLocationCapacity:
    """Test location aggregation and status."""

    def test_unknown_location(self, monitor, panel):
        panel.nodes = [node_payload(1, location_id=1)]

        assert monitor.get_location_capacity(9) is None

    def test_aggregates_active_nodes_only(self, monitor, panel):
        panel.nodes = [
            node_payload(1, memory=8192, disk=100000, servers=[(2048, 10000)]),
            node_payload(2, memory=8192, disk=100000, servers=[(2048, 10000)]),
            node_payload(3, memory=8192, disk=100000, maintenance=True),
        ]

        location = monitor.get_location_capacity(1)

        assert location.total_nodes == 3
        assert location.active_nodes == 2
        assert location.maintenance_nodes == 1
        assert location.total_memory == 16384
        assert location.allocated_memory == 4096
        assert location.available_memory == 12288
        assert location.memory_usage_percentage == 25.0
        assert location.status == LocationStatus.AVAILABLE

    def test_all_maintenance_is_unavailable(self, monitor, panel):
        panel.nodes = [node_payload(1, maintenance=True), node_payload(2, maintenance=True)]

        location = monitor.get_location_capacity(1)

        assert location.status == LocationStatus.UNAVAILABLE
        assert location.active_nodes == 0
        assert location.available_memory == 0

    def test_limited_status(self, monitor, panel):
        panel.nodes = [node_payload(1, memory=10000, servers=[(8500, 1000)])]

        assert monitor.get_location_capacity(1).status == LocationStatus.LIMITED

    def test_full_when_minimum_request_does_not_fit(self, monitor, panel):
        panel.nodes = [node_payload(1, memory=1000, servers=[(900, 1000)])]

        location = monitor.get_location_capacity(1)

        assert location.memory_usage_percentage == 90.0
        assert location.status == LocationStatus.FULL

    def test_full_when_both_resources_exhausted(self, monitor, panel):
        panel.nodes = [node_payload(1, memory=100000, disk=100000, servers=[(96000, 96000)])]

        assert monitor.get_location_capacity(1).status == LocationStatus.FULL

    def test_all_locations_sorted(self, monitor, panel):
        panel.nodes = [node_payload(1, location_id=3), node_payload(2, location_id=1)]

        locations = monitor.get_all_locations_capacity()

        assert [loc.location_id for loc in locations] == [1, 3]


class TestStatsAndCache:
    """Test monitoring summary and cache management."""

    def test_empty_stats(self, monitor):
        assert monitor.get_monitoring_stats() == MonitoringStats()

    def test_stats(self, monitor, panel):
        panel.nodes = [
            node_payload(1, location_id=1, memory=8192, servers=[(1024, 1000)]),
            node_payload(2, location_id=2, memory=8192, maintenance=True),
        ]

        stats = monitor.get_monitoring_stats()

        assert stats.total_nodes == 2
        assert stats.active_nodes == 1
        assert stats.nodes_in_maintenance == 1
        assert stats.total_locations == 2
        assert stats.total_servers == 1
        assert stats.total_memory == 16384
        assert stats.allocated_memory == 1024
        assert stats.total_available_memory == 7168

    def test_clear_cache_forces_reload(self, monitor, panel, cache):
        panel.nodes = [node_payload(1)]
        monitor.get_all_nodes_usage()

        monitor.clear_cache()

        assert cache.peek(ALL_NODES_KEY) is None
        monitor.get_all_nodes_usage()
        assert panel.page_calls == [1, 1]

    def test_refresh_all_data(self, monitor, panel):
        panel.nodes = [node_payload(1)]
        monitor.get_all_nodes_usage()

        panel.nodes.append(node_payload(2))
        stats = monitor.refresh_all_data()

        assert stats.total_nodes == 2
        assert panel.page_calls == [1, 1]

    def test_refresh_while_panel_down_keeps_snapshot(self, monitor, panel):
        panel.nodes = [node_payload(1)]
        cached = monitor.get_all_nodes_usage()

        panel.page_errors[1] = PanelUnavailableError("panel down")

        assert monitor.refresh_all_data() is None
        assert monitor.get_all_nodes_usage() == cached
        assert monitor.get_location_capacity(1).active_nodes == 1
        assert monitor.get_node_usage(1) == cached[0]

    def test_refresh_drops_deleted_nodes(self, monitor, panel, cache):
        panel.nodes = [node_payload(1), node_payload(2)]
        monitor.get_all_nodes_usage()

        panel.nodes = [node_payload(1)]
        stats = monitor.refresh_all_data()

        assert stats.total_nodes == 1
        assert cache.peek(node_key(2)) is None
        assert cache.peek(node_key(1)) is not None


class TestPartialBatch:
    """Test aggregation when some node pages fail."""

    @pytest.fixture
    def partial(self, monitor, panel, clock):
        panel.page_size = 1
        panel.nodes = [
            node_payload(1, memory=8192, disk=100000, servers=[(2048, 10000)]),
            node_payload(2, memory=8192, disk=100000, servers=[(4096, 20000)]),
        ]
        monitor.get_all_nodes_usage()

        panel.page_errors[2] = PanelUnavailableError("page timeout")
        clock.advance(30)

    def test_offline_nodes_excluded_from_sums(self, monitor, partial):
        location = monitor.get_location_capacity(1)

        assert location.total_nodes == 2
        assert location.active_nodes == 1
        assert location.offline_nodes == 1
        assert location.total_memory == 8192
        assert location.allocated_memory == 2048
        assert location.available_memory == 6144
        assert location.available_disk == 90000
        assert location.memory_usage_percentage == 25.0

    def test_stats_exclude_offline_availability(self, monitor, partial):
        stats = monitor.get_monitoring_stats()

        assert stats.offline_nodes == 1
        assert stats.online_nodes == 1
        assert stats.total_available_memory == 6144

    def test_location_timestamp_from_fresh_nodes(self, monitor, panel, clock, monkeypatch):
        panel.page_size = 1
        panel.nodes = [node_payload(1), node_payload(2)]
        monkeypatch.setattr("capacity_engine.node_monitor.service.datetime", PastDatetime)
        monitor.get_all_nodes_usage()
        monkeypatch.undo()

        panel.page_errors[2] = PanelUnavailableError("page timeout")
        clock.advance(30)
        nodes = {n.node_id: n for n in monitor.get_all_nodes_usage()}

        assert (nodes[1].fetched_at - nodes[2].fetched_at).total_seconds() > 60
        assert monitor.get_location_capacity(1).fetched_at == nodes[1].fetched_at


class TestConcurrency:
    """Test that concurrent callers share one panel walk."""

    def test_concurrent_misses_walk_pages_once(self, monitor, panel):
        panel.nodes = [node_payload(1), node_payload(2)]
        started = threading.Event()
        release = threading.Event()
        get_node_page = panel.get_node_page

        def slow_page(page=1):
            started.set()
            release.wait(timeout=5)
            return get_node_page(page)

        panel.get_node_page = slow_page
        results = []

        def worker():
            results.append(monitor.get_all_nodes_usage())

        first = threading.Thread(target=worker)
        first.start()
        started.wait(timeout=5)

        others = [threading.Thread(target=worker) for _ in range(4)]
        for thread in others:
            thread.start()

        release.set()
        for thread in [first] + others:
            thread.join(timeout=5)

        assert panel.page_calls == [1]
        assert len(results) == 5
        assert all([n.node_id for n in nodes] == [1, 2] for nodes in results)


class TestLocationIds:
    """Test nodes without a usable location."""

    def test_nodes_without_location_not_listed(self, monitor, panel):
        panel.nodes = [node_payload(1, location_id=1), node_payload(2, location_id=0)]

        locations = monitor.get_all_locations_capacity()

        assert [loc.location_id for loc in locations] == [1]
        assert monitor.get_monitoring_stats().total_nodes == 2
