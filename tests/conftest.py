#tests/conftest.py

"""Pytest configuration and fixtures."""

import math
import os
from datetime import datetime, timedelta

# capacity_engine.container builds PanelSettings at import time
os.environ.setdefault("PANEL_URL", "http://panel.test")
os.environ.setdefault("PANEL_API_KEY", "ptla_test_key")

import pytest

from capacity_engine.capacity.calculator import CapacityCalculator
from capacity_engine.config import MonitorSettings
from capacity_engine.core.errors import PanelNotFoundError
from capacity_engine.node_monitor.cache import SnapshotCache
from capacity_engine.node_monitor.service import NodeMonitorService
from capacity_engine.panel.client import NodePage


class FakeClock:
    """Monotonic clock driven by the test."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class PastDatetime(datetime):
    """datetime whose now() lags two minutes behind."""

    @classmethod
    def now(cls, tz=None):
        return datetime.now(tz) - timedelta(seconds=120)


class FakePanelClient:
    """In-memory stand-in for PanelClient serving node payloads."""

    def __init__(self, nodes=None, page_size: int = 100):
        self.nodes = list(nodes or [])
        self.page_size = page_size
        self.page_errors = {}
        self.node_errors = {}
        self.page_calls = []
        self.node_calls = []

    def get_node_page(self, page: int = 1) -> NodePage:
        self.page_calls.append(page)
        if page in self.page_errors:
            raise self.page_errors[page]

        start = (page - 1) * self.page_size
        return NodePage(
            items=self.nodes[start:start + self.page_size],
            current_page=page,
            total_pages=max(1, math.ceil(len(self.nodes) / self.page_size)),
            total=len(self.nodes),
        )

    def get_node(self, node_id: int):
        self.node_calls.append(node_id)
        if node_id in self.node_errors:
            raise self.node_errors[node_id]

        for node in self.nodes:
            if node["attributes"]["id"] == node_id:
                return node
        raise PanelNotFoundError(f"Node {node_id} not found", status=404)


def server_payload(memory: int, disk: int, suspended: bool = False):
    return {
        "object": "server",
        "attributes": {
            "limits": {"memory": memory, "disk": disk, "cpu": 100},
            "suspended": suspended,
        },
    }


def node_payload(
    node_id: int,
    location_id: int = 1,
    memory: int = 8192,
    disk: int = 102400,
    servers=(),
    maintenance: bool = False,
    memory_overallocate: int = 0,
    disk_overallocate: int = 0,
):
    """Panel node object; ``servers`` is a list of (memory, disk) limits."""
    return {
        "object": "node",
        "attributes": {
            "id": node_id,
            "uuid": f"uuid-{node_id}",
            "name": f"node-{node_id}",
            "location_id": location_id,
            "fqdn": f"node{node_id}.example.com",
            "maintenance_mode": maintenance,
            "memory": memory,
            "memory_overallocate": memory_overallocate,
            "disk": disk,
            "disk_overallocate": disk_overallocate,
            "relationships": {
                "servers": {
                    "object": "list",
                    "data": [server_payload(m, d) for m, d in servers],
                },
            },
        },
    }


@pytest.fixture
def settings():
    """Monitor settings with defaults, independent of the environment."""
    return MonitorSettings(
        cache_ttl_seconds=20,
        honor_panel_overallocation=True,
        safety_margin_percent=0,
        selection_strategy="lowest_utilization",
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def panel():
    return FakePanelClient()


@pytest.fixture
def cache(settings, clock):
    return SnapshotCache(ttl_seconds=settings.cache_ttl_seconds, clock=clock)


@pytest.fixture
def monitor(panel, settings, cache):
    return NodeMonitorService(client=panel, settings=settings, cache=cache)


@pytest.fixture
def calculator(monitor):
    return CapacityCalculator(monitor=monitor)
