# capacity_engine/panel/client.py
"""Pterodactyl application API client for node inventory."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from capacity_engine.config import PanelSettings
from capacity_engine.core.errors import (
    PanelConfigurationError,
    PanelNotFoundError,
    PanelResponseError,
    PanelUnavailableError,
)

logger = logging.getLogger(__name__)

ACCEPT_HEADER = "Application/vnd.pterodactyl.v1+json"
TRANSIENT_STATUSES = (429, 500, 502, 503, 504)

# Retry-After from a throttled panel is ignored; a retry never sleeps longer than this
RETRY_BACKOFF_MAX_SECONDS = 1.0


@dataclass
class NodePage:
    """One page of the panel's node listing."""
    items: List[Dict[str, Any]]
    current_page: int = 1
    total_pages: int = 1
    total: int = 0


class PanelClient:
    """Read-only client for the panel's node/server inventory."""

    def __init__(self, settings: PanelSettings, session: Optional[requests.Session] = None):
        """
        Initialize client.

        Args:
            settings: Panel URL, API key, timeouts and retry budget
            session: Pre-configured session (tests); a retrying one is built otherwise
        """
        if not settings.panel_url or not settings.panel_api_key:
            raise PanelConfigurationError(
                "Missing Pterodactyl configuration. Set PANEL_URL and PANEL_API_KEY.",
                code="MISSING_CONFIG",
            )

        self.base_url = settings.base_url
        self.timeout = (settings.panel_connect_timeout_seconds, settings.panel_timeout_seconds)
        self.page_size = settings.panel_page_size
        self._session = session or self._build_session(settings)
        self._session.headers.update({
            "Authorization": f"Bearer {settings.panel_api_key}",
            "Accept": ACCEPT_HEADER,
        })

    @staticmethod
    def _build_session(settings: PanelSettings) -> requests.Session:
        retry = Retry(
            total=settings.panel_max_retries,
            backoff_factor=0.3,
            status_forcelist=TRANSIENT_STATUSES,
            allowed_methods=frozenset(["GET"]),
            raise_on_status=False,
            respect_retry_after_header=False,
            backoff_max=RETRY_BACKOFF_MAX_SECONDS,
        )
        session = requests.Session()
        adapter = HTTPAdapter(max_retries=retry)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    # ============================================
    # NODES
    # ============================================

    def get_node_page(self, page: int = 1) -> NodePage:
        """
        Fetch one page of nodes with their servers included.

        Raises:
            PanelUnavailableError: Panel unreachable or failing
            PanelResponseError: Request rejected or payload malformed
        """
        data = self._get(
            "/api/application/nodes",
            params={"include": "servers", "per_page": self.page_size, "page": page},
        )

        items = data.get("data")
        if not isinstance(items, list):
            raise PanelResponseError("Node listing has no data array", code="PARSE_ERROR")

        pagination = (data.get("meta") or {}).get("pagination") or {}
        return NodePage(
            items=items,
            current_page=_as_int(pagination.get("current_page"), page),
            total_pages=max(1, _as_int(pagination.get("total_pages"), 1)),
            total=_as_int(pagination.get("total"), len(items)),
        )

    def get_node(self, node_id: int) -> Dict[str, Any]:
        """
        Fetch a single node with its servers included.

        Raises:
            PanelNotFoundError: Node does not exist
            PanelUnavailableError: Panel unreachable or failing
        """
        data = self._get(f"/api/application/nodes/{node_id}", params={"include": "servers"})
        if not isinstance(data.get("attributes"), dict):
            raise PanelNotFoundError(f"Node {node_id} not found", status=404)
        return data

    # ============================================
    # TRANSPORT
    # ============================================

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"

        try:
            response = self._session.get(url, params=params, timeout=self.timeout)
        except requests.exceptions.Timeout:
            raise PanelUnavailableError(f"Panel timeout after {self.timeout[1]}s: {path}")
        except requests.exceptions.ConnectionError as e:
            raise PanelUnavailableError(f"Cannot connect to panel at {self.base_url}: {e}")
        except requests.exceptions.RequestException as e:
            raise PanelUnavailableError(f"Panel request failed: {e}")

        if response.status_code == 404:
            raise PanelNotFoundError(f"Not found: {path}", status=404, code="NotFound")

        if response.status_code >= 400:
            message, code, details = _error_detail(response)
            logger.warning(f"[panel] GET {path} -> HTTP {response.status_code}: {message}")
            if response.status_code in TRANSIENT_STATUSES or response.status_code >= 500:
                raise PanelUnavailableError(message, status=response.status_code, code=code, details=details)
            raise PanelResponseError(message, status=response.status_code, code=code, details=details)

        try:
            data = response.json()
        except ValueError as e:
            raise PanelResponseError("Failed to parse API response", status=response.status_code, code="PARSE_ERROR", details=str(e))

        if not isinstance(data, dict):
            raise PanelResponseError("Unexpected API response shape", status=response.status_code, code="PARSE_ERROR")

        return data


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _error_detail(response: requests.Response):
    """Message, code and raw errors from a panel error response."""
    message = f"HTTP {response.status_code}: {response.reason}"
    code = str(response.status_code)
    details = None

    try:
        body = response.json()
    except ValueError:
        return message, code, details

    errors = body.get("errors") if isinstance(body, dict) else None
    if isinstance(errors, list) and errors:
        message = ", ".join(
            str(err.get("detail") or err.get("message") or err) for err in errors if isinstance(err, dict)
        ) or message
        first = errors[0] if isinstance(errors[0], dict) else {}
        code = str(first.get("code") or code)
        details = errors

    return message, code, details
