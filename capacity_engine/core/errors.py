# capacity_engine/core/errors.py

from typing import Any, Optional


# -----------------------------
# Base Errors
# -----------------------------

class CapacityEngineError(Exception):
    """Base class for all capacity engine errors."""
    pass


class CapacityValidationError(CapacityEngineError):
    """Invalid argument passed to a monitoring or capacity operation."""
    pass


# -----------------------------
# Panel (upstream) Errors
# -----------------------------

class PanelError(CapacityEngineError):
    """Error raised while talking to the Pterodactyl panel."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        code: Optional[str] = None,
        details: Any = None,
    ):
        super().__init__(message)
        self.status = status
        self.code = code
        self.details = details


class PanelConfigurationError(PanelError):
    """Panel URL or API key missing."""
    pass


class PanelUnavailableError(PanelError):
    """Panel unreachable, timed out, or answered with a server error."""
    pass


class PanelNotFoundError(PanelError):
    """Requested node does not exist on the panel."""
    pass


class PanelResponseError(PanelError):
    """Panel answered, but the request or the payload was rejected."""
    pass
