# capacity_engine/api/schemas/capacity.py
from typing import Optional

from pydantic import BaseModel, Field

from capacity_engine.capacity.models import CapacityRequirement


class RequirementQuery(BaseModel):
    """Resource requirement query parameters (MB; CPU is informational)."""
    required_memory: Optional[int] = Field(default=None, ge=1)
    required_disk: Optional[int] = Field(default=None, ge=1)
    required_cpu: Optional[float] = Field(default=None, ge=0)

    def requirement(self) -> Optional[CapacityRequirement]:
        if self.required_memory is None or self.required_disk is None:
            return None
        return CapacityRequirement(
            memory=self.required_memory,
            disk=self.required_disk,
            cpu=self.required_cpu,
        )


class CapacityQuery(RequirementQuery):
    """Admin capacity monitoring query."""
    location_id: Optional[int] = Field(default=None, ge=1)
    node_id: Optional[int] = Field(default=None, ge=1)
    include_nodes: bool = False
    include_stats: bool = False
    force_refresh: bool = False


class ServerCapacityQuery(RequirementQuery):
    """User-facing server creation capacity query."""
    location_id: Optional[int] = Field(default=None, ge=1)
    include_recommendations: bool = True
