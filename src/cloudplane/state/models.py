"""State file data models."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

STATE_VERSION = "1.0"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ResourceState(BaseModel):
    """Last known remote state of a managed resource."""

    id: str = Field(..., description="Logical resource ID")
    type: str = Field(..., description="Resource type (e.g., AWS::NetworkMonitor::Monitor)")
    physical_id: Optional[str] = Field(None, description="Identifier of the remote object")
    properties: Dict[str, Any] = Field(
        default_factory=dict, description="Properties as last read from AWS"
    )
    tags: Dict[str, str] = Field(default_factory=dict, description="Resource tags")
    metadata: Dict[str, Any] = Field(
        default_factory=dict, description="Additional metadata (last update time, etc.)"
    )


class State(BaseModel):
    """Represents the complete managed state."""

    version: str = Field(STATE_VERSION, description="State file format version")
    region: str = Field(..., description="AWS region")
    timestamp: datetime = Field(default_factory=_utcnow, description="Last update timestamp")
    resources: Dict[str, ResourceState] = Field(
        default_factory=dict, description="Managed resources, keyed by logical ID"
    )

    def add_resource(self, resource: ResourceState) -> None:
        """Add or replace a resource."""
        resource.metadata['updated_at'] = _utcnow().isoformat()
        self.resources[resource.id] = resource
        self.timestamp = _utcnow()

    def remove_resource(self, resource_id: str) -> Optional[ResourceState]:
        """Remove a resource and return it."""
        resource = self.resources.pop(resource_id, None)
        if resource is not None:
            self.timestamp = _utcnow()
        return resource

    def get_resource(self, resource_id: str) -> Optional[ResourceState]:
        return self.resources.get(resource_id)

    def has_resource(self, resource_id: str) -> bool:
        return resource_id in self.resources

    def list_resources(self) -> List[ResourceState]:
        return list(self.resources.values())

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode='json')

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "State":
        return cls.model_validate(data)
