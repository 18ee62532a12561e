"""Base resource handler interface and shared lifecycle types."""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from cloudplane.utils.aws_client import AWSClientManager
from cloudplane.utils.errors import ErrorContext, ResourceNotFoundError, ValidationError
from cloudplane.utils.logging import get_logger

logger = get_logger(__name__)


class ChangeType(Enum):
    """Type of change for a resource."""
    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    DELETE = "delete"
    NO_CHANGE = "no_change"


@dataclass
class Resource:
    """A managed AWS object as seen by cloudplane."""
    id: str
    type: str
    physical_id: Optional[str] = None
    properties: Dict[str, Any] = field(default_factory=dict)
    tags: Dict[str, str] = field(default_factory=dict)


@dataclass
class ProvisionPlan:
    """Plan for provisioning a resource."""
    resource: Resource
    change_type: ChangeType
    current_state: Optional[Resource]
    changes: List[str] = field(default_factory=list)


@dataclass
class Timeouts:
    """Wait budgets in seconds per lifecycle operation."""
    create: float = 600.0
    update: float = 600.0
    delete: float = 600.0

    def merged(self, overrides: Optional[Dict[str, float]]) -> 'Timeouts':
        if not overrides:
            return self
        return Timeouts(
            create=overrides.get('create', self.create),
            update=overrides.get('update', self.update),
            delete=overrides.get('delete', self.delete),
        )


def validate_properties(model: Type[BaseModel], properties: Dict[str, Any], context: ErrorContext) -> Dict[str, Any]:
    """Validate raw properties against a pydantic model and normalize them.

    Raises:
        ValidationError: If the properties do not match the model
    """
    try:
        parsed = model.model_validate(properties)
    except PydanticValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ValidationError(
            f"invalid properties for {context.resource_type} ({context.resource_id}): {details}",
            context=context,
            cause=e,
        ) from e
    return parsed.model_dump(by_alias=True, exclude_none=True)


class BaseResourceHandler(ABC):
    """Lifecycle handler for one resource type.

    Subclasses declare their properties model and which properties force a
    replacement; the default ``plan``/``provision``/``detect_drift`` logic
    works from those declarations.
    """

    type_name: str = ''
    display_name: str = ''
    properties_model: Type[BaseModel]
    force_new_properties: Tuple[str, ...] = ()
    computed_properties: Tuple[str, ...] = ()
    supports_tags: bool = True
    default_timeouts = Timeouts()
    # Operations that wait on AWS and therefore honour a timeout override
    timeout_operations: Tuple[str, ...] = ('create', 'update', 'delete')

    def __init__(
        self,
        client_manager: AWSClientManager,
        timeouts: Optional[Timeouts] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        """Initialize handler.

        Args:
            client_manager: Source of boto3 clients
            timeouts: Wait budgets; defaults to the handler's own
            cancel_event: Setting it ends any wait in progress with WaitCancelledError
        """
        self.client_manager = client_manager
        self.timeouts = timeouts or self.default_timeouts
        self.cancel_event = cancel_event

    def context(self, resource_id: Optional[str], operation: Optional[str] = None) -> ErrorContext:
        return ErrorContext(resource_id=resource_id, resource_type=self.type_name, operation=operation)

    def validate(self, resource: Resource) -> Resource:
        """Return a copy of the resource with validated, normalized properties."""
        properties = validate_properties(
            self.properties_model, resource.properties, self.context(resource.id, 'validate')
        )
        if resource.tags and not self.supports_tags:
            raise ValidationError(
                f"{self.type_name} ({resource.id}) does not support tags",
                context=self.context(resource.id, 'validate'),
            )
        return Resource(
            id=resource.id,
            type=resource.type,
            physical_id=resource.physical_id,
            properties=properties,
            tags=dict(resource.tags),
        )

    def properties_equal(self, name: str, desired: Any, current: Any) -> bool:
        """Compare one configured property against its remote value."""
        return desired == current

    def diff(self, desired: Resource, current: Resource) -> List[str]:
        """List configured properties (and tags) whose remote value differs."""
        changes = []
        for name, value in desired.properties.items():
            if name in self.computed_properties:
                continue
            if not self.properties_equal(name, value, current.properties.get(name)):
                changes.append(name)
        if desired.tags != current.tags:
            changes.append('Tags')
        return changes

    def plan(self, desired: Resource, current: Optional[Resource]) -> ProvisionPlan:
        """Determine what changes are needed for the resource.

        Args:
            desired: The desired state of the resource
            current: The current state of the resource (None if doesn't exist)

        Returns:
            ProvisionPlan describing the changes needed
        """
        if current is None:
            return ProvisionPlan(resource=desired, change_type=ChangeType.CREATE, current_state=None)

        changes = self.diff(desired, current)
        if not changes:
            return ProvisionPlan(
                resource=desired, change_type=ChangeType.NO_CHANGE, current_state=current
            )

        if any(name in self.force_new_properties for name in changes):
            change_type = ChangeType.REPLACE
        else:
            change_type = ChangeType.UPDATE
        return ProvisionPlan(
            resource=desired, change_type=change_type, current_state=current, changes=changes
        )

    def provision(self, plan: ProvisionPlan) -> Resource:
        """Execute the provisioning plan.

        Returns:
            Resource with physical_id and computed properties set
        """
        if plan.change_type == ChangeType.CREATE:
            return self.create(plan.resource)
        if plan.change_type == ChangeType.UPDATE:
            plan.resource.physical_id = plan.current_state.physical_id
            return self.update(plan.resource, plan.current_state, plan.changes)
        if plan.change_type == ChangeType.REPLACE:
            self.destroy(plan.current_state)
            return self.create(plan.resource)
        if plan.change_type == ChangeType.DELETE:
            self.destroy(plan.current_state or plan.resource)
            return plan.resource
        return plan.current_state or plan.resource

    @abstractmethod
    def create(self, resource: Resource) -> Resource:
        """Create the remote object and wait until it is usable."""

    @abstractmethod
    def read(self, resource: Resource) -> Optional[Resource]:
        """Read the remote object; None if it no longer exists."""

    @abstractmethod
    def update(self, desired: Resource, current: Resource, changes: List[str]) -> Resource:
        """Apply in-place changes."""

    @abstractmethod
    def destroy(self, resource: Resource) -> None:
        """Delete the remote object and wait until it is gone."""

    def resource_from_import_id(self, import_id: str, logical_id: str) -> Resource:
        """Build the minimal resource a read needs from an import ID."""
        return Resource(id=logical_id, type=self.type_name, physical_id=import_id)

    def import_resource(self, import_id: str, logical_id: Optional[str] = None) -> Resource:
        """Adopt an existing remote object.

        Raises:
            ResourceNotFoundError: If nothing exists under the import ID
        """
        logical_id = logical_id or import_id
        stub = self.resource_from_import_id(import_id, logical_id)
        resource = self.read(stub)
        if resource is None:
            raise ResourceNotFoundError(
                f"cannot import non-existent remote object {self.display_name} ({import_id})",
                context=self.context(logical_id, 'import'),
            )
        return resource

    def detect_drift(self, desired: Resource, current: Resource) -> List[str]:
        """Describe each difference between configured and remote state."""
        differences = []
        for name in self.diff(desired, current):
            if name == 'Tags':
                differences.append(f"Tags: expected {desired.tags}, actual {current.tags}")
            else:
                differences.append(
                    f"{name}: expected {desired.properties.get(name)!r}, "
                    f"actual {current.properties.get(name)!r}"
                )
        return differences


class BaseDataSource(ABC):
    """Read-only lookup of an existing AWS object."""

    type_name: str = ''
    properties_model: Type[BaseModel]

    def __init__(self, client_manager: AWSClientManager):
        self.client_manager = client_manager

    @abstractmethod
    def read(self, source_id: str, properties: Dict[str, Any]) -> Resource:
        """Look up the object described by ``properties``."""
