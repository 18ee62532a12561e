"""Lifecycle engine: plan, apply, destroy, import, refresh and drift detection."""

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional

from cloudplane.config.models import DataSourceConfig, ResourceConfig
from cloudplane.resources.base import (
    BaseDataSource,
    BaseResourceHandler,
    ChangeType,
    ProvisionPlan,
    Resource,
)
from cloudplane.state.manager import StateManager, from_resource_state, to_resource_state
from cloudplane.state.models import State
from cloudplane.utils.errors import (
    ErrorContext,
    ProviderError,
    ProvisioningError,
    StateError,
    ValidationError,
    WaitCancelledError,
    error_handler,
)
from cloudplane.utils.logging import LogContext, get_logger

logger = get_logger(__name__)


class ExecutionStatus(Enum):
    """Status of execution."""
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


@dataclass
class ResourceExecutionResult:
    """Result of executing a single resource."""

    resource_id: str
    change_type: ChangeType
    status: ExecutionStatus
    resource: Optional[Resource] = None
    error: Optional[ProviderError] = None
    duration: float = 0.0  # seconds

    def is_success(self) -> bool:
        return self.status == ExecutionStatus.SUCCESS

    def is_failed(self) -> bool:
        return self.status == ExecutionStatus.FAILED

    def is_cancelled(self) -> bool:
        return self.status == ExecutionStatus.CANCELLED


@dataclass
class ExecutionResult:
    """Outcome of an apply or destroy run."""

    results: List[ResourceExecutionResult] = field(default_factory=list)
    duration: float = 0.0

    @property
    def succeeded(self) -> List[ResourceExecutionResult]:
        return [r for r in self.results if r.is_success()]

    @property
    def failed(self) -> List[ResourceExecutionResult]:
        return [r for r in self.results if r.is_failed()]

    @property
    def cancelled(self) -> List[ResourceExecutionResult]:
        return [r for r in self.results if r.is_cancelled()]

    def is_success(self) -> bool:
        return not self.failed and not self.cancelled


class DriftType(Enum):
    """Kind of divergence between state and AWS."""
    MISSING = "missing"
    MODIFIED = "modified"


@dataclass
class DriftItem:
    """A managed resource whose remote object no longer matches."""
    resource_id: str
    resource_type: str
    drift_type: DriftType
    differences: List[str] = field(default_factory=list)


def resources_from_config(configs: Iterable[ResourceConfig]) -> List[Resource]:
    """Turn configuration declarations into desired resources."""
    return [
        Resource(id=c.id, type=c.type, properties=dict(c.properties), tags=dict(c.tags))
        for c in configs
    ]


class LifecycleEngine:
    """Drives resource handlers and keeps the state file in step with AWS.

    Handlers are looked up by type name in the mapping given at construction;
    there is no global registry.
    """

    def __init__(
        self,
        handlers: Dict[str, BaseResourceHandler],
        state_manager: StateManager,
        region: str,
        data_sources: Optional[Dict[str, BaseDataSource]] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        """Initialize engine.

        Args:
            handlers: Resource type name to handler
            state_manager: Persists managed state
            region: Region recorded in a newly initialized state file
            data_sources: Data source type name to lookup implementation
            cancel_event: Shared with every handler; see cancel()
        """
        self.handlers = handlers
        self.state_manager = state_manager
        self.region = region
        self.data_sources = data_sources or {}
        self.cancel_event = cancel_event or threading.Event()
        for handler in self.handlers.values():
            handler.cancel_event = self.cancel_event
        self._state: Optional[State] = None

    def cancel(self) -> None:
        """Stop the current apply: waits in progress end and remaining plans are not started."""
        self.cancel_event.set()

    @property
    def state(self) -> State:
        if self._state is None:
            self._state = self.state_manager.load_or_initialize(self.region)
        return self._state

    def _save(self) -> None:
        self.state_manager.save(self.state)

    def handler_for(self, resource_type: str, resource_id: Optional[str] = None) -> BaseResourceHandler:
        handler = self.handlers.get(resource_type)
        if handler is None:
            raise ValidationError(
                f"Unsupported resource type: {resource_type}",
                context=ErrorContext(resource_id=resource_id, resource_type=resource_type),
                suggestions=[f"Supported types: {', '.join(sorted(self.handlers))}"],
            )
        return handler

    def plan(self, resources: List[Resource]) -> List[ProvisionPlan]:
        """Compare desired resources against AWS.

        Every desired resource gets a plan. State entries that are no longer
        configured are planned for deletion after them.

        Args:
            resources: Desired resources

        Returns:
            Plans in execution order
        """
        plans = []
        desired_ids = set()

        for desired in resources:
            desired_ids.add(desired.id)
            handler = self.handler_for(desired.type, desired.id)
            desired = handler.validate(desired)
            entry = self.state.get_resource(desired.id)

            current = None
            if entry is not None:
                if entry.type != desired.type:
                    # Type changed under the same logical ID
                    plans.append(self._delete_plan(from_resource_state(entry)))
                else:
                    current = handler.read(from_resource_state(entry))
                    if current is None:
                        logger.warning(
                            f"{desired.type} ({desired.id}) no longer exists in AWS; it will be recreated"
                        )

            plans.append(handler.plan(desired, current))

        for entry in self.state.list_resources():
            if entry.id not in desired_ids:
                plans.append(self._delete_plan(from_resource_state(entry)))

        return plans

    def _delete_plan(self, resource: Resource) -> ProvisionPlan:
        return ProvisionPlan(resource=resource, change_type=ChangeType.DELETE, current_state=resource)

    def apply(self, plans: List[ProvisionPlan]) -> ExecutionResult:
        """Execute plans, saving state after every resource.

        A failed resource does not stop the remaining ones. Once cancel() is
        called, plans not yet started are reported as cancelled.
        """
        start = time.monotonic()
        result = ExecutionResult()

        for plan in plans:
            if self.cancel_event.is_set():
                logger.warning(f"Cancelled before {plan.change_type.value} of {plan.resource.id}")
                result.results.append(ResourceExecutionResult(
                    resource_id=plan.resource.id,
                    change_type=plan.change_type,
                    status=ExecutionStatus.CANCELLED,
                ))
                continue
            if plan.change_type == ChangeType.NO_CHANGE:
                if plan.current_state is not None:
                    self.state.add_resource(to_resource_state(plan.current_state))
                    self._save()
                result.results.append(ResourceExecutionResult(
                    resource_id=plan.resource.id,
                    change_type=plan.change_type,
                    status=ExecutionStatus.SKIPPED,
                    resource=plan.current_state,
                ))
                continue
            result.results.append(self._execute(plan))

        result.duration = time.monotonic() - start
        return result

    def _execute(self, plan: ProvisionPlan) -> ResourceExecutionResult:
        resource = plan.resource
        handler = self.handler_for(resource.type, resource.id)
        started = time.monotonic()

        with LogContext(logger, resource_id=resource.id, resource_type=resource.type,
                        operation=plan.change_type.value):
            try:
                logger.info(f"Applying {plan.change_type.value} to {resource.id}...")
                provisioned = handler.provision(plan)
            except WaitCancelledError as e:
                logger.warning(f"Cancelled {plan.change_type.value} of {resource.id}: {e}")
                return self._unfinished(plan, ExecutionStatus.CANCELLED, e, started)
            except ProviderError as e:
                logger.error(f"Failed to {plan.change_type.value} {resource.id}: {e}")
                return self._unfinished(plan, ExecutionStatus.FAILED, e, started)
            except Exception as e:
                logger.error(f"Unexpected error during {plan.change_type.value} of {resource.id}: {e}",
                             exc_info=e)
                error = error_handler.handle_exception(e, ErrorContext(
                    resource_id=resource.id,
                    resource_type=resource.type,
                    operation=plan.change_type.value,
                ))
                return self._unfinished(plan, ExecutionStatus.FAILED, error, started)

            if plan.change_type == ChangeType.DELETE:
                self.state.remove_resource(resource.id)
            else:
                self.state.add_resource(to_resource_state(provisioned))
            self._save()

            duration = time.monotonic() - started
            logger.info(f"Successfully applied {plan.change_type.value} to {resource.id} in {duration:.1f}s")

        return ResourceExecutionResult(
            resource_id=resource.id,
            change_type=plan.change_type,
            status=ExecutionStatus.SUCCESS,
            resource=provisioned,
            duration=duration,
        )

    def _unfinished(self, plan: ProvisionPlan, status: ExecutionStatus, error: ProviderError,
                    started: float) -> ResourceExecutionResult:
        """Record a failed or cancelled resource.

        Handlers set physical_id as soon as AWS accepts a create call, so a
        create that fails afterwards has still left a real object behind. It
        is stored so the next plan reads and updates it instead of creating
        another one.
        """
        resource = plan.resource
        if plan.change_type in (ChangeType.CREATE, ChangeType.REPLACE) and resource.physical_id:
            logger.warning(
                f"{resource.type} ({resource.physical_id}) was created but did not finish; "
                f"tracking it as {resource.id}"
            )
            self.state.add_resource(to_resource_state(resource))
            self._save()

        return ResourceExecutionResult(
            resource_id=resource.id,
            change_type=plan.change_type,
            status=status,
            error=error,
            duration=time.monotonic() - started,
        )

    def destroy(self, resource_ids: Optional[List[str]] = None) -> ExecutionResult:
        """Destroy managed resources, newest first.

        Args:
            resource_ids: Restrict to these logical IDs; all when None

        Raises:
            StateError: If a requested ID is not managed
        """
        entries = self.state.list_resources()
        if resource_ids is not None:
            unknown = [rid for rid in resource_ids if not self.state.has_resource(rid)]
            if unknown:
                raise StateError(f"Not managed by cloudplane: {', '.join(unknown)}")
            entries = [e for e in entries if e.id in resource_ids]

        plans = [self._delete_plan(from_resource_state(e)) for e in reversed(entries)]
        return self.apply(plans)

    def import_resource(self, resource_type: str, import_id: str,
                        logical_id: Optional[str] = None) -> Resource:
        """Adopt an existing AWS object into state.

        Raises:
            StateError: If the logical ID is already managed
            ResourceNotFoundError: If the object does not exist
        """
        logical_id = logical_id or import_id
        if self.state.has_resource(logical_id):
            raise StateError(
                f"Resource {logical_id} is already managed",
                context=ErrorContext(resource_id=logical_id, resource_type=resource_type, operation='import'),
                suggestions=["Choose another logical ID with --as"],
            )

        handler = self.handler_for(resource_type, logical_id)
        resource = handler.import_resource(import_id, logical_id)
        self.state.add_resource(to_resource_state(resource))
        self._save()
        logger.info(f"Imported {resource_type} {import_id} as {logical_id}")
        return resource

    def refresh(self) -> List[Resource]:
        """Re-read every managed resource and store what AWS reports.

        Resources that no longer exist are dropped from state.
        """
        refreshed = []
        for entry in self.state.list_resources():
            handler = self.handler_for(entry.type, entry.id)
            current = handler.read(from_resource_state(entry))
            if current is None:
                logger.warning(f"{entry.type} ({entry.id}) not found, removing from state")
                self.state.remove_resource(entry.id)
                continue
            self.state.add_resource(to_resource_state(current))
            refreshed.append(current)

        self._save()
        return refreshed

    def detect_drift(self, resources: List[Resource]) -> List[DriftItem]:
        """Report managed resources whose AWS objects differ from configuration.

        Configured resources that are not yet in state are not drift.
        """
        drift = []
        for desired in resources:
            entry = self.state.get_resource(desired.id)
            if entry is None or entry.type != desired.type:
                continue

            handler = self.handler_for(desired.type, desired.id)
            desired = handler.validate(desired)
            current = handler.read(from_resource_state(entry))
            if current is None:
                drift.append(DriftItem(desired.id, desired.type, DriftType.MISSING))
                continue

            differences = handler.detect_drift(desired, current)
            if differences:
                drift.append(DriftItem(desired.id, desired.type, DriftType.MODIFIED, differences))

        logger.info(f"Drift detection found {len(drift)} drifted resource(s)")
        return drift

    def read_data(self, sources: List[DataSourceConfig]) -> Dict[str, Resource]:
        """Evaluate data source lookups, keyed by their ID."""
        results = {}
        for source in sources:
            data_source = self.data_sources.get(source.type)
            if data_source is None:
                raise ProvisioningError(
                    f"Unsupported data source type: {source.type}",
                    context=ErrorContext(resource_id=source.id, resource_type=source.type, operation='read'),
                )
            results[source.id] = data_source.read(source.id, source.properties)
        return results
