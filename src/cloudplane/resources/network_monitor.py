"""CloudWatch Network Monitor monitor handler."""

import uuid
from typing import Any, Dict, List, Literal, Optional

from botocore.exceptions import ClientError
from pydantic import BaseModel, ConfigDict, Field

from cloudplane.resources.base import BaseResourceHandler, Resource, Timeouts
from cloudplane.utils.errors import ProvisioningError, is_error_code
from cloudplane.waiter import FetchResult, StateChangeConf
from cloudplane.utils.logging import get_logger

logger = get_logger(__name__)

MONITOR_STATE_PENDING = 'PENDING'
MONITOR_STATE_ACTIVE = 'ACTIVE'
MONITOR_STATE_INACTIVE = 'INACTIVE'
MONITOR_STATE_ERROR = 'ERROR'
MONITOR_STATE_DELETING = 'DELETING'

MONITOR_MIN_POLL = 10.0


class MonitorProperties(BaseModel):
    """Configurable monitor properties."""

    model_config = ConfigDict(populate_by_name=True, extra='forbid')

    monitor_name: str = Field(
        ..., alias='MonitorName', min_length=1, max_length=255, pattern=r'^[a-zA-Z0-9_-]+$'
    )
    aggregation_period: Optional[Literal[30, 60]] = Field(None, alias='AggregationPeriod')


def find_monitor_by_name(client, name: str) -> Optional[Dict[str, Any]]:
    """Get a monitor, or None if it does not exist."""
    try:
        output = client.get_monitor(monitorName=name)
    except ClientError as e:
        if is_error_code(e, 'ResourceNotFoundException'):
            return None
        raise
    return output


def status_monitor(client, name: str) -> FetchResult:
    output = find_monitor_by_name(client, name)
    if output is None:
        return FetchResult.not_found()
    return FetchResult.found(output, output.get('state', ''))


class NetworkMonitorHandler(BaseResourceHandler):
    """Handler for AWS::NetworkMonitor::Monitor. The monitor name is the ID."""

    type_name = 'AWS::NetworkMonitor::Monitor'
    display_name = 'CloudWatch Network Monitor Monitor'
    properties_model = MonitorProperties
    force_new_properties = ('MonitorName',)
    computed_properties = ('MonitorArn', 'State')
    default_timeouts = Timeouts(create=600.0, update=600.0, delete=600.0)

    @property
    def client(self):
        return self.client_manager.get_client('networkmonitor')

    def create(self, resource: Resource) -> Resource:
        name = resource.properties['MonitorName']
        params = {
            'monitorName': name,
            'clientToken': str(uuid.uuid4()),
        }
        if 'AggregationPeriod' in resource.properties:
            params['aggregationPeriod'] = resource.properties['AggregationPeriod']
        if resource.tags:
            params['tags'] = dict(resource.tags)

        logger.info(f"Creating {self.display_name} ({name})")
        try:
            self.client.create_monitor(**params)
        except ClientError as e:
            raise ProvisioningError(
                f"creating {self.display_name} ({name})",
                context=self.context(resource.id, 'create'),
                cause=e,
            ) from e
        resource.physical_id = name

        output = self.wait_ready(name, self.timeouts.create, 'create')
        return self._to_resource(resource.id, output)

    def read(self, resource: Resource) -> Optional[Resource]:
        name = resource.physical_id or resource.properties.get('MonitorName')
        try:
            output = find_monitor_by_name(self.client, name)
        except ClientError as e:
            raise ProvisioningError(
                f"reading {self.display_name} ({name})",
                context=self.context(resource.id, 'read'),
                cause=e,
            ) from e

        if output is None:
            logger.warning(f"{self.display_name} ({name}) not found")
            return None
        return self._to_resource(resource.id, output)

    def update(self, desired: Resource, current: Resource, changes: List[str]) -> Resource:
        name = current.physical_id
        output = None

        if 'AggregationPeriod' in changes:
            logger.info(f"Updating {self.display_name} ({name}) aggregation period")
            try:
                self.client.update_monitor(
                    monitorName=name,
                    aggregationPeriod=desired.properties['AggregationPeriod'],
                )
            except ClientError as e:
                raise ProvisioningError(
                    f"updating {self.display_name} ({name})",
                    context=self.context(desired.id, 'update'),
                    cause=e,
                ) from e
            output = self.wait_ready(name, self.timeouts.update, 'update')

        if 'Tags' in changes:
            try:
                self._update_tags(current.properties['MonitorArn'], current.tags, desired.tags)
                output = find_monitor_by_name(self.client, name)
            except ClientError as e:
                raise ProvisioningError(
                    f"updating {self.display_name} ({name}) tags",
                    context=self.context(desired.id, 'update'),
                    cause=e,
                ) from e

        if output is None:
            output = find_monitor_by_name(self.client, name)
        return self._to_resource(desired.id, output)

    def destroy(self, resource: Resource) -> None:
        name = resource.physical_id or resource.properties.get('MonitorName')
        logger.info(f"Deleting {self.display_name} ({name})")
        try:
            self.client.delete_monitor(monitorName=name)
        except ClientError as e:
            if is_error_code(e, 'ResourceNotFoundException'):
                return
            raise ProvisioningError(
                f"deleting {self.display_name} ({name})",
                context=self.context(resource.id, 'delete'),
                cause=e,
            ) from e

        StateChangeConf(
            pending=[MONITOR_STATE_DELETING, MONITOR_STATE_ACTIVE, MONITOR_STATE_INACTIVE],
            target=[],
            refresh=lambda: status_monitor(self.client, name),
            timeout=self.timeouts.delete,
            min_timeout=MONITOR_MIN_POLL,
            description=f"{self.display_name} ({name}) delete",
        ).wait(cancel_event=self.cancel_event)

    def wait_ready(self, name: str, timeout: float, operation: str) -> Dict[str, Any]:
        return StateChangeConf(
            pending=[MONITOR_STATE_PENDING],
            target=[MONITOR_STATE_ACTIVE, MONITOR_STATE_INACTIVE],
            refresh=lambda: status_monitor(self.client, name),
            timeout=timeout,
            min_timeout=MONITOR_MIN_POLL,
            description=f"{self.display_name} ({name}) {operation}",
        ).wait(cancel_event=self.cancel_event)

    def _update_tags(self, arn: str, old: Dict[str, str], new: Dict[str, str]) -> None:
        removed = [key for key in old if key not in new]
        updated = {key: value for key, value in new.items() if old.get(key) != value}
        if removed:
            self.client.untag_resource(resourceArn=arn, tagKeys=removed)
        if updated:
            self.client.tag_resource(resourceArn=arn, tags=updated)

    def _to_resource(self, resource_id: str, output: Dict[str, Any]) -> Resource:
        return Resource(
            id=resource_id,
            type=self.type_name,
            physical_id=output['monitorName'],
            properties={
                'MonitorName': output['monitorName'],
                'AggregationPeriod': output.get('aggregationPeriod'),
                'MonitorArn': output.get('monitorArn'),
                'State': output.get('state'),
            },
            tags=dict(output.get('tags') or {}),
        )
