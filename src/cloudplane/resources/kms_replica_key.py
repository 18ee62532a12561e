"""KMS multi-Region replica key handler.

The replica is created by calling ReplicateKey in the primary key's Region;
everything else talks to the replica's own Region (the provider Region).
"""

import json
import threading
from typing import Any, Dict, List, Optional, Tuple

from botocore.exceptions import ClientError
from pydantic import BaseModel, ConfigDict, Field

from cloudplane.resources.base import BaseResourceHandler, Resource, Timeouts
from cloudplane.utils.errors import ProvisioningError, ValidationError, is_error_code
from cloudplane.utils.logging import LogContext, get_logger
from cloudplane.utils.retry import RetryStrategy
from cloudplane.waiter import FetchResult, StateChangeConf

logger = get_logger(__name__)

KEY_STATE_CREATING = 'Creating'
KEY_STATE_ENABLED = 'Enabled'
KEY_STATE_DISABLED = 'Disabled'
KEY_STATE_PENDING_DELETION = 'PendingDeletion'
KEY_STATE_PENDING_REPLICA_DELETION = 'PendingReplicaDeletion'
KEY_STATE_UPDATING = 'Updating'

KEY_CREATE_TIMEOUT = 120.0
IAM_PROPAGATION_TIMEOUT = 120.0
PROPAGATION_TIMEOUT = 600.0
PROPAGATION_MIN_POLL = 1.0
PROPAGATION_OCCURRENCES = 5

DEFAULT_POLICY_NAME = 'default'


class ReplicaKeyProperties(BaseModel):
    """Configurable replica key properties."""

    model_config = ConfigDict(populate_by_name=True, extra='forbid')

    primary_key_arn: str = Field(
        ..., alias='PrimaryKeyArn', pattern=r'^arn:[^:]+:kms:[^:]+:\d{12}:key/.+$'
    )
    description: Optional[str] = Field(None, alias='Description', max_length=8192)
    enabled: bool = Field(True, alias='Enabled')
    policy: Optional[str] = Field(None, alias='Policy')
    bypass_policy_lockout_safety_check: bool = Field(False, alias='BypassPolicyLockoutSafetyCheck')
    deletion_window_in_days: int = Field(30, alias='DeletionWindowInDays', ge=7, le=30)


def parse_key_arn(arn: str) -> Tuple[str, str]:
    """Split a KMS key ARN into (region, key ID).

    e.g. arn:aws:kms:us-east-2:111122223333:key/mrk-1234abcd12ab34cd56ef1234567890ab
    """
    parts = arn.split(':', 5)
    if len(parts) != 6 or parts[0] != 'arn' or not parts[5].startswith('key/'):
        raise ValidationError(f"invalid KMS key ARN: {arn}")
    return parts[3], parts[5][len('key/'):]


def policies_equivalent(first: Optional[str], second: Optional[str]) -> bool:
    """Compare two JSON policy documents ignoring formatting."""
    if first is None or second is None:
        return first == second
    try:
        return json.loads(first) == json.loads(second)
    except ValueError:
        return first == second


def tags_to_dict(tags: List[Dict[str, str]]) -> Dict[str, str]:
    return {tag['TagKey']: tag['TagValue'] for tag in tags}


def tags_to_list(tags: Dict[str, str]) -> List[Dict[str, str]]:
    return [{'TagKey': key, 'TagValue': value} for key, value in tags.items()]


def find_key_by_id(client, key_id: str) -> Optional[Dict[str, Any]]:
    """Describe a key; keys that are gone or pending deletion count as absent."""
    try:
        output = client.describe_key(KeyId=key_id)
    except ClientError as e:
        if is_error_code(e, 'NotFoundException'):
            return None
        raise

    metadata = output['KeyMetadata']
    if metadata.get('KeyState') in (KEY_STATE_PENDING_DELETION, KEY_STATE_PENDING_REPLICA_DELETION):
        return None
    return metadata


def status_key_state(client, key_id: str) -> FetchResult:
    metadata = find_key_by_id(client, key_id)
    if metadata is None:
        return FetchResult.not_found()
    return FetchResult.found(metadata, metadata['KeyState'])


def list_key_tags(client, key_id: str) -> Dict[str, str]:
    tags = []
    paginator = client.get_paginator('list_resource_tags')
    for page in paginator.paginate(KeyId=key_id):
        tags.extend(page.get('Tags', []))
    return tags_to_dict(tags)


class ReplicaKeyHandler(BaseResourceHandler):
    """Handler for AWS::KMS::ReplicaKey. The replica's key ID is the ID.

    Enable/disable and policy/tag propagation waits use the update budget,
    including the ones that follow a create.
    """

    type_name = 'AWS::KMS::ReplicaKey'
    display_name = 'KMS Replica Key'
    properties_model = ReplicaKeyProperties
    force_new_properties = ('PrimaryKeyArn',)
    computed_properties = ('Arn', 'KeyId', 'KeyRotationEnabled', 'KeySpec', 'KeyUsage')
    default_timeouts = Timeouts(create=KEY_CREATE_TIMEOUT, update=PROPAGATION_TIMEOUT, delete=1200.0)

    def __init__(self, client_manager, timeouts: Optional[Timeouts] = None,
                 cancel_event: Optional[threading.Event] = None,
                 retry_strategy: Optional[RetryStrategy] = None):
        super().__init__(client_manager, timeouts, cancel_event)
        # ReplicateKey fails with MalformedPolicyDocumentException until new IAM principals propagate
        self.retry_strategy = retry_strategy or RetryStrategy(
            max_retries=60,
            base_delay=2.0,
            max_delay=10.0,
            retryable_codes={'MalformedPolicyDocumentException'},
            timeout=IAM_PROPAGATION_TIMEOUT,
        )

    @property
    def client(self):
        return self.client_manager.get_client('kms')

    def properties_equal(self, name: str, desired: Any, current: Any) -> bool:
        if name == 'Policy':
            return policies_equivalent(desired, current)
        return desired == current

    def create(self, resource: Resource) -> Resource:
        props = resource.properties
        primary_region, primary_key_id = parse_key_arn(props['PrimaryKeyArn'])

        params = {
            'KeyId': primary_key_id,
            'ReplicaRegion': self.client_manager.get_region(),
        }
        if props.get('BypassPolicyLockoutSafetyCheck'):
            params['BypassPolicyLockoutSafetyCheck'] = True
        if props.get('Description'):
            params['Description'] = props['Description']
        if props.get('Policy'):
            params['Policy'] = props['Policy']
        if resource.tags:
            params['Tags'] = tags_to_list(resource.tags)

        primary_client = self.client_manager.get_client('kms', region=primary_region)
        try:
            output = self.retry_strategy.execute_with_retry(primary_client.replicate_key, **params)
        except ClientError as e:
            raise ProvisioningError(
                f"creating {self.display_name}",
                context=self.context(resource.id, 'create'),
                cause=e,
            ) from e

        key_id = output['ReplicaKeyMetadata']['KeyId']
        resource.physical_id = key_id

        with LogContext(logger, resource_id=key_id, resource_type=self.type_name):
            logger.info(f"Created {self.display_name} ({key_id}), waiting for it to become enabled")
            StateChangeConf(
                pending=[KEY_STATE_CREATING],
                target=[KEY_STATE_ENABLED],
                refresh=lambda: status_key_state(self.client, key_id),
                timeout=self.timeouts.create,
                description=f"{self.display_name} ({key_id}) create",
            ).wait(cancel_event=self.cancel_event)

            if not props.get('Enabled', True):
                self.update_key_enabled(key_id, False)

            if props.get('Policy'):
                self.wait_policy_propagated(key_id, props['Policy'])

            if resource.tags:
                self.wait_tags_propagated(key_id, resource.tags)

        created = self.read(resource)
        if created is None:
            raise ProvisioningError(
                f"reading {self.display_name} ({key_id}) after create: not found",
                context=self.context(resource.id, 'create'),
            )
        return created

    def read(self, resource: Resource) -> Optional[Resource]:
        key_id = resource.physical_id
        try:
            metadata = find_key_by_id(self.client, key_id)
            if metadata is None:
                logger.warning(f"{self.display_name} ({key_id}) not found")
                return None
            policy = self.client.get_key_policy(
                KeyId=key_id, PolicyName=DEFAULT_POLICY_NAME
            ).get('Policy')
            rotation = self.client.get_key_rotation_status(KeyId=key_id).get('KeyRotationEnabled')
            tags = list_key_tags(self.client, key_id)
        except ClientError as e:
            raise ProvisioningError(
                f"reading {self.display_name} ({key_id})",
                context=self.context(resource.id, 'read'),
                cause=e,
            ) from e

        self._check_replica(resource.id, key_id, metadata)

        configured_policy = resource.properties.get('Policy')
        if policies_equivalent(configured_policy, policy):
            policy = configured_policy

        return Resource(
            id=resource.id,
            type=self.type_name,
            physical_id=metadata['KeyId'],
            properties={
                'PrimaryKeyArn': metadata['MultiRegionConfiguration']['PrimaryKey']['Arn'],
                'Description': metadata.get('Description', ''),
                'Enabled': metadata.get('Enabled'),
                'Policy': policy,
                'BypassPolicyLockoutSafetyCheck': resource.properties.get(
                    'BypassPolicyLockoutSafetyCheck', False),
                'DeletionWindowInDays': resource.properties.get('DeletionWindowInDays', 30),
                'Arn': metadata.get('Arn'),
                'KeyId': metadata['KeyId'],
                'KeyRotationEnabled': rotation,
                'KeySpec': metadata.get('KeySpec'),
                'KeyUsage': metadata.get('KeyUsage'),
            },
            tags=tags,
        )

    def update(self, desired: Resource, current: Resource, changes: List[str]) -> Resource:
        key_id = current.physical_id
        props = desired.properties
        enabled = props.get('Enabled', True)

        with LogContext(logger, resource_id=key_id, resource_type=self.type_name):
            # Disabled keys cannot be modified: enable first, disable last
            if 'Enabled' in changes and enabled:
                self.update_key_enabled(key_id, True)

            if 'Description' in changes:
                self._call('update_key_description', desired.id,
                           KeyId=key_id, Description=props.get('Description', ''))

            if 'Policy' in changes and props.get('Policy'):
                self._call('put_key_policy', desired.id,
                           KeyId=key_id,
                           PolicyName=DEFAULT_POLICY_NAME,
                           Policy=props['Policy'],
                           BypassPolicyLockoutSafetyCheck=props.get(
                               'BypassPolicyLockoutSafetyCheck', False))
                self.wait_policy_propagated(key_id, props['Policy'])

            if 'Tags' in changes:
                removed = [key for key in current.tags if key not in desired.tags]
                if removed:
                    self._call('untag_resource', desired.id, KeyId=key_id, TagKeys=removed)
                if desired.tags:
                    self._call('tag_resource', desired.id,
                               KeyId=key_id, Tags=tags_to_list(desired.tags))
                self.wait_tags_propagated(key_id, desired.tags)

            if 'Enabled' in changes and not enabled:
                self.update_key_enabled(key_id, False)

        desired.physical_id = key_id
        updated = self.read(desired)
        if updated is None:
            raise ProvisioningError(
                f"reading {self.display_name} ({key_id}) after update: not found",
                context=self.context(desired.id, 'update'),
            )
        return updated

    def destroy(self, resource: Resource) -> None:
        key_id = resource.physical_id
        params = {'KeyId': key_id}
        if resource.properties.get('DeletionWindowInDays'):
            params['PendingWindowInDays'] = int(resource.properties['DeletionWindowInDays'])

        logger.debug(f"Deleting {self.display_name}: ({key_id})")
        try:
            self.client.schedule_key_deletion(**params)
        except ClientError as e:
            if is_error_code(e, 'NotFoundException'):
                return
            if is_error_code(e, 'KMSInvalidStateException', message_contains='is pending deletion'):
                return
            raise ProvisioningError(
                f"deleting {self.display_name} ({key_id})",
                context=self.context(resource.id, 'delete'),
                cause=e,
            ) from e

        StateChangeConf(
            pending=[KEY_STATE_ENABLED, KEY_STATE_DISABLED, KEY_STATE_CREATING, KEY_STATE_UPDATING],
            target=[],
            refresh=lambda: status_key_state(self.client, key_id),
            timeout=self.timeouts.delete,
            description=f"{self.display_name} ({key_id}) delete",
        ).wait(cancel_event=self.cancel_event)

    def update_key_enabled(self, key_id: str, enabled: bool) -> None:
        """Enable or disable the key and wait until the change is visible."""
        operation = 'enable_key' if enabled else 'disable_key'
        self._call(operation, key_id, KeyId=key_id)

        target = KEY_STATE_ENABLED if enabled else KEY_STATE_DISABLED
        pending = KEY_STATE_DISABLED if enabled else KEY_STATE_ENABLED
        StateChangeConf(
            pending=[pending, KEY_STATE_UPDATING],
            target=[target],
            refresh=lambda: status_key_state(self.client, key_id),
            timeout=self.timeouts.update,
            min_timeout=PROPAGATION_MIN_POLL,
            continuous_target_occurrence=PROPAGATION_OCCURRENCES,
            description=f"{self.display_name} ({key_id}) {'enable' if enabled else 'disable'}",
        ).wait(cancel_event=self.cancel_event)

    def wait_policy_propagated(self, key_id: str, policy: str) -> None:
        """Wait until the key policy reads back as ``policy`` consistently."""
        def refresh() -> FetchResult:
            try:
                current = self.client.get_key_policy(
                    KeyId=key_id, PolicyName=DEFAULT_POLICY_NAME
                ).get('Policy')
            except ClientError as e:
                if is_error_code(e, 'NotFoundException'):
                    return FetchResult.not_found()
                raise
            return FetchResult.found(current, str(policies_equivalent(current, policy)).lower())

        StateChangeConf(
            pending=['false'],
            target=['true'],
            refresh=refresh,
            timeout=self.timeouts.update,
            min_timeout=PROPAGATION_MIN_POLL,
            continuous_target_occurrence=PROPAGATION_OCCURRENCES,
            description=f"{self.display_name} ({key_id}) policy propagation",
        ).wait(cancel_event=self.cancel_event)

    def wait_tags_propagated(self, key_id: str, tags: Dict[str, str]) -> None:
        """Wait until the key's tags read back as ``tags`` consistently."""
        def refresh() -> FetchResult:
            try:
                current = list_key_tags(self.client, key_id)
            except ClientError as e:
                if is_error_code(e, 'NotFoundException'):
                    return FetchResult.not_found()
                raise
            return FetchResult.found(current, str(current == tags).lower())

        StateChangeConf(
            pending=['false'],
            target=['true'],
            refresh=refresh,
            timeout=self.timeouts.update,
            min_timeout=PROPAGATION_MIN_POLL,
            continuous_target_occurrence=PROPAGATION_OCCURRENCES,
            description=f"{self.display_name} ({key_id}) tag propagation",
        ).wait(cancel_event=self.cancel_event)

    def _call(self, operation: str, resource_id: str, **params) -> Dict[str, Any]:
        try:
            return getattr(self.client, operation)(**params)
        except ClientError as e:
            raise ProvisioningError(
                f"updating {self.display_name} ({params.get('KeyId')}): {operation}",
                context=self.context(resource_id, 'update'),
                cause=e,
            ) from e

    def _check_replica(self, resource_id: str, key_id: str, metadata: Dict[str, Any]) -> None:
        context = self.context(resource_id, 'read')
        if metadata.get('KeyManager') != 'CUSTOMER':
            raise ProvisioningError(
                f"{self.display_name} ({key_id}) has invalid KeyManager: {metadata.get('KeyManager')}",
                context=context,
            )
        if metadata.get('Origin') != 'AWS_KMS':
            raise ProvisioningError(
                f"{self.display_name} ({key_id}) has invalid Origin: {metadata.get('Origin')}",
                context=context,
            )
        multi_region = metadata.get('MultiRegionConfiguration') or {}
        if not metadata.get('MultiRegion') or multi_region.get('MultiRegionKeyType') != 'REPLICA':
            raise ProvisioningError(
                f"{self.display_name} ({key_id}) is not a multi-Region replica key",
                context=context,
            )
