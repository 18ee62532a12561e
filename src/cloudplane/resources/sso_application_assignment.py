"""IAM Identity Center application assignment handler."""

from typing import Any, Dict, List, Literal, Optional

from botocore.exceptions import ClientError
from pydantic import BaseModel, ConfigDict, Field

from cloudplane.resources.base import BaseResourceHandler, Resource
from cloudplane.utils.errors import ProvisioningError, is_error_code
from cloudplane.utils.ids import expand_resource_id, flatten_resource_id
from cloudplane.utils.logging import get_logger

logger = get_logger(__name__)

APPLICATION_ASSIGNMENT_ID_PART_COUNT = 3


class ApplicationAssignmentProperties(BaseModel):
    """Application assignment properties; every one forces replacement."""

    model_config = ConfigDict(populate_by_name=True, extra='forbid')

    application_arn: str = Field(..., alias='ApplicationArn', pattern=r'^arn:[^:]+:sso:')
    principal_id: str = Field(..., alias='PrincipalId', min_length=1, max_length=47)
    principal_type: Literal['USER', 'GROUP'] = Field(..., alias='PrincipalType')


def find_application_assignment_by_id(client, assignment_id: str) -> Optional[Dict[str, Any]]:
    """Describe an assignment from its composite ID, or None if it does not exist."""
    application_arn, principal_id, principal_type = expand_resource_id(
        assignment_id, APPLICATION_ASSIGNMENT_ID_PART_COUNT
    )
    try:
        return client.describe_application_assignment(
            ApplicationArn=application_arn,
            PrincipalId=principal_id,
            PrincipalType=principal_type,
        )
    except ClientError as e:
        if is_error_code(e, 'ResourceNotFoundException'):
            return None
        raise


class ApplicationAssignmentHandler(BaseResourceHandler):
    """Handler for AWS::SSOAdmin::ApplicationAssignment.

    The ID is ``ApplicationArn,PrincipalId,PrincipalType``. Assignments cannot
    change in place; any property change is planned as a replacement.
    """

    type_name = 'AWS::SSOAdmin::ApplicationAssignment'
    display_name = 'SSO Application Assignment'
    properties_model = ApplicationAssignmentProperties
    force_new_properties = ('ApplicationArn', 'PrincipalId', 'PrincipalType')
    supports_tags = False
    # No waits: create and delete return once the API call succeeds
    timeout_operations = ()

    @property
    def client(self):
        return self.client_manager.get_client('sso-admin')

    def create(self, resource: Resource) -> Resource:
        props = resource.properties
        assignment_id = flatten_resource_id(
            [props['ApplicationArn'], props['PrincipalId'], props['PrincipalType']],
            APPLICATION_ASSIGNMENT_ID_PART_COUNT,
        )

        logger.info(f"Creating {self.display_name} ({assignment_id})")
        try:
            self.client.create_application_assignment(
                ApplicationArn=props['ApplicationArn'],
                PrincipalId=props['PrincipalId'],
                PrincipalType=props['PrincipalType'],
            )
        except ClientError as e:
            raise ProvisioningError(
                f"creating {self.display_name} ({props['ApplicationArn']})",
                context=self.context(resource.id, 'create'),
                cause=e,
            ) from e

        return Resource(
            id=resource.id,
            type=self.type_name,
            physical_id=assignment_id,
            properties=dict(props),
        )

    def read(self, resource: Resource) -> Optional[Resource]:
        try:
            output = find_application_assignment_by_id(self.client, resource.physical_id)
        except ClientError as e:
            raise ProvisioningError(
                f"reading {self.display_name} ({resource.physical_id})",
                context=self.context(resource.id, 'read'),
                cause=e,
            ) from e

        if output is None:
            logger.warning(f"{self.display_name} ({resource.physical_id}) not found")
            return None

        return Resource(
            id=resource.id,
            type=self.type_name,
            physical_id=resource.physical_id,
            properties={
                'ApplicationArn': output['ApplicationArn'],
                'PrincipalId': output['PrincipalId'],
                'PrincipalType': output['PrincipalType'],
            },
        )

    def update(self, desired: Resource, current: Resource, changes: List[str]) -> Resource:
        # No updatable properties
        return current

    def destroy(self, resource: Resource) -> None:
        application_arn, principal_id, principal_type = expand_resource_id(
            resource.physical_id, APPLICATION_ASSIGNMENT_ID_PART_COUNT
        )
        logger.info(f"Deleting {self.display_name} ({resource.physical_id})")
        try:
            self.client.delete_application_assignment(
                ApplicationArn=application_arn,
                PrincipalId=principal_id,
                PrincipalType=principal_type,
            )
        except ClientError as e:
            if is_error_code(e, 'ResourceNotFoundException'):
                return
            raise ProvisioningError(
                f"deleting {self.display_name} ({resource.physical_id})",
                context=self.context(resource.id, 'delete'),
                cause=e,
            ) from e

    def resource_from_import_id(self, import_id: str, logical_id: str) -> Resource:
        # Validates the ID format before any API call
        expand_resource_id(import_id, APPLICATION_ASSIGNMENT_ID_PART_COUNT)
        return super().resource_from_import_id(import_id, logical_id)
