"""EC2 managed prefix list lookup (read-only data source)."""

from typing import Any, Dict, List, Optional

from botocore.exceptions import ClientError
from pydantic import BaseModel, ConfigDict, Field

from cloudplane.resources.base import BaseDataSource, Resource, validate_properties
from cloudplane.utils.errors import (
    EmptyResultError,
    ErrorContext,
    ProvisioningError,
    ResourceNotFoundError,
    TooManyResultsError,
    is_error_code,
)
from cloudplane.utils.logging import get_logger

logger = get_logger(__name__)

ERR_CODE_INVALID_PREFIX_LIST_ID_NOT_FOUND = 'InvalidPrefixListID.NotFound'


class PrefixListFilter(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra='forbid')

    name: str = Field(..., alias='Name', min_length=1)
    values: List[str] = Field(..., alias='Values', min_length=1)


class PrefixListQuery(BaseModel):
    """Lookup criteria; all given criteria must match."""

    model_config = ConfigDict(populate_by_name=True, extra='forbid')

    name: Optional[str] = Field(None, alias='Name')
    prefix_list_id: Optional[str] = Field(None, alias='PrefixListId')
    filters: List[PrefixListFilter] = Field(default_factory=list, alias='Filters')


def build_describe_input(query: Dict[str, Any]) -> Dict[str, Any]:
    """Translate normalized query properties into DescribePrefixLists parameters."""
    params: Dict[str, Any] = {}
    filters = []

    if query.get('Name'):
        filters.append({'Name': 'prefix-list-name', 'Values': [query['Name']]})

    if query.get('PrefixListId'):
        params['PrefixListIds'] = [query['PrefixListId']]

    for custom in query.get('Filters', []):
        filters.append({'Name': custom['Name'], 'Values': list(custom['Values'])})

    if filters:
        params['Filters'] = filters
    return params


def find_prefix_lists(client, params: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Collect every page of DescribePrefixLists.

    Raises:
        ResourceNotFoundError: If a requested prefix list ID does not exist
    """
    output = []
    paginator = client.get_paginator('describe_prefix_lists')
    try:
        for page in paginator.paginate(**params):
            output.extend(page.get('PrefixLists', []))
    except ClientError as e:
        if is_error_code(e, ERR_CODE_INVALID_PREFIX_LIST_ID_NOT_FOUND):
            raise ResourceNotFoundError(
                f"EC2 Prefix List not found: {params.get('PrefixListIds')}", cause=e
            ) from e
        raise
    return output


def assert_single_value_result(results: List[Dict[str, Any]], context: ErrorContext) -> Dict[str, Any]:
    if not results:
        raise EmptyResultError("no matching EC2 Prefix List found", context=context)
    if len(results) > 1:
        raise TooManyResultsError(
            len(results),
            message=f"multiple EC2 Prefix Lists matched ({len(results)}); "
                    f"use additional constraints to reduce matches to a single EC2 Prefix List",
            context=context,
        )
    return results[0]


class PrefixListDataSource(BaseDataSource):
    """Look up one AWS-managed prefix list by name, ID or filters."""

    type_name = 'AWS::EC2::PrefixList'
    properties_model = PrefixListQuery

    @property
    def client(self):
        return self.client_manager.get_client('ec2')

    def read(self, source_id: str, properties: Dict[str, Any]) -> Resource:
        context = ErrorContext(resource_id=source_id, resource_type=self.type_name, operation='read')
        query = validate_properties(self.properties_model, properties, context)
        params = build_describe_input(query)

        try:
            results = find_prefix_lists(self.client, params)
        except ResourceNotFoundError as e:
            e.context = context
            raise
        except ClientError as e:
            raise ProvisioningError("reading EC2 Prefix List", context=context, cause=e) from e

        prefix_list = assert_single_value_result(results, context)
        logger.debug(f"Found EC2 Prefix List {prefix_list['PrefixListId']} for {source_id}")

        return Resource(
            id=source_id,
            type=self.type_name,
            physical_id=prefix_list['PrefixListId'],
            properties={
                'PrefixListId': prefix_list['PrefixListId'],
                'Name': prefix_list.get('PrefixListName'),
                'CidrBlocks': list(prefix_list.get('Cidrs', [])),
            },
        )
