"""Explicit mapping of resource type names to handlers."""

from typing import Dict, Optional

from cloudplane.resources.base import BaseDataSource, BaseResourceHandler, Timeouts
from cloudplane.resources.kms_replica_key import ReplicaKeyHandler
from cloudplane.resources.network_monitor import NetworkMonitorHandler
from cloudplane.resources.prefix_list import PrefixListDataSource
from cloudplane.resources.sso_application_assignment import ApplicationAssignmentHandler
from cloudplane.utils.aws_client import AWSClientManager

HANDLER_CLASSES = (
    NetworkMonitorHandler,
    ReplicaKeyHandler,
    ApplicationAssignmentHandler,
)

DATA_SOURCE_CLASSES = (
    PrefixListDataSource,
)


def build_handlers(
    client_manager: AWSClientManager,
    timeouts: Optional[Dict[str, Dict[str, float]]] = None,
) -> Dict[str, BaseResourceHandler]:
    """Create one handler per resource type.

    Args:
        client_manager: Shared source of boto3 clients
        timeouts: Optional per-type overrides, e.g. {'AWS::KMS::ReplicaKey': {'delete': 900}}

    Returns:
        Fresh mapping of type name to handler
    """
    timeouts = timeouts or {}
    return {
        cls.type_name: cls(
            client_manager,
            timeouts=cls.default_timeouts.merged(timeouts.get(cls.type_name)),
        )
        for cls in HANDLER_CLASSES
    }


def build_data_sources(client_manager: AWSClientManager) -> Dict[str, BaseDataSource]:
    """Create one data source per lookup type."""
    return {cls.type_name: cls(client_manager) for cls in DATA_SOURCE_CLASSES}
