"""Resource handlers for AWS objects managed by cloudplane."""

from .base import (
    BaseDataSource,
    BaseResourceHandler,
    ChangeType,
    ProvisionPlan,
    Resource,
    Timeouts,
)
from .network_monitor import NetworkMonitorHandler
from .kms_replica_key import ReplicaKeyHandler
from .sso_application_assignment import ApplicationAssignmentHandler
from .prefix_list import PrefixListDataSource
from .registry import build_data_sources, build_handlers

__all__ = [
    'BaseDataSource',
    'BaseResourceHandler',
    'ChangeType',
    'ProvisionPlan',
    'Resource',
    'Timeouts',
    'NetworkMonitorHandler',
    'ReplicaKeyHandler',
    'ApplicationAssignmentHandler',
    'PrefixListDataSource',
    'build_data_sources',
    'build_handlers',
]
