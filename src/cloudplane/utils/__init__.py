"""Utility modules for logging, AWS client management, and helpers."""

from cloudplane.utils.aws_client import AWSClientManager, AssumeRoleConfig
from cloudplane.utils.retry import RetryStrategy
from cloudplane.utils.errors import (
    ErrorCategory,
    ErrorSeverity,
    ErrorContext,
    ProviderError,
    CredentialError,
    StateError,
    ProvisioningError,
    ValidationError,
    ResourceNotFoundError,
    EmptyResultError,
    TooManyResultsError,
    WaitError,
    WaitFetchError,
    WaitNotFoundError,
    UnexpectedStateError,
    WaitTimeoutError,
    WaitCancelledError,
    ErrorHandler,
    error_handler
)
from cloudplane.utils.ids import expand_resource_id, flatten_resource_id
from cloudplane.utils.logging import get_logger, setup_logging

__all__ = [
    # AWS Client
    'AWSClientManager',
    'AssumeRoleConfig',

    # Retry
    'RetryStrategy',

    # Errors
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'ProviderError',
    'CredentialError',
    'StateError',
    'ProvisioningError',
    'ValidationError',
    'ResourceNotFoundError',
    'EmptyResultError',
    'TooManyResultsError',
    'WaitError',
    'WaitFetchError',
    'WaitNotFoundError',
    'UnexpectedStateError',
    'WaitTimeoutError',
    'WaitCancelledError',
    'ErrorHandler',
    'error_handler',

    # IDs
    'expand_resource_id',
    'flatten_resource_id',

    # Logging
    'get_logger',
    'setup_logging',
]
