"""Error handling framework for resource lifecycle operations."""

from typing import Optional, Dict, Any, List
from enum import Enum
from dataclasses import dataclass
from botocore.exceptions import ClientError, NoCredentialsError, PartialCredentialsError


class ErrorCategory(Enum):
    """Categories of errors that can occur during lifecycle operations."""
    CONFIGURATION = "configuration"
    AWS = "aws"
    NETWORK = "network"
    STATE = "state"
    PROVISIONING = "provisioning"
    NOT_FOUND = "not_found"
    WAIT = "wait"
    CREDENTIAL = "credential"
    PERMISSION = "permission"
    VALIDATION = "validation"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    CRITICAL = "critical"  # Run cannot continue
    ERROR = "error"  # Resource failed but run can continue
    WARNING = "warning"  # Non-fatal issue
    INFO = "info"  # Informational message


@dataclass
class ErrorContext:
    """Context information for an error."""
    resource_id: Optional[str] = None
    resource_type: Optional[str] = None
    operation: Optional[str] = None
    aws_service: Optional[str] = None
    aws_operation: Optional[str] = None
    request_id: Optional[str] = None
    additional_info: Optional[Dict[str, Any]] = None


class ProviderError(Exception):
    """Base exception for provider errors."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        suggestions: Optional[List[str]] = None
    ):
        """Initialize provider error.

        Args:
            message: Human-readable error message
            category: Error category
            severity: Error severity
            context: Additional context about the error
            cause: Original exception that caused this error
            suggestions: List of suggested fixes
        """
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.cause = cause
        self.suggestions = suggestions or []

    def to_user_message(self) -> str:
        """Convert error to user-friendly message.

        Returns:
            Formatted error message for display to user
        """
        lines = [f"{self.severity.value.upper()}: {self.message}"]

        if self.context.resource_id:
            lines.append(f"   Resource: {self.context.resource_id}")
        if self.context.operation:
            lines.append(f"   Operation: {self.context.operation}")

        if self.cause:
            lines.append(f"   Cause: {str(self.cause)}")

        if self.suggestions:
            lines.append("\nSuggested fixes:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"   {i}. {suggestion}")

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        return {
            'message': self.message,
            'category': self.category.value,
            'severity': self.severity.value,
            'context': {
                'resource_id': self.context.resource_id,
                'resource_type': self.context.resource_type,
                'operation': self.context.operation,
                'aws_service': self.context.aws_service,
                'aws_operation': self.context.aws_operation,
                'request_id': self.context.request_id,
                'additional_info': self.context.additional_info
            },
            'cause': str(self.cause) if self.cause else None,
            'suggestions': self.suggestions
        }


class CredentialError(ProviderError):
    """Error related to AWS credentials."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.CREDENTIAL,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )


class StateError(ProviderError):
    """Error related to state management."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.STATE,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )


class ProvisioningError(ProviderError):
    """Error during a create, read, update or delete call."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.PROVISIONING,
            severity=ErrorSeverity.ERROR,
            **kwargs
        )


class ValidationError(ProviderError):
    """Error during validation of resource properties or identifiers."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.VALIDATION,
            severity=ErrorSeverity.ERROR,
            **kwargs
        )


class ResourceNotFoundError(ProviderError):
    """A lookup found no remote object."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault('severity', ErrorSeverity.ERROR)
        super().__init__(message, category=ErrorCategory.NOT_FOUND, **kwargs)


class EmptyResultError(ResourceNotFoundError):
    """A lookup succeeded but returned no results."""

    def __init__(self, message: str = "empty result", **kwargs):
        super().__init__(message, **kwargs)


class TooManyResultsError(ProviderError):
    """A lookup expected to match a single object matched several."""

    def __init__(self, count: int, message: Optional[str] = None, **kwargs):
        self.count = count
        super().__init__(
            message or f"too many results: wanted 1, got {count}",
            category=ErrorCategory.VALIDATION,
            severity=ErrorSeverity.ERROR,
            suggestions=['Narrow the lookup with a more specific name, ID or filter'],
            **kwargs
        )


class WaitError(ProviderError):
    """Base class for failures of a state wait.

    Carries the last snapshot and status label observed before the wait
    ended so callers can report them.
    """

    def __init__(
        self,
        message: str,
        last_snapshot: Any = None,
        last_status: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, category=ErrorCategory.WAIT, **kwargs)
        self.last_snapshot = last_snapshot
        self.last_status = last_status


class WaitFetchError(WaitError):
    """The status fetch itself failed; the wait is abandoned."""


class WaitNotFoundError(WaitError):
    """The remote object disappeared while waiting for a target state."""

    def __init__(self, message: str, not_found_count: int = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.not_found_count = not_found_count


class UnexpectedStateError(WaitError):
    """The status label was in neither the pending nor the target set."""

    def __init__(self, message: str, expected: Optional[List[str]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.expected = expected or []


class WaitTimeoutError(WaitError):
    """The wait ran out of time while the status was still pending."""

    def __init__(
        self,
        message: str,
        timeout: float = 0.0,
        last_error: Optional[Exception] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.timeout = timeout
        self.last_error = last_error


class WaitCancelledError(WaitError):
    """The caller cancelled the wait."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault('severity', ErrorSeverity.WARNING)
        super().__init__(message, **kwargs)


def error_code(error: Exception) -> Optional[str]:
    """Return the AWS error code of a botocore ClientError, or None."""
    if isinstance(error, ClientError):
        return error.response.get('Error', {}).get('Code')
    return None


def error_message(error: Exception) -> str:
    """Return the AWS error message of a ClientError, falling back to str()."""
    if isinstance(error, ClientError):
        return error.response.get('Error', {}).get('Message', str(error))
    return str(error)


def is_error_code(error: Exception, *codes: str, message_contains: Optional[str] = None) -> bool:
    """Check whether an exception is a ClientError with one of the given codes.

    Args:
        error: The exception to inspect
        *codes: Acceptable AWS error codes
        message_contains: Optional substring the error message must contain

    Returns:
        True if the code matches (and the message, when requested)
    """
    code = error_code(error)
    if code is None or code not in codes:
        return False
    if message_contains is not None:
        return message_contains in error_message(error)
    return True


class ErrorHandler:
    """Handles and categorizes errors from AWS and other sources."""

    # Mapping of AWS error codes to error categories and suggestions
    AWS_ERROR_MAPPING = {
        'InvalidClientTokenId': {
            'category': ErrorCategory.CREDENTIAL,
            'message': 'AWS credentials are invalid or expired',
            'suggestions': [
                'Check that your AWS credentials are correctly configured',
                'Verify credentials using: aws sts get-caller-identity',
            ]
        },
        'ExpiredToken': {
            'category': ErrorCategory.CREDENTIAL,
            'message': 'AWS session token has expired',
            'suggestions': [
                'Refresh your AWS session credentials',
                'Re-authenticate with your identity provider',
            ]
        },
        'AccessDenied': {
            'category': ErrorCategory.PERMISSION,
            'message': 'Access denied - insufficient permissions',
            'suggestions': [
                'Check IAM policies attached to your user/role',
                'Review service control policies (SCPs) if using AWS Organizations',
            ]
        },
        'AccessDeniedException': {
            'category': ErrorCategory.PERMISSION,
            'message': 'Access denied - insufficient permissions',
            'suggestions': [
                'Check IAM policies attached to your user/role',
                'Check the key policy when operating on KMS keys',
            ]
        },
        'ResourceNotFoundException': {
            'category': ErrorCategory.NOT_FOUND,
            'message': 'Resource not found',
            'suggestions': [
                'Verify the resource exists in the specified region',
                'Check if the resource was deleted outside of cloudplane',
            ]
        },
        'NotFoundException': {
            'category': ErrorCategory.NOT_FOUND,
            'message': 'Resource not found',
            'suggestions': [
                'Verify the key ID or ARN and the region',
            ]
        },
        'ConflictException': {
            'category': ErrorCategory.PROVISIONING,
            'message': 'Resource already exists or is being modified',
            'suggestions': [
                'Import the existing resource into state',
                'Wait for the in-progress operation to finish',
            ]
        },
        'ValidationException': {
            'category': ErrorCategory.VALIDATION,
            'message': 'Invalid parameter or configuration',
            'suggestions': [
                'Review the error message for specific validation failures',
                'Verify all required properties are provided',
            ]
        },
        'ThrottlingException': {
            'category': ErrorCategory.NETWORK,
            'message': 'API rate limit exceeded',
            'suggestions': [
                'Reduce the number of resources handled per run',
                'Automatic retry with backoff is enabled',
            ]
        },
    }

    def handle_exception(
        self,
        error: Exception,
        context: Optional[ErrorContext] = None
    ) -> ProviderError:
        """Convert an exception to a ProviderError.

        Args:
            error: The exception to handle
            context: Additional context about where the error occurred

        Returns:
            ProviderError with categorization and suggestions
        """
        context = context or ErrorContext()

        if isinstance(error, ProviderError):
            return error

        if isinstance(error, ClientError):
            return self._handle_aws_error(error, context)

        if isinstance(error, (NoCredentialsError, PartialCredentialsError)):
            return CredentialError(
                message='No usable AWS credentials found',
                context=context,
                cause=error,
                suggestions=[
                    'Configure AWS credentials using: aws configure',
                    'Specify a profile with --profile',
                ]
            )

        if isinstance(error, (ConnectionError, TimeoutError)):
            return ProviderError(
                message=f'Network error: {str(error)}',
                category=ErrorCategory.NETWORK,
                context=context,
                cause=error,
                suggestions=['Check your network connectivity to AWS endpoints']
            )

        return ProviderError(
            message=str(error),
            category=ErrorCategory.UNKNOWN,
            severity=ErrorSeverity.ERROR,
            context=context,
            cause=error,
            suggestions=['Check logs for more details']
        )

    def _handle_aws_error(
        self,
        error: ClientError,
        context: ErrorContext
    ) -> ProviderError:
        code = error.response.get('Error', {}).get('Code', 'Unknown')
        message = error_message(error)
        request_id = error.response.get('ResponseMetadata', {}).get('RequestId')
        context.request_id = request_id
        context.aws_operation = context.aws_operation or getattr(error, 'operation_name', None)

        error_info = self.AWS_ERROR_MAPPING.get(code)
        if error_info:
            return ProviderError(
                message=f"{error_info['message']}: {message}",
                category=error_info['category'],
                severity=ErrorSeverity.ERROR,
                context=context,
                cause=error,
                suggestions=error_info['suggestions']
            )

        return ProviderError(
            message=f"AWS Error ({code}): {message}",
            category=ErrorCategory.AWS,
            severity=ErrorSeverity.ERROR,
            context=context,
            cause=error,
            suggestions=[
                'Check AWS documentation for this error code',
                f'AWS Request ID: {request_id}',
            ]
        )


# Global error handler instance
error_handler = ErrorHandler()
