"""AWS client management and session handling."""

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError
from typing import Optional, Dict, Any
from dataclasses import dataclass
from cloudplane.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class AssumeRoleConfig:
    """Configuration for IAM role assumption."""
    role_arn: str
    session_name: str = 'cloudplane'
    external_id: Optional[str] = None
    duration_seconds: int = 3600


class AWSClientManager:
    """Manages boto3 sessions and caches clients per service and region."""

    def __init__(
        self,
        profile: Optional[str] = None,
        region: Optional[str] = None,
        assume_role_config: Optional[AssumeRoleConfig] = None,
        max_pool_connections: int = 50
    ):
        """Initialize AWS client manager.

        Args:
            profile: AWS profile name to use
            region: AWS region to use
            assume_role_config: Configuration for assuming an IAM role
            max_pool_connections: Maximum number of connections in the connection pool
        """
        self.profile = profile
        self.region = region
        self.assume_role_config = assume_role_config
        self._session: Optional[boto3.Session] = None
        self._assumed_session: Optional[boto3.Session] = None
        self._clients: Dict[str, Any] = {}

        self._boto_config = Config(
            max_pool_connections=max_pool_connections,
            retries={
                'mode': 'adaptive',
                'max_attempts': 5
            },
            connect_timeout=10,
            read_timeout=60
        )

    @property
    def session(self) -> boto3.Session:
        """Get or create the boto3 session, assuming the configured role first use."""
        if self._session is None:
            kwargs = {}
            if self.profile:
                kwargs['profile_name'] = self.profile
            if self.region:
                kwargs['region_name'] = self.region

            self._session = boto3.Session(**kwargs)
            logger.info(f"Created AWS session - Region: {self._session.region_name}, "
                        f"Profile: {self.profile or 'default'}")

        if self.assume_role_config and self._assumed_session is None:
            self._assumed_session = self.assume_role(self.assume_role_config)

        return self._assumed_session or self._session

    def get_client(self, service_name: str, region: Optional[str] = None):
        """Get a boto3 client for a service.

        Args:
            service_name: AWS service name (e.g., 'kms', 'networkmonitor')
            region: Region override; defaults to the session region

        Returns:
            Boto3 client for the service
        """
        session = self.session
        region_name = region or session.region_name
        cache_key = f"{service_name}:{region_name}"

        if cache_key in self._clients:
            return self._clients[cache_key]

        client = session.client(service_name, region_name=region_name, config=self._boto_config)
        self._clients[cache_key] = client

        logger.debug(f"Created {service_name} client (cached: {cache_key})")

        return client

    def assume_role(self, config: AssumeRoleConfig) -> boto3.Session:
        """Assume an IAM role and return a session holding its credentials.

        Raises:
            ClientError: If role assumption fails
        """
        logger.info(f"Assuming IAM role: {config.role_arn}")

        params = {
            'RoleArn': config.role_arn,
            'RoleSessionName': config.session_name,
            'DurationSeconds': config.duration_seconds
        }
        if config.external_id:
            params['ExternalId'] = config.external_id

        base_session = self._session
        sts = base_session.client('sts', config=self._boto_config)
        try:
            credentials = sts.assume_role(**params)['Credentials']
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            if error_code == 'AccessDenied':
                logger.error(f"Access denied when assuming role {config.role_arn}. "
                             f"Check that the role exists and allows sts:AssumeRole.")
            else:
                logger.error(f"Failed to assume role: {e}")
            raise

        self._clients.clear()
        return boto3.Session(
            aws_access_key_id=credentials['AccessKeyId'],
            aws_secret_access_key=credentials['SecretAccessKey'],
            aws_session_token=credentials['SessionToken'],
            region_name=self.region or base_session.region_name
        )

    def get_region(self) -> str:
        """Get the AWS region of the active session."""
        return self.session.region_name
