"""AWS client management."""
import logging
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from bia_deploy.exceptions import PreconditionError
from bia_deploy.settings import DeploySettings

logger = logging.getLogger(__name__)


def error_code(error: ClientError) -> str:
    """Return the AWS error code of a ClientError."""
    return error.response.get('Error', {}).get('Code', '')


def error_message(error: ClientError) -> str:
    """Return the AWS error message of a ClientError."""
    return error.response.get('Error', {}).get('Message', str(error))


class AWSClientManager:
    """Creates and caches boto3 clients for one settings value."""

    def __init__(self, settings: DeploySettings, session: Optional[boto3.Session] = None):
        self.settings = settings
        self.region = settings.aws_region
        self.endpoint_url = settings.aws_endpoint_url
        self._session = session
        self._clients: Dict[str, Any] = {}
        self._account_id: Optional[str] = settings.aws_account_id

        logger.debug("Initializing AWSClientManager")
        logger.debug(f"  Region: {self.region}")
        logger.debug(f"  Endpoint: {self.endpoint_url}")

    @property
    def session(self) -> boto3.Session:
        if self._session is None:
            if self.settings.aws_profile:
                # Profile sessions for SSO logins
                self._session = boto3.Session(
                    profile_name=self.settings.aws_profile,
                    region_name=self.region
                )
            else:
                self._session = boto3.Session(region_name=self.region)
        return self._session

    def get_client(self, service_name: str) -> Any:
        """Get or create an AWS service client."""
        if service_name in self._clients:
            return self._clients[service_name]

        client_kwargs = {'region_name': self.region}
        if self.endpoint_url:
            client_kwargs['endpoint_url'] = self.endpoint_url

        try:
            client = self.session.client(service_name, **client_kwargs)
        except BotoCoreError as e:
            logger.error(f"Error creating {service_name} client: {str(e)}")
            raise PreconditionError(f"Cannot create {service_name} client: {e}") from e

        self._clients[service_name] = client
        logger.debug(f"Created {service_name} client")
        return client

    def ensure_credentials(self) -> None:
        """Raise PreconditionError when no AWS credentials can be resolved."""
        try:
            credentials = self.session.get_credentials()
        except BotoCoreError as e:
            raise PreconditionError(f"Cannot resolve AWS credentials: {e}") from e
        if credentials is None:
            raise PreconditionError(
                "AWS credentials not found. Configure the AWS CLI or set AWS_PROFILE."
            )

    @property
    def account_id(self) -> str:
        """AWS account ID, from settings or STS."""
        if self._account_id is None:
            try:
                identity = self.get_client('sts').get_caller_identity()
            except (ClientError, BotoCoreError) as e:
                raise PreconditionError(f"Cannot resolve AWS account ID: {e}") from e
            self._account_id = identity['Account']
        return self._account_id

    def clear_clients(self):
        """Clear all cached clients."""
        self._clients.clear()
        logger.debug("Cleared all AWS clients")

    @property
    def ecr(self) -> Any:
        return self.get_client('ecr')

    @property
    def ecs(self) -> Any:
        return self.get_client('ecs')
