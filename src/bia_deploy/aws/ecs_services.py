"""ECS service updates and convergence waits."""
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError, WaiterError

from bia_deploy.aws.utils import error_message
from bia_deploy.exceptions import ConvergenceError, ConvergenceTimeout, UpdateRejected
from bia_deploy.settings import DeploySettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceSnapshot:
    """What ECS reports for the service at one point in time."""
    service_name: str
    task_definition: str
    desired_count: int
    running_count: int
    status: str = 'ACTIVE'

    @classmethod
    def from_service(cls, service: Dict[str, Any]) -> "ServiceSnapshot":
        return cls(
            service_name=service.get('serviceName', ''),
            task_definition=service.get('taskDefinition', ''),
            desired_count=service.get('desiredCount', 0),
            running_count=service.get('runningCount', 0),
            status=service.get('status', 'ACTIVE'),
        )


class ServiceUpdater:
    """Points the configured service at a task definition and waits for it."""

    def __init__(self, settings: DeploySettings, ecs_client: Any):
        self.settings = settings
        self.ecs_client = ecs_client
        self.cluster_name = settings.cluster_name
        self.service_name = settings.service_name

    def describe(self) -> ServiceSnapshot:
        """Return the current state of the service."""
        try:
            response = self.ecs_client.describe_services(
                cluster=self.cluster_name,
                services=[self.service_name]
            )
        except ClientError as e:
            raise UpdateRejected(
                f"Could not describe service {self.service_name}: {error_message(e)}"
            ) from e
        except BotoCoreError as e:
            raise UpdateRejected(f"Could not describe service {self.service_name}: {e}") from e

        for service in response.get('services', []):
            if service.get('status') != 'INACTIVE':
                return ServiceSnapshot.from_service(service)

        reasons = ', '.join(f.get('reason', '') for f in response.get('failures', []))
        raise UpdateRejected(
            f"Service {self.service_name} not found in cluster {self.cluster_name}"
            + (f" ({reasons})" if reasons else "")
        )

    def update(self, task_definition_arn: Optional[str] = None,
               force_new_deployment: bool = False) -> ServiceSnapshot:
        """Request the rolling update; ECS replaces the running tasks."""
        params: Dict[str, Any] = {
            'cluster': self.cluster_name,
            'service': self.service_name,
        }
        if task_definition_arn:
            params['taskDefinition'] = task_definition_arn
        if force_new_deployment:
            params['forceNewDeployment'] = True

        if not task_definition_arn and not force_new_deployment:
            raise UpdateRejected("Nothing to update: no task definition and no forced deployment")

        target = task_definition_arn or 'current task definition (forced new deployment)'
        logger.info(f"Updating service {self.service_name} in {self.cluster_name} -> {target}")
        try:
            response = self.ecs_client.update_service(**params)
        except ClientError as e:
            raise UpdateRejected(
                f"ECS rejected update of {self.service_name}: {error_message(e)}"
            ) from e
        except BotoCoreError as e:
            raise UpdateRejected(f"Could not update service {self.service_name}: {e}") from e

        snapshot = ServiceSnapshot.from_service(response['service'])
        logger.info(
            f"Service {snapshot.service_name}: taskDefinition={snapshot.task_definition} "
            f"desired={snapshot.desired_count} running={snapshot.running_count}"
        )
        return snapshot

    def waiter_config(self, timeout: Optional[int] = None) -> Dict[str, int]:
        """WaiterConfig for the services-stable waiter."""
        timeout = timeout or self.settings.convergence_timeout
        config = {'Delay': self.settings.waiter_delay}
        if timeout:
            config['MaxAttempts'] = max(1, math.ceil(timeout / self.settings.waiter_delay))
        return config

    def wait_until_stable(self, timeout: Optional[int] = None) -> ServiceSnapshot:
        """Block until ECS reports the service stable."""
        config = self.waiter_config(timeout)
        logger.info(f"Waiting for service {self.service_name} to stabilize...")
        waiter = self.ecs_client.get_waiter('services_stable')
        try:
            waiter.wait(
                cluster=self.cluster_name,
                services=[self.service_name],
                WaiterConfig=config
            )
        except WaiterError as e:
            if 'Max attempts exceeded' in str(e):
                raise ConvergenceTimeout(
                    f"Service {self.service_name} did not stabilize in time; "
                    f"check the ECS console and re-run update"
                ) from e
            raise ConvergenceError(
                f"Service {self.service_name} failed to stabilize: {e}"
            ) from e
        except BotoCoreError as e:
            raise ConvergenceError(
                f"Could not poll service {self.service_name}: {e}"
            ) from e
        return self.describe()
