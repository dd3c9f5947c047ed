"""Versioned ECS deploy and rollback for the BIA application."""
import logging
from typing import Callable, List, Optional

from bia_deploy.aws.deployment_state import (
    DeployHistory,
    DeployRecord,
    LastBuildMarker,
    ReleaseAttempt,
    ReleaseState,
)
from bia_deploy.aws.ecr_images import ImageReference, PublishedImage, VersionCatalog
from bia_deploy.aws.ecs_services import ServiceSnapshot, ServiceUpdater
from bia_deploy.aws.ecs_task_definitions import TaskDefinitionGenerator
from bia_deploy.aws.utils import AWSClientManager
from bia_deploy.exceptions import (
    ConvergenceError,
    ConvergenceTimeout,
    MissingBuildError,
    OperationCancelled,
    SpecificationError,
    UpdateRejected,
)
from bia_deploy.image_builder import ImageBuilder
from bia_deploy.settings import DeploySettings
from bia_deploy.utils.commands import CommandRunner, require_tool
from bia_deploy.utils.console import log_success
from bia_deploy.utils.decorators import log_operation
from bia_deploy.versioning import VersionResolver

logger = logging.getLogger(__name__)

Confirm = Callable[[str], bool]


class ECSDeployment:
    """Build, push, release and roll back versions of one ECS service.

    Forward deploys, updates and rollbacks all go through release(); they only
    differ in where the version comes from.
    """

    def __init__(self, settings: DeploySettings,
                 clients: Optional[AWSClientManager] = None,
                 runner: Optional[CommandRunner] = None,
                 confirm: Optional[Confirm] = None):
        self.settings = settings
        self.clients = clients or AWSClientManager(settings)
        self.runner = runner or CommandRunner(dry_run=settings.dry_run)
        self.confirm = confirm

        self.resolver = VersionResolver(settings, self.runner)
        self.builder = ImageBuilder(settings, self.runner, self.clients.ecr)
        self.catalog = VersionCatalog(settings, self.clients.ecr)
        self.generator = TaskDefinitionGenerator(settings, self.clients.ecs)
        self.updater = ServiceUpdater(settings, self.clients.ecs)
        self.marker = LastBuildMarker(settings.last_build_path)
        self.history = DeployHistory(settings.history_path)
        self.last_attempt: Optional[ReleaseAttempt] = None

    # Preconditions

    def _confirm(self, message: str) -> None:
        if self.settings.assume_yes or self.confirm is None:
            return
        if not self.confirm(message):
            raise OperationCancelled("Cancelled by operator")

    def check_prerequisites(self, require_docker: bool = True) -> None:
        """Fail on missing git/docker/credentials; confirm uncommitted changes."""
        logger.info("Validating prerequisites...")
        self.resolver.ensure_repository()
        if require_docker and not self.settings.dry_run:
            require_tool('docker')
        self.clients.ensure_credentials()

        if self.resolver.has_uncommitted_changes():
            logger.warning("There are uncommitted changes in the repository")
            self._confirm("Continue anyway?")
        log_success(logger, "Prerequisites validated")

    def image_for(self, version: str) -> ImageReference:
        return ImageReference.for_version(self.settings, version, lambda: self.clients.account_id)

    def _log_commit_info(self) -> None:
        for line in self.resolver.commit_info().log_lines():
            logger.info(line)

    # Build / push

    @log_operation("Build image")
    def build(self) -> ImageReference:
        version = self.resolver.resolve()
        logger.info("Starting image build...")
        self._log_commit_info()
        return self.builder.build(self.image_for(version))

    @log_operation("Push image")
    def push(self, version: Optional[str] = None) -> ImageReference:
        """Push the given version, else the last build, else the current commit."""
        version = version or self.marker.read()
        if version is None:
            version = self.resolver.resolve()
            logger.info(f"No last build marker; using current commit {version}")
        return self.builder.push(self.image_for(version))

    # Release

    @log_operation("Release version")
    def release(self, version: str, action: str = 'deploy',
                timeout: Optional[int] = None) -> ReleaseAttempt:
        """Register the task definition for version and converge the service."""
        attempt = ReleaseAttempt(version=version, action=action)
        self.last_attempt = attempt
        image = self.image_for(version)
        logger.info(f"Releasing version {version} ({action})")
        logger.info(f"Image: {image.uri}")

        try:
            running = self.updater.describe()
            registered = self.generator.generate(
                image, dry_run=self.settings.dry_run, running_arn=running.task_definition
            )
        except (SpecificationError, UpdateRejected) as e:
            attempt.transition(ReleaseState.REJECTED, str(e))
            raise
        attempt.task_definition_arn = registered.arn
        attempt.transition(ReleaseState.SPECIFICATION_GENERATED)

        if self.settings.dry_run:
            logger.info(
                f"[DRY-RUN] Would update service {self.settings.service_name} "
                f"in {self.settings.cluster_name} to {registered.arn}"
            )
            return attempt

        try:
            self.updater.update(registered.arn)
        except UpdateRejected as e:
            attempt.transition(ReleaseState.REJECTED, str(e))
            raise
        attempt.transition(ReleaseState.CONVERGENCE_REQUESTED)

        try:
            snapshot = self.updater.wait_until_stable(timeout)
        except ConvergenceTimeout as e:
            attempt.transition(ReleaseState.TIMED_OUT, str(e))
            raise
        except ConvergenceError as e:
            attempt.transition(ReleaseState.REJECTED, str(e))
            raise
        attempt.transition(ReleaseState.STABLE)

        if snapshot.task_definition != registered.arn:
            # another invocation updated the service after us
            logger.warning(
                f"Service settled on {snapshot.task_definition}, not {registered.arn}"
            )

        self.history.append(DeployRecord.now(version, registered.arn, action))
        log_success(logger, f"Service {self.settings.service_name} is stable on {registered.arn}")
        return attempt

    # Workflows

    def deploy(self, timeout: Optional[int] = None) -> ReleaseAttempt:
        """Build, push and release the current commit."""
        self.check_prerequisites()
        logger.info("Starting full deploy...")
        image = self.build()
        self.push(image.tag)
        attempt = self.release(image.tag, 'deploy', timeout)
        log_success(logger, f"Deploy completed. Version deployed: {image.tag}")
        return attempt

    def update(self, timeout: Optional[int] = None,
               force_new_deployment: bool = False) -> Optional[ReleaseAttempt]:
        """Release the last built version, or force a new deployment."""
        if force_new_deployment:
            self.clients.ensure_credentials()
            return self.force_new_deployment(timeout)

        version = self.marker.read()
        if version is None:
            raise MissingBuildError("No build found. Run 'build' first.")
        self.clients.ensure_credentials()
        return self.release(version, 'update', timeout)

    @log_operation("Force new deployment")
    def force_new_deployment(self, timeout: Optional[int] = None) -> None:
        """Restart the service's tasks on the current task definition."""
        if self.settings.dry_run:
            logger.info(f"[DRY-RUN] Would force a new deployment of {self.settings.service_name}")
            return None
        self.updater.update(force_new_deployment=True)
        self.updater.wait_until_stable(timeout)
        log_success(logger, f"Service {self.settings.service_name} updated")
        return None

    def rollback(self, version: str, timeout: Optional[int] = None) -> ReleaseAttempt:
        """Release a previously pushed version. Nothing changes if it is not in ECR."""
        self.clients.ensure_credentials()
        logger.info(f"Checking version {version} in ECR...")
        self.catalog.require(version)

        logger.warning(f"Starting rollback to version: {version}")
        self._confirm(f"Roll back {self.settings.service_name} to {version}?")
        attempt = self.release(version, 'rollback', timeout)
        log_success(logger, f"Rollback completed to version: {version}")
        return attempt

    def list_versions(self, limit: Optional[int] = None) -> List[PublishedImage]:
        self.clients.ensure_credentials()
        logger.info(f"Listing latest versions in ECR repository {self.settings.repository_name}...")
        return self.catalog.list(limit)

    def recent_deploys(self, limit: Optional[int] = None) -> List[DeployRecord]:
        return self.history.latest(limit or self.settings.list_limit)

    def service_status(self) -> ServiceSnapshot:
        return self.updater.describe()
