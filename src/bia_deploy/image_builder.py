"""Docker image build and ECR push."""
import base64
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from bia_deploy.aws.deployment_state import LastBuildMarker
from bia_deploy.aws.ecr_images import ImageReference
from bia_deploy.exceptions import BuildFailure, RegistryError
from bia_deploy.settings import DeploySettings
from bia_deploy.utils.commands import CommandRunner, require_tool
from bia_deploy.utils.console import log_success

logger = logging.getLogger(__name__)


class ImageBuilder:
    """Builds the application image for a version and pushes it to ECR."""

    def __init__(self, settings: DeploySettings, runner: CommandRunner, ecr_client: Any):
        self.settings = settings
        self.runner = runner
        self.ecr_client = ecr_client
        self.context = Path(settings.build_context)
        self.marker = LastBuildMarker(settings.last_build_path)

    def _check(self, command: List[str], cwd: Optional[Path] = None,
               env: Optional[Dict[str, str]] = None) -> None:
        result = self.runner.run(command, cwd=str(cwd or self.context), env=env)
        if result.returncode != 0:
            raise BuildFailure(command, result.returncode, result.stderr)

    def frontend_env(self) -> Dict[str, str]:
        """Environment overrides baked into the front-end bundle."""
        env = dict(self.settings.build_env)
        if self.settings.frontend_api_url:
            env['VITE_API_URL'] = self.settings.frontend_api_url
        return env

    def build_frontend(self) -> bool:
        """Run npm install and npm run build when a front-end project exists."""
        frontend = self.settings.frontend_path
        if frontend is None or not (frontend / 'package.json').exists():
            logger.debug("No front-end project found; skipping bundle build")
            return False

        if not self.settings.dry_run:
            require_tool('npm')
        env = self.frontend_env()
        logger.info(f"Building front-end bundle in {frontend}...")
        if env.get('VITE_API_URL'):
            logger.info(f"API URL: {env['VITE_API_URL']}")
        self._check(['npm', 'install'], cwd=frontend, env=env)
        self._check(['npm', 'run', 'build'], cwd=frontend, env=env)
        return True

    def build(self, image: ImageReference) -> ImageReference:
        """Build and tag the image; writes the last-build marker on success."""
        if not self.settings.dry_run:
            require_tool('docker')
        logger.info(f"Image tag: {image.uri}")

        self.build_frontend()

        logger.info("Building Docker image...")
        self._check([
            'docker', 'build',
            '-t', image.local_tag,
            '-f', str(self.context / self.settings.dockerfile),
            str(self.context),
        ])
        self._check(['docker', 'tag', image.local_tag, image.uri])

        if not self.settings.dry_run:
            self.marker.write(image.tag)
        log_success(logger, f"Build completed: {image.uri}")
        return image

    def login(self, image: ImageReference) -> None:
        """docker login against the image's registry with an ECR token."""
        if self.settings.dry_run:
            logger.info(f"[DRY-RUN] docker login {image.registry}")
            return
        try:
            token_response = self.ecr_client.get_authorization_token()
        except (ClientError, BotoCoreError) as e:
            raise RegistryError(f"Could not get ECR authorization token: {e}") from e

        token_data = token_response['authorizationData'][0]
        token = base64.b64decode(token_data['authorizationToken']).decode('utf-8')
        username, password = token.split(':', 1)

        logger.info("Logging in to ECR...")
        command = ['docker', 'login', '--username', username, '--password-stdin', image.registry]
        result = self.runner.run(command, input=password)
        if result.returncode != 0:
            raise RegistryError(f"docker login to {image.registry} failed (exit {result.returncode})")

    def push(self, image: ImageReference) -> ImageReference:
        """Push a built image to ECR."""
        if not self.settings.dry_run:
            require_tool('docker')
        logger.info(f"Pushing image: {image.uri}")
        self.login(image)

        command = ['docker', 'push', image.uri]
        result = self.runner.run(command)
        if result.returncode != 0:
            raise RegistryError(f"docker push {image.uri} failed (exit {result.returncode})")
        log_success(logger, f"Push completed: {image.uri}")
        return image
