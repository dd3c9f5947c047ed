"""
ECS Task Definition Generator

Purpose: derives a new task definition revision for a deploy from the latest
registered revision of the family.

Main class: TaskDefinitionGenerator with fetch_latest (describe), render
(pure, returns Dict), register (returns ARN) and generate (all three).

Key dependencies: boto3 ECS client, pydantic for validating the document
before submission, and the operation model of RegisterTaskDefinition for
dropping describe-only fields.

Key features: only the primary container's image and its DEPLOY_VERSION
environment entry change; every other field passes through. Registering is
skipped when the rendered document equals the revision the service runs or
the latest revision, so releasing the active version again keeps the running
revision.
"""
import copy
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from botocore.exceptions import BotoCoreError, ClientError, ParamValidationError
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from bia_deploy.aws.ecr_images import ImageReference
from bia_deploy.aws.utils import error_code, error_message
from bia_deploy.exceptions import (
    RegistrationRejected,
    SpecificationError,
    SpecificationNotFound,
)
from bia_deploy.settings import DeploySettings

logger = logging.getLogger(__name__)

DEPLOY_VERSION_ENV = 'DEPLOY_VERSION'

# Fields ECS assigns on registration; resubmitting them is rejected.
READ_ONLY_FIELDS = (
    'taskDefinitionArn',
    'revision',
    'status',
    'requiresAttributes',
    'placementConstraints',
    'compatibilities',
    'registeredAt',
    'registeredBy',
    'deregisteredAt',
)


class EnvironmentEntry(BaseModel):
    model_config = ConfigDict(extra='forbid')

    name: str = Field(min_length=1)
    value: str


class ContainerDefinition(BaseModel):
    model_config = ConfigDict(extra='allow')

    name: str = Field(min_length=1)
    image: str = Field(min_length=1)
    environment: List[EnvironmentEntry] = Field(default_factory=list)


class TaskDefinitionDocument(BaseModel):
    """Shape every registration document must have."""
    model_config = ConfigDict(extra='allow')

    family: str = Field(min_length=1)
    containerDefinitions: List[ContainerDefinition] = Field(min_length=1)


@dataclass(frozen=True)
class RegisteredTaskDefinition:
    """Task definition revision chosen for one release."""
    arn: str
    family: str
    revision: Optional[int]
    image: str
    version: str
    reused: bool = False


def primary_container_index(document: Dict[str, Any], container_name: str) -> int:
    """Index of the container named container_name, else of the first container."""
    containers = document.get('containerDefinitions') or []
    if not containers:
        raise RegistrationRejected(
            f"Task definition {document.get('family', '?')} has no container definitions"
        )
    for index, container in enumerate(containers):
        if container.get('name') == container_name:
            return index
    logger.warning(
        f"Container '{container_name}' not found in {document.get('family', '?')}; "
        f"using '{containers[0].get('name')}'"
    )
    return 0


def upsert_environment(environment: List[Dict[str, str]], name: str, value: str) -> List[Dict[str, str]]:
    """Replace the entry called name in place, or append it."""
    updated = []
    replaced = False
    for entry in environment:
        if entry.get('name') == name:
            if not replaced:
                updated.append({'name': name, 'value': value})
                replaced = True
            continue
        updated.append(entry)
    if not replaced:
        updated.append({'name': name, 'value': value})
    return updated


def strip_read_only(document: Dict[str, Any], accepted: Optional[Set[str]] = None) -> Dict[str, Any]:
    """Drop fields ECS assigns itself, unset fields, and anything register does not accept."""
    stripped = {
        k: v for k, v in document.items()
        if k not in READ_ONLY_FIELDS and v is not None
    }
    if accepted is not None:
        dropped = sorted(k for k in stripped if k not in accepted)
        if dropped:
            logger.debug(f"Dropping fields not accepted by RegisterTaskDefinition: {dropped}")
        stripped = {k: v for k, v in stripped.items() if k in accepted}
    return stripped


def render_task_definition(template: Dict[str, Any], image: str, version: str,
                           container_name: str) -> Dict[str, Any]:
    """Return a registration document for image/version derived from template.

    The template is not modified.
    """
    document = copy.deepcopy(template)
    index = primary_container_index(document, container_name)
    container = document['containerDefinitions'][index]
    container['image'] = image
    container['environment'] = upsert_environment(
        container.get('environment') or [], DEPLOY_VERSION_ENV, version
    )
    return strip_read_only(document)


def validate_document(document: Dict[str, Any]) -> None:
    """Raise RegistrationRejected when the document is malformed."""
    try:
        TaskDefinitionDocument.model_validate(document)
    except ValidationError as e:
        raise RegistrationRejected(f"Invalid task definition document: {e}") from e


class TaskDefinitionGenerator:
    """Creates task definition revisions from the latest registered one."""

    def __init__(self, settings: DeploySettings, ecs_client: Any):
        self.settings = settings
        self.ecs_client = ecs_client
        self.family = settings.task_family
        self._accepted_fields: Optional[Set[str]] = None

    @property
    def accepted_fields(self) -> Set[str]:
        """Top-level members of the RegisterTaskDefinition request."""
        if self._accepted_fields is None:
            operation = self.ecs_client.meta.service_model.operation_model('RegisterTaskDefinition')
            self._accepted_fields = set(operation.input_shape.members)
        return self._accepted_fields

    def fetch_latest(self, family: Optional[str] = None) -> Dict[str, Any]:
        """Return the latest ACTIVE revision of the family, tags included.

        family may also be a family:revision or a full task definition ARN.
        """
        family = family or self.family
        try:
            response = self.ecs_client.describe_task_definition(
                taskDefinition=family,
                include=['TAGS']
            )
        except ClientError as e:
            if error_code(e) == 'ClientException':
                raise SpecificationNotFound(family) from e
            raise SpecificationError(
                f"Could not describe task definition {family}: {error_message(e)}"
            ) from e
        except BotoCoreError as e:
            raise SpecificationError(f"Could not describe task definition {family}: {e}") from e

        task_definition = response['taskDefinition']
        tags = response.get('tags') or []
        if tags:
            task_definition = {**task_definition, 'tags': tags}
        logger.info(
            f"Task definition: {task_definition.get('family')}:{task_definition.get('revision')}"
        )
        return task_definition

    def render(self, template: Dict[str, Any], image: ImageReference) -> Dict[str, Any]:
        """Registration document for the image, validated."""
        document = render_task_definition(
            template, image.uri, image.tag, self.settings.container_name
        )
        document = strip_read_only(document, self.accepted_fields)
        validate_document(document)
        return document

    def register(self, document: Dict[str, Any]) -> RegisteredTaskDefinition:
        """Register the document as a new revision."""
        validate_document(document)
        try:
            response = self.ecs_client.register_task_definition(**document)
        except ParamValidationError as e:
            raise RegistrationRejected(
                f"Invalid parameters for task definition {document.get('family')}: {e}"
            ) from e
        except ClientError as e:
            raise RegistrationRejected(
                f"ECS rejected task definition {document.get('family')}: {error_message(e)}"
            ) from e
        except BotoCoreError as e:
            raise RegistrationRejected(
                f"Could not register task definition {document.get('family')}: {e}"
            ) from e

        task_definition = response['taskDefinition']
        container = task_definition['containerDefinitions'][
            primary_container_index(task_definition, self.settings.container_name)
        ]
        registered = RegisteredTaskDefinition(
            arn=task_definition['taskDefinitionArn'],
            family=task_definition['family'],
            revision=task_definition.get('revision'),
            image=container['image'],
            version=_deploy_version(container) or '',
        )
        logger.info(f"Registered task definition: {registered.arn}")
        return registered

    def generate(self, image: ImageReference, dry_run: bool = False,
                 running_arn: Optional[str] = None) -> RegisteredTaskDefinition:
        """Fetch, render and register the task definition for image.

        The revision the service runs (running_arn) and the family's latest
        revision are reused when the rendered document matches them.
        """
        template = self.fetch_latest()
        document = self.render(template, image)

        candidates = [template]
        if running_arn and running_arn != template.get('taskDefinitionArn'):
            candidates.insert(0, self.fetch_latest(running_arn))

        for candidate in candidates:
            if document != strip_read_only(candidate, self.accepted_fields):
                continue
            logger.info(
                f"Task definition {candidate['family']}:{candidate.get('revision')} "
                f"already runs {image.tag}; reusing it"
            )
            return RegisteredTaskDefinition(
                arn=candidate['taskDefinitionArn'],
                family=candidate['family'],
                revision=candidate.get('revision'),
                image=image.uri,
                version=image.tag,
                reused=True,
            )

        if dry_run:
            logger.info(f"[DRY-RUN] Would register task definition:\n{json.dumps(document, indent=2, default=str)}")
            return RegisteredTaskDefinition(
                arn=f"{template['family']}:DRY-RUN",
                family=template['family'],
                revision=None,
                image=image.uri,
                version=image.tag,
            )

        return self.register(document)


def _deploy_version(container: Dict[str, Any]) -> Optional[str]:
    for entry in container.get('environment') or []:
        if entry.get('name') == DEPLOY_VERSION_ENV:
            return entry.get('value')
    return None
