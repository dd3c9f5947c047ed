"""
ECR image references and the version catalog.

Image references are derived from the version identifier and settings only,
so a rollback re-creates the exact reference that was pushed without
rebuilding. The catalog reads published versions back from ECR.
"""
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from bia_deploy.aws.utils import error_code, error_message
from bia_deploy.exceptions import RegistryError, VersionNotFound
from bia_deploy.settings import DeploySettings

logger = logging.getLogger(__name__)


def ecr_registry_host(account_id: str, region: str) -> str:
    return f"{account_id}.dkr.ecr.{region}.amazonaws.com"


@dataclass(frozen=True)
class ImageReference:
    """Fully qualified registry coordinates of one image version."""
    registry: str
    repository: str
    tag: str

    @property
    def repository_uri(self) -> str:
        return f"{self.registry}/{self.repository}"

    @property
    def uri(self) -> str:
        return f"{self.repository_uri}:{self.tag}"

    @property
    def local_tag(self) -> str:
        """Local docker tag used before the image is tagged for ECR."""
        return f"{self.repository.rsplit('/', 1)[-1]}:{self.tag}"

    @classmethod
    def for_version(cls, settings: DeploySettings, version: str,
                    account_id: Callable[[], str]) -> "ImageReference":
        """Build the reference for a version.

        account_id is only called when the configured repository is a bare
        name and the registry host has to be derived.
        """
        registry = settings.registry_host or ecr_registry_host(account_id(), settings.aws_region)
        return cls(registry=registry, repository=settings.repository_name, tag=version)

    def __str__(self) -> str:
        return self.uri


@dataclass(frozen=True)
class PublishedImage:
    """One tagged image in the registry."""
    tag: str
    pushed_at: Optional[datetime]
    size_bytes: int = 0
    digest: Optional[str] = None
    tags: List[str] = field(default_factory=list)

    @property
    def size_mb(self) -> float:
        return self.size_bytes / (1024 * 1024)

    @classmethod
    def from_image_detail(cls, detail: Dict[str, Any]) -> "PublishedImage":
        tags = detail.get('imageTags') or []
        return cls(
            tag=tags[0] if tags else '',
            pushed_at=_as_datetime(detail.get('imagePushedAt')),
            size_bytes=detail.get('imageSizeInBytes', 0),
            digest=detail.get('imageDigest'),
            tags=list(tags),
        )


def _as_datetime(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    # some endpoints return epoch seconds
    return datetime.fromtimestamp(float(value), tz=timezone.utc)


def _sort_key(image: PublishedImage) -> datetime:
    pushed_at = image.pushed_at
    if pushed_at is None:
        return datetime.min.replace(tzinfo=timezone.utc)
    if pushed_at.tzinfo is None:
        return pushed_at.replace(tzinfo=timezone.utc)
    return pushed_at


def latest_images(image_details: Iterable[Dict[str, Any]], limit: int) -> List[PublishedImage]:
    """Return the `limit` most recently pushed tagged images, newest first."""
    images = [
        PublishedImage.from_image_detail(detail)
        for detail in image_details
        if detail.get('imageTags')
    ]
    images.sort(key=_sort_key, reverse=True)
    return images[:limit]


class VersionCatalog:
    """Published versions of the configured ECR repository."""

    def __init__(self, settings: DeploySettings, ecr_client: Any):
        self.settings = settings
        self.ecr_client = ecr_client
        self.repository = settings.repository_name

    def _describe_images(self, **kwargs) -> Iterable[Dict[str, Any]]:
        paginator = self.ecr_client.get_paginator('describe_images')
        for page in paginator.paginate(repositoryName=self.repository, **kwargs):
            yield from page.get('imageDetails', [])

    def list(self, limit: Optional[int] = None) -> List[PublishedImage]:
        """Return the most recently pushed versions, newest first."""
        limit = limit or self.settings.list_limit
        try:
            details = list(self._describe_images(filter={'tagStatus': 'TAGGED'}))
        except ClientError as e:
            raise RegistryError(
                f"Could not list images of {self.repository}: {error_message(e)}"
            ) from e
        except BotoCoreError as e:
            raise RegistryError(f"Could not list images of {self.repository}: {e}") from e
        images = latest_images(details, limit)
        logger.debug(f"Found {len(details)} tagged images in {self.repository}")
        return images

    def require(self, version: str) -> PublishedImage:
        """Return the image for a version or raise VersionNotFound."""
        try:
            response = self.ecr_client.describe_images(
                repositoryName=self.repository,
                imageIds=[{'imageTag': version}]
            )
        except ClientError as e:
            if error_code(e) == 'ImageNotFoundException':
                raise VersionNotFound(version, self.repository) from e
            raise RegistryError(
                f"Could not look up {self.repository}:{version}: {error_message(e)}"
            ) from e
        except BotoCoreError as e:
            raise RegistryError(f"Could not look up {self.repository}:{version}: {e}") from e

        details = response.get('imageDetails', [])
        if not details:
            raise VersionNotFound(version, self.repository)
        image = replace(PublishedImage.from_image_detail(details[0]), tag=version)
        logger.debug(f"Found {self.repository}:{version} pushed {image.pushed_at}")
        return image

    def exists(self, version: str) -> bool:
        """True when the version has an image in the repository."""
        try:
            self.require(version)
        except VersionNotFound:
            return False
        return True
