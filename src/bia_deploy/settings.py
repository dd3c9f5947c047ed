# src/bia_deploy/settings.py
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DeploySettings(BaseSettings):
    """
    Single source of truth for deploy settings.

    Configuration precedence:
    1. CLI flags (applied through with_overrides)
    2. Environment variables
    3. .env file (if exists)
    4. Default values in this class

    The instance is immutable. The CLI builds one at invocation start and
    passes it to every component.

    Usage:
        from bia_deploy.settings import get_settings
        settings = get_settings().with_overrides(cluster_name="other-cluster")
    """

    # Application Settings
    app_name: str = Field(
        default="bia",
        description="Application name"
    )

    # AWS Core Settings
    aws_region: str = Field(
        default="us-east-1",
        alias="AWS_DEFAULT_REGION"
    )

    aws_profile: Optional[str] = Field(
        default=None,
        alias="AWS_PROFILE"
    )

    aws_endpoint_url: Optional[str] = Field(
        default=None,
        alias="AWS_ENDPOINT_URL",
        description="Alternate AWS endpoint (moto server, localstack)"
    )

    aws_account_id: Optional[str] = Field(
        default=None,
        alias="AWS_ACCOUNT_ID",
        description="AWS Account ID (auto-detected through STS if not provided)"
    )

    # ECS Configuration
    cluster_name: str = Field(
        default="cluster-bia",
        description="ECS cluster name"
    )

    service_name: str = Field(
        default="service-bia",
        description="ECS service name"
    )

    task_family: str = Field(
        default="task-def-bia",
        description="ECS task definition family"
    )

    container_name: str = Field(
        default="bia",
        description="Primary container inside the task definition"
    )

    # ECR Configuration
    ecr_repository: str = Field(
        default="bia",
        description="ECR repository name or full repository URI"
    )

    # Build Configuration
    build_context: str = Field(
        default=".",
        description="Docker build context and git working tree"
    )

    dockerfile: str = Field(
        default="Dockerfile",
        description="Dockerfile path relative to the build context"
    )

    frontend_dir: Optional[str] = Field(
        default="client",
        description="Front-end project built before the image, relative to the build context"
    )

    frontend_api_url: Optional[str] = Field(
        default=None,
        description="API base URL baked into the front-end bundle (VITE_API_URL)"
    )

    build_env: Dict[str, str] = Field(
        default_factory=dict,
        description="Extra environment overrides for the front-end build"
    )

    version_length: int = Field(
        default=7,
        ge=4,
        le=40,
        description="Abbreviated commit hash length"
    )

    # Local State
    state_dir: str = Field(
        default=".",
        description="Directory holding the last-build marker and deploy history"
    )

    last_build_file: str = Field(
        default=".last_build_version",
        description="Last built version marker"
    )

    history_file: str = Field(
        default=".deploy_history",
        description="Append-only local deploy history"
    )

    # Convergence
    waiter_delay: int = Field(
        default=15,
        ge=1,
        description="Seconds between services-stable polls"
    )

    convergence_timeout: Optional[int] = Field(
        default=None,
        ge=1,
        description="Seconds to wait for the service to stabilize (waiter default if unset)"
    )

    # Behaviour
    list_limit: int = Field(
        default=10,
        ge=1,
        description="Number of versions shown by list"
    )

    dry_run: bool = Field(
        default=False,
        description="Log mutating steps instead of executing them"
    )

    assume_yes: bool = Field(
        default=False,
        description="Skip operator confirmations"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )

    @field_validator("ecr_repository")
    @classmethod
    def strip_repository(cls, v: str) -> str:
        """Drop scheme and trailing slashes from repository URIs."""
        v = v.strip()
        for prefix in ("https://", "http://"):
            if v.startswith(prefix):
                v = v[len(prefix):]
        v = v.rstrip("/")
        if not v:
            raise ValueError("ecr_repository must not be empty")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the logging module's names."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR"]
        v = v.upper()
        if v not in valid_levels:
            raise ValueError(f"Invalid log_level: {v}. Must be one of {valid_levels}")
        return v

    @property
    def repository_name(self) -> str:
        """ECR repository name without the registry host."""
        if self.registry_host:
            return self.ecr_repository.split("/", 1)[1]
        return self.ecr_repository

    @property
    def registry_host(self) -> Optional[str]:
        """Registry host when ecr_repository is a full URI, else None."""
        head, sep, _ = self.ecr_repository.partition("/")
        if sep and ("." in head or ":" in head):
            return head
        return None

    @property
    def last_build_path(self) -> Path:
        return Path(self.state_dir) / self.last_build_file

    @property
    def history_path(self) -> Path:
        return Path(self.state_dir) / self.history_file

    @property
    def frontend_path(self) -> Optional[Path]:
        if not self.frontend_dir:
            return None
        return Path(self.build_context) / self.frontend_dir

    def with_overrides(self, **overrides: Any) -> "DeploySettings":
        """Return a new validated settings value with non-None overrides applied."""
        updates = {k: v for k, v in overrides.items() if v is not None}
        if not updates:
            return self
        unknown = set(updates) - set(type(self).model_fields)
        if unknown:
            raise ValueError(f"Unknown settings: {sorted(unknown)}")
        values = self.model_dump()
        values.update(updates)
        return type(self)(**values)

    def describe(self) -> Dict[str, Any]:
        """Settings shown by show-config."""
        return {
            "Region": self.aws_region,
            "Cluster": self.cluster_name,
            "Service": self.service_name,
            "Task Family": self.task_family,
            "Container": self.container_name,
            "ECR Repository": self.ecr_repository,
            "Build Context": self.build_context,
            "Front-end Dir": self.frontend_dir,
            "Front-end API URL": self.frontend_api_url,
            "Last Build Marker": str(self.last_build_path),
            "Deploy History": str(self.history_path),
            "Waiter Delay": self.waiter_delay,
            "Convergence Timeout": self.convergence_timeout,
            "AWS Endpoint": self.aws_endpoint_url,
            "Dry Run": self.dry_run,
        }

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_prefix="BIA_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
        frozen=True,
    )


@lru_cache()
def get_settings() -> DeploySettings:
    """
    Get cached settings instance built from the environment.
    Components never call this; they receive settings by parameter.
    """
    return DeploySettings()
