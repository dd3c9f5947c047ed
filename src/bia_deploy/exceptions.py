"""Deploy workflow error taxonomy.

Every step fails fast with one of these; the CLI turns them into an error
line and exit status 1. botocore errors are translated where the AWS call is
made so callers only ever see this hierarchy.
"""
from typing import List, Optional


class DeployError(Exception):
    """Base class for all deploy workflow failures."""


class OperationCancelled(DeployError):
    """Operator declined a confirmation prompt."""


# Preconditions

class PreconditionError(DeployError):
    """A requirement for running the workflow is missing."""


class NotAVersionControlRepository(PreconditionError):
    """The build context is not inside a git working tree."""


class MissingToolError(PreconditionError):
    """A required command-line tool is not installed."""

    def __init__(self, tool: str):
        self.tool = tool
        super().__init__(f"Required tool not found on PATH: {tool}")


class MissingBuildError(PreconditionError):
    """No last-build marker exists for a step that needs one."""


# Build

class BuildFailure(DeployError):
    """A build command exited with a non-zero status."""

    def __init__(self, command: List[str], returncode: int, output: Optional[str] = None):
        self.command = command
        self.returncode = returncode
        self.output = output
        super().__init__(f"Build step failed (exit {returncode}): {' '.join(command)}")


# Registry

class RegistryError(DeployError):
    """ECR push, authentication or query failure."""


class VersionNotFound(RegistryError):
    """The requested version has no image in the registry."""

    def __init__(self, version: str, repository: str):
        self.version = version
        self.repository = repository
        super().__init__(f"Version {version} not found in ECR repository {repository}")


# Task definitions

class SpecificationError(DeployError):
    """Fetching or registering the task definition failed."""


class SpecificationNotFound(SpecificationError):
    """The task definition family does not exist."""

    def __init__(self, family: str):
        self.family = family
        super().__init__(f"Task definition family not found: {family}")


class RegistrationRejected(SpecificationError):
    """ECS (or local validation) refused the task definition document."""


# Convergence

class ConvergenceError(DeployError):
    """The service update was refused or did not stabilize."""


class UpdateRejected(ConvergenceError):
    """ECS refused the UpdateService call."""


class ConvergenceTimeout(ConvergenceError):
    """The services-stable waiter ran out of attempts."""
