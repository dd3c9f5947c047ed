"""
Version Identifier Resolver

Derives the deploy version from git: the abbreviated hash of HEAD. The same
commit always yields the same identifier, which is used as the image tag and
as the DEPLOY_VERSION entry of the task definition.
"""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from bia_deploy.exceptions import NotAVersionControlRepository, PreconditionError
from bia_deploy.settings import DeploySettings
from bia_deploy.utils.commands import CommandRunner

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommitInfo:
    """Metadata of the commit being deployed."""
    version: str
    subject: str
    author: str
    date: str

    def log_lines(self):
        return [
            f"Commit: {self.version}",
            f"Message: {self.subject}",
            f"Author: {self.author}",
            f"Date: {self.date}",
        ]


class VersionResolver:
    """Reads version information from the git working tree of the build context."""

    def __init__(self, settings: DeploySettings, runner: Optional[CommandRunner] = None):
        self.settings = settings
        self.runner = runner or CommandRunner()
        self.cwd = settings.build_context

    def _git(self, *args: str) -> str:
        result = self.runner.query(["git", *args], cwd=self.cwd)
        if result.returncode != 0:
            raise PreconditionError(
                f"git {' '.join(args)} failed: {(result.stderr or '').strip()}"
            )
        return result.stdout.strip()

    def ensure_repository(self) -> None:
        """Raise NotAVersionControlRepository outside a git working tree."""
        result = self.runner.query(["git", "rev-parse", "--git-dir"], cwd=self.cwd)
        if result.returncode != 0:
            raise NotAVersionControlRepository(
                f"{self.cwd} is not a git repository"
            )

    def resolve(self) -> str:
        """Return the abbreviated hash of HEAD."""
        self.ensure_repository()
        version = self._git("rev-parse", f"--short={self.settings.version_length}", "HEAD")
        if not version:
            raise PreconditionError("git returned an empty commit hash")
        return version

    def commit_info(self) -> CommitInfo:
        """Return subject, author and date of HEAD."""
        version = self.resolve()
        subject, author, date = self._git(
            "log", "-1", "--pretty=format:%s%x00%an%x00%ci", "HEAD"
        ).split("\x00")
        return CommitInfo(version=version, subject=subject, author=author, date=date)

    def _state_file_excludes(self) -> List[str]:
        """Pathspecs excluding the marker and history files inside the build context."""
        context = Path(self.cwd).resolve()
        excludes = []
        for path in (self.settings.last_build_path, self.settings.history_path):
            try:
                relative = Path(path).resolve().relative_to(context)
            except ValueError:
                continue
            excludes.append(f":(exclude){relative.as_posix()}")
        return excludes

    def has_uncommitted_changes(self) -> bool:
        """True when git status reports modified or untracked files.

        The last-build marker and deploy history are written by this tool and
        are not counted.
        """
        return bool(self._git(
            "status", "--porcelain", "--untracked-files=all",
            "--", ":/", *self._state_file_excludes()
        ))
