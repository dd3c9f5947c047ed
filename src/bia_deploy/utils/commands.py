"""Subprocess execution for git, docker and npm."""
import logging
import os
import shutil
import subprocess
from typing import Dict, List, Optional

from bia_deploy.exceptions import MissingToolError

logger = logging.getLogger(__name__)


def require_tool(tool: str) -> str:
    """Return the absolute path of a tool or raise MissingToolError."""
    path = shutil.which(tool)
    if not path:
        raise MissingToolError(tool)
    return path


class CommandRunner:
    """Runs external commands; mutating commands are only logged in dry-run mode."""

    def __init__(self, dry_run: bool = False):
        self.dry_run = dry_run

    def query(self, command: List[str], cwd: Optional[str] = None) -> subprocess.CompletedProcess:
        """Run a read-only command and capture its output. Runs in dry-run mode too."""
        logger.debug(f"Query: {' '.join(command)}")
        try:
            return subprocess.run(
                command,
                cwd=cwd,
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as e:
            raise MissingToolError(command[0]) from e

    def run(self, command: List[str], cwd: Optional[str] = None,
            env: Optional[Dict[str, str]] = None,
            input: Optional[str] = None) -> subprocess.CompletedProcess:
        """Run a mutating command, streaming its output to the terminal."""
        if self.dry_run:
            logger.info(f"[DRY-RUN] {' '.join(command)}")
            return subprocess.CompletedProcess(command, 0, "", "")

        logger.debug(f"Run: {' '.join(command)}")
        run_env = None
        if env:
            run_env = os.environ.copy()
            run_env.update(env)
        try:
            return subprocess.run(
                command,
                cwd=cwd,
                env=run_env,
                input=input,
                text=True,
                check=False,
            )
        except FileNotFoundError as e:
            raise MissingToolError(command[0]) from e
