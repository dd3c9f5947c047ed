"""
Deployment State Management and Tracking
Release state machine, last-build marker and append-only deploy history.
"""
import json
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional

from bia_deploy.exceptions import DeployError

logger = logging.getLogger(__name__)


class ReleaseState(Enum):
    """States of one release attempt (task definition + service update)."""
    IDLE = "idle"
    SPECIFICATION_GENERATED = "specification_generated"
    CONVERGENCE_REQUESTED = "convergence_requested"
    STABLE = "stable"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({ReleaseState.STABLE, ReleaseState.REJECTED, ReleaseState.TIMED_OUT})

TRANSITIONS: Dict[ReleaseState, FrozenSet[ReleaseState]] = {
    ReleaseState.IDLE: frozenset({
        ReleaseState.SPECIFICATION_GENERATED,
        ReleaseState.REJECTED,
    }),
    ReleaseState.SPECIFICATION_GENERATED: frozenset({
        ReleaseState.CONVERGENCE_REQUESTED,
        ReleaseState.REJECTED,
    }),
    ReleaseState.CONVERGENCE_REQUESTED: frozenset({
        ReleaseState.STABLE,
        ReleaseState.REJECTED,
        ReleaseState.TIMED_OUT,
    }),
    ReleaseState.STABLE: frozenset(),
    ReleaseState.REJECTED: frozenset(),
    ReleaseState.TIMED_OUT: frozenset(),
}


class InvalidTransition(DeployError):
    """A release attempt tried to move between unconnected states."""

    def __init__(self, current: ReleaseState, target: ReleaseState):
        self.current = current
        self.target = target
        super().__init__(f"Invalid release transition: {current.value} -> {target.value}")


@dataclass
class ReleaseAttempt:
    """One release of a version; terminal states are final, no retries."""
    version: str
    action: str
    state: ReleaseState = ReleaseState.IDLE
    task_definition_arn: Optional[str] = None
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None
    error_message: Optional[str] = None
    history: List[ReleaseState] = field(default_factory=lambda: [ReleaseState.IDLE])

    def transition(self, target: ReleaseState, error_message: Optional[str] = None) -> None:
        if target not in TRANSITIONS[self.state]:
            raise InvalidTransition(self.state, target)
        self.state = target
        self.history.append(target)
        if error_message:
            self.error_message = error_message
        if target.is_terminal:
            self.finished_at = time.time()
        logger.debug(f"Release {self.version}: {target.value}")

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return self.finished_at - self.started_at


class LastBuildMarker:
    """Single-token file with the last built version, for split build/push runs."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def read(self) -> Optional[str]:
        if not self.path.exists():
            return None
        version = self.path.read_text(encoding="utf-8").strip()
        return version or None

    def write(self, version: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(f"{version}\n", encoding="utf-8")
        logger.debug(f"Wrote last build version {version} to {self.path}")


@dataclass(frozen=True)
class DeployRecord:
    """One completed release in the local audit log."""
    version: str
    deployed_at: str
    task_definition_arn: str
    action: str

    @classmethod
    def now(cls, version: str, task_definition_arn: str, action: str) -> "DeployRecord":
        return cls(
            version=version,
            deployed_at=datetime.now(timezone.utc).isoformat(),
            task_definition_arn=task_definition_arn,
            action=action,
        )


class DeployHistory:
    """Append-only JSON-lines deploy log. Only read for display."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def append(self, record: DeployRecord) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(json.dumps(asdict(record)) + "\n")
        logger.debug(f"Recorded {record.action} of {record.version} in {self.path}")

    def records(self) -> List[DeployRecord]:
        """All records, oldest first. Unreadable lines are skipped."""
        if not self.path.exists():
            return []
        records = []
        with open(self.path, "r", encoding="utf-8") as f:
            for line_number, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(DeployRecord(**json.loads(line)))
                except (json.JSONDecodeError, TypeError) as e:
                    logger.warning(f"Skipping malformed history line {line_number} in {self.path}: {e}")
        return records

    def latest(self, limit: int = 10) -> List[DeployRecord]:
        """Newest records first."""
        return list(reversed(self.records()))[:limit]
