"""
Outcome schemas - what happened to each stage and job instance.

StageOutcome tracks the result of a single stage within a job instance.
JobOutcome tracks a job instance from pending to its terminal status.
Artifact records a file produced by a package stage.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class StageStatus(str, Enum):
    """Status of a stage execution."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class JobStatus(str, Enum):
    """
    Status of a job instance.

    pending -> running -> {succeeded | failed}. SKIPPED is only used for
    instances of a run the trigger did not admit.
    """
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.SKIPPED)


@dataclass(frozen=True)
class Artifact:
    """
    A build output produced by a package stage.

    Attributes:
        name: File name
        path: Absolute path inside the instance workspace
        stage_name: Stage that produced it
        instance_key: Axis key of the owning job instance
        sha256: Content hash
        size_bytes: File size
    """
    name: str
    path: str
    stage_name: str
    instance_key: str
    sha256: str
    size_bytes: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "path": self.path,
            "stage_name": self.stage_name,
            "instance_key": self.instance_key,
            "sha256": self.sha256,
            "size_bytes": self.size_bytes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Artifact":
        return cls(
            name=data["name"],
            path=data["path"],
            stage_name=data["stage_name"],
            instance_key=data["instance_key"],
            sha256=data["sha256"],
            size_bytes=data.get("size_bytes", 0),
        )


@dataclass(frozen=True)
class StageOutcome:
    """
    The outcome of a single stage within a job instance.

    Attributes:
        name: Stage name
        status: pending, running, succeeded, failed, skipped
        started_at: When the command started (None if never dispatched)
        completed_at: When the command returned
        exit_code: Exit status of the command, if it ran
        error: Error details if status is failed
        artifacts: Files collected after a package stage
    """
    name: str
    status: StageStatus
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    exit_code: Optional[int] = None
    error: Optional[dict[str, Any]] = None
    artifacts: tuple[Artifact, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if self.status == StageStatus.SUCCEEDED:
            if self.started_at is None or self.completed_at is None:
                raise ValueError("succeeded stages must have started_at and completed_at")
        elif self.status == StageStatus.RUNNING:
            if self.started_at is None:
                raise ValueError("Running stages must have started_at")

    @property
    def duration_ms(self) -> Optional[int]:
        """Calculate execution duration in milliseconds if both timestamps present."""
        if self.started_at and self.completed_at:
            delta = self.completed_at - self.started_at
            return int(delta.total_seconds() * 1000)
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
        }
        if self.started_at is not None:
            result["started_at"] = self.started_at.isoformat()
        if self.completed_at is not None:
            result["completed_at"] = self.completed_at.isoformat()
        if self.exit_code is not None:
            result["exit_code"] = self.exit_code
        if self.error is not None:
            result["error"] = self.error
        if self.artifacts:
            result["artifacts"] = [a.to_dict() for a in self.artifacts]
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StageOutcome":
        """Deserialize from dictionary."""
        return cls(
            name=data["name"],
            status=StageStatus(data["status"]),
            started_at=datetime.fromisoformat(data["started_at"]) if data.get("started_at") else None,
            completed_at=datetime.fromisoformat(data["completed_at"]) if data.get("completed_at") else None,
            exit_code=data.get("exit_code"),
            error=data.get("error"),
            artifacts=tuple(Artifact.from_dict(a) for a in data.get("artifacts", [])),
        )


@dataclass(frozen=True)
class JobOutcome:
    """
    Terminal record of one job instance.

    Attributes:
        index: Position of the instance in expansion order
        axis_values: Axis combination as a plain dict
        status: Terminal job status
        stage_outcomes: One outcome per declared stage, in declared order
        started_at: When the instance started running
        completed_at: When the instance reached its terminal status
    """
    index: int
    axis_values: dict[str, str]
    status: JobStatus
    stage_outcomes: tuple[StageOutcome, ...] = field(default_factory=tuple)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def key(self) -> str:
        if not self.axis_values:
            return "default"
        return ",".join(f"{k}={v}" for k, v in self.axis_values.items())

    @property
    def succeeded(self) -> bool:
        return self.status == JobStatus.SUCCEEDED

    def get_outcome(self, name: str) -> Optional[StageOutcome]:
        """Get the outcome for a specific stage."""
        for outcome in self.stage_outcomes:
            if outcome.name == name:
                return outcome
        return None

    def get_failed_stage(self) -> Optional[StageOutcome]:
        """The stage that failed the instance, if any."""
        for outcome in self.stage_outcomes:
            if outcome.status == StageStatus.FAILED:
                return outcome
        return None

    @property
    def artifacts(self) -> tuple[Artifact, ...]:
        """All artifacts produced by this instance."""
        return tuple(a for o in self.stage_outcomes for a in o.artifacts)

    @property
    def duration_ms(self) -> Optional[int]:
        if self.started_at and self.completed_at:
            delta = self.completed_at - self.started_at
            return int(delta.total_seconds() * 1000)
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "index": self.index,
            "axis_values": self.axis_values,
            "status": self.status.value,
            "stage_outcomes": [o.to_dict() for o in self.stage_outcomes],
        }
        if self.started_at is not None:
            result["started_at"] = self.started_at.isoformat()
        if self.completed_at is not None:
            result["completed_at"] = self.completed_at.isoformat()
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JobOutcome":
        """Deserialize from dictionary."""
        return cls(
            index=data["index"],
            axis_values=data.get("axis_values", {}),
            status=JobStatus(data["status"]),
            stage_outcomes=tuple(StageOutcome.from_dict(o) for o in data.get("stage_outcomes", [])),
            started_at=datetime.fromisoformat(data["started_at"]) if data.get("started_at") else None,
            completed_at=datetime.fromisoformat(data["completed_at"]) if data.get("completed_at") else None,
        )
