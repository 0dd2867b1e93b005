"""
RunRecord schema - one activation of a pipeline.

A RunRecord is created when a trigger event arrives. Its event and
pipeline identity never change once started; it is completed when every
job instance has reached a terminal status.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from .outcome import JobOutcome, JobStatus

# ULID type alias for documentation
ULID = str

BRANCH_REF_PREFIX = "refs/heads/"


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TriggerEvent:
    """
    An incoming event descriptor.

    Attributes:
        kind: Event kind, e.g. "push"
        branch: Source branch name (without refs/heads/)
    """
    kind: str
    branch: str

    @classmethod
    def push(cls, branch: str) -> "TriggerEvent":
        return cls.from_ref("push", branch)

    @classmethod
    def from_ref(cls, kind: str, ref: str) -> "TriggerEvent":
        """Build an event from a git ref or plain branch name."""
        branch = ref[len(BRANCH_REF_PREFIX):] if ref.startswith(BRANCH_REF_PREFIX) else ref
        return cls(kind=kind, branch=branch)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "branch": self.branch}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TriggerEvent":
        return cls(kind=data["kind"], branch=data["branch"])


@dataclass
class RunRecord:
    """
    A record of a pipeline run.

    The run_id is a ULID providing both uniqueness and time-ordering.
    Updated on completion with status and the per-instance outcomes.

    Attributes:
        run_id: ULID uniquely identifying this run
        pipeline_id: The pipeline being run
        pipeline_sha256: Content hash linking to the exact PipelineDef
        event: The triggering event
        started_at: When the run started
        completed_at: When the run completed (None while running)
        status: 'running', 'succeeded', 'failed', 'skipped'
        reason: Why the trigger admitted or rejected the event
        jobs: Terminal outcomes, in expansion order
        errors: Run-level error messages (configuration errors)
    """
    run_id: ULID
    pipeline_id: str
    event: TriggerEvent
    pipeline_sha256: str = ""
    started_at: datetime = field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    status: str = "running"
    reason: str = ""
    jobs: list[JobOutcome] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def duration_ms(self) -> Optional[int]:
        if self.completed_at:
            delta = self.completed_at - self.started_at
            return int(delta.total_seconds() * 1000)
        return None

    def complete(self, jobs: list[JobOutcome]) -> None:
        """Record terminal outcomes and derive the overall status."""
        self.jobs = list(jobs)
        if any(j.status == JobStatus.FAILED for j in self.jobs):
            self.status = "failed"
        else:
            self.status = "succeeded"
        self.completed_at = _utcnow()

    def skip(self, reason: str) -> None:
        """Close a run the trigger did not admit."""
        self.status = "skipped"
        self.reason = reason
        self.completed_at = _utcnow()

    def fail(self, error: str) -> None:
        """Close a run aborted before any instance started."""
        self.status = "failed"
        self.errors.append(error)
        self.completed_at = _utcnow()

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "run_id": self.run_id,
            "pipeline_id": self.pipeline_id,
            "pipeline_sha256": self.pipeline_sha256,
            "event": self.event.to_dict(),
            "started_at": self.started_at.isoformat(),
            "status": self.status,
            "jobs": [j.to_dict() for j in self.jobs],
        }
        if self.completed_at:
            result["completed_at"] = self.completed_at.isoformat()
        if self.duration_ms is not None:
            result["duration_ms"] = self.duration_ms
        if self.reason:
            result["reason"] = self.reason
        if self.errors:
            result["errors"] = self.errors
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RunRecord":
        """Deserialize from dictionary."""
        completed_at = None
        if data.get("completed_at"):
            completed_at = datetime.fromisoformat(data["completed_at"])
        return cls(
            run_id=data["run_id"],
            pipeline_id=data["pipeline_id"],
            pipeline_sha256=data.get("pipeline_sha256", ""),
            event=TriggerEvent.from_dict(data["event"]),
            started_at=datetime.fromisoformat(data["started_at"]),
            completed_at=completed_at,
            status=data.get("status", "running"),
            reason=data.get("reason", ""),
            jobs=[JobOutcome.from_dict(j) for j in data.get("jobs", [])],
            errors=data.get("errors", []),
        )
