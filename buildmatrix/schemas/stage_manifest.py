"""
StageManifest schema - the dispatchable unit for stage execution.

A StageManifest captures everything a collaborator needs to run one stage of
one job instance: the resolved command, the working directory, the
environment, and (for publish stages) the artifacts to upload and the name of
the variable that holds the credential. The credential value itself never
appears in a manifest.
"""

from dataclasses import dataclass, field
from typing import Any, Literal, Optional

from .effects import EffectClass
from .outcome import Artifact

# ULID type alias for documentation
ULID = str


@dataclass(frozen=True)
class StageManifest:
    """
    A dispatchable manifest for stage execution.

    Attributes:
        run_id: ULID of the run this stage belongs to
        pipeline_id: Pipeline identifier
        instance_key: Axis key of the job instance
        stage_name: Stage name
        effect: Declared effect class
        backend: Handler backend derived from the effect class
        command: Resolved shell command
        cwd: Instance working directory
        env: Environment additions (axis values, stage env)
        artifacts: Artifacts produced by earlier stages of the same instance
        credential_env: Variable holding the publish credential
        credential_target: Variable the command expects the credential under
    """
    run_id: ULID
    pipeline_id: str
    instance_key: str
    stage_name: str
    effect: EffectClass
    backend: Literal["toolchain", "publish"]
    command: str
    cwd: str
    env: dict[str, str] = field(default_factory=dict)
    artifacts: tuple[Artifact, ...] = field(default_factory=tuple)
    credential_env: Optional[str] = None
    credential_target: Optional[str] = None

    def __post_init__(self):
        # Validate backend matches effect
        if self.backend != self.effect.backend:
            raise ValueError(
                f"Backend mismatch: effect '{self.effect.value}' expects backend "
                f"'{self.effect.backend}', but got '{self.backend}'"
            )

    @classmethod
    def for_effect(cls, effect: EffectClass, **kwargs: Any) -> "StageManifest":
        """Create a StageManifest, deriving the backend from the effect class."""
        return cls(effect=effect, backend=effect.backend, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "run_id": self.run_id,
            "pipeline_id": self.pipeline_id,
            "instance_key": self.instance_key,
            "stage_name": self.stage_name,
            "effect": self.effect.value,
            "backend": self.backend,
            "command": self.command,
            "cwd": self.cwd,
            "env": self.env,
        }
        if self.artifacts:
            result["artifacts"] = [a.path for a in self.artifacts]
        if self.credential_env:
            result["credential_env"] = self.credential_env
        return result
