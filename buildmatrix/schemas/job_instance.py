"""
JobInstance schema - one concrete axis combination, ready to run.

A JobInstance is produced by the matrix expander from a PipelineDef. Every
@matrix.* reference in its stages has been resolved, every stage predicate
has been evaluated (skip set accordingly), and the stage list is fixed.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional

from .effects import EffectClass


@dataclass(frozen=True)
class AxisValues:
    """
    Typed, immutable record of one axis combination.

    Keeps declaration order. Supports the read-only mapping protocol
    (get, [], in, iteration) so predicates can be evaluated against it.
    """
    pairs: tuple[tuple[str, str], ...] = ()

    @classmethod
    def of(cls, **values: str) -> "AxisValues":
        return cls(pairs=tuple((k, str(v)) for k, v in values.items()))

    def get(self, axis: str, default: Optional[str] = None) -> Optional[str]:
        for name, value in self.pairs:
            if name == axis:
                return value
        return default

    def __getitem__(self, axis: str) -> str:
        for name, value in self.pairs:
            if name == axis:
                return value
        raise KeyError(axis)

    def __contains__(self, axis: object) -> bool:
        return any(name == axis for name, _ in self.pairs)

    def __iter__(self) -> Iterator[str]:
        return (name for name, _ in self.pairs)

    def __len__(self) -> int:
        return len(self.pairs)

    def as_dict(self) -> dict[str, str]:
        return dict(self.pairs)

    @property
    def key(self) -> str:
        """Stable display key, e.g. 'os=linux,python_version=3.7'."""
        if not self.pairs:
            return "default"
        return ",".join(f"{name}={value}" for name, value in self.pairs)

    @property
    def slug(self) -> str:
        """Filesystem-safe form of the key."""
        return re.sub(r"[^a-zA-Z0-9._-]+", "_", self.key)

    def as_env(self) -> dict[str, str]:
        """Axis values as MATRIX_<AXIS> environment variables."""
        return {
            "MATRIX_" + re.sub(r"[^A-Z0-9]", "_", name.upper()): value
            for name, value in self.pairs
        }


@dataclass(frozen=True)
class StageInstance:
    """
    A compiled stage ready for execution.

    Attributes:
        name: Stage name (unique within the pipeline)
        effect: Effect class, routes the stage to a handler
        command: Command with @matrix.* references resolved
        skip: True if the stage predicate evaluated to false for this instance
        condition: The original condition text, kept for reporting
        artifacts: Resolved artifact glob for package stages
        credential_env: Variable holding the publish credential
        credential_target: Variable the publish command reads the credential from
        env: Resolved extra environment
    """
    name: str
    effect: EffectClass
    command: str
    skip: bool = False
    condition: Optional[str] = None
    artifacts: Optional[str] = None
    credential_env: Optional[str] = None
    credential_target: Optional[str] = None
    env: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class JobInstance:
    """
    One (axis combination) of a pipeline run.

    Owned by exactly one run; never shared.

    Attributes:
        pipeline_id: The pipeline this instance was expanded from
        index: Position in the expansion order (0-based)
        axis_values: The axis combination
        stages: Fixed, ordered tuple of compiled stages
    """
    pipeline_id: str
    index: int
    axis_values: AxisValues
    stages: tuple[StageInstance, ...] = field(default_factory=tuple)

    @property
    def key(self) -> str:
        return self.axis_values.key

    def get_stage(self, name: str) -> Optional[StageInstance]:
        """Get a stage by name."""
        for stage in self.stages:
            if stage.name == name:
                return stage
        return None

    def get_applicable_stages(self) -> tuple[StageInstance, ...]:
        """Stages whose predicate held for this instance."""
        return tuple(s for s in self.stages if not s.skip)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        return {
            "pipeline_id": self.pipeline_id,
            "index": self.index,
            "axis_values": self.axis_values.as_dict(),
            "stages": [
                {
                    "name": s.name,
                    "effect": s.effect.value,
                    "command": s.command,
                    **({"skip": True} if s.skip else {}),
                    **({"if": s.condition} if s.condition else {}),
                    **({"artifacts": s.artifacts} if s.artifacts else {}),
                }
                for s in self.stages
            ],
        }
