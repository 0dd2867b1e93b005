"""
PipelineDef schema - the declarative pipeline definition.

A PipelineDef is the static, version-controlled definition of a pipeline:
when it runs (trigger), what it fans out over (axes), and the ordered stages
each job instance executes. Stage commands and predicates may reference axis
values with @matrix.<axis>; those are resolved per instance by the matrix
expander.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Optional

from buildmatrix.errors import ConfigurationError
from buildmatrix.predicates import parse_predicate, referenced_axes

from .effects import EffectClass


AXIS_NAME_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_-]*$")

REQUIRED_STAGE_FIELDS = ("name", "command", "effect")


@dataclass(frozen=True)
class TriggerDef:
    """
    When a pipeline runs.

    Attributes:
        events: Event kinds that start the pipeline (default: push)
        branches: Branch names or glob patterns; empty means any branch
    """
    events: tuple[str, ...] = ("push",)
    branches: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"events": list(self.events)}
        if self.branches:
            result["branches"] = list(self.branches)
        return result

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "TriggerDef":
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ConfigurationError(f"trigger must be a mapping, got {type(data).__name__}")
        events = data.get("events", ["push"])
        branches = data.get("branches", [])
        if isinstance(events, str):
            events = [events]
        if isinstance(branches, str):
            branches = [branches]
        return cls(
            events=tuple(str(e) for e in events),
            branches=tuple(str(b) for b in branches),
        )


@dataclass(frozen=True)
class StageDef:
    """
    A stage definition within a PipelineDef.

    Attributes:
        name: Unique name of the stage within the pipeline
        command: Shell command handed to the external collaborator
        effect: Declared effect class (routes the stage to a handler)
        if_: Optional predicate over axis values, e.g. "@matrix.os == 'linux'"
        artifacts: Glob (relative to the instance workspace) of files a
            package stage produces
        credential_env: Environment variable holding the publish credential
        credential_target: Variable name the publish command expects the
            credential under (defaults to credential_env)
        env: Extra environment for the command, may contain @matrix refs
    """
    name: str
    command: str
    effect: EffectClass
    if_: Optional[str] = None
    artifacts: Optional[str] = None
    credential_env: Optional[str] = None
    credential_target: Optional[str] = None
    env: dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if not self.name:
            raise ConfigurationError("Stage name must not be empty")
        if not self.command or not self.command.strip():
            raise ConfigurationError(f"Stage '{self.name}': command must not be empty")

        if self.if_ is not None:
            # Compile once to surface syntax errors at load time
            parse_predicate(self.if_)

        if self.artifacts and not self.effect.produces_artifacts:
            raise ConfigurationError(
                f"Stage '{self.name}': artifacts are only valid for package stages, "
                f"but effect is '{self.effect.value}'"
            )
        if self.effect.requires_credential and not self.credential_env:
            raise ConfigurationError(
                f"Stage '{self.name}': publish stages must name a credential_env"
            )
        if self.credential_env and not self.effect.requires_credential:
            raise ConfigurationError(
                f"Stage '{self.name}': credential_env is only valid for publish stages"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "effect": self.effect.value,
            "command": self.command,
            **({"if": self.if_} if self.if_ else {}),
            **({"artifacts": self.artifacts} if self.artifacts else {}),
            **({"credential_env": self.credential_env} if self.credential_env else {}),
            **({"credential_target": self.credential_target} if self.credential_target else {}),
            **({"env": dict(self.env)} if self.env else {}),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StageDef":
        if not isinstance(data, dict):
            raise ConfigurationError(f"Stage must be a mapping, got {type(data).__name__}")

        missing = [f for f in REQUIRED_STAGE_FIELDS if f not in data]
        if missing:
            label = data.get("name", "<unnamed>")
            raise ConfigurationError(
                f"Stage '{label}': missing required fields: {', '.join(missing)}"
            )

        try:
            effect = EffectClass.from_string(data["effect"])
        except ValueError as e:
            raise ConfigurationError(f"Stage '{data['name']}': {e}")

        env = data.get("env") or {}
        if not isinstance(env, dict):
            raise ConfigurationError(f"Stage '{data['name']}': env must be a mapping")

        return cls(
            name=str(data["name"]),
            command=str(data["command"]),
            effect=effect,
            if_=data.get("if"),
            artifacts=data.get("artifacts"),
            credential_env=data.get("credential_env"),
            credential_target=data.get("credential_target"),
            env={str(k): str(v) for k, v in env.items()},
        )


@dataclass(frozen=True)
class PipelineDef:
    """
    A pipeline definition.

    PipelineDef is immutable. Axis values are kept as strings in declaration
    order; the matrix expander relies on that order being stable.

    Attributes:
        pipeline_id: Unique identifier for the pipeline
        version: Version of the definition
        axes: Ordered (axis name, ordered values) pairs
        stages: Ordered stage definitions
        trigger: When the pipeline runs
        description: Free text
    """
    pipeline_id: str
    version: str
    axes: tuple[tuple[str, tuple[str, ...]], ...] = field(default_factory=tuple)
    stages: tuple[StageDef, ...] = field(default_factory=tuple)
    trigger: TriggerDef = field(default_factory=TriggerDef)
    description: str = ""

    def __post_init__(self):
        if not self.pipeline_id:
            raise ConfigurationError("pipeline_id is required")
        if not self.stages:
            raise ConfigurationError(f"Pipeline '{self.pipeline_id}': no stages declared")

        names = [s.name for s in self.stages]
        if len(names) != len(set(names)):
            duplicates = {n for n in names if names.count(n) > 1}
            raise ConfigurationError(f"Duplicate stage names: {duplicates}")

        axis_names = [name for name, _ in self.axes]
        if len(axis_names) != len(set(axis_names)):
            raise ConfigurationError(f"Duplicate axis names in '{self.pipeline_id}'")
        for name in axis_names:
            if not AXIS_NAME_PATTERN.match(name):
                raise ConfigurationError(f"Invalid axis name: {name!r}")

        # Predicates may only reference declared axes
        declared = set(axis_names)
        for stage in self.stages:
            if stage.if_ is None:
                continue
            unknown = referenced_axes(stage.if_) - declared
            if unknown:
                raise ConfigurationError(
                    f"Stage '{stage.name}': condition references undeclared axes: "
                    f"{sorted(unknown)}"
                )

    @property
    def axis_names(self) -> tuple[str, ...]:
        return tuple(name for name, _ in self.axes)

    def axes_dict(self) -> dict[str, list[str]]:
        """Axes as an insertion-ordered dict."""
        return {name: list(values) for name, values in self.axes}

    def get_stage(self, name: str) -> Optional[StageDef]:
        """Get a stage by name."""
        for stage in self.stages:
            if stage.name == name:
                return stage
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON/YAML output."""
        return {
            "pipeline_id": self.pipeline_id,
            "version": self.version,
            **({"description": self.description} if self.description else {}),
            "trigger": self.trigger.to_dict(),
            "axes": self.axes_dict(),
            "stages": [s.to_dict() for s in self.stages],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PipelineDef":
        """Deserialize from dictionary."""
        if not isinstance(data, dict):
            raise ConfigurationError("Pipeline definition must be a mapping")
        if "pipeline_id" not in data:
            raise ConfigurationError("Pipeline definition is missing 'pipeline_id'")

        axes_data = data.get("axes") or {}
        if not isinstance(axes_data, dict):
            raise ConfigurationError("axes must be a mapping of axis name to values")

        axes = []
        for name, values in axes_data.items():
            if not isinstance(values, (list, tuple)):
                raise ConfigurationError(
                    f"Axis '{name}' must be a list of values, got {type(values).__name__}"
                )
            # YAML reads an unquoted 3.10 as the float 3.1
            floats = [v for v in values if isinstance(v, float)]
            if floats:
                raise ConfigurationError(
                    f"Axis '{name}' has unquoted numeric values {floats}; "
                    f"quote them (e.g. \"3.10\") so they are not read as floats"
                )
            axes.append((str(name), tuple(str(v) for v in values)))

        stages_data = data.get("stages") or []
        if not isinstance(stages_data, list):
            raise ConfigurationError("stages must be a list")

        return cls(
            pipeline_id=str(data["pipeline_id"]),
            version=str(data.get("version", "1.0")),
            axes=tuple(axes),
            stages=tuple(StageDef.from_dict(s) for s in stages_data),
            trigger=TriggerDef.from_dict(data.get("trigger")),
            description=data.get("description", ""),
        )
