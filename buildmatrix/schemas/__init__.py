"""
buildmatrix.schemas - Schema definitions for the orchestration layer.

PipelineDef -> JobInstance -> StageOutcome -> JobOutcome -> RunRecord

Lifecycle:
1. PipelineDef: Static, version-controlled pipeline with trigger, axes and
   stages (stage commands and conditions may use @matrix.* refs)
2. JobInstance: One axis combination with resolved refs, evaluated
   predicates and a fixed stage list
3. StageOutcome: Result of one stage (succeeded, failed, skipped)
4. JobOutcome: Terminal status of one instance plus its stage outcomes
5. RunRecord: One activation of a pipeline by a TriggerEvent
"""

from .effects import EffectClass
from .pipeline_def import (
    PipelineDef,
    StageDef,
    TriggerDef,
)
from .job_instance import (
    AxisValues,
    JobInstance,
    StageInstance,
)
from .outcome import (
    Artifact,
    JobOutcome,
    JobStatus,
    StageOutcome,
    StageStatus,
)
from .run_record import (
    RunRecord,
    TriggerEvent,
    ULID,
)
from .stage_manifest import (
    StageManifest,
)

__all__ = [
    # Effects
    "EffectClass",
    # Pipeline Definition
    "PipelineDef",
    "StageDef",
    "TriggerDef",
    # Job Instance
    "AxisValues",
    "JobInstance",
    "StageInstance",
    # Outcomes
    "Artifact",
    "JobOutcome",
    "JobStatus",
    "StageOutcome",
    "StageStatus",
    # Run Record
    "RunRecord",
    "TriggerEvent",
    "ULID",
    # Stage Manifest
    "StageManifest",
]
