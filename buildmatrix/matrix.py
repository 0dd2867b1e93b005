"""
Matrix expander - turn declared axes into independent job instances.

The expander:
- Builds the full cross-product of axis values (axis declaration order,
  then value order; the last axis varies fastest)
- Compiles each stage for each combination: evaluates the stage predicate
  (skip flag) and resolves @matrix.* references in command, env and
  artifact glob

The order is deterministic but carries no execution guarantee; instances
run independently.
"""

import itertools
from collections.abc import Mapping, Sequence

from buildmatrix.errors import ConfigurationError
from buildmatrix.predicates import parse_predicate, substitute_axis_refs
from buildmatrix.schemas import (
    AxisValues,
    JobInstance,
    PipelineDef,
    StageDef,
    StageInstance,
)


def expand_axes(axes: Mapping[str, Sequence]) -> list[AxisValues]:
    """
    Expand axes into the full cross-product.

    Args:
        axes: Ordered mapping of axis name to ordered values

    Returns:
        One AxisValues per combination. No axes at all yields a single
        empty combination, never an empty list.

    Raises:
        ConfigurationError: If an axis has zero values, is not a sequence,
            or repeats a value
    """
    names: list[str] = []
    value_lists: list[list[str]] = []

    for name, values in axes.items():
        if isinstance(values, (str, bytes)) or not isinstance(values, Sequence):
            raise ConfigurationError(
                f"Axis '{name}' must be a list of values, got {type(values).__name__}"
            )
        if len(values) == 0:
            raise ConfigurationError(f"Axis '{name}' has no values")

        normalized = [str(v) for v in values]
        if len(normalized) != len(set(normalized)):
            duplicates = sorted({v for v in normalized if normalized.count(v) > 1})
            raise ConfigurationError(f"Axis '{name}' repeats values: {duplicates}")

        names.append(str(name))
        value_lists.append(normalized)

    return [
        AxisValues(pairs=tuple(zip(names, combo)))
        for combo in itertools.product(*value_lists)
    ]


def compile_stage(stage_def: StageDef, values: AxisValues) -> StageInstance:
    """
    Compile a single stage definition for one axis combination.

    Args:
        stage_def: The stage definition
        values: The instance's axis values

    Returns:
        StageInstance with skip flag and resolved references
    """
    predicate = parse_predicate(stage_def.if_)
    skip = not predicate(values)

    artifacts = None
    if stage_def.artifacts:
        artifacts = substitute_axis_refs(stage_def.artifacts, values)

    return StageInstance(
        name=stage_def.name,
        effect=stage_def.effect,
        command=substitute_axis_refs(stage_def.command, values),
        skip=skip,
        condition=stage_def.if_,
        artifacts=artifacts,
        credential_env=stage_def.credential_env,
        credential_target=stage_def.credential_target,
        env={k: substitute_axis_refs(v, values) for k, v in stage_def.env.items()},
    )


def expand_pipeline(pipeline_def: PipelineDef) -> list[JobInstance]:
    """
    Expand a pipeline definition into job instances.

    Args:
        pipeline_def: The pipeline to expand

    Returns:
        Job instances in expansion order

    Raises:
        ConfigurationError: On malformed axes, before any instance exists
    """
    combinations = expand_axes(pipeline_def.axes_dict())

    return [
        JobInstance(
            pipeline_id=pipeline_def.pipeline_id,
            index=index,
            axis_values=values,
            stages=tuple(compile_stage(s, values) for s in pipeline_def.stages),
        )
        for index, values in enumerate(combinations)
    ]
