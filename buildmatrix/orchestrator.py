"""
Orchestrator - trigger -> matrix -> parallel stage runners.

Execution flow:
1. Evaluate the trigger once for the incoming event
2. Not admitted -> the run is recorded as skipped; nothing executes
3. Expand the matrix; a ConfigurationError aborts the run before any
   instance starts
4. Run every instance on its own worker with its own workspace; instances
   share no state, and one failing never stops another
5. Collect outcomes in expansion order and derive the run status
   (failed if any instance failed)
"""

import logging
import tempfile
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from buildmatrix.config import BuildMatrixConfig
from buildmatrix.errors import ConfigurationError
from buildmatrix.handlers import HandlerRegistry
from buildmatrix.matrix import expand_pipeline
from buildmatrix.registry import BUNDLED_DEFINITIONS_DIR, PipelineRegistry
from buildmatrix.run_store import FileRunStore, RunStore, generate_ulid
from buildmatrix.runner import ProgressCallback, StageRunner
from buildmatrix.schemas import (
    JobInstance,
    JobOutcome,
    JobStatus,
    PipelineDef,
    RunRecord,
    StageOutcome,
    StageStatus,
    TriggerEvent,
)
from buildmatrix.trigger import TriggerDecision, evaluate_trigger

logger = logging.getLogger(__name__)


class RunResult:
    """Result of running a pipeline."""

    def __init__(
        self,
        record: RunRecord,
        decision: TriggerDecision,
        instances: Optional[list[JobInstance]] = None,
    ):
        self.record = record
        self.decision = decision
        self.instances = instances or []

    @property
    def run_id(self) -> str:
        return self.record.run_id

    @property
    def status(self) -> str:
        return self.record.status

    @property
    def success(self) -> bool:
        """True unless some instance failed. A skipped run is not a failure."""
        return self.record.status in ("succeeded", "skipped")

    @property
    def jobs(self) -> list[JobOutcome]:
        return self.record.jobs

    @property
    def failed_jobs(self) -> list[JobOutcome]:
        return [j for j in self.record.jobs if j.status == JobStatus.FAILED]

    def terminal_statuses(self) -> list[tuple[str, str]]:
        """(instance key, status) pairs in expansion order."""
        return [(j.key, j.status.value) for j in self.record.jobs]


def _crashed_outcome(instance: JobInstance, error: BaseException) -> JobOutcome:
    """Outcome for an instance whose runner raised instead of reporting."""
    now = datetime.now(timezone.utc)
    stages = list(instance.stages)
    outcomes = []
    if stages:
        outcomes.append(StageOutcome(
            name=stages[0].name,
            status=StageStatus.FAILED,
            error={"type": type(error).__name__, "message": str(error)},
        ))
        outcomes.extend(StageOutcome(name=s.name, status=StageStatus.SKIPPED) for s in stages[1:])
    return JobOutcome(
        index=instance.index,
        axis_values=instance.axis_values.as_dict(),
        status=JobStatus.FAILED,
        stage_outcomes=tuple(outcomes),
        started_at=now,
        completed_at=now,
    )


def run_pipeline(
    pipeline_def: PipelineDef,
    event: TriggerEvent,
    handlers: Optional[HandlerRegistry] = None,
    workspace_root: Optional[Path] = None,
    source_dir: Optional[Path] = None,
    max_parallel: int = 4,
    store: Optional[RunStore] = None,
    dry_run: bool = False,
    progress_callback: Optional[ProgressCallback] = None,
    run_id: Optional[str] = None,
) -> RunResult:
    """
    Run a pipeline for one event.

    Args:
        pipeline_def: The pipeline to run
        event: The triggering event
        handlers: Collaborators (default: real commands, or NoOp when dry_run)
        workspace_root: Parent of per-instance workspaces (default: a new temp dir)
        source_dir: Project copied into each workspace
        max_parallel: Instances executing at once
        store: Where to persist the RunRecord
        dry_run: Use NoOp collaborators and do not require artifacts
        progress_callback: Called as callback(event, **fields)
        run_id: Explicit run id (default: a new ULID)

    Returns:
        RunResult with the run record and trigger decision

    Raises:
        ConfigurationError: If the matrix cannot be expanded
    """
    decision = evaluate_trigger(pipeline_def.trigger, event)
    record = RunRecord(
        run_id=run_id or generate_ulid(),
        pipeline_id=pipeline_def.pipeline_id,
        event=event,
        pipeline_sha256=PipelineRegistry.compute_hash(pipeline_def),
        reason=decision.reason,
    )

    def _save() -> None:
        if store is not None:
            store.save_run(record)

    logger.info(f"Pipeline {pipeline_def.pipeline_id} ({record.run_id}): {decision.reason}")

    if not decision.should_run:
        logger.info("  not admitted, skipping")
        record.skip(decision.reason)
        _save()
        return RunResult(record, decision)

    try:
        instances = expand_pipeline(pipeline_def)
    except ConfigurationError as e:
        logger.error(f"  configuration error: {e}")
        record.fail(str(e))
        _save()
        raise

    if handlers is None:
        handlers = HandlerRegistry.create_noop() if dry_run else HandlerRegistry.create_default()
    if workspace_root is None:
        workspace_root = Path(tempfile.mkdtemp(prefix="buildmatrix-"))

    runner = StageRunner(
        handlers=handlers,
        workspace_root=workspace_root,
        source_dir=source_dir,
        dry_run=dry_run,
        progress_callback=progress_callback,
    )

    logger.info(f"  instances: {len(instances)}, max_parallel: {max_parallel}")
    _save()

    outcomes: list[Optional[JobOutcome]] = [None] * len(instances)
    with ThreadPoolExecutor(max_workers=max(1, min(max_parallel, len(instances)))) as executor:
        future_to_instance = {
            executor.submit(runner.run, instance, record.run_id, decision): instance
            for instance in instances
        }
        for future in as_completed(future_to_instance):
            instance = future_to_instance[future]
            try:
                outcomes[instance.index] = future.result()
            except Exception as e:
                logger.error(f"  [{instance.key}] runner crashed: {e}", exc_info=True)
                outcomes[instance.index] = _crashed_outcome(instance, e)

    record.complete([o for o in outcomes if o is not None])
    _save()

    failed = sum(1 for j in record.jobs if j.status == JobStatus.FAILED)
    logger.info(
        f"Pipeline {pipeline_def.pipeline_id}: "
        f"status={record.status}, succeeded={len(record.jobs) - failed}, "
        f"failed={failed}, duration={record.duration_ms}ms"
    )
    return RunResult(record, decision, instances)


class Orchestrator:
    """
    Config-driven entry point used by the CLI.

    Usage:
        orchestrator = Orchestrator.from_config(load_config())
        result = orchestrator.run("publish", TriggerEvent.push("master"))
    """

    def __init__(
        self,
        registry: PipelineRegistry,
        store: Optional[RunStore] = None,
        workspace_root: Optional[Path] = None,
        source_dir: Optional[Path] = None,
        max_parallel: int = 4,
        shell: Optional[str] = None,
    ):
        self.registry = registry
        self.store = store
        self.workspace_root = workspace_root
        self.source_dir = source_dir
        self.max_parallel = max_parallel
        self.shell = shell

    @classmethod
    def from_config(cls, config: BuildMatrixConfig) -> "Orchestrator":
        definitions_dir = config.path("definitions_dir") or BUNDLED_DEFINITIONS_DIR
        return cls(
            registry=PipelineRegistry(definitions_dir),
            store=FileRunStore(config.path("runs_dir")),
            workspace_root=config.path("workspace_root"),
            source_dir=config.path("source_dir"),
            max_parallel=config.max_parallel,
            shell=config.shell,
        )

    def run(
        self,
        pipeline_id: str,
        event: TriggerEvent,
        dry_run: bool = False,
        handlers: Optional[HandlerRegistry] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> RunResult:
        """
        Load a pipeline by ID and run it for an event.

        Raises:
            PipelineNotFoundError: If the pipeline does not exist
            ConfigurationError: If the pipeline is malformed
        """
        pipeline_def = self.registry.load(pipeline_id)
        if handlers is None:
            if dry_run:
                handlers = HandlerRegistry.create_noop()
            else:
                handlers = HandlerRegistry.create_default(shell=self.shell)

        return run_pipeline(
            pipeline_def,
            event,
            handlers=handlers,
            workspace_root=self.workspace_root,
            source_dir=self.source_dir,
            max_parallel=self.max_parallel,
            store=self.store,
            dry_run=dry_run,
            progress_callback=progress_callback,
        )
