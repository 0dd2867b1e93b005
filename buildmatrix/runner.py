"""
Stage runner - execute one job instance's stages in order.

The runner's only responsibility is sequencing and gating:
1. Stages run strictly in declared order, each to completion before the next
2. A stage whose predicate was false is marked skipped; its collaborator is
   never invoked
3. Any other stage is dispatched to its handler (by effect class)
4. Exit status 0 -> succeeded; package stages then collect their artifacts
5. Non-zero exit, or an EnvironmentFailure -> the stage fails, every later
   stage is skipped, and the instance is failed

There is no retry and no timeout. Side effects belong entirely to the
external commands.

Every instance gets its own workspace and its own HOME, so toolchain state
written under ~ (cargo, rustup, pip --user) is never shared between siblings.
"""

import logging
import shutil
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from buildmatrix.errors import BuildMatrixError, EnvironmentFailure, StageFailure
from buildmatrix.handlers import HandlerRegistry
from buildmatrix.schemas import (
    Artifact,
    EffectClass,
    JobInstance,
    JobOutcome,
    JobStatus,
    StageInstance,
    StageManifest,
    StageOutcome,
    StageStatus,
)
from buildmatrix.trigger import TriggerDecision
from buildmatrix.utils import get_file_checksum

logger = logging.getLogger(__name__)

# Keep failure output short in run records
MAX_ERROR_OUTPUT_CHARS = 2_000

ProgressCallback = Callable[..., None]


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def collect_artifacts(
    workspace: Path,
    pattern: str,
    stage_name: str,
    instance_key: str,
) -> list[Artifact]:
    """
    Collect files matching a glob inside an instance workspace.

    Args:
        workspace: Instance working directory
        pattern: Glob relative to the workspace, e.g. "target/wheels/*.whl"
        stage_name: Stage that produced the files
        instance_key: Axis key of the owning instance

    Returns:
        Artifacts sorted by path
    """
    artifacts = []
    for path in sorted(workspace.glob(pattern)):
        if not path.is_file():
            continue
        artifacts.append(Artifact(
            name=path.name,
            path=str(path.resolve()),
            stage_name=stage_name,
            instance_key=instance_key,
            sha256=get_file_checksum(path),
            size_bytes=path.stat().st_size,
        ))
    return artifacts


class StageRunner:
    """
    Runs the stages of a single JobInstance.

    Usage:
        runner = StageRunner(
            handlers=HandlerRegistry.create_default(),
            workspace_root=Path("/tmp/buildmatrix"),
            source_dir=Path("."),
        )
        outcome = runner.run(instance, run_id, decision)

    A StageRunner holds no per-instance state, so one runner can serve
    every instance of a run concurrently.
    """

    def __init__(
        self,
        handlers: HandlerRegistry,
        workspace_root: Path,
        source_dir: Optional[Path] = None,
        dry_run: bool = False,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        """
        Initialize the stage runner.

        Args:
            handlers: Collaborators keyed by backend
            workspace_root: Parent directory of per-instance workspaces
            source_dir: Checked-out project copied into each workspace
            dry_run: Do not require package stages to produce files
            progress_callback: Called as callback(event, **fields)
        """
        self._handlers = handlers
        self._workspace_root = Path(workspace_root)
        self._source_dir = Path(source_dir) if source_dir else None
        self._dry_run = dry_run
        self._progress_callback = progress_callback

    def _emit(self, event: str, **kwargs: Any) -> None:
        if self._progress_callback:
            self._progress_callback(event, **kwargs)

    def workspace_for(self, instance: JobInstance, run_id: str) -> Path:
        """Isolated working directory of one instance."""
        return self._workspace_root / run_id / f"{instance.index:02d}-{instance.axis_values.slug}"

    def home_for(self, instance: JobInstance, run_id: str) -> Path:
        """Private HOME of one instance, outside its workspace."""
        return self._workspace_root / run_id / "homes" / f"{instance.index:02d}-{instance.axis_values.slug}"

    def _prepare_workspace(self, instance: JobInstance, run_id: str, stage_name: str) -> Path:
        workspace = self.workspace_for(instance, run_id)
        try:
            workspace.mkdir(parents=True, exist_ok=True)
            self.home_for(instance, run_id).mkdir(parents=True, exist_ok=True)
            if self._source_dir is not None:
                shutil.copytree(self._source_dir, workspace, dirs_exist_ok=True, symlinks=True)
        except OSError as e:
            raise EnvironmentFailure(stage_name, f"cannot prepare workspace {workspace}: {e}") from e
        return workspace

    def run(
        self,
        instance: JobInstance,
        run_id: str,
        decision: TriggerDecision,
    ) -> JobOutcome:
        """
        Execute a JobInstance.

        Args:
            instance: The instance to run
            run_id: ULID of the owning run
            decision: The run's trigger decision; nothing is dispatched,
                publish stages included, unless it admitted the run

        Returns:
            JobOutcome with one StageOutcome per declared stage
        """
        key = instance.key

        if not decision.should_run:
            return JobOutcome(
                index=instance.index,
                axis_values=instance.axis_values.as_dict(),
                status=JobStatus.SKIPPED,
                stage_outcomes=tuple(
                    StageOutcome(name=s.name, status=StageStatus.SKIPPED)
                    for s in instance.stages
                ),
            )

        started_at = _utcnow()
        logger.info(f"  [{key}] started ({len(instance.stages)} stages)")
        self._emit("job_start", instance_key=key)

        outcomes: list[StageOutcome] = []
        artifacts: list[Artifact] = []
        workspace: Optional[Path] = None
        failed = False

        for stage in instance.stages:
            if failed:
                outcomes.append(StageOutcome(name=stage.name, status=StageStatus.SKIPPED))
                continue

            if stage.skip:
                logger.debug(f"  [{key}] skip {stage.name} ({stage.condition} is false)")
                outcomes.append(StageOutcome(name=stage.name, status=StageStatus.SKIPPED))
                self._emit("stage_skip", instance_key=key, stage=stage.name)
                continue

            stage_started = _utcnow()
            self._emit("stage_start", instance_key=key, stage=stage.name)
            try:
                if workspace is None:
                    workspace = self._prepare_workspace(instance, run_id, stage.name)

                manifest = self._build_manifest(instance, stage, run_id, workspace, artifacts)
                result = self._dispatch(manifest)
                if not result.ok:
                    raise StageFailure(stage.name, result.exit_code, output=result.output)

                produced: list[Artifact] = []
                if stage.effect == EffectClass.PACKAGE and stage.artifacts:
                    produced = collect_artifacts(workspace, stage.artifacts, stage.name, key)
                    if not produced and not self._dry_run:
                        raise StageFailure(
                            stage.name,
                            result.exit_code,
                            f"Stage '{stage.name}' produced no artifacts matching '{stage.artifacts}'",
                        )

                stage_completed = _utcnow()
                outcomes.append(StageOutcome(
                    name=stage.name,
                    status=StageStatus.SUCCEEDED,
                    started_at=stage_started,
                    completed_at=stage_completed,
                    exit_code=result.exit_code,
                    artifacts=tuple(produced),
                ))
                artifacts.extend(produced)

                duration = int((stage_completed - stage_started).total_seconds() * 1000)
                logger.info(f"    ok [{key}] {stage.name} ({duration}ms)")
                self._emit("stage_ok", instance_key=key, stage=stage.name, duration_ms=duration)

            except Exception as e:
                if not isinstance(e, BuildMatrixError):
                    logger.error(f"    FAIL [{key}] {stage.name}: unexpected {type(e).__name__}", exc_info=True)
                else:
                    logger.error(f"    FAIL [{key}] {stage.name}: {e}")

                failed = True
                outcomes.append(StageOutcome(
                    name=stage.name,
                    status=StageStatus.FAILED,
                    started_at=stage_started,
                    completed_at=_utcnow(),
                    exit_code=getattr(e, "exit_code", None),
                    error=self._error_info(e),
                ))
                self._emit("stage_fail", instance_key=key, stage=stage.name, error=str(e))

        status = JobStatus.FAILED if failed else JobStatus.SUCCEEDED
        outcome = JobOutcome(
            index=instance.index,
            axis_values=instance.axis_values.as_dict(),
            status=status,
            stage_outcomes=tuple(outcomes),
            started_at=started_at,
            completed_at=_utcnow(),
        )
        logger.info(f"  [{key}] {status.value}")
        self._emit("job_end", instance_key=key, status=status.value)
        return outcome

    def _build_manifest(
        self,
        instance: JobInstance,
        stage: StageInstance,
        run_id: str,
        workspace: Path,
        artifacts: list[Artifact],
    ) -> StageManifest:
        env = instance.axis_values.as_env()
        # Toolchain installers write under $HOME (~/.cargo, ~/.rustup)
        env["HOME"] = str(self.home_for(instance, run_id))
        env.update(stage.env)
        return StageManifest.for_effect(
            stage.effect,
            run_id=run_id,
            pipeline_id=instance.pipeline_id,
            instance_key=instance.key,
            stage_name=stage.name,
            command=stage.command,
            cwd=str(workspace),
            env=env,
            artifacts=tuple(artifacts),
            credential_env=stage.credential_env,
            credential_target=stage.credential_target,
        )

    def _dispatch(self, manifest: StageManifest):
        try:
            handler = self._handlers.get(manifest.backend)
        except KeyError as e:
            raise EnvironmentFailure(manifest.stage_name, str(e)) from e
        return handler.execute(manifest)

    @staticmethod
    def _error_info(error: Exception) -> dict[str, Any]:
        info: dict[str, Any] = {
            "type": type(error).__name__,
            "message": str(error),
        }
        cause = error.__cause__
        if cause is not None:
            info["cause"] = f"{type(cause).__name__}: {cause}"
        output = getattr(error, "output", "")
        if output:
            info["output"] = output[-MAX_ERROR_OUTPUT_CHARS:]
        return info
