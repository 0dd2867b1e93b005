"""
CLI interface for the buildmatrix orchestrator.

Provides commands to discover, inspect, expand and run pipelines.

Pipelines are defined as YAML files in pipelines/definitions/ (or a
directory named by --definitions / the definitions_dir config key). A run
evaluates the trigger against the given branch, expands the matrix and runs
every job instance in parallel.

Exit codes for `run`: 0 succeeded or skipped, 1 an instance failed,
2 configuration error.
"""


import dataclasses
import json
from pathlib import Path
from typing import Optional

import click
import yaml
from rich.table import Table

from buildmatrix import __version__

EXIT_FAILED = 1
EXIT_CONFIG = 2


definitions_option = click.option(
    "--definitions",
    "definitions_dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory of pipeline definitions (default: config or bundled)",
)


@click.group()
@click.version_option(version=__version__, prog_name="buildmatrix")
@click.pass_context
def main(ctx):
    """
    buildmatrix - Matrix build/test/publish orchestrator.

    Run pipelines defined as YAML across every axis combination.
    """
    from buildmatrix.config import load_config
    from buildmatrix.errors import ConfigError

    ctx.ensure_object(dict)
    try:
        ctx.obj["config"] = load_config()
    except ConfigError as e:
        # `init --force` can repair a broken config, so defer the failure
        ctx.obj["config_error"] = str(e)


def _get_config(ctx, definitions_dir: Optional[Path] = None, source_dir: Optional[Path] = None):
    """Loaded config with command-line overrides applied."""
    if "config" not in ctx.obj:
        click.echo(f"✗ Config not loaded: {ctx.obj.get('config_error', 'Unknown error')}", err=True)
        click.echo("Run 'buildmatrix init --force' to write a fresh configuration file.", err=True)
        raise SystemExit(EXIT_CONFIG)

    config = ctx.obj["config"]
    overrides = {}
    if definitions_dir is not None:
        overrides["definitions_dir"] = str(definitions_dir)
    if source_dir is not None:
        overrides["source_dir"] = str(source_dir)
    return dataclasses.replace(config, **overrides) if overrides else config


def _get_registry(config):
    from buildmatrix.registry import BUNDLED_DEFINITIONS_DIR, PipelineRegistry

    return PipelineRegistry(config.path("definitions_dir") or BUNDLED_DEFINITIONS_DIR)


def _load_pipeline(registry, pipeline: str):
    """Load a pipeline or exit with the configuration error status."""
    from buildmatrix.errors import ConfigurationError
    from buildmatrix.registry import PipelineNotFoundError

    try:
        return registry.load(pipeline)
    except PipelineNotFoundError:
        click.echo(f"✗ Unknown pipeline: {pipeline}", err=True)
        available = registry.list_pipelines()
        if available:
            click.echo("\nAvailable pipelines:", err=True)
            for pid in available:
                click.echo(f"  {pid}", err=True)
        raise SystemExit(EXIT_CONFIG)
    except ConfigurationError as e:
        click.echo(f"✗ Configuration error: {e}", err=True)
        raise SystemExit(EXIT_CONFIG)


@main.command("run")
@click.argument("pipeline")
@click.option("--branch", required=True, help="Branch (or refs/heads/... ref) that was pushed")
@click.option("--event", "event_kind", default="push", show_default=True, help="Event kind")
@click.option("--dry-run", is_flag=True, help="Record every stage without executing commands")
@click.option("--json", "as_json", is_flag=True, help="Print the run record as JSON")
@definitions_option
@click.option(
    "--source",
    "source_dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Project directory copied into each instance workspace",
)
@click.pass_context
def run(
    ctx,
    pipeline: str,
    branch: str,
    event_kind: str,
    dry_run: bool,
    as_json: bool,
    definitions_dir: Optional[Path],
    source_dir: Optional[Path],
):
    """
    Run a pipeline for a push event.

    PIPELINE is the pipeline ID (filename without extension).

    Examples:

        buildmatrix run build --branch feature/x

        buildmatrix run publish --branch master --source .
    """
    from buildmatrix.errors import ConfigurationError
    from buildmatrix.orchestrator import Orchestrator
    from buildmatrix.schemas import TriggerEvent
    from buildmatrix.utils import (
        console,
        format_duration,
        print_banner,
        print_error,
        print_success,
        print_warning,
        render_run_table,
        setup_logging,
    )

    config = _get_config(ctx, definitions_dir, source_dir)
    setup_logging(
        config.log_level,
        config.log_format,
        log_file=config.path("log_file"),
        console_output=not as_json,
    )

    orchestrator = Orchestrator.from_config(config)
    pipeline_def = _load_pipeline(orchestrator.registry, pipeline)
    event = TriggerEvent.from_ref(event_kind, branch)

    if dry_run and not as_json:
        print_banner("DRY RUN (no commands executed)")

    try:
        result = orchestrator.run(pipeline_def.pipeline_id, event, dry_run=dry_run)
    except ConfigurationError as e:
        if as_json:
            click.echo(json.dumps({"pipeline_id": pipeline, "status": "failed", "errors": [str(e)]}, indent=2))
        else:
            print_error(f"Configuration error: {e}")
        raise SystemExit(EXIT_CONFIG)

    record = result.record
    if as_json:
        click.echo(json.dumps(record.to_dict(), indent=2))
    elif record.status == "skipped":
        print_warning(f"{pipeline} skipped: {record.reason}")
    else:
        console.print(render_run_table(record))
        summary = f"{pipeline} {record.status} in {format_duration(record.duration_ms)} (run {record.run_id})"
        if result.success:
            print_success(summary)
        else:
            print_error(summary)

    if not result.success:
        raise SystemExit(EXIT_FAILED)


@main.command("matrix")
@click.argument("pipeline")
@click.option("--json", "as_json", is_flag=True, help="Print job instances as JSON")
@definitions_option
@click.pass_context
def matrix_cmd(ctx, pipeline: str, as_json: bool, definitions_dir: Optional[Path]):
    """Show the job instances a pipeline expands into."""
    from buildmatrix.errors import ConfigurationError
    from buildmatrix.matrix import expand_pipeline
    from buildmatrix.utils import console

    config = _get_config(ctx, definitions_dir)
    pipeline_def = _load_pipeline(_get_registry(config), pipeline)

    try:
        instances = expand_pipeline(pipeline_def)
    except ConfigurationError as e:
        click.echo(f"✗ Configuration error: {e}", err=True)
        raise SystemExit(EXIT_CONFIG)

    if as_json:
        click.echo(json.dumps([i.to_dict() for i in instances], indent=2))
        return

    table = Table(title=f"{pipeline_def.pipeline_id} · {len(instances)} instance(s)")
    table.add_column("#", justify="right")
    table.add_column("instance")
    table.add_column("stages")
    table.add_column("skipped")
    for instance in instances:
        table.add_row(
            str(instance.index),
            instance.key,
            ", ".join(s.name for s in instance.get_applicable_stages()),
            ", ".join(s.name for s in instance.stages if s.skip),
        )
    console.print(table)


@main.group("pipelines")
def pipelines_group():
    """Inspect pipeline definitions."""
    pass


@pipelines_group.command("list")
@definitions_option
@click.pass_context
def list_pipelines(ctx, definitions_dir: Optional[Path]):
    """List available pipelines."""
    from buildmatrix.errors import ConfigurationError

    config = _get_config(ctx, definitions_dir)
    registry = _get_registry(config)

    pipeline_ids = registry.list_pipelines()
    if not pipeline_ids:
        click.echo("No pipeline definitions found.")
        return

    for pipeline_id in pipeline_ids:
        try:
            pipeline_def = registry.load(pipeline_id)
        except ConfigurationError as e:
            click.echo(f"  {pipeline_id}  ✗ {e}")
            continue

        trigger = pipeline_def.trigger
        branches = ", ".join(trigger.branches) if trigger.branches else "any branch"
        axes = " x ".join(f"{name}({len(values)})" for name, values in pipeline_def.axes) or "no axes"
        click.echo(f"  {pipeline_id}  [{', '.join(trigger.events)} on {branches}]  {axes}")


@pipelines_group.command("show")
@click.argument("pipeline")
@definitions_option
@click.pass_context
def show_pipeline(ctx, pipeline: str, definitions_dir: Optional[Path]):
    """Show pipeline definition details."""
    config = _get_config(ctx, definitions_dir)
    registry = _get_registry(config)
    pipeline_def = _load_pipeline(registry, pipeline)

    click.echo(f"Pipeline: {pipeline_def.pipeline_id}")
    click.echo(f"Definition: {registry.find_definition(pipeline)}")
    click.echo(f"SHA256: {registry.compute_hash(pipeline_def)}")
    click.echo()
    click.echo(yaml.safe_dump(pipeline_def.to_dict(), sort_keys=False))


@main.group("runs")
def runs_group():
    """Inspect recorded runs."""
    pass


@runs_group.command("list")
@click.option("--pipeline", "pipeline_id", help="Only runs of this pipeline")
@click.option("--limit", default=20, show_default=True, help="Maximum number of runs")
@click.pass_context
def list_runs(ctx, pipeline_id: Optional[str], limit: int):
    """List recent runs, most recent first."""
    from buildmatrix.run_store import FileRunStore
    from buildmatrix.utils import console, format_duration

    config = _get_config(ctx)
    runs = FileRunStore(config.path("runs_dir")).list_runs(pipeline_id=pipeline_id, limit=limit)
    if not runs:
        click.echo("No runs recorded.")
        return

    table = Table()
    table.add_column("run_id")
    table.add_column("pipeline")
    table.add_column("branch")
    table.add_column("status")
    table.add_column("duration", justify="right")
    for record in runs:
        table.add_row(
            record.run_id,
            record.pipeline_id,
            record.event.branch,
            record.status,
            format_duration(record.duration_ms),
        )
    console.print(table)


@runs_group.command("show")
@click.argument("run_id")
@click.option("--json", "as_json", is_flag=True, help="Print the run record as JSON")
@click.pass_context
def show_run(ctx, run_id: str, as_json: bool):
    """Show one run and the outcome of each job instance."""
    from buildmatrix.run_store import FileRunStore
    from buildmatrix.utils import console, render_run_table

    config = _get_config(ctx)
    record = FileRunStore(config.path("runs_dir")).get_run(run_id)
    if record is None:
        click.echo(f"✗ Unknown run: {run_id}", err=True)
        raise SystemExit(EXIT_FAILED)

    if as_json:
        click.echo(json.dumps(record.to_dict(), indent=2))
        return

    click.echo(f"Run: {record.run_id}")
    click.echo(f"Pipeline: {record.pipeline_id}")
    click.echo(f"Event: {record.event.kind} on {record.event.branch}")
    click.echo(f"Status: {record.status}")
    if record.reason:
        click.echo(f"Reason: {record.reason}")
    for error in record.errors:
        click.echo(f"Error: {error}")
    if record.jobs:
        console.print(render_run_table(record))


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
def init(force: bool):
    """Initialize buildmatrix configuration."""
    from buildmatrix.config import BuildMatrixConfig, get_buildmatrix_home

    home = get_buildmatrix_home()
    if not home.exists():
        home.mkdir(parents=True)

    cfg_path = home / "config.yaml"
    if cfg_path.exists() and not force:
        click.echo(f"Config already exists at {cfg_path}. Use --force to overwrite.", err=True)
        raise SystemExit(1)

    default_cfg = BuildMatrixConfig().to_dict()
    cfg_path.write_text(yaml.safe_dump(default_cfg, sort_keys=False))

    click.echo(f"Initialized buildmatrix config at {cfg_path}")


if __name__ == "__main__":
    main()
