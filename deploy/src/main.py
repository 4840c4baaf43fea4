"""Command-line interface for deploying the Real Estate CRM.

``crm-deploy`` groups the one-shot operational tasks: a full deployment, a
standalone health check, backups, rollback and migrations. Settings come
from ``CRM_DEPLOY_*`` environment variables; options override them.

Exit codes: 0 on success, 1 when a deployment or health check fails, 2 on
usage errors.
"""

from pathlib import Path
from typing import Any, Dict, Optional

import click
import structlog
from pydantic import ValidationError

from api.src.config import ENVIRONMENTS, Settings
from deploy.src.backup import create_backup, restore_backup
from deploy.src.config import DeploySettings
from deploy.src.environment import load_environment
from deploy.src.errors import DeploymentError
from deploy.src.healthcheck import run_health_check
from deploy.src.migrations import run_migrations
from deploy.src.pipeline import DeploymentPipeline, StepStatus
from deploy.src.runner import CommandRunner
from shared.logging import configure_logging

logger = structlog.get_logger(__name__)

STATUS_MARKERS = {
    StepStatus.SUCCEEDED: "ok",
    StepStatus.SKIPPED: "skip",
    StepStatus.FAILED: "FAIL",
}


def _setup_logging(ctx: click.Context, settings: DeploySettings) -> None:
    log_file = ctx.obj.get("log_file") or settings.log_file
    json_logs = ctx.obj.get("json_logs", False)
    try:
        configure_logging(
            json_logs=json_logs,
            service_name="crm-deploy",
            environment=settings.environment,
            log_file=log_file,
        )
    except OSError as e:
        configure_logging(
            json_logs=json_logs,
            service_name="crm-deploy",
            environment=settings.environment,
        )
        logger.warning("log_file_unavailable", log_file=str(log_file), error=str(e))


def _load_settings(ctx: click.Context, **overrides: Any) -> DeploySettings:
    """Build settings from the environment plus non-empty CLI overrides."""
    values: Dict[str, Any] = {k: v for k, v in overrides.items() if v is not None}
    try:
        settings = DeploySettings(**values)
    except ValidationError as e:
        raise click.UsageError(f"Invalid deployment settings: {e}", ctx=ctx) from e

    _setup_logging(ctx, settings)
    return settings


def _runner(ctx: click.Context, settings: DeploySettings) -> CommandRunner:
    return ctx.obj.get("runner") or CommandRunner(dry_run=settings.dry_run)


def _service_settings(settings: DeploySettings) -> Optional[Settings]:
    """The deployed service's settings, or None when its .env cannot be used."""
    if not settings.env_file.is_file():
        return None
    try:
        return load_environment(settings.app_dir).settings
    except DeploymentError as e:
        logger.warning("service_settings_unavailable", error=str(e))
        return None


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Deployment log file (default: /var/log/crm-deploy.log).",
)
@click.option("--json-logs", is_flag=True, help="Emit logs as JSON lines.")
@click.pass_context
def cli(ctx: click.Context, log_file: Optional[Path], json_logs: bool) -> None:
    """Real Estate CRM deployment tool."""
    ctx.ensure_object(dict)
    ctx.obj["log_file"] = log_file
    ctx.obj["json_logs"] = json_logs


@cli.command()
@click.option(
    "-e", "--environment",
    type=click.Choice(ENVIRONMENTS),
    default=None,
    help="Deployment environment (default: production).",
)
@click.option(
    "-d", "--app-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Application directory (default: /var/www/real-estate-crm).",
)
@click.option("--dry-run", is_flag=True, help="Log commands without running them.")
@click.option("--skip-system-packages", is_flag=True, help="Do not install apt packages.")
@click.pass_context
def deploy(
    ctx: click.Context,
    environment: Optional[str],
    app_dir: Optional[Path],
    dry_run: bool,
    skip_system_packages: bool,
) -> None:
    """Run the full deployment."""
    settings = _load_settings(
        ctx,
        environment=environment,
        app_dir=app_dir,
        dry_run=True if dry_run else None,
        skip_system_packages=True if skip_system_packages else None,
    )

    pipeline = DeploymentPipeline(
        settings,
        runner=_runner(ctx, settings),
        session=ctx.obj.get("session"),
    )
    report = pipeline.run()

    click.echo(f"Deployment of {settings.app_name} ({settings.environment})")
    for step in report.steps:
        click.echo(f"  [{STATUS_MARKERS[step.status]:>4}] {step.name}: {step.detail}")

    if report.success:
        click.echo(f"Deployment completed successfully in {report.duration:.1f}s")
    else:
        failed = report.failed_step
        click.echo(f"Deployment failed at step '{failed.name}': {failed.detail}", err=True)
    ctx.exit(report.exit_code)


@cli.command("health-check")
@click.option("--url", default=None, help="Health route to poll.")
@click.option("--retries", type=click.IntRange(min=1), default=None, help="Maximum attempts.")
@click.option("--timeout", type=click.FloatRange(min=0, min_open=True), default=None,
              help="Per-attempt timeout in seconds.")
@click.option("--interval", type=click.FloatRange(min=0), default=None,
              help="Seconds between attempts.")
@click.pass_context
def health_check(
    ctx: click.Context,
    url: Optional[str],
    retries: Optional[int],
    timeout: Optional[float],
    interval: Optional[float],
) -> None:
    """Poll the service health route."""
    settings = _load_settings(
        ctx,
        health_url=url,
        health_retries=retries,
        health_timeout=timeout,
        health_interval=interval,
    )

    service = None if settings.health_url else _service_settings(settings)
    url = settings.resolve_health_url(service)
    summary = run_health_check(
        settings, _runner(ctx, settings), session=ctx.obj.get("session"), service=service
    )

    if summary.ok:
        click.echo(
            f"Healthy: {url} answered {summary.poll.status_code} "
            f"after {summary.poll.attempts} attempt(s)"
        )
    else:
        click.echo(
            f"Unhealthy: {url} after {summary.poll.attempts} attempt(s): "
            f"{summary.poll.error}",
            err=True,
        )
    for name in summary.stopped_services:
        click.echo(f"Warning: {name} is not running", err=True)

    ctx.exit(0 if summary.ok else 1)


@cli.command()
@click.option("--keep", type=click.IntRange(min=1), default=None,
              help="Number of backups to retain (default: 5).")
@click.option("-d", "--app-dir", type=click.Path(file_okay=False, path_type=Path), default=None)
@click.pass_context
def backup(ctx: click.Context, keep: Optional[int], app_dir: Optional[Path]) -> None:
    """Back up the current deployment."""
    settings = _load_settings(ctx, backup_keep=keep, app_dir=app_dir)

    path = create_backup(settings.app_dir, settings.backup_dir, keep=settings.backup_keep)
    if path is None:
        click.echo(f"No existing deployment at {settings.app_dir}; nothing to back up")
    else:
        click.echo(f"Backup created: {path}")


@cli.command()
@click.option("--backup", "backup_name", default=None,
              help="Backup to restore (default: the most recent).")
@click.option("-d", "--app-dir", type=click.Path(file_okay=False, path_type=Path), default=None)
@click.pass_context
def rollback(ctx: click.Context, backup_name: Optional[str], app_dir: Optional[Path]) -> None:
    """Restore a backup and restart the service."""
    settings = _load_settings(ctx, app_dir=app_dir)
    runner = _runner(ctx, settings)

    try:
        restored = restore_backup(settings.backup_dir, settings.app_dir, name=backup_name)
        if runner.exists("systemctl"):
            runner.run(["systemctl", "restart", settings.app_service])
    except DeploymentError as e:
        logger.error("rollback_failed", error=str(e))
        raise click.ClickException(str(e)) from e

    click.echo(f"Restored {restored.name} into {settings.app_dir}")


@cli.command()
@click.option("-d", "--app-dir", type=click.Path(file_okay=False, path_type=Path), default=None)
@click.pass_context
def migrate(ctx: click.Context, app_dir: Optional[Path]) -> None:
    """Run database migrations only."""
    settings = _load_settings(ctx, app_dir=app_dir)

    try:
        environment = load_environment(settings.app_dir)
        completed = run_migrations(
            _runner(ctx, settings),
            settings.app_dir,
            env=environment.variables,
            override=settings.migration_command,
        )
    except DeploymentError as e:
        logger.error("migrate_failed", error=str(e))
        raise click.ClickException(str(e)) from e

    if completed:
        click.echo(f"Migrations completed: {', '.join(completed)}")
    else:
        click.echo("No migration tool detected")


if __name__ == "__main__":
    cli()
