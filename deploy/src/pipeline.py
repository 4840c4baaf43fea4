"""
Deployment procedure.

Runs the deployment as an ordered list of steps:

    preflight -> backup -> system packages -> directory layout ->
    environment -> application dependencies -> migrations ->
    services -> hardening -> health check

Each step succeeds, is skipped (nothing to do) or fails. The first failure
aborts the run: no later step executes and nothing is rolled back; the
backup taken at the start is what ``crm-deploy rollback`` restores.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

import requests
import structlog

from api.src.config import Settings
from deploy.src.backup import create_backup
from deploy.src.config import DeploySettings
from deploy.src.environment import DeploymentEnvironment, load_environment
from deploy.src.errors import HealthCheckError
from deploy.src.hardening import apply_hardening
from deploy.src.healthcheck import run_health_check
from deploy.src.layout import is_root, setup_app_directory
from deploy.src.migrations import run_migrations
from deploy.src.packages import install_app_dependencies, install_system_packages
from deploy.src.runner import CommandRunner
from deploy.src.services import configure_app_service, configure_nginx, configure_php_fpm
from shared.metrics import DeploymentMetrics, create_registry
from shared.tracing import trace_function

logger = structlog.get_logger(__name__)


class StepStatus(str, Enum):
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class StepResult:
    """Outcome of one deployment step."""
    name: str
    status: StepStatus
    detail: str = ""
    duration: float = 0.0


@dataclass
class DeploymentReport:
    """Outcome of a deployment run."""
    steps: List[StepResult] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def success(self) -> bool:
        return bool(self.steps) and all(s.status != StepStatus.FAILED for s in self.steps)

    @property
    def failed_step(self) -> Optional[StepResult]:
        for step in self.steps:
            if step.status == StepStatus.FAILED:
                return step
        return None

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1

    @property
    def duration(self) -> float:
        end = self.finished_at or datetime.now(timezone.utc)
        return (end - self.started_at).total_seconds()

    def step(self, name: str) -> Optional[StepResult]:
        for result in self.steps:
            if result.name == name:
                return result
        return None


StepOutcome = Tuple[StepStatus, str]


class DeploymentPipeline:
    """Runs a deployment against one application directory."""

    def __init__(
        self,
        settings: DeploySettings,
        runner: Optional[CommandRunner] = None,
        session: Optional[requests.Session] = None,
        metrics: Optional[DeploymentMetrics] = None,
    ):
        """
        Args:
            settings: Deployment settings
            runner: Command runner (defaults to a real runner honouring dry-run)
            session: requests session for the health check
            metrics: Deployment metrics (defaults to a fresh registry)
        """
        self.settings = settings
        self.runner = runner or CommandRunner(dry_run=settings.dry_run)
        self.session = session
        self.metrics = metrics or DeploymentMetrics(create_registry(include_process=False))
        self.environment: Optional[DeploymentEnvironment] = None

    @property
    def steps(self) -> List[Tuple[str, Callable[[], StepOutcome]]]:
        return [
            ("preflight", self._preflight),
            ("backup", self._backup),
            ("system_packages", self._system_packages),
            ("directory_layout", self._directory_layout),
            ("environment", self._environment),
            ("app_dependencies", self._app_dependencies),
            ("migrations", self._migrations),
            ("services", self._services),
            ("hardening", self._hardening),
            ("health_check", self._health_check),
        ]

    @property
    def service_settings(self) -> Optional[Settings]:
        """Service settings validated by the environment step, once it has run."""
        return self.environment.settings if self.environment else None

    @property
    def child_env(self) -> Optional[Dict[str, str]]:
        return self.environment.variables if self.environment else None

    # ========================================================================
    # Steps
    # ========================================================================

    def _preflight(self) -> StepOutcome:
        if is_root():
            logger.warning("running_as_root", hint="consider a dedicated deployment user")
        return StepStatus.SUCCEEDED, "preflight checks complete"

    def _backup(self) -> StepOutcome:
        backup = create_backup(
            self.settings.app_dir,
            self.settings.backup_dir,
            keep=self.settings.backup_keep,
        )
        if backup is None:
            return StepStatus.SKIPPED, "no existing deployment"
        return StepStatus.SUCCEEDED, str(backup)

    def _system_packages(self) -> StepOutcome:
        if self.settings.skip_system_packages:
            return StepStatus.SKIPPED, "disabled"
        if not install_system_packages(self.runner, self.settings.system_packages):
            return StepStatus.SKIPPED, "apt-get unavailable or nothing to install"
        return StepStatus.SUCCEEDED, f"{len(self.settings.system_packages)} packages"

    def _directory_layout(self) -> StepOutcome:
        setup_app_directory(
            self.settings.app_dir,
            user=self.settings.app_user,
            group=self.settings.app_group,
        )
        return StepStatus.SUCCEEDED, str(self.settings.app_dir)

    def _environment(self) -> StepOutcome:
        self.environment = load_environment(self.settings.app_dir)
        return StepStatus.SUCCEEDED, str(self.settings.env_file)

    def _app_dependencies(self) -> StepOutcome:
        installed = install_app_dependencies(
            self.runner,
            self.settings.app_dir,
            pip=self.settings.pip_executable,
            npm=self.settings.npm_executable,
            composer=self.settings.composer_executable,
            env=self.child_env,
        )
        if not installed:
            return StepStatus.SKIPPED, "no dependency manifests"
        return StepStatus.SUCCEEDED, ", ".join(installed)

    def _migrations(self) -> StepOutcome:
        completed = run_migrations(
            self.runner,
            self.settings.app_dir,
            env=self.child_env,
            override=self.settings.migration_command,
        )
        if not completed:
            return StepStatus.SKIPPED, "no migration tool detected"
        return StepStatus.SUCCEEDED, ", ".join(completed)

    def _services(self) -> StepOutcome:
        configured = []
        if configure_nginx(self.settings, self.runner, service=self.service_settings):
            configured.append("nginx")
        if configure_app_service(self.settings, self.runner):
            configured.append(self.settings.app_service)
        configured.extend(configure_php_fpm(self.settings, self.runner))
        if not configured:
            return StepStatus.SKIPPED, "nginx and systemd unavailable"
        return StepStatus.SUCCEEDED, ", ".join(configured)

    def _hardening(self) -> StepOutcome:
        apply_hardening(
            self.runner,
            self.settings.app_dir,
            firewall_enabled=self.settings.firewall_enabled,
        )
        return StepStatus.SUCCEEDED, "hardening applied"

    def _health_check(self) -> StepOutcome:
        if self.settings.dry_run:
            return StepStatus.SKIPPED, "dry run"

        summary = run_health_check(
            self.settings, self.runner, session=self.session, service=self.service_settings
        )
        if not summary.ok:
            raise HealthCheckError(
                f"Health check failed after {summary.poll.attempts} attempts: {summary.poll.error}",
                status_code=summary.poll.status_code,
            )

        detail = f"healthy after {summary.poll.attempts} attempt(s)"
        if summary.stopped_services:
            detail += f"; not running: {', '.join(summary.stopped_services)}"
        return StepStatus.SUCCEEDED, detail

    # ========================================================================
    # Execution
    # ========================================================================

    def _record(self, report: DeploymentReport, result: StepResult) -> None:
        report.steps.append(result)
        self.metrics.steps_total.labels(step=result.name, status=result.status.value).inc()
        self.metrics.step_duration_seconds.labels(step=result.name).observe(result.duration)

    @trace_function("deploy.run")
    def run(self) -> DeploymentReport:
        """
        Execute every step in order, stopping at the first failure.

        Returns:
            DeploymentReport (``exit_code`` is 0 on success, 1 otherwise)
        """
        report = DeploymentReport()
        logger.info(
            "deployment_started",
            app_name=self.settings.app_name,
            environment=self.settings.environment,
            app_dir=str(self.settings.app_dir),
            dry_run=self.settings.dry_run,
        )

        for name, step in self.steps:
            logger.info("step_started", step=name)
            start = time.perf_counter()
            try:
                status, detail = step()
            except Exception as e:
                duration = time.perf_counter() - start
                self._record(report, StepResult(name, StepStatus.FAILED, str(e), duration))
                logger.error(
                    "step_failed",
                    step=name,
                    error=str(e),
                    error_type=type(e).__name__,
                    duration=f"{duration:.3f}s",
                )
                break

            duration = time.perf_counter() - start
            self._record(report, StepResult(name, status, detail, duration))
            logger.info(
                "step_completed",
                step=name,
                status=status.value,
                detail=detail,
                duration=f"{duration:.3f}s",
            )

        report.finished_at = datetime.now(timezone.utc)
        self.metrics.record_run(report.success)

        if self.settings.metrics_textfile:
            self.metrics.write_textfile(self.settings.metrics_textfile)

        if report.success:
            logger.info("deployment_succeeded", duration=f"{report.duration:.1f}s")
        else:
            failed = report.failed_step
            logger.error(
                "deployment_failed",
                step=failed.name if failed else None,
                error=failed.detail if failed else None,
                duration=f"{report.duration:.1f}s",
            )

        return report
