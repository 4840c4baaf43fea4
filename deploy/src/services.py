"""
Service configuration: the nginx reverse proxy and the systemd unit that
runs the CRM service.
"""

import os
from fnmatch import fnmatch
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import structlog

from api.src.config import Settings
from deploy.src.config import DeploySettings
from deploy.src.runner import CommandRunner
from deploy.src.templates import render_nginx_site, render_systemd_unit

logger = structlog.get_logger(__name__)

DEFAULT_UPLOAD_MAX_SIZE = Settings.model_fields["upload_max_size"].default


def _write_config(path: Path, content: str, force: bool, dry_run: bool) -> bool:
    """Write ``content`` unless the file already exists. Returns True if written."""
    if path.exists() and not force:
        logger.info("config_file_kept", path=str(path))
        return False

    if dry_run:
        logger.info("config_file_skipped_dry_run", path=str(path))
        return True

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    os.chmod(path, 0o644)
    logger.info("config_file_written", path=str(path))
    return True


def configure_nginx(
    settings: DeploySettings,
    runner: CommandRunner,
    service: Optional[Settings] = None,
) -> bool:
    """
    Install and enable the nginx site, validate it and reload nginx.

    The upstream port and body size limit follow the service settings
    (``CRM_PORT``, ``CRM_UPLOAD_MAX_SIZE``) unless overridden.

    Returns:
        False if nginx is not installed, True otherwise

    Raises:
        CommandError: If the configuration test or reload fails
    """
    if not runner.exists("nginx"):
        logger.info("nginx_skipped", reason="nginx not installed")
        return False

    site = settings.nginx_site_path
    _write_config(
        site,
        render_nginx_site(
            server_name=settings.server_name,
            upstream_port=settings.service_port(service),
            client_max_body_size=service.upload_max_size if service else DEFAULT_UPLOAD_MAX_SIZE,
        ),
        force=settings.force_config,
        dry_run=settings.dry_run,
    )

    enabled = settings.nginx_sites_enabled / settings.nginx_site_name
    default_site = settings.nginx_sites_enabled / "default"

    if not settings.dry_run:
        settings.nginx_sites_enabled.mkdir(parents=True, exist_ok=True)
        if enabled.is_symlink() or enabled.exists():
            enabled.unlink()
        enabled.symlink_to(site)
        if default_site.is_symlink() or default_site.exists():
            default_site.unlink()
            logger.info("nginx_default_site_removed", path=str(default_site))

    runner.run(["nginx", "-t"])
    runner.run(["systemctl", "reload", "nginx"])
    logger.info("nginx_configured", site=str(site))
    return True


def configure_app_service(settings: DeploySettings, runner: CommandRunner) -> bool:
    """
    Install the service unit, then enable and restart it.

    Returns:
        False if systemd is not available, True otherwise
    """
    if not runner.exists("systemctl"):
        logger.warning("app_service_skipped", reason="systemctl not available")
        return False

    unit = render_systemd_unit(
        exec_start=str(settings.resolved_venv_dir / "bin" / settings.app_command),
        working_directory=settings.app_dir,
        env_file=settings.env_file,
        user=settings.app_user,
        group=settings.app_group,
        description=f"{settings.app_name} service",
    )
    _write_config(
        settings.systemd_unit_path,
        unit,
        force=settings.force_config,
        dry_run=settings.dry_run,
    )

    service = settings.app_service
    runner.run(["systemctl", "daemon-reload"])
    runner.run(["systemctl", "enable", service])
    runner.run(["systemctl", "restart", service])
    logger.info("app_service_restarted", service=service)
    return True


PHP_FPM_UNIT_PATTERN = "php*-fpm.service"


def php_fpm_units(runner: CommandRunner) -> List[str]:
    """Installed php-fpm services (versioned names such as ``php8.2-fpm``)."""
    result = runner.run(
        ["systemctl", "list-unit-files", "--type=service", "--no-legend", PHP_FPM_UNIT_PATTERN],
        check=False,
    )
    units = []
    for line in result.stdout.splitlines():
        fields = line.split()
        if fields and fnmatch(fields[0], PHP_FPM_UNIT_PATTERN):
            units.append(fields[0][: -len(".service")])
    return units


def configure_php_fpm(settings: DeploySettings, runner: CommandRunner) -> List[str]:
    """
    Restart and enable php-fpm so new PHP code is served.

    Returns:
        The php-fpm services restarted (empty when none is installed)
    """
    if not runner.exists("systemctl"):
        logger.info("php_fpm_skipped", reason="systemctl not available")
        return []

    units = [settings.php_fpm_service] if settings.php_fpm_service else php_fpm_units(runner)
    if not units:
        logger.info("php_fpm_skipped", reason="php-fpm not installed")
        return []

    for unit in units:
        runner.run(["systemctl", "restart", unit])
        runner.run(["systemctl", "enable", unit])
    logger.info("php_fpm_restarted", services=units)
    return units


def service_status(runner: CommandRunner, names: Iterable[str]) -> Dict[str, bool]:
    """
    Report whether each system service is active.

    Informational only: a stopped service is logged as a warning.
    """
    statuses = {}
    has_systemctl = runner.exists("systemctl")

    for name in names:
        if not has_systemctl:
            statuses[name] = False
            continue
        result = runner.run(["systemctl", "is-active", "--quiet", name], check=False)
        statuses[name] = result.returncode == 0
        if statuses[name]:
            logger.info("service_running", service=name)
        else:
            logger.warning("service_not_running", service=name)

    if not has_systemctl:
        logger.warning("service_status_unavailable", reason="systemctl not available")

    return statuses
