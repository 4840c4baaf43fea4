"""
Deployment tool configuration using Pydantic Settings.

Provides configuration for:
- Target layout (application, backup and log locations, ownership)
- Backup retention
- Final health check budget
- Service management (systemd unit, nginx site)
- Optional steps (system packages, firewall)

Settings are read from environment variables with the prefix "CRM_DEPLOY_";
CLI options override them.
"""

from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from api.src.config import ENVIRONMENTS, Settings


DEFAULT_SERVICE_PORT = Settings.model_fields["port"].default

DEFAULT_SYSTEM_PACKAGES = [
    "curl",
    "git",
    "unzip",
    "nginx",
    "postgresql-client",
    "redis-tools",
    "logrotate",
    "fail2ban",
    "ufw",
]


class DeploySettings(BaseSettings):
    """Settings for one deployment run."""

    # =========================================================================
    # Target
    # =========================================================================

    app_name: str = Field(default="Real Estate CRM", description="Application name")
    environment: str = Field(
        default="production",
        description="Deployment environment: development|staging|production|test"
    )
    app_dir: Path = Field(
        default=Path("/var/www/real-estate-crm"),
        description="Application directory"
    )
    app_user: Optional[str] = Field(
        default="www-data",
        description="Owner of the application tree (None to leave ownership alone)"
    )
    app_group: Optional[str] = Field(
        default="www-data",
        description="Group of the application tree"
    )

    # =========================================================================
    # Backups and Logs
    # =========================================================================

    backup_dir: Path = Field(
        default=Path("/var/backups/crm"),
        description="Where deployment backups are kept"
    )
    backup_keep: int = Field(
        default=5,
        description="Number of most-recent backups to retain",
        ge=1,
        le=100
    )
    log_file: Optional[Path] = Field(
        default=Path("/var/log/crm-deploy.log"),
        description="Deployment log file"
    )

    # =========================================================================
    # Health Check
    # =========================================================================

    health_url: Optional[str] = Field(
        default=None,
        description="Service health route polled after deployment (defaults to the service port on localhost)"
    )
    health_timeout: float = Field(
        default=5.0,
        description="Per-attempt HTTP timeout (seconds)",
        gt=0
    )
    health_retries: int = Field(
        default=5,
        description="Attempts before the health check is declared failed",
        ge=1,
        le=100
    )
    health_interval: float = Field(
        default=3.0,
        description="Wait between attempts (seconds)",
        ge=0
    )
    monitored_services: List[str] = Field(
        default=["nginx", "postgresql", "redis-server"],
        description="System services reported on after deployment"
    )

    # =========================================================================
    # Service Management
    # =========================================================================

    app_service: str = Field(default="crm-app", description="systemd unit name of the service")
    app_command: str = Field(
        default="crm-api",
        description="Command line the service unit starts (relative to the venv bin dir); crm-api binds CRM_HOST:CRM_PORT"
    )
    venv_dir: Optional[Path] = Field(
        default=None,
        description="Virtualenv holding the service (defaults to <app_dir>/.venv)"
    )
    systemd_unit_dir: Path = Field(
        default=Path("/etc/systemd/system"),
        description="Directory for the service unit"
    )
    nginx_sites_available: Path = Field(
        default=Path("/etc/nginx/sites-available"),
        description="nginx sites-available directory"
    )
    nginx_sites_enabled: Path = Field(
        default=Path("/etc/nginx/sites-enabled"),
        description="nginx sites-enabled directory"
    )
    nginx_site_name: str = Field(default="crm", description="nginx site file name")
    server_name: str = Field(default="_", description="nginx server_name")
    upstream_port: Optional[int] = Field(
        default=None,
        description="Port nginx proxies to (defaults to the service's CRM_PORT)",
        gt=0,
        lt=65536
    )
    force_config: bool = Field(
        default=False,
        description="Rewrite nginx site and unit files even when present"
    )
    php_fpm_service: Optional[str] = Field(
        default=None,
        description="php-fpm unit to restart (detected from php*-fpm.service when unset)"
    )

    # =========================================================================
    # Optional Steps
    # =========================================================================

    skip_system_packages: bool = Field(
        default=False,
        description="Skip apt-get installation of system packages"
    )
    system_packages: List[str] = Field(
        default_factory=lambda: list(DEFAULT_SYSTEM_PACKAGES),
        description="System packages to install"
    )
    firewall_enabled: bool = Field(default=True, description="Configure ufw")
    migration_command: Optional[str] = Field(
        default=None,
        description="Explicit migration command (overrides tool detection)"
    )
    pip_executable: str = Field(default="pip", description="pip used for Python dependencies")
    npm_executable: str = Field(default="npm", description="npm used for Node dependencies")
    composer_executable: str = Field(default="composer", description="composer used for PHP dependencies")

    # =========================================================================
    # Run Behaviour
    # =========================================================================

    dry_run: bool = Field(default=False, description="Log commands instead of running them")
    metrics_textfile: Optional[Path] = Field(
        default=None,
        description="Write deployment metrics here for the node-exporter textfile collector"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Same environments the service accepts."""
        if v.lower() not in ENVIRONMENTS:
            raise ValueError(f"unknown environment {v!r}")
        return v.lower()

    @property
    def env_file(self) -> Path:
        return self.app_dir / ".env"

    @property
    def env_template(self) -> Path:
        return self.app_dir / ".env.example"

    @property
    def resolved_venv_dir(self) -> Path:
        return self.venv_dir or self.app_dir / ".venv"

    @property
    def nginx_site_path(self) -> Path:
        return self.nginx_sites_available / self.nginx_site_name

    @property
    def systemd_unit_path(self) -> Path:
        return self.systemd_unit_dir / f"{self.app_service}.service"

    def service_port(self, service: Optional[Settings] = None) -> int:
        """Port nginx and the health check should reach the service on."""
        if self.upstream_port is not None:
            return self.upstream_port
        if service is not None:
            return service.port
        return DEFAULT_SERVICE_PORT

    def resolve_health_url(self, service: Optional[Settings] = None) -> str:
        if self.health_url:
            return self.health_url
        return f"http://localhost:{self.service_port(service)}/health"

    model_config = SettingsConfigDict(
        env_prefix="CRM_DEPLOY_",
        case_sensitive=False,
        extra="ignore",
    )
