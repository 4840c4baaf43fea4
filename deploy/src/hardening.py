"""Host hardening: firewall, fail2ban and secret file permissions."""

import os
from pathlib import Path
from typing import List

import structlog

from deploy.src.layout import SECRET_MODE, SECRET_PATTERNS
from deploy.src.runner import CommandRunner

logger = structlog.get_logger(__name__)

FIREWALL_COMMANDS = [
    ["ufw", "--force", "reset"],
    ["ufw", "default", "deny", "incoming"],
    ["ufw", "default", "allow", "outgoing"],
    ["ufw", "allow", "ssh"],
    ["ufw", "allow", "http"],
    ["ufw", "allow", "https"],
    ["ufw", "--force", "enable"],
]


def configure_firewall(runner: CommandRunner) -> bool:
    """Deny inbound except SSH/HTTP/HTTPS. Skipped when ufw is absent."""
    if not runner.exists("ufw"):
        logger.info("firewall_skipped", reason="ufw not installed")
        return False

    for command in FIREWALL_COMMANDS:
        runner.run(command)
    logger.info("firewall_configured")
    return True


def configure_fail2ban(runner: CommandRunner) -> bool:
    if not runner.exists("fail2ban-client"):
        logger.info("fail2ban_skipped", reason="fail2ban not installed")
        return False

    runner.run(["systemctl", "enable", "fail2ban"])
    runner.run(["systemctl", "start", "fail2ban"])
    logger.info("fail2ban_enabled")
    return True


def restrict_secret_files(app_dir: Path, dry_run: bool = False) -> List[Path]:
    """
    Restrict environment and key files under ``app_dir`` to their owner.

    Returns:
        Files whose mode was set to 0600
    """
    app_dir = Path(app_dir)
    if not app_dir.is_dir():
        return []

    restricted = []
    seen = set()
    for pattern in SECRET_PATTERNS:
        for path in sorted(app_dir.rglob(pattern)):
            if path in seen or not path.is_file() or path.is_symlink():
                continue
            seen.add(path)
            if not dry_run:
                os.chmod(path, SECRET_MODE)
            restricted.append(path)

    logger.info("secret_files_restricted", count=len(restricted))
    return restricted


def apply_hardening(
    runner: CommandRunner,
    app_dir: Path,
    firewall_enabled: bool = True,
) -> None:
    if firewall_enabled:
        configure_firewall(runner)
    else:
        logger.info("firewall_skipped", reason="disabled by configuration")

    configure_fail2ban(runner)
    restrict_secret_files(app_dir, dry_run=runner.dry_run)
