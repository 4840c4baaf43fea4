"""
Database migrations.

Migration tools are detected from marker files in the application directory
and run in a fixed order. An explicit command configured by the operator is
run before any detected tool.
"""

import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Optional

import structlog

from deploy.src.errors import CommandError, MigrationError
from deploy.src.runner import CommandRunner

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class MigrationTool:
    name: str
    command: List[str]


def detect_migration_tools(
    app_dir: Path,
    runner: CommandRunner,
    override: Optional[str] = None,
) -> List[MigrationTool]:
    """Migration tools that apply to ``app_dir``, in run order."""
    app_dir = Path(app_dir)
    tools = []

    if override:
        tools.append(MigrationTool("custom", shlex.split(override)))

    if (app_dir / "alembic.ini").is_file():
        tools.append(MigrationTool("alembic", ["alembic", "upgrade", "head"]))

    if (app_dir / "knexfile.js").is_file() and runner.exists("npx"):
        tools.append(MigrationTool("knex", ["npx", "knex", "migrate:latest"]))

    if (app_dir / "artisan").is_file():
        tools.append(MigrationTool("artisan", ["php", "artisan", "migrate", "--force"]))

    return tools


def run_migrations(
    runner: CommandRunner,
    app_dir: Path,
    env: Optional[Mapping[str, str]] = None,
    override: Optional[str] = None,
) -> List[str]:
    """
    Run every detected migration tool.

    Args:
        runner: Command runner
        app_dir: Application directory (working directory for the tools)
        env: Environment for the tools (the loaded ``.env`` values)
        override: Explicit migration command

    Returns:
        Names of the tools that ran (empty when none were detected)

    Raises:
        MigrationError: If any tool exits non-zero
    """
    tools = detect_migration_tools(app_dir, runner, override=override)

    if not tools:
        logger.info("migrations_skipped", reason="no migration tool detected", app_dir=str(app_dir))
        return []

    completed = []
    for tool in tools:
        logger.info("migration_started", tool=tool.name, command=tool.command)
        try:
            runner.run(tool.command, cwd=app_dir, env=env)
        except CommandError as e:
            logger.error("migration_failed", tool=tool.name, returncode=e.returncode)
            raise MigrationError(f"{tool.name} migrations failed: {e}") from e
        completed.append(tool.name)
        logger.info("migration_completed", tool=tool.name)

    return completed
