"""
Dependency installation.

System packages come from apt. Application dependencies are installed per
ecosystem, each only when its manifest is present in the application
directory:

- Python: ``requirements.txt`` or ``pyproject.toml``
- Node: ``package.json`` (``npm ci`` when a lockfile exists)
- PHP: ``composer.json``
"""

import json
from pathlib import Path
from typing import List, Mapping, Optional, Sequence

import structlog

from deploy.src.runner import CommandRunner

logger = structlog.get_logger(__name__)


def install_system_packages(runner: CommandRunner, packages: Sequence[str]) -> bool:
    """
    Install system packages with apt-get.

    Returns:
        True if packages were installed, False if skipped
    """
    if not packages:
        logger.info("system_packages_skipped", reason="no packages configured")
        return False

    if not runner.exists("apt-get"):
        logger.warning("system_packages_skipped", reason="apt-get not available")
        return False

    runner.run(["apt-get", "update", "-qq"])
    runner.run(["apt-get", "install", "-y", *packages])
    logger.info("system_packages_installed", packages=list(packages))
    return True


def _has_build_script(package_json: Path) -> bool:
    try:
        manifest = json.loads(package_json.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning("package_json_unreadable", path=str(package_json), error=str(e))
        return False
    return "build" in (manifest.get("scripts") or {})


def install_python_dependencies(
    runner: CommandRunner,
    app_dir: Path,
    pip: str = "pip",
    env: Optional[Mapping[str, str]] = None,
) -> bool:
    app_dir = Path(app_dir)

    if (app_dir / "requirements.txt").is_file():
        runner.run([pip, "install", "-r", "requirements.txt"], cwd=app_dir, env=env)
    elif (app_dir / "pyproject.toml").is_file():
        runner.run([pip, "install", "."], cwd=app_dir, env=env)
    else:
        logger.info("python_dependencies_skipped", reason="no requirements.txt or pyproject.toml")
        return False

    logger.info("python_dependencies_installed", app_dir=str(app_dir))
    return True


def install_node_dependencies(
    runner: CommandRunner,
    app_dir: Path,
    npm: str = "npm",
    env: Optional[Mapping[str, str]] = None,
) -> bool:
    app_dir = Path(app_dir)
    package_json = app_dir / "package.json"

    if not package_json.is_file():
        logger.info("node_dependencies_skipped", reason="no package.json")
        return False

    if (app_dir / "package-lock.json").is_file():
        runner.run([npm, "ci", "--omit=dev"], cwd=app_dir, env=env)
    else:
        runner.run([npm, "install", "--omit=dev"], cwd=app_dir, env=env)

    if _has_build_script(package_json):
        runner.run([npm, "run", "build"], cwd=app_dir, env=env)

    logger.info("node_dependencies_installed", app_dir=str(app_dir))
    return True


def install_php_dependencies(
    runner: CommandRunner,
    app_dir: Path,
    composer: str = "composer",
    env: Optional[Mapping[str, str]] = None,
) -> bool:
    app_dir = Path(app_dir)

    if not (app_dir / "composer.json").is_file():
        logger.info("php_dependencies_skipped", reason="no composer.json")
        return False

    runner.run(
        [composer, "install", "--no-dev", "--optimize-autoloader"],
        cwd=app_dir,
        env=env,
    )
    logger.info("php_dependencies_installed", app_dir=str(app_dir))
    return True


def install_app_dependencies(
    runner: CommandRunner,
    app_dir: Path,
    pip: str = "pip",
    npm: str = "npm",
    composer: str = "composer",
    env: Optional[Mapping[str, str]] = None,
) -> List[str]:
    """
    Install every ecosystem's dependencies that the app declares.

    Returns:
        Names of the ecosystems that were installed
    """
    installed = []
    if install_python_dependencies(runner, app_dir, pip=pip, env=env):
        installed.append("python")
    if install_node_dependencies(runner, app_dir, npm=npm, env=env):
        installed.append("node")
    if install_php_dependencies(runner, app_dir, composer=composer, env=env):
        installed.append("php")
    return installed
