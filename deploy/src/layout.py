"""Application directory layout and permissions."""

import os
import shutil
from fnmatch import fnmatch
from pathlib import Path
from typing import Dict, Optional

import structlog

logger = structlog.get_logger(__name__)

DIR_MODE = 0o755
FILE_MODE = 0o644

SECRET_PATTERNS = ("*.env*", "*.key")
SECRET_MODE = 0o600

# Applied after the blanket modes above
SPECIAL_DIRS: Dict[str, int] = {
    "uploads": 0o775,
    "logs": 0o775,
    "backups": 0o775,
    "tmp": 0o777,
}


def is_root() -> bool:
    return hasattr(os, "geteuid") and os.geteuid() == 0


def is_secret_file(name: str) -> bool:
    return any(fnmatch(name, pattern) for pattern in SECRET_PATTERNS)


def _apply_modes(app_dir: Path) -> None:
    os.chmod(app_dir, DIR_MODE)
    for root, dirs, files in os.walk(app_dir):
        for d in dirs:
            path = os.path.join(root, d)
            if not os.path.islink(path):
                os.chmod(path, DIR_MODE)
        for f in files:
            path = os.path.join(root, f)
            if not os.path.islink(path):
                os.chmod(path, SECRET_MODE if is_secret_file(f) else FILE_MODE)

    for name, mode in SPECIAL_DIRS.items():
        os.chmod(app_dir / name, mode)


def _apply_ownership(app_dir: Path, user: str, group: Optional[str]) -> None:
    shutil.chown(app_dir, user=user, group=group)
    for root, dirs, files in os.walk(app_dir):
        for entry in dirs + files:
            path = os.path.join(root, entry)
            if not os.path.islink(path):
                shutil.chown(path, user=user, group=group)


def setup_app_directory(
    app_dir: Path,
    user: Optional[str] = None,
    group: Optional[str] = None,
) -> Path:
    """
    Create the application tree and normalise its permissions.

    Creates ``uploads/``, ``logs/``, ``backups/`` and ``tmp/``. Directories
    become 0755 and files 0644, except secret files (``*.env*``, ``*.key``)
    which become 0600. The writable directories then get their
    own modes. Ownership is handed to ``user``/``group`` only when running
    as root; otherwise it is left alone with a warning.

    Returns:
        The application directory
    """
    app_dir = Path(app_dir)
    app_dir.mkdir(parents=True, exist_ok=True)
    for name in SPECIAL_DIRS:
        (app_dir / name).mkdir(exist_ok=True)

    _apply_modes(app_dir)

    if user and is_root():
        _apply_ownership(app_dir, user, group)
        logger.info("ownership_applied", app_dir=str(app_dir), user=user, group=group)
    elif user:
        logger.warning(
            "ownership_skipped_not_root",
            app_dir=str(app_dir),
            user=user,
            group=group,
        )

    logger.info("app_directory_ready", app_dir=str(app_dir))
    return app_dir
