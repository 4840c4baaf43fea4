"""Deployment error taxonomy.

Every failure that aborts a deployment derives from ``DeploymentError``;
the CLI turns it into a non-zero exit status.
"""

from typing import Optional, Sequence


class DeploymentError(Exception):
    """Base class for fatal deployment failures."""


class ConfigurationError(DeploymentError):
    """Required configuration is missing or invalid."""

    def __init__(self, message: str, keys: Optional[Sequence[str]] = None):
        super().__init__(message)
        self.keys = list(keys or [])


class CommandError(DeploymentError):
    """An external command exited non-zero."""

    def __init__(self, args: Sequence[str], returncode: int, stderr: str = ""):
        self.args_list = list(args)
        self.returncode = returncode
        self.stderr = stderr
        detail = f": {stderr.strip()}" if stderr and stderr.strip() else ""
        super().__init__(
            f"Command {' '.join(self.args_list)!r} exited with status {returncode}{detail}"
        )


class MigrationError(DeploymentError):
    """A schema migration tool failed."""


class HealthCheckError(DeploymentError):
    """The service did not report healthy."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
