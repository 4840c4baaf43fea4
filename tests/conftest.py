"""Shared fixtures and fakes for the CRM test suite."""

import logging
import subprocess
from typing import Dict, List, Optional, Sequence, Set, Tuple

import pytest
import requests

from api.src.config import Settings
from api.src.datastores import DatastoreUnavailableError
from deploy.src.config import DeploySettings
from deploy.src.errors import CommandError


VALID_SECRET = "s" * 48


# ============================================================================
# SERVICE FAKES
# ============================================================================


class FakeDatabase:
    """Stands in for the asyncpg-backed Database."""

    name = "database"

    def __init__(self, healthy: bool = True, size: int = 4, idle: int = 3):
        self.healthy = healthy
        self.size = size
        self.idle = idle
        self.pool = None
        self.connected = False
        self.closed = False

    async def connect(self) -> None:
        self.connected = True
        self.pool = object()

    async def close(self) -> None:
        self.closed = True
        self.pool = None

    async def ping(self) -> None:
        if not self.healthy:
            raise DatastoreUnavailableError("connection refused")

    def pool_stats(self) -> Tuple[int, int]:
        return (self.size, self.idle) if self.pool is not None else (0, 0)


class FakeCache:
    """Stands in for the Redis-backed Cache."""

    name = "cache"

    def __init__(self, healthy: bool = True):
        self.healthy = healthy
        self.connected = False
        self.closed = False

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        self.closed = True

    async def ping(self) -> None:
        if not self.healthy:
            raise DatastoreUnavailableError("cache unreachable")


# ============================================================================
# DEPLOYMENT FAKES
# ============================================================================


class FakeRunner:
    """Records commands instead of executing them.

    ``available`` lists the tools ``exists()`` reports as installed.
    ``failures`` maps a command prefix to the exit status it should return.
    ``outputs`` maps a command prefix to the stdout it should return.
    """

    def __init__(
        self,
        available: Optional[Set[str]] = None,
        failures: Optional[Dict[Tuple[str, ...], int]] = None,
        dry_run: bool = False,
        outputs: Optional[Dict[Tuple[str, ...], str]] = None,
    ):
        self.available = set(available or ())
        self.failures = dict(failures or {})
        self.outputs = dict(outputs or {})
        self.dry_run = dry_run
        self.commands: List[List[str]] = []
        self.calls: List[Dict] = []

    def exists(self, tool: str) -> bool:
        return tool in self.available

    def _lookup(self, table: Dict, args: List[str], default):
        for prefix, value in table.items():
            if tuple(args[: len(prefix)]) == prefix:
                return value
        return default

    def run(self, args: Sequence[str], cwd=None, env=None, check=True, input=None):
        args = [str(a) for a in args]
        self.commands.append(args)
        self.calls.append({"args": args, "cwd": cwd, "env": env, "check": check})
        code = self._lookup(self.failures, args, 0)
        if code != 0 and check:
            raise CommandError(args, code, "simulated failure")
        stdout = self._lookup(self.outputs, args, "")
        return subprocess.CompletedProcess(args, code, stdout=stdout, stderr="")

    def ran(self, *prefix: str) -> bool:
        return any(tuple(c[: len(prefix)]) == prefix for c in self.commands)


class FakeResponse:
    def __init__(self, status_code: int):
        self.status_code = status_code


class FakeSession:
    """requests.Session stand-in answering from a script.

    Each item is a status code or an exception instance to raise.
    The last item repeats once the script is exhausted.
    """

    def __init__(self, script):
        self.script = list(script)
        self.calls: List[Tuple[str, float]] = []

    def get(self, url: str, timeout: float = None):
        self.calls.append((url, timeout))
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, Exception):
            raise item
        return FakeResponse(item)

    def close(self) -> None:
        pass


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture(autouse=True)
def restore_root_logging():
    """Undo handlers installed by configure_logging during a test."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def settings() -> Settings:
    """Service settings suitable for tests (no .env, no tracing)."""
    return Settings(
        _env_file=None,
        secret_key=VALID_SECRET,
        database_password="test-password",
        environment="test",
        log_format="text",
        log_level="DEBUG",
        tracing_enabled=False,
    )


@pytest.fixture
def fake_database() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def fake_cache() -> FakeCache:
    return FakeCache()


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def app_dir(tmp_path):
    """An application directory with a valid .env."""
    directory = tmp_path / "app"
    directory.mkdir()
    (directory / ".env").write_text(
        "CRM_ENVIRONMENT=production\n"
        f"CRM_SECRET_KEY={VALID_SECRET}\n"
        "CRM_DATABASE_PASSWORD=db-password\n"
        "CRM_DATABASE_HOST=db.internal\n"
    )
    return directory


@pytest.fixture
def deploy_settings(tmp_path, app_dir) -> DeploySettings:
    """Deployment settings confined to a temporary directory."""
    etc = tmp_path / "etc"
    return DeploySettings(
        app_dir=app_dir,
        app_user=None,
        app_group=None,
        backup_dir=tmp_path / "backups",
        log_file=None,
        health_url="http://localhost:3000/health",
        health_retries=3,
        health_interval=0,
        health_timeout=1,
        systemd_unit_dir=etc / "systemd",
        nginx_sites_available=etc / "nginx" / "sites-available",
        nginx_sites_enabled=etc / "nginx" / "sites-enabled",
        skip_system_packages=True,
    )


@pytest.fixture
def healthy_session() -> FakeSession:
    return FakeSession([200])


@pytest.fixture
def refused_session() -> FakeSession:
    return FakeSession([requests.ConnectionError("connection refused")])
