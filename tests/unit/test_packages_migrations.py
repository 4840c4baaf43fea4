"""
Unit tests for dependency installation and migration detection.

All commands go through a recording runner; nothing is executed.
"""

import json

import pytest

from conftest import FakeRunner
from deploy.src.errors import CommandError, MigrationError
from deploy.src.migrations import detect_migration_tools, run_migrations
from deploy.src.packages import (
    install_app_dependencies,
    install_node_dependencies,
    install_system_packages,
)


# ============================================================================
# SYSTEM PACKAGES
# ============================================================================


class TestSystemPackages:
    """Test apt-get installation"""

    def test_installs_with_apt(self):
        runner = FakeRunner(available={"apt-get"})

        assert install_system_packages(runner, ["nginx", "redis-tools"])
        assert runner.commands == [
            ["apt-get", "update", "-qq"],
            ["apt-get", "install", "-y", "nginx", "redis-tools"],
        ]

    def test_skipped_without_apt(self):
        runner = FakeRunner()

        assert not install_system_packages(runner, ["nginx"])
        assert runner.commands == []

    def test_failure_propagates(self):
        runner = FakeRunner(available={"apt-get"}, failures={("apt-get", "install"): 100})

        with pytest.raises(CommandError):
            install_system_packages(runner, ["nginx"])


# ============================================================================
# APPLICATION DEPENDENCIES
# ============================================================================


class TestAppDependencies:
    """Test per-ecosystem installation"""

    def test_nothing_to_install(self, tmp_path):
        runner = FakeRunner()

        assert install_app_dependencies(runner, tmp_path) == []
        assert runner.commands == []

    def test_python_requirements(self, tmp_path):
        (tmp_path / "requirements.txt").write_text("fastapi\n")
        runner = FakeRunner()

        assert install_app_dependencies(runner, tmp_path) == ["python"]
        assert runner.commands == [["pip", "install", "-r", "requirements.txt"]]
        assert runner.calls[0]["cwd"] == tmp_path

    def test_python_pyproject(self, tmp_path):
        (tmp_path / "pyproject.toml").write_text("[project]\n")
        runner = FakeRunner()

        install_app_dependencies(runner, tmp_path, pip="/opt/venv/bin/pip")

        assert runner.commands == [["/opt/venv/bin/pip", "install", "."]]

    def test_node_with_lockfile_and_build(self, tmp_path):
        (tmp_path / "package.json").write_text(json.dumps({"scripts": {"build": "tsc"}}))
        (tmp_path / "package-lock.json").write_text("{}")
        runner = FakeRunner()

        assert install_node_dependencies(runner, tmp_path)
        assert runner.commands == [
            ["npm", "ci", "--omit=dev"],
            ["npm", "run", "build"],
        ]

    def test_node_without_lockfile(self, tmp_path):
        (tmp_path / "package.json").write_text(json.dumps({"scripts": {"start": "node server.js"}}))
        runner = FakeRunner()

        install_node_dependencies(runner, tmp_path)

        assert runner.commands == [["npm", "install", "--omit=dev"]]

    def test_php_composer(self, tmp_path):
        (tmp_path / "composer.json").write_text("{}")
        runner = FakeRunner()

        assert install_app_dependencies(runner, tmp_path) == ["php"]
        assert runner.commands == [["composer", "install", "--no-dev", "--optimize-autoloader"]]

    def test_env_passed_through(self, tmp_path):
        (tmp_path / "requirements.txt").write_text("")
        runner = FakeRunner()
        env = {"CRM_SECRET_KEY": "x"}

        install_app_dependencies(runner, tmp_path, env=env)

        assert runner.calls[0]["env"] == env


# ============================================================================
# MIGRATIONS
# ============================================================================


class TestMigrations:
    """Test migration tool detection and execution"""

    def test_no_tool_detected(self, tmp_path):
        runner = FakeRunner()

        assert run_migrations(runner, tmp_path) == []
        assert runner.commands == []

    def test_detection_order(self, tmp_path):
        (tmp_path / "alembic.ini").write_text("")
        (tmp_path / "knexfile.js").write_text("")
        (tmp_path / "artisan").write_text("")
        runner = FakeRunner(available={"npx"})

        tools = detect_migration_tools(tmp_path, runner, override="make migrate")

        assert [t.name for t in tools] == ["custom", "alembic", "knex", "artisan"]
        assert tools[0].command == ["make", "migrate"]

    def test_knex_requires_npx(self, tmp_path):
        (tmp_path / "knexfile.js").write_text("")

        assert detect_migration_tools(tmp_path, FakeRunner()) == []

    def test_runs_with_environment(self, tmp_path):
        (tmp_path / "alembic.ini").write_text("")
        runner = FakeRunner()
        env = {"CRM_DATABASE_PASSWORD": "pw"}

        assert run_migrations(runner, tmp_path, env=env) == ["alembic"]
        assert runner.calls[0]["args"] == ["alembic", "upgrade", "head"]
        assert runner.calls[0]["env"] == env
        assert runner.calls[0]["cwd"] == tmp_path

    def test_failure_raises_migration_error(self, tmp_path):
        (tmp_path / "artisan").write_text("")
        runner = FakeRunner(failures={("php", "artisan"): 1})

        with pytest.raises(MigrationError, match="artisan"):
            run_migrations(runner, tmp_path)
