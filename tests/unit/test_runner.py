"""
Unit tests for external command execution.

These run real, harmless commands from the current interpreter.
"""

import sys

import pytest

from deploy.src.errors import CommandError
from deploy.src.runner import CommandRunner


class TestCommandRunner:
    """Test subprocess wrapper"""

    def test_captures_output(self):
        result = CommandRunner().run([sys.executable, "-c", "print('hello')"])

        assert result.returncode == 0
        assert result.stdout.strip() == "hello"

    def test_non_zero_exit_raises(self):
        with pytest.raises(CommandError) as exc_info:
            CommandRunner().run(
                [sys.executable, "-c", "import sys; sys.stderr.write('boom'); sys.exit(3)"]
            )

        assert exc_info.value.returncode == 3
        assert "boom" in exc_info.value.stderr

    def test_non_zero_exit_without_check(self):
        result = CommandRunner().run([sys.executable, "-c", "raise SystemExit(2)"], check=False)

        assert result.returncode == 2

    def test_missing_executable(self):
        with pytest.raises(CommandError) as exc_info:
            CommandRunner().run(["definitely-not-a-real-tool-crm"])

        assert exc_info.value.returncode == 127

    def test_env_and_cwd(self, tmp_path):
        result = CommandRunner().run(
            [sys.executable, "-c", "import os; print(os.environ['CRM_MARKER'], os.getcwd())"],
            cwd=tmp_path,
            env={"CRM_MARKER": "set", "PATH": "/usr/bin:/bin"},
        )

        marker, cwd = result.stdout.split()
        assert marker == "set"
        assert cwd == str(tmp_path.resolve())

    def test_dry_run_does_not_execute(self, tmp_path):
        target = tmp_path / "created"

        result = CommandRunner(dry_run=True).run(["touch", str(target)])

        assert result.returncode == 0
        assert not target.exists()

    def test_exists(self):
        runner = CommandRunner()

        assert runner.exists("sh")
        assert not runner.exists("definitely-not-a-real-tool-crm")
