"""
External command execution.

All deployment steps shell out through ``CommandRunner`` so that:
- every command is logged before and after it runs
- a non-zero exit raises ``CommandError`` (fail-fast)
- dry runs log the command and report success without executing
- tests can substitute a recording runner
"""

import os
import shutil
import subprocess
import time
from pathlib import Path
from typing import Mapping, Optional, Sequence, Union

import structlog

from deploy.src.errors import CommandError

logger = structlog.get_logger(__name__)

PathLike = Union[str, Path]


class CommandRunner:
    """Runs external tools."""

    def __init__(self, dry_run: bool = False, timeout: Optional[float] = None):
        """
        Args:
            dry_run: Log commands instead of executing them
            timeout: Optional per-command timeout in seconds
        """
        self.dry_run = dry_run
        self.timeout = timeout

    def exists(self, tool: str) -> bool:
        """Whether ``tool`` is on PATH."""
        return shutil.which(tool) is not None

    def run(
        self,
        args: Sequence[str],
        cwd: Optional[PathLike] = None,
        env: Optional[Mapping[str, str]] = None,
        check: bool = True,
        input: Optional[str] = None,
    ) -> subprocess.CompletedProcess:
        """
        Run a command and capture its output.

        Args:
            args: Command and arguments
            cwd: Working directory
            env: Full environment for the child (defaults to os.environ)
            check: Raise CommandError on non-zero exit
            input: Text piped to stdin

        Returns:
            Completed process

        Raises:
            CommandError: If the command exits non-zero and ``check`` is set,
                or the executable cannot be started
        """
        args = [str(a) for a in args]

        if self.dry_run:
            logger.info("command_skipped_dry_run", command=args, cwd=str(cwd) if cwd else None)
            return subprocess.CompletedProcess(args, 0, stdout="", stderr="")

        logger.info("command_started", command=args, cwd=str(cwd) if cwd else None)
        start = time.perf_counter()

        try:
            result = subprocess.run(
                args,
                cwd=cwd,
                env=dict(env) if env is not None else os.environ.copy(),
                input=input,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            logger.error("command_not_found", command=args, error=str(e))
            raise CommandError(args, 127, str(e)) from e
        except subprocess.TimeoutExpired as e:
            logger.error("command_timed_out", command=args, timeout=self.timeout)
            raise CommandError(args, -1, f"timed out after {self.timeout}s") from e

        duration = time.perf_counter() - start

        if result.returncode != 0:
            log = logger.error if check else logger.debug
            log(
                "command_failed",
                command=args,
                returncode=result.returncode,
                stderr=result.stderr.strip()[-2000:],
                duration=f"{duration:.3f}s",
            )
            if check:
                raise CommandError(args, result.returncode, result.stderr)
        else:
            logger.info("command_completed", command=args, duration=f"{duration:.3f}s")

        return result
