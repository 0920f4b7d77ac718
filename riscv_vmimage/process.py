"""Process execution for pipeline stages.

This module handles:
- Running external commands synchronously in a given working directory
- Reaping children on every exit path, including KeyboardInterrupt
- Optional per-command timeouts and output capture

Stages never call subprocess directly; they receive a ProcessExecutor so
tests can substitute a fake that records commands instead of spawning them.
"""

from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from riscv_vmimage.errors import MissingDependency, PipelineError

logger = logging.getLogger(__name__)

# Seconds to wait after SIGTERM before escalating to SIGKILL
TERMINATE_GRACE_SECONDS = 5.0

# Conventional exit status for a command killed by a timeout
TIMEOUT_EXIT_CODE = 124


@dataclass
class ProcessResult:
    """Result of a completed command.

    Attributes:
        command: The argv that was executed.
        exit_code: Process exit status.
        cwd: Working directory the command ran in.
        stdout: Captured standard output (None when streamed to the console).
        stderr: Captured standard error (None when streamed to the console).
    """

    command: list[str]
    exit_code: int
    cwd: Path | None = None
    stdout: str | None = None
    stderr: str | None = None

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def command_str(self) -> str:
        return shlex.join(self.command)


class ProcessExecutor(Protocol):
    """Narrow capability: run a command, report its exit status and output."""

    def run(
        self,
        command: Sequence[str],
        cwd: Path | None = None,
        *,
        capture: bool = False,
        timeout: float | None = None,
    ) -> ProcessResult: ...

    def which(self, name: str) -> str | None: ...


@contextmanager
def managed_process(
    command: Sequence[str],
    cwd: Path | None = None,
    capture: bool = False,
) -> Iterator[subprocess.Popen[str]]:
    """Spawn a child process and guarantee it is reaped.

    If the body exits while the child is still running (interrupt, timeout,
    any exception), the child is terminated, then killed after
    TERMINATE_GRACE_SECONDS.

    Args:
        command: Command argv.
        cwd: Working directory for the child.
        capture: Pipe stdout/stderr instead of inheriting the console.

    Yields:
        The running Popen instance.
    """
    pipe = subprocess.PIPE if capture else None
    proc = subprocess.Popen(
        list(command),
        cwd=cwd,
        stdout=pipe,
        stderr=pipe,
        text=True,
    )
    try:
        yield proc
    finally:
        if proc.poll() is None:
            logger.warning("Terminating %s (pid %d)", command[0], proc.pid)
            proc.terminate()
            try:
                proc.wait(timeout=TERMINATE_GRACE_SECONDS)
            except subprocess.TimeoutExpired:
                logger.warning("Killing %s (pid %d)", command[0], proc.pid)
                proc.kill()
                proc.wait()


class SubprocessExecutor:
    """ProcessExecutor backed by the subprocess module."""

    def run(
        self,
        command: Sequence[str],
        cwd: Path | None = None,
        *,
        capture: bool = False,
        timeout: float | None = None,
    ) -> ProcessResult:
        """Run a command to completion.

        Args:
            command: Command argv.
            cwd: Working directory (the parent's cwd is never changed).
            capture: Capture output instead of streaming it to the console.
            timeout: Seconds before the command is terminated (None = no limit).

        Returns:
            ProcessResult with the exit status.

        Raises:
            MissingDependency: If the working directory or the executable
                is missing.
            PipelineError: If the command times out.
        """
        cmd_str = shlex.join(command)
        logger.info("Executing: %s", cmd_str)
        if cwd is not None:
            if not cwd.is_dir():
                raise MissingDependency("working directory", cwd)
            logger.debug("Working directory: %s", cwd)

        try:
            with managed_process(command, cwd=cwd, capture=capture) as proc:
                try:
                    stdout, stderr = proc.communicate(timeout=timeout)
                except subprocess.TimeoutExpired as e:
                    raise PipelineError(
                        f"'{cmd_str}' timed out after {timeout} seconds",
                        code="command_timeout",
                        exit_code=TIMEOUT_EXIT_CODE,
                    ) from e
        except FileNotFoundError as e:
            raise MissingDependency("executable", command[0]) from e
        except OSError as e:
            raise PipelineError(
                f"Failed to execute '{cmd_str}': {e}",
                code="execution_error",
            ) from e

        if proc.returncode != 0:
            logger.error("'%s' exited with status %d", cmd_str, proc.returncode)

        return ProcessResult(
            command=list(command),
            exit_code=proc.returncode,
            cwd=cwd,
            stdout=stdout,
            stderr=stderr,
        )

    def which(self, name: str) -> str | None:
        return shutil.which(name)


__all__ = [
    "TERMINATE_GRACE_SECONDS",
    "TIMEOUT_EXIT_CODE",
    "ProcessExecutor",
    "ProcessResult",
    "SubprocessExecutor",
    "managed_process",
]
