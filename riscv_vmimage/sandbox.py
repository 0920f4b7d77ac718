"""Containerized toolchain sandbox.

Builds the toolchain image from the workspace's Dockerfile and starts an
interactive shell in it with the workspace mounted at /mnt. The pipeline
never calls into this module; it only prepares the environment the other
stages' tools run in.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from riscv_vmimage.errors import BuildFailure, MissingDependency

if TYPE_CHECKING:
    from riscv_vmimage.process import ProcessExecutor, ProcessResult

logger = logging.getLogger(__name__)

RECIPE_FILENAME = "Dockerfile"
CONTAINER_WORKDIR = "/mnt"


def compose_build_command(image_name: str, runtime: str = "docker") -> list[str]:
    return [runtime, "build", "-t", image_name, "."]


def compose_enter_command(
    image_name: str,
    workspace: Path,
    runtime: str = "docker",
) -> list[str]:
    return [
        runtime,
        "run",
        "--rm",
        "-it",
        "-v",
        f"{workspace}:{CONTAINER_WORKDIR}",
        "-w",
        CONTAINER_WORKDIR,
        image_name,
        "bash",
    ]


def _require_runtime(runtime: str, executor: ProcessExecutor) -> None:
    if executor.which(runtime) is None:
        raise MissingDependency("container runtime", runtime)


def build(
    image_name: str,
    workspace: Path,
    executor: ProcessExecutor,
    runtime: str = "docker",
) -> ProcessResult:
    """Build the toolchain image tagged ``image_name``.

    Raises:
        MissingDependency: If the recipe or the container runtime is absent.
        BuildFailure: If the image build fails.
    """
    recipe = workspace / RECIPE_FILENAME
    if not recipe.is_file():
        raise MissingDependency("container recipe", recipe)
    _require_runtime(runtime, executor)

    logger.info("Building sandbox image %s", image_name)
    cmd = compose_build_command(image_name, runtime)
    result = executor.run(cmd, cwd=workspace)
    if not result.success:
        raise BuildFailure("build-sandbox", result.command_str, result.exit_code)
    return result


def enter(
    image_name: str,
    workspace: Path,
    executor: ProcessExecutor,
    runtime: str = "docker",
) -> ProcessResult:
    """Start an interactive shell in the toolchain image.

    The shell's exit status is returned in the result; a nonzero status
    from the last command typed in the shell is not treated as an error.

    Raises:
        MissingDependency: If the container runtime is absent.
    """
    _require_runtime(runtime, executor)
    logger.info("Entering sandbox %s (workspace at %s)", image_name, CONTAINER_WORKDIR)
    return executor.run(compose_enter_command(image_name, workspace, runtime))


__all__ = [
    "CONTAINER_WORKDIR",
    "RECIPE_FILENAME",
    "build",
    "compose_build_command",
    "compose_enter_command",
    "enter",
]
