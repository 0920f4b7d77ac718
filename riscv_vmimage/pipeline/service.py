"""Pipeline service module.

This module provides the high-level pipeline API:
- build_stage_graph(): the stage graph for a workspace
- Pipeline: named operations (fmt, build-all, provision-image, run, clean,
  sandbox build/enter) over that graph

Stage order for ``run``::

    format -> build-user -> build-kernel -> build-all -> provision-image -> run
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from riscv_vmimage import emulator, sandbox
from riscv_vmimage.errors import WorkspaceFileError
from riscv_vmimage.pipeline import artifacts, image
from riscv_vmimage.pipeline.graph import Stage, StageGraph
from riscv_vmimage.pipeline.runner import PipelineRunner
from riscv_vmimage.pipeline.stamps import StampStore
from riscv_vmimage.pipeline.toolchain import (
    FORMAT_COMMAND,
    KERNEL_BUILD_COMMAND,
    KERNEL_CLEAN_COMMAND,
    USER_BUILD_COMMAND,
)

if TYPE_CHECKING:
    from riscv_vmimage.layout import WorkspaceLayout
    from riscv_vmimage.process import ProcessExecutor
    from riscv_vmimage.types import ArtifactInfo, PipelineResult

logger = logging.getLogger(__name__)

FORMAT = "format"
BUILD_USER = "build-user"
BUILD_KERNEL = "build-kernel"
BUILD_ALL = "build-all"
PROVISION_IMAGE = "provision-image"
RUN = "run"
CLEAN_KERNEL = "clean-kernel"
CLEAN = "clean"
BUILD_SANDBOX = "build-sandbox"
ENTER_SANDBOX = "enter-sandbox"


@dataclass(frozen=True)
class PipelineOptions:
    """Values threaded into stage actions.

    Attributes:
        image_name: Container image tag for the sandbox stages.
        container_runtime: Container runtime executable.
        emulator: Emulator executable.
        dry_run: Print the emulator command instead of booting.
        force_image: Re-derive the storage image even if it exists.
    """

    image_name: str
    container_runtime: str = "docker"
    emulator: str = emulator.DEFAULT_EMULATOR
    dry_run: bool = False
    force_image: bool = False


def build_stage_graph(
    layout: WorkspaceLayout,
    executor: ProcessExecutor,
    options: PipelineOptions,
    stamps: StampStore | None = None,
) -> StageGraph:
    """Declare every stage of the workspace pipeline.

    Args:
        layout: Workspace layout.
        executor: Executor used by in-process actions that spawn processes.
        options: Sandbox and emulator options.
        stamps: Stamp store used by the image provisioner and clean.

    Returns:
        Validated StageGraph.
    """
    storage = image.StorageImage.from_layout(layout)

    def normalize() -> None:
        artifacts.place_all(layout)

    def provision() -> None:
        image.ensure(storage, stamps=stamps, force=options.force_image)

    def boot() -> int:
        config = emulator.EmulatorConfig.from_layout(layout, options.emulator)
        return emulator.launch(config, executor, dry_run=options.dry_run)

    def remove_generated() -> None:
        for path in layout.generated_paths():
            if not (path.is_symlink() or path.exists()):
                continue
            try:
                path.unlink()
            except OSError as e:
                raise WorkspaceFileError(path, "remove", str(e)) from e
            logger.info("Removed %s", path.name)
        if stamps is not None:
            stamps.clear()

    def build_sandbox() -> None:
        sandbox.build(
            options.image_name, layout.root, executor, options.container_runtime
        )

    def enter_sandbox() -> int:
        result = sandbox.enter(
            options.image_name, layout.root, executor, options.container_runtime
        )
        return result.exit_code

    graph = StageGraph(
        [
            Stage(
                name=FORMAT,
                commands=(FORMAT_COMMAND,),
                cwd=layout.kernel_dir_path,
                description="Reformat kernel source in place",
            ),
            Stage(
                name=BUILD_USER,
                deps=(FORMAT,),
                commands=(USER_BUILD_COMMAND,),
                cwd=layout.user_dir_path,
                description="Build user-space programs to ELF",
            ),
            Stage(
                name=BUILD_KERNEL,
                deps=(FORMAT,),
                commands=(KERNEL_BUILD_COMMAND,),
                cwd=layout.kernel_dir_path,
                description="Build the kernel binary",
            ),
            Stage(
                name=BUILD_ALL,
                deps=(FORMAT, BUILD_USER, BUILD_KERNEL),
                action=normalize,
                inputs=(layout.firmware_source_path, layout.kernel_binary_path),
                outputs=(layout.firmware_path, layout.kernel_path),
                description=(
                    f"Build everything and place {layout.firmware_name} "
                    f"and {layout.kernel_name}"
                ),
            ),
            Stage(
                name=PROVISION_IMAGE,
                action=provision,
                description=f"Extract {layout.image_name} if absent",
            ),
            Stage(
                name=RUN,
                deps=(BUILD_ALL, PROVISION_IMAGE),
                action=boot,
                description="Boot the virt machine in QEMU",
            ),
            Stage(
                name=CLEAN_KERNEL,
                commands=(KERNEL_CLEAN_COMMAND,),
                cwd=layout.kernel_dir_path,
                description="Clean the kernel build",
            ),
            Stage(
                name=CLEAN,
                deps=(CLEAN_KERNEL,),
                action=remove_generated,
                description="Remove normalized binaries and the extracted image",
            ),
            Stage(
                name=BUILD_SANDBOX,
                action=build_sandbox,
                description=f"Build container image {options.image_name}",
            ),
            Stage(
                name=ENTER_SANDBOX,
                action=enter_sandbox,
                description=f"Open a shell in container image {options.image_name}",
            ),
        ]
    )
    graph.validate()
    return graph


class Pipeline:
    """Named operations over a workspace.

    Args:
        layout: Workspace layout.
        executor: Process executor for every spawned command.
        options: Sandbox and emulator options.
        force: Ignore freshness stamps.
        timeout: Per-command timeout in seconds.
    """

    def __init__(
        self,
        layout: WorkspaceLayout,
        executor: ProcessExecutor,
        options: PipelineOptions,
        force: bool = False,
        timeout: float | None = None,
    ) -> None:
        self.layout = layout
        self.stamps = StampStore(layout.state_dir_path)
        self.graph = build_stage_graph(layout, executor, options, self.stamps)
        self.runner = PipelineRunner(
            self.graph, executor, stamps=self.stamps, force=force, timeout=timeout
        )

    def execute(self, target: str) -> PipelineResult:
        return self.runner.run(target)

    def format(self) -> PipelineResult:
        return self.execute(FORMAT)

    def build_all(self) -> PipelineResult:
        return self.execute(BUILD_ALL)

    def provision_image(self) -> PipelineResult:
        return self.execute(PROVISION_IMAGE)

    def run(self) -> PipelineResult:
        return self.execute(RUN)

    def clean(self) -> PipelineResult:
        return self.execute(CLEAN)

    def build_sandbox(self) -> PipelineResult:
        return self.execute(BUILD_SANDBOX)

    def enter_sandbox(self) -> PipelineResult:
        return self.execute(ENTER_SANDBOX)

    def status(self) -> list[ArtifactInfo]:
        return artifacts.describe_workspace(self.layout)


__all__ = [
    "BUILD_ALL",
    "BUILD_KERNEL",
    "BUILD_SANDBOX",
    "BUILD_USER",
    "CLEAN",
    "CLEAN_KERNEL",
    "ENTER_SANDBOX",
    "FORMAT",
    "PROVISION_IMAGE",
    "RUN",
    "Pipeline",
    "PipelineOptions",
    "build_stage_graph",
]
