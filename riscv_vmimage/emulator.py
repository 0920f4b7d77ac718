"""QEMU launcher for the RISC-V virt machine.

This module handles:
- The fixed hardware topology (virt machine, 2 harts, 128 MiB, no graphics)
- Composing the qemu-system-riscv64 command line
- Checking the emulator, firmware, kernel and disk image before spawning
- Running the emulator in the foreground until the machine halts

The emulator's exit status is returned unchanged; a crash of the guest is
visible only through that status and the console output.
"""

from __future__ import annotations

import logging
import os
import shlex
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from riscv_vmimage.errors import MissingDependency

if TYPE_CHECKING:
    from riscv_vmimage.layout import WorkspaceLayout
    from riscv_vmimage.process import ProcessExecutor

logger = logging.getLogger(__name__)

DEFAULT_EMULATOR = "qemu-system-riscv64"

# Drive id shared by -drive and the virtio-blk device
BLOCK_DRIVE_ID = "x0"

# Netdev id shared by -netdev and the virtio-net device
NETDEV_ID = "net"


class EmulatorConfig(BaseModel):
    """Complete, immutable description of one VM launch.

    Attributes:
        executable: Emulator binary name (looked up on PATH) or path.
        workdir: Directory the emulator runs in; paths inside it are passed
            relative to it.
        machine: QEMU machine type.
        memory: Guest memory size as understood by ``-m``.
        smp: Number of virtual CPUs.
        firmware: Binary loaded with ``-bios``.
        kernel: Binary loaded with ``-kernel``.
        drive: Raw disk image behind the virtio block device.
        drive_format: Disk image format.
        netdev: Host network backend.
        nographic: Console-only output.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    executable: str = DEFAULT_EMULATOR
    workdir: Path
    machine: str = "virt"
    memory: str = "128M"
    smp: int = Field(default=2, ge=1)
    firmware: Path
    kernel: Path
    drive: Path
    drive_format: str = "raw"
    netdev: str = "user"
    nographic: bool = True

    @classmethod
    def from_layout(
        cls, layout: WorkspaceLayout, executable: str = DEFAULT_EMULATOR
    ) -> EmulatorConfig:
        return cls(
            executable=executable,
            workdir=layout.root,
            firmware=layout.firmware_path,
            kernel=layout.kernel_path,
            drive=layout.image_path,
        )

    def path_arg(self, path: Path) -> str:
        try:
            return path.relative_to(self.workdir).as_posix()
        except ValueError:
            return str(path)


def compose_qemu_command(config: EmulatorConfig) -> list[str]:
    """Compose the emulator command line.

    Args:
        config: EmulatorConfig instance.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    cmd = [
        config.executable,
        "-machine",
        config.machine,
        "-kernel",
        config.path_arg(config.kernel),
        "-m",
        config.memory,
    ]
    if config.nographic:
        cmd.append("-nographic")
    cmd.extend(["-smp", str(config.smp)])
    cmd.extend(["-bios", config.path_arg(config.firmware)])

    # Block device over virtio-mmio
    cmd.extend(
        [
            "-drive",
            f"file={config.path_arg(config.drive)},if=none,"
            f"format={config.drive_format},id={BLOCK_DRIVE_ID}",
            "-device",
            f"virtio-blk-device,drive={BLOCK_DRIVE_ID},bus=virtio-mmio-bus.0",
        ]
    )

    # Network device over virtio-mmio, user-mode backend
    cmd.extend(
        [
            "-device",
            f"virtio-net-device,netdev={NETDEV_ID}",
            "-netdev",
            f"{config.netdev},id={NETDEV_ID}",
        ]
    )
    return cmd


def resolve_executable(executable: str, executor: ProcessExecutor) -> str | None:
    """Locate the emulator on PATH, or accept an explicit executable path."""
    if os.sep in executable:
        path = Path(executable)
        return str(path) if path.is_file() and os.access(path, os.X_OK) else None
    return executor.which(executable)


def check_launch_dependencies(config: EmulatorConfig, executor: ProcessExecutor) -> None:
    """Verify everything the emulator needs exists.

    Raises:
        MissingDependency: On the first missing executable or file.
    """
    if resolve_executable(config.executable, executor) is None:
        raise MissingDependency("emulator executable", config.executable)
    for what, path in (
        ("firmware", config.firmware),
        ("kernel", config.kernel),
        ("block device image", config.drive),
    ):
        if not path.is_file():
            raise MissingDependency(what, path)


def launch(
    config: EmulatorConfig,
    executor: ProcessExecutor,
    dry_run: bool = False,
) -> int:
    """Run the virtual machine in the foreground.

    Blocks until the emulator exits. The executor reaps the emulator if the
    caller is interrupted.

    Args:
        config: EmulatorConfig instance.
        executor: Process executor.
        dry_run: Log the command instead of spawning it.

    Returns:
        The emulator's exit status (0 for a dry run).

    Raises:
        MissingDependency: If the emulator or an input file is absent.
    """
    check_launch_dependencies(config, executor)
    cmd = compose_qemu_command(config)

    if dry_run:
        logger.info("Dry run, would execute: %s", shlex.join(cmd))
        return 0

    logger.info(
        "Booting %s machine (%d harts, %s) from %s",
        config.machine,
        config.smp,
        config.memory,
        config.workdir,
    )
    result = executor.run(cmd, cwd=config.workdir)
    logger.info("Emulator exited with status %d", result.exit_code)
    return result.exit_code


__all__ = [
    "DEFAULT_EMULATOR",
    "EmulatorConfig",
    "check_launch_dependencies",
    "compose_qemu_command",
    "launch",
    "resolve_executable",
]
