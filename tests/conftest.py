"""Shared fixtures: a synthetic workspace and a recording fake executor."""

from __future__ import annotations

import gzip
from collections.abc import Callable, Sequence
from pathlib import Path

import pytest

from riscv_vmimage.layout import WorkspaceLayout, load_layout
from riscv_vmimage.process import ProcessResult

FIRMWARE_BYTES = b"\x13\x00\x00\x00" * 256
KERNEL_BYTES = b"\x97\x02\x00\x00" * 512
IMAGE_BYTES = b"FAT32-IMAGE" + bytes(4096)


class FakeExecutor:
    """ProcessExecutor that records commands instead of spawning them.

    Args:
        exit_codes: Exit status per command tuple or per program name.
        hooks: Callables run with the cwd when a command tuple executes.
        available: Program names ``which`` reports as installed.
    """

    def __init__(
        self,
        exit_codes: dict[tuple[str, ...] | str, int] | None = None,
        hooks: dict[tuple[str, ...], Callable[[Path | None], None]] | None = None,
        available: Sequence[str] = ("qemu-system-riscv64", "docker"),
    ) -> None:
        self.exit_codes = dict(exit_codes or {})
        self.hooks = dict(hooks or {})
        self.available = set(available)
        self.calls: list[tuple[tuple[str, ...], Path | None]] = []

    def run(
        self,
        command: Sequence[str],
        cwd: Path | None = None,
        *,
        capture: bool = False,
        timeout: float | None = None,
    ) -> ProcessResult:
        cmd = tuple(command)
        self.calls.append((cmd, cwd))
        hook = self.hooks.get(cmd)
        if hook is not None:
            hook(cwd)
        code = self.exit_codes.get(cmd, self.exit_codes.get(cmd[0], 0))
        return ProcessResult(command=list(cmd), exit_code=code, cwd=cwd)

    def which(self, name: str) -> str | None:
        return f"/usr/bin/{name}" if name in self.available else None

    @property
    def commands(self) -> list[tuple[str, ...]]:
        return [cmd for cmd, _ in self.calls]

    def programs(self) -> list[str]:
        return [cmd[0] for cmd in self.commands]


def write_kernel(layout: WorkspaceLayout, data: bytes = KERNEL_BYTES) -> Path:
    """Simulate the kernel toolchain producing its binary."""
    path = layout.kernel_binary_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """A workspace with firmware, source directories and the image archive."""
    root = tmp_path / "ws"
    (root / "bootloader").mkdir(parents=True)
    (root / "bootloader" / "rustsbi-qemu.bin").write_bytes(FIRMWARE_BYTES)
    (root / "os" / "src").mkdir(parents=True)
    (root / "os" / "src" / "main.rs").write_text("#![no_std]\n")
    (root / "os" / "Makefile").write_text("build:\n")
    (root / "user" / "src").mkdir(parents=True)
    (root / "user" / "Makefile").write_text("elf:\n")
    with gzip.open(root / "sdcard-riscv.img.gz", "wb") as f:
        f.write(IMAGE_BYTES)
    return root


@pytest.fixture
def layout(workspace: Path) -> WorkspaceLayout:
    return load_layout(workspace)


@pytest.fixture
def kernel_source() -> dict[str, bytes]:
    """Mutable holder for what the next kernel build produces."""
    return {"data": KERNEL_BYTES}


@pytest.fixture
def executor(layout: WorkspaceLayout, kernel_source: dict[str, bytes]) -> FakeExecutor:
    """Fake executor whose ``make build`` writes the kernel binary."""
    return FakeExecutor(
        hooks={("make", "build"): lambda cwd: write_kernel(layout, kernel_source["data"])}
    )
