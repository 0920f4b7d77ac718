"""Artifact placement into the normalized workspace namespace.

This module handles:
- Verifying toolchain outputs exist and are non-empty
- Copying them byte-for-byte to the fixed top-level names the launcher reads
- Describing workspace files (size, checksum, permissions) for reporting

Placement always overwrites the destination (last build wins); freshness
decisions belong to the pipeline runner, not to this module.
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from riscv_vmimage.errors import MissingArtifact, WorkspaceFileError
from riscv_vmimage.pipeline.stamps import compute_file_hash
from riscv_vmimage.types import ArtifactInfo

if TYPE_CHECKING:
    from riscv_vmimage.layout import WorkspaceLayout

logger = logging.getLogger(__name__)

EXEC_BITS = stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH


@dataclass(frozen=True)
class ArtifactBinding:
    """A logical artifact bound to its toolchain output and normalized name."""

    kind: str
    source: Path
    dest_name: str


def artifact_bindings(layout: WorkspaceLayout) -> list[ArtifactBinding]:
    """Return the firmware and kernel bindings for a workspace."""
    return [
        ArtifactBinding("firmware", layout.firmware_source_path, layout.firmware_name),
        ArtifactBinding("kernel", layout.kernel_binary_path, layout.kernel_name),
    ]


def check_artifact(path: Path) -> int:
    """Verify an artifact exists and is non-empty.

    Returns:
        The file size in bytes.

    Raises:
        MissingArtifact: If the file is absent, not a regular file, or empty.
    """
    if not path.exists():
        raise MissingArtifact(path)
    if not path.is_file():
        raise MissingArtifact(path, "is not a regular file")
    size = path.stat().st_size
    if size == 0:
        raise MissingArtifact(path, "is empty")
    return size


def place(source: Path, dest_name: str, root: Path) -> ArtifactInfo:
    """Copy a toolchain output to a normalized name in the workspace root.

    The copy preserves the source's permission bits and adds execute
    permission. Any existing destination is replaced.

    Args:
        source: Toolchain output file.
        dest_name: Normalized file name.
        root: Workspace root.

    Returns:
        ArtifactInfo describing the placed file.

    Raises:
        MissingArtifact: If the source is absent or empty.
        WorkspaceFileError: If the destination cannot be replaced.
    """
    check_artifact(source)
    dest = root / dest_name

    try:
        # A read-only leftover would make copyfile fail
        if dest.is_symlink() or dest.exists():
            dest.unlink()
        shutil.copyfile(source, dest)
        mode = stat.S_IMODE(source.stat().st_mode) | EXEC_BITS
        os.chmod(dest, mode)
    except OSError as e:
        raise WorkspaceFileError(dest, "place", str(e)) from e

    info = describe_artifact(dest_name, dest)
    logger.info(
        "Placed %s -> %s (%d bytes, sha256 %s)",
        source,
        dest_name,
        info.size_bytes,
        (info.sha256 or "")[:16],
    )
    return info


def place_all(layout: WorkspaceLayout) -> list[ArtifactInfo]:
    """Place every binding of the layout, firmware first.

    All sources are checked before anything is copied, so a missing kernel
    leaves a previously placed firmware untouched.
    """
    bindings = artifact_bindings(layout)
    for binding in bindings:
        check_artifact(binding.source)
    return [place(b.source, b.dest_name, layout.root) for b in bindings]


def describe_artifact(name: str, path: Path) -> ArtifactInfo:
    """Describe a workspace file, whether or not it exists."""
    if not path.is_file():
        return ArtifactInfo(name=name, path=str(path), exists=False)
    st = path.stat()
    return ArtifactInfo(
        name=name,
        path=str(path),
        exists=True,
        size_bytes=st.st_size,
        sha256=compute_file_hash(path),
        executable=bool(st.st_mode & stat.S_IXUSR),
    )


def describe_workspace(layout: WorkspaceLayout) -> list[ArtifactInfo]:
    """Describe every file crossing a stage boundary."""
    return [
        describe_artifact("firmware-source", layout.firmware_source_path),
        describe_artifact("kernel-binary", layout.kernel_binary_path),
        describe_artifact(layout.firmware_name, layout.firmware_path),
        describe_artifact(layout.kernel_name, layout.kernel_path),
        describe_artifact(layout.image_archive, layout.image_archive_path),
        describe_artifact(layout.image_name, layout.image_path),
    ]


__all__ = [
    "EXEC_BITS",
    "ArtifactBinding",
    "artifact_bindings",
    "check_artifact",
    "describe_artifact",
    "describe_workspace",
    "place",
    "place_all",
]
