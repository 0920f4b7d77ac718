"""Workspace layout: the fixed file contracts between pipeline stages.

The nested toolchains write their outputs to fixed paths and the launcher
reads fixed top-level names. This module gathers those literal names in a
single validated model, optionally overridden by a ``vmimage.yaml`` file in
the workspace root.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from riscv_vmimage.errors import LayoutError

LAYOUT_FILENAME = "vmimage.yaml"


class WorkspaceLayout(BaseModel):
    """Relative paths of every file the pipeline reads or writes.

    Attributes:
        root: Workspace root all other paths are relative to.
        firmware_source: Bootloader binary produced by the external SBI build.
        firmware_name: Normalized top-level firmware name.
        kernel_dir: Kernel crate directory (nested toolchain).
        user_dir: User-space programs directory (nested toolchain).
        target_triple: Kernel compilation target.
        kernel_binary: Kernel binary path; derived from target_triple if unset.
        kernel_name: Normalized top-level kernel name.
        image_archive: Checked-in compressed storage image.
        image_name: Decompressed storage image.
        state_dir: Directory holding stage freshness stamps.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    root: Path = Field(default_factory=Path.cwd)
    firmware_source: str = "bootloader/rustsbi-qemu.bin"
    firmware_name: str = "sbi-qemu"
    kernel_dir: str = "os"
    user_dir: str = "user"
    target_triple: str = "riscv64gc-unknown-none-elf"
    kernel_binary: str | None = None
    kernel_name: str = "kernel-qemu"
    image_archive: str = "sdcard-riscv.img.gz"
    image_name: str = "sdcard-riscv.img"
    state_dir: str = ".vmimage"

    @field_validator("firmware_name", "kernel_name", "image_name")
    @classmethod
    def validate_top_level(cls, v: str) -> str:
        """Normalized names live directly in the workspace root."""
        if not v or "/" in v or v in (".", ".."):
            raise ValueError(f"must be a plain file name, got '{v}'")
        return v

    @field_validator(
        "firmware_source",
        "kernel_dir",
        "user_dir",
        "kernel_binary",
        "image_archive",
        "state_dir",
    )
    @classmethod
    def validate_relative(cls, v: str | None) -> str | None:
        """Layout paths must stay inside the workspace."""
        if v is None:
            return v
        path = Path(v)
        if path.is_absolute() or ".." in path.parts:
            raise ValueError(f"must be a relative path inside the workspace, got '{v}'")
        if not path.parts:
            raise ValueError(f"must name a path below the workspace root, got '{v}'")
        return v

    @model_validator(mode="after")
    def validate_disjoint(self) -> WorkspaceLayout:
        """Generated files and the state directory must not alias sources.

        clean removes the normalized names and the state directory, so they
        must not coincide with any source path or with each other.
        """
        sources = {
            "firmware_source": self.firmware_source,
            "kernel_dir": self.kernel_dir,
            "user_dir": self.user_dir,
            "image_archive": self.image_archive,
        }
        if self.kernel_binary:
            sources["kernel_binary"] = self.kernel_binary

        state = Path(self.state_dir).parts
        for field_name, value in sources.items():
            if Path(value).parts[: len(state)] == state:
                raise ValueError(
                    f"state_dir '{self.state_dir}' would contain {field_name} '{value}'"
                )

        taken = {Path(v).parts[0]: k for k, v in sources.items()}
        taken[state[0]] = "state_dir"
        for field_name in ("firmware_name", "kernel_name", "image_name"):
            name = getattr(self, field_name)
            if name in taken:
                raise ValueError(
                    f"{field_name} '{name}' collides with {taken[name]}"
                )
            taken[name] = field_name
        return self

    def resolve(self, relative: str) -> Path:
        return self.root / relative

    @property
    def firmware_source_path(self) -> Path:
        return self.resolve(self.firmware_source)

    @property
    def firmware_path(self) -> Path:
        return self.resolve(self.firmware_name)

    @property
    def kernel_dir_path(self) -> Path:
        return self.resolve(self.kernel_dir)

    @property
    def user_dir_path(self) -> Path:
        return self.resolve(self.user_dir)

    @property
    def kernel_binary_path(self) -> Path:
        if self.kernel_binary:
            return self.resolve(self.kernel_binary)
        return self.kernel_dir_path / "target" / self.target_triple / "release" / "os.bin"

    @property
    def kernel_path(self) -> Path:
        return self.resolve(self.kernel_name)

    @property
    def image_archive_path(self) -> Path:
        return self.resolve(self.image_archive)

    @property
    def image_path(self) -> Path:
        return self.resolve(self.image_name)

    @property
    def state_dir_path(self) -> Path:
        return self.resolve(self.state_dir)

    def generated_paths(self) -> list[Path]:
        """Files owned by the pipeline and removed by clean."""
        return [self.firmware_path, self.kernel_path, self.image_path]


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        ValueError: If the document is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping, got {type(data).__name__}")
    return data


def load_layout(root: Path, layout_file: Path | None = None) -> WorkspaceLayout:
    """Build the layout for a workspace.

    Reads ``vmimage.yaml`` from the workspace root when present (or the
    explicit ``layout_file``) and applies its keys over the defaults.

    Args:
        root: Workspace root directory.
        layout_file: Optional explicit layout file.

    Returns:
        Validated WorkspaceLayout.

    Raises:
        LayoutError: If the layout file is unreadable or invalid.
    """
    root = root.resolve()
    path = layout_file if layout_file is not None else root / LAYOUT_FILENAME

    overrides: dict[str, Any] = {}
    if layout_file is not None or path.exists():
        try:
            overrides = load_yaml(path)
        except (OSError, yaml.YAMLError, ValueError) as e:
            raise LayoutError(f"Cannot read layout file {path}: {e}") from e
        if "root" in overrides:
            raise LayoutError(f"{path}: 'root' cannot be set in a layout file")

    try:
        return WorkspaceLayout(root=root, **overrides)
    except ValidationError as e:
        raise LayoutError(f"Invalid layout file {path}: {e}") from e


__all__ = ["LAYOUT_FILENAME", "WorkspaceLayout", "load_layout", "load_yaml"]
