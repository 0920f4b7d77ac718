"""Shared type definitions for riscv_vmimage.

This module contains dataclasses and enums shared across subpackages
to avoid circular imports.
"""

from dataclasses import dataclass, field
from enum import Enum


class StageStatus(str, Enum):
    """Outcome of a single pipeline stage."""

    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ArtifactInfo:
    """Information about a file in the workspace namespace."""

    name: str
    path: str
    exists: bool
    size_bytes: int = 0
    sha256: str | None = None
    executable: bool = False


@dataclass
class StageResult:
    """Result of running one stage."""

    name: str
    status: StageStatus
    exit_code: int = 0
    duration_s: float = 0.0
    message: str | None = None
    error_code: str | None = None


@dataclass
class PipelineResult:
    """Result of running a target and its prerequisites."""

    target: str
    stages: list[StageResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return all(s.status != StageStatus.FAILED for s in self.stages)

    @property
    def exit_code(self) -> int:
        """Exit code of the first failed stage, or 0."""
        for stage in self.stages:
            if stage.status == StageStatus.FAILED:
                return stage.exit_code
        return 0

    def names(self, status: StageStatus | None = None) -> list[str]:
        return [s.name for s in self.stages if status is None or s.status == status]


__all__ = [
    "ArtifactInfo",
    "PipelineResult",
    "StageResult",
    "StageStatus",
]
