"""Error taxonomy for the build-and-run pipeline.

Every error carries a machine-readable ``code`` and the ``exit_code`` the
CLI should terminate with. Errors raised because a child process failed
carry that process's exit status; orchestration-level errors exit 1.
"""

from pathlib import Path


class PipelineError(Exception):
    """Base error for pipeline operations."""

    def __init__(
        self,
        message: str,
        code: str = "pipeline_error",
        exit_code: int = 1,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.exit_code = exit_code


class BuildFailure(PipelineError):
    """A nested toolchain invocation returned a nonzero status."""

    def __init__(self, stage: str, command: str, exit_code: int) -> None:
        super().__init__(
            f"Stage '{stage}' failed: '{command}' exited with status {exit_code}",
            code="build_failure",
            exit_code=exit_code,
        )
        self.stage = stage
        self.command = command


class MissingArtifact(PipelineError):
    """An expected output file is absent or empty after a build stage."""

    def __init__(self, path: Path, reason: str = "does not exist") -> None:
        super().__init__(
            f"Artifact {path} {reason}",
            code="missing_artifact",
        )
        self.path = path


class MissingDependency(PipelineError):
    """A required host tool or input file is absent at the point of use."""

    def __init__(self, what: str, location: str | Path) -> None:
        super().__init__(
            f"Missing {what}: {location}",
            code="missing_dependency",
        )
        self.what = what
        self.location = location


class DecompressionFailure(PipelineError):
    """The storage image archive is missing or unreadable."""

    def __init__(self, archive: Path, reason: str) -> None:
        super().__init__(
            f"Cannot decompress {archive}: {reason}",
            code="decompression_failure",
        )
        self.archive = archive


class WorkspaceFileError(PipelineError):
    """A workspace file could not be written or removed."""

    def __init__(self, path: Path, action: str, reason: str) -> None:
        super().__init__(
            f"Cannot {action} {path}: {reason}",
            code="workspace_file_error",
        )
        self.path = path


class StageGraphError(PipelineError):
    """The stage graph references unknown stages or contains a cycle."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="stage_graph_error")


class LayoutError(PipelineError):
    """The workspace layout file is invalid."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="layout_error")


__all__ = [
    "BuildFailure",
    "DecompressionFailure",
    "LayoutError",
    "MissingArtifact",
    "MissingDependency",
    "PipelineError",
    "StageGraphError",
    "WorkspaceFileError",
]
