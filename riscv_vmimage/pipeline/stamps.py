"""Content-hash freshness stamps for pipeline stages.

A stage is fresh when every declared output exists and the SHA-256 digest
over its declared inputs and outputs equals the digest recorded after the
stage last succeeded. File modification times are never consulted, so
clock skew between the host and the container cannot cause false hits.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import shutil
from pathlib import Path
from typing import TYPE_CHECKING

from riscv_vmimage.errors import WorkspaceFileError

if TYPE_CHECKING:
    from riscv_vmimage.pipeline.graph import Stage

logger = logging.getLogger(__name__)

STAMP_FILENAME = "stamps.json"

# Default chunk size for hashing
HASH_CHUNK_SIZE = 64 * 1024  # 64KB


def compute_file_hash(
    file_path: Path,
    chunk_size: int = HASH_CHUNK_SIZE,
) -> str:
    """Compute SHA-256 hash of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks for streaming hash.

    Returns:
        SHA-256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def compute_stage_digest(stage: Stage) -> str | None:
    """Digest a stage's declared inputs and outputs.

    Returns:
        ``sha256:<hex>`` or None when the stage is not cacheable or any
        declared file is missing.
    """
    if not stage.cacheable:
        return None

    entries: list[dict[str, str]] = []
    for role, paths in (("input", stage.inputs), ("output", stage.outputs)):
        for path in paths:
            if not path.is_file():
                return None
            entries.append(
                {"role": role, "path": str(path), "sha256": compute_file_hash(path)}
            )

    canonical_json = json.dumps(entries, sort_keys=True, separators=(",", ":"))
    return "sha256:" + hashlib.sha256(canonical_json.encode("utf-8")).hexdigest()


class StampStore:
    """Persists stage digests as JSON in the workspace state directory."""

    def __init__(self, state_dir: Path) -> None:
        self.state_dir = state_dir
        self.path = state_dir / STAMP_FILENAME

    def load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open(encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable stamp file %s: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def get(self, key: str) -> str | None:
        return self.load().get(key)

    def _write(self, stamps: dict[str, str]) -> None:
        tmp_path = self.path.with_suffix(".tmp")
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as f:
                json.dump(stamps, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self.path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise WorkspaceFileError(self.path, "write", str(e)) from e

    def set(self, key: str, value: str) -> None:
        stamps = self.load()
        stamps[key] = value
        self._write(stamps)

    def discard(self, key: str) -> None:
        stamps = self.load()
        if stamps.pop(key, None) is not None:
            self._write(stamps)

    def is_fresh(self, stage: Stage) -> bool:
        """Whether the stage's outputs are provably up to date."""
        recorded = self.get(stage.name)
        if recorded is None:
            return False
        current = compute_stage_digest(stage)
        return current is not None and current == recorded

    def record(self, stage: Stage) -> None:
        """Record the digest of a stage that just succeeded."""
        digest = compute_stage_digest(stage)
        if digest is None:
            self.discard(stage.name)
            return
        self.set(stage.name, digest)
        logger.debug("Recorded stamp for %s: %s", stage.name, digest[:23])

    def clear(self) -> None:
        if self.state_dir.exists():
            try:
                shutil.rmtree(self.state_dir)
            except OSError as e:
                raise WorkspaceFileError(self.state_dir, "remove", str(e)) from e
            logger.info("Removed %s", self.state_dir)


__all__ = [
    "HASH_CHUNK_SIZE",
    "STAMP_FILENAME",
    "StampStore",
    "compute_file_hash",
    "compute_stage_digest",
]
