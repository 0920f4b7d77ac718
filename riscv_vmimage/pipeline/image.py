"""Storage image provisioning.

This module handles:
- Decompressing the checked-in SD card archive to the raw image the VM boots
- Skip semantics: an existing image is never re-derived or touched
- Detecting that the archive changed since the image was materialized

The archive is never modified. Decompression writes to a temporary sibling
and renames it into place, so an interrupted run leaves no partial image.
"""

from __future__ import annotations

import gzip
import logging
import os
import shutil
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from riscv_vmimage.errors import DecompressionFailure
from riscv_vmimage.pipeline.stamps import compute_file_hash

if TYPE_CHECKING:
    from riscv_vmimage.layout import WorkspaceLayout
    from riscv_vmimage.pipeline.stamps import StampStore

logger = logging.getLogger(__name__)

# Stamp key holding the archive digest the current image was derived from
ARCHIVE_STAMP_KEY = "image-archive"

# Chunk size for streaming decompression (1 MiB)
COPY_CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class StorageImage:
    """A compressed archive and the raw image derived from it."""

    archive: Path
    destination: Path

    @classmethod
    def from_layout(cls, layout: WorkspaceLayout) -> StorageImage:
        return cls(archive=layout.image_archive_path, destination=layout.image_path)


def decompress(archive: Path, destination: Path) -> int:
    """Decompress a gzip archive, keeping the archive.

    Args:
        archive: Source ``.gz`` file.
        destination: Output path.

    Returns:
        Number of bytes written.

    Raises:
        DecompressionFailure: If the archive is missing or corrupt.
    """
    if not archive.is_file():
        raise DecompressionFailure(archive, "archive not found")

    partial = destination.with_name(destination.name + ".partial")
    try:
        with gzip.open(archive, "rb") as src, partial.open("wb") as dst:
            shutil.copyfileobj(src, dst, COPY_CHUNK_SIZE)
            written = dst.tell()
        os.replace(partial, destination)
    except (gzip.BadGzipFile, zlib.error, EOFError) as e:
        raise DecompressionFailure(archive, f"corrupt archive: {e}") from e
    except OSError as e:
        raise DecompressionFailure(archive, str(e)) from e
    finally:
        partial.unlink(missing_ok=True)

    return written


def ensure(
    image: StorageImage,
    stamps: StampStore | None = None,
    force: bool = False,
) -> bool:
    """Make sure the decompressed storage image exists.

    If the destination already exists this is a no-op unless ``force`` is
    set. When a stamp store is given, the archive digest is recorded after
    decompression and a warning is logged on later calls if the archive has
    changed since.

    Args:
        image: Archive/destination pair.
        stamps: Optional stamp store for archive drift detection.
        force: Re-derive the image even if it exists.

    Returns:
        True if the archive was decompressed, False if skipped.

    Raises:
        DecompressionFailure: If the archive is missing or corrupt.
    """
    if image.destination.exists() and not force:
        logger.info("Storage image %s exists, skipping", image.destination.name)
        if stamps is not None:
            warn_on_archive_drift(image, stamps)
        return False

    logger.info("Extracting %s...", image.archive.name)
    written = decompress(image.archive, image.destination)
    logger.info("Wrote %s (%d bytes)", image.destination, written)

    if stamps is not None:
        stamps.set(ARCHIVE_STAMP_KEY, compute_file_hash(image.archive))
    return True


def archive_changed(image: StorageImage, stamps: StampStore) -> bool:
    """Whether the archive differs from the one the image was derived from.

    Returns False when nothing was recorded or the archive is gone.
    """
    recorded = stamps.get(ARCHIVE_STAMP_KEY)
    if recorded is None or not image.archive.is_file():
        return False
    return compute_file_hash(image.archive) != recorded


def warn_on_archive_drift(image: StorageImage, stamps: StampStore) -> None:
    if archive_changed(image, stamps):
        logger.warning(
            "%s changed since %s was extracted; the existing image is kept. "
            "Run 'vmimage image --force' or 'vmimage clean' to re-derive it.",
            image.archive.name,
            image.destination.name,
        )


__all__ = [
    "ARCHIVE_STAMP_KEY",
    "StorageImage",
    "archive_changed",
    "decompress",
    "ensure",
    "warn_on_archive_drift",
]
