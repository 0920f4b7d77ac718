"""RISC-V VM Image - build-and-run orchestration for a RISC-V teaching kernel.

This package sequences the user-space and kernel toolchains, normalizes the
firmware and kernel binaries, provisions the SD card image and launches
QEMU with a fixed virt machine topology.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
