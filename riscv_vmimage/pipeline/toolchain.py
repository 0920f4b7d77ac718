"""Nested toolchain commands.

The kernel and user-space programs are built by their own build systems;
this module only names the commands. Incremental-build correctness belongs
to those toolchains.
"""

# Run in the kernel directory
FORMAT_COMMAND = ("cargo", "fmt")
KERNEL_BUILD_COMMAND = ("make", "build")
KERNEL_CLEAN_COMMAND = ("make", "clean")

# Run in the user-space directory
USER_BUILD_COMMAND = ("make", "elf")

__all__ = [
    "FORMAT_COMMAND",
    "KERNEL_BUILD_COMMAND",
    "KERNEL_CLEAN_COMMAND",
    "USER_BUILD_COMMAND",
]
