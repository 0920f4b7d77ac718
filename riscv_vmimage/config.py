"""Configuration settings for riscv_vmimage.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.

Only the CLI reads settings; every other module receives the values it
needs as explicit arguments.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DOCKER_NAME = "rcore-tutorial-v3"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the VMIMAGE_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="VMIMAGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    workspace: Path = Field(
        default_factory=Path.cwd,
        description="Workspace root holding bootloader/, os/, user/ and the image archive",
    )

    # Sandbox
    docker_name: str = Field(
        default=DEFAULT_DOCKER_NAME,
        min_length=1,
        description="Container image tag for the toolchain sandbox",
    )
    container_runtime: str = Field(
        default="docker",
        description="Container runtime executable",
    )

    # Emulator
    emulator: str = Field(
        default="qemu-system-riscv64",
        description="Emulator executable name or path",
    )

    # Operational modes
    force_rebuild: bool = Field(
        default=False,
        description="Run every stage even when its outputs are fresh",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Timeouts (in seconds)
    command_timeout: int | None = Field(
        default=None,
        ge=1,
        description="Timeout for each toolchain command (unset = wait forever)",
    )


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["DEFAULT_DOCKER_NAME", "Settings", "get_settings", "print_settings_json"]
