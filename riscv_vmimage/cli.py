"""Thin CLI wrapper for riscv_vmimage.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules. Settings are read here
and passed explicitly to the pipeline.
"""

import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any

import typer
from rich.console import Console

from riscv_vmimage import __version__
from riscv_vmimage.config import Settings, get_settings, print_settings_json
from riscv_vmimage.errors import PipelineError
from riscv_vmimage.types import PipelineResult, StageStatus

if TYPE_CHECKING:
    from riscv_vmimage.pipeline.service import Pipeline

app = typer.Typer(
    name="vmimage",
    help="RISC-V VM Image - build the kernel, provision the SD card image and boot QEMU",
    no_args_is_help=True,
)
console = Console()

# Exit status reported when the operator interrupts a stage
INTERRUPT_EXIT_CODE = 130


class CLIState:
    """Global options collected by the app callback."""

    def __init__(self) -> None:
        self.workspace: Path | None = None
        self.layout_file: Path | None = None


state = CLIState()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"riscv-vmimage version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    workspace: Annotated[
        Path | None,
        typer.Option(
            "--workspace",
            "-C",
            help="Workspace root (default: VMIMAGE_WORKSPACE or current directory)",
        ),
    ] = None,
    layout_file: Annotated[
        Path | None,
        typer.Option("--layout", help="Layout file overriding vmimage.yaml"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """RISC-V VM Image - build the kernel, provision the SD card image and boot QEMU."""
    settings = get_settings()
    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.log_level,
        format="%(levelname)s %(name)s: %(message)s",
    )
    state.workspace = workspace
    state.layout_file = layout_file


def _exit_code(code: int) -> int:
    """Map a child's status to a shell exit status (signals become 128+N)."""
    if code < 0:
        return 128 - code
    return code


def _make_pipeline(
    settings: Settings,
    image_name: str | None = None,
    force: bool = False,
    dry_run: bool = False,
    force_image: bool = False,
) -> "Pipeline":
    from riscv_vmimage.layout import load_layout
    from riscv_vmimage.pipeline.service import Pipeline, PipelineOptions
    from riscv_vmimage.process import SubprocessExecutor

    root = state.workspace or settings.workspace
    layout = load_layout(root, state.layout_file)
    options = PipelineOptions(
        image_name=image_name or settings.docker_name,
        container_runtime=settings.container_runtime,
        emulator=settings.emulator,
        dry_run=dry_run,
        force_image=force_image,
    )
    return Pipeline(
        layout,
        SubprocessExecutor(),
        options,
        force=force or settings.force_rebuild,
        timeout=settings.command_timeout,
    )


def _report(result: PipelineResult) -> None:
    """Print a one-line outcome and exit with the first failure's status."""
    skipped = result.names(StageStatus.SKIPPED)
    if result.success:
        console.print(f"[green]✓ {result.target} succeeded[/green]")
        if skipped:
            console.print(f"  Up to date: {', '.join(skipped)}")
        return

    failed = result.stages[-1]
    console.print(f"[red]✗ {result.target} failed at stage {failed.name}[/red]")
    if failed.message:
        console.print(f"  {failed.message}")
    raise typer.Exit(code=_exit_code(result.exit_code))


def _execute(target: str, **pipeline_kwargs: Any) -> None:
    settings = get_settings()
    try:
        pipeline = _make_pipeline(settings, **pipeline_kwargs)
        result = pipeline.execute(target)
    except PipelineError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(code=_exit_code(e.exit_code)) from None
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/yellow]")
        raise typer.Exit(code=INTERRUPT_EXIT_CODE) from None
    _report(result)


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings), soft_wrap=True)
    else:
        timeout_display = (
            str(settings.command_timeout) if settings.command_timeout else "(none)"
        )
        console.print("[bold]Effective Configuration:[/bold]")
        console.print()
        console.print("[bold]Paths:[/bold]")
        console.print(f"  Workspace:           {state.workspace or settings.workspace}")
        console.print(f"  Layout file:         {state.layout_file or '(vmimage.yaml)'}")
        console.print()
        console.print("[bold]Sandbox:[/bold]")
        console.print(f"  Image name:          {settings.docker_name}")
        console.print(f"  Container runtime:   {settings.container_runtime}")
        console.print()
        console.print("[bold]Operational:[/bold]")
        console.print(f"  Emulator:            {settings.emulator}")
        console.print(f"  Force rebuild:       {settings.force_rebuild}")
        console.print(f"  Log level:           {settings.log_level}")
        console.print(f"  Command timeout:     {timeout_display}")


@app.command()
def stages(
    target: Annotated[
        str | None,
        typer.Argument(help="Show the resolved execution order for this stage"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List pipeline stages, or the order a target would run in."""
    settings = get_settings()
    try:
        pipeline = _make_pipeline(settings)
        selected = pipeline.runner.plan(target) if target else list(pipeline.graph)
    except PipelineError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        output = [
            {
                "name": s.name,
                "deps": list(s.deps),
                "commands": s.command_strings(),
                "cwd": str(s.cwd) if s.cwd else None,
                "inputs": [str(p) for p in s.inputs],
                "outputs": [str(p) for p in s.outputs],
                "description": s.description,
            }
            for s in selected
        ]
        console.print(json.dumps(output, indent=2), soft_wrap=True)
        return

    if target:
        console.print(f"[bold]Execution order for {target}:[/bold]")
    else:
        console.print(f"[bold]{len(selected)} stage(s):[/bold]")
    console.print()
    for i, s in enumerate(selected, start=1):
        console.print(f"  {i}. [green]{s.name}[/green]  {s.description}")
        if s.deps:
            console.print(f"     After: {', '.join(s.deps)}")
        for cmd in s.command_strings():
            console.print(f"     $ {cmd}  (in {s.cwd})")


@app.command()
def status(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show which workspace artifacts exist, with sizes and checksums."""
    settings = get_settings()
    try:
        infos = _make_pipeline(settings).status()
    except PipelineError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        console.print(json.dumps([asdict(i) for i in infos], indent=2), soft_wrap=True)
        return

    console.print("[bold]Workspace artifacts:[/bold]")
    console.print()
    for info in infos:
        if not info.exists:
            console.print(f"  [yellow]{info.name}[/yellow]: missing")
            continue
        console.print(f"  [green]{info.name}[/green]")
        console.print(f"    Path: {info.path}")
        console.print(f"    Size: {info.size_bytes:,} bytes")
        console.print(f"    SHA256: {(info.sha256 or '')[:16]}...")


@app.command("fmt")
def fmt_cmd() -> None:
    """Reformat the kernel source in place."""
    from riscv_vmimage.pipeline.service import FORMAT

    _execute(FORMAT)


@app.command("build")
def build_cmd(
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Ignore freshness stamps"),
    ] = False,
) -> None:
    """Format, build user-space and kernel, then place sbi-qemu and kernel-qemu."""
    from riscv_vmimage.pipeline.service import BUILD_ALL

    _execute(BUILD_ALL, force=force)


@app.command("image")
def image_cmd(
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Re-extract even if the image exists"),
    ] = False,
) -> None:
    """Extract the SD card image from its archive if it is absent."""
    from riscv_vmimage.pipeline.service import PROVISION_IMAGE

    _execute(PROVISION_IMAGE, force_image=force)


@app.command("run")
def run_cmd(
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", "-n", help="Print the emulator command instead of booting"),
    ] = False,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Ignore freshness stamps"),
    ] = False,
) -> None:
    """Build everything, provision the image and boot the VM in QEMU."""
    from riscv_vmimage.pipeline.service import RUN

    _execute(RUN, dry_run=dry_run, force=force)


@app.command("clean")
def clean_cmd() -> None:
    """Clean the kernel build and remove generated artifacts."""
    from riscv_vmimage.pipeline.service import CLEAN

    _execute(CLEAN)


sandbox_app = typer.Typer(help="Manage the containerized toolchain")
app.add_typer(sandbox_app, name="sandbox")


@sandbox_app.command("build")
def sandbox_build(
    name: Annotated[
        str | None,
        typer.Option("--name", help="Image tag (default: VMIMAGE_DOCKER_NAME)"),
    ] = None,
) -> None:
    """Build the toolchain container image from the workspace Dockerfile."""
    from riscv_vmimage.pipeline.service import BUILD_SANDBOX

    _execute(BUILD_SANDBOX, image_name=name)


@sandbox_app.command("enter")
def sandbox_enter(
    name: Annotated[
        str | None,
        typer.Option("--name", help="Image tag (default: VMIMAGE_DOCKER_NAME)"),
    ] = None,
) -> None:
    """Open an interactive shell in the toolchain container."""
    from riscv_vmimage.pipeline.service import ENTER_SANDBOX

    _execute(ENTER_SANDBOX, image_name=name)


if __name__ == "__main__":
    app()
