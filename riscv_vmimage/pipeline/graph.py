"""Stage graph for the build pipeline.

This module handles:
- Declaring named stages with prerequisites, commands and file contracts
- Validating the graph (unknown prerequisites, cycles)
- Resolving a target into the ordered list of stages to execute

Resolution is a depth-first walk over prerequisites in declared order, so
the resulting sequence is deterministic and each stage appears once.
"""

from __future__ import annotations

import shlex
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from pathlib import Path

from riscv_vmimage.errors import StageGraphError

# An action returns None on success or a process exit status to report
StageAction = Callable[[], int | None]


@dataclass(frozen=True)
class Stage:
    """A named pipeline stage.

    Attributes:
        name: Stage name (also the CLI-visible target name).
        deps: Prerequisite stage names, executed in this order.
        commands: External commands run sequentially in ``cwd``.
        cwd: Working directory for ``commands``.
        action: In-process step run after ``commands`` succeed.
        inputs: Files whose content decides whether outputs are fresh.
        outputs: Files this stage produces.
        description: One-line summary for listings.
    """

    name: str
    deps: tuple[str, ...] = ()
    commands: tuple[tuple[str, ...], ...] = ()
    cwd: Path | None = None
    action: StageAction | None = field(default=None, compare=False)
    inputs: tuple[Path, ...] = ()
    outputs: tuple[Path, ...] = ()
    description: str = ""

    @property
    def cacheable(self) -> bool:
        """Only stages that declare both inputs and outputs may be skipped."""
        return bool(self.inputs) and bool(self.outputs)

    def command_strings(self) -> list[str]:
        return [shlex.join(cmd) for cmd in self.commands]


class StageGraph:
    """Ordered collection of stages forming a directed acyclic graph."""

    def __init__(self, stages: list[Stage] | None = None) -> None:
        self._stages: dict[str, Stage] = {}
        for stage in stages or []:
            self.add(stage)

    def add(self, stage: Stage) -> None:
        if stage.name in self._stages:
            raise StageGraphError(f"Duplicate stage: {stage.name}")
        self._stages[stage.name] = stage

    def __contains__(self, name: object) -> bool:
        return name in self._stages

    def __iter__(self) -> Iterator[Stage]:
        return iter(self._stages.values())

    def __len__(self) -> int:
        return len(self._stages)

    def get(self, name: str) -> Stage:
        try:
            return self._stages[name]
        except KeyError:
            raise StageGraphError(
                f"Unknown stage: {name} (known: {', '.join(self._stages)})"
            ) from None

    def validate(self) -> None:
        """Check every prerequisite exists and the graph has no cycle.

        Raises:
            StageGraphError: On an unknown prerequisite or a cycle.
        """
        for stage in self._stages.values():
            for dep in stage.deps:
                if dep not in self._stages:
                    raise StageGraphError(
                        f"Stage '{stage.name}' depends on unknown stage '{dep}'"
                    )
        for name in self._stages:
            self.resolve(name)

    def resolve(self, target: str) -> list[Stage]:
        """Resolve a target into its transitive prerequisite chain.

        Args:
            target: Name of the stage to run.

        Returns:
            Stages in execution order, ending with the target itself.

        Raises:
            StageGraphError: If the target or a prerequisite is unknown,
                or a cycle is found.
        """
        order: list[Stage] = []
        done: set[str] = set()
        path: list[str] = []

        def visit(name: str) -> None:
            if name in done:
                return
            if name in path:
                cycle = " -> ".join([*path[path.index(name) :], name])
                raise StageGraphError(f"Dependency cycle: {cycle}")
            stage = self.get(name)
            path.append(name)
            for dep in stage.deps:
                visit(dep)
            path.pop()
            done.add(name)
            order.append(stage)

        visit(target)
        return order


__all__ = ["Stage", "StageAction", "StageGraph"]
