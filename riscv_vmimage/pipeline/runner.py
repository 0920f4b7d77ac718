"""Pipeline runner for executing stage graphs.

This module handles:
- Executing a target's prerequisite chain sequentially, in declared order
- Running each stage's commands in its working directory via a ProcessExecutor
- Skipping stages whose declared outputs are fresh (content-hash stamps)
- Fail-fast: the first failing command or action aborts the pipeline

There are no retries. A failed stage records no stamp, and previously
produced artifacts are left untouched.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from riscv_vmimage.errors import BuildFailure, PipelineError
from riscv_vmimage.types import PipelineResult, StageResult, StageStatus

if TYPE_CHECKING:
    from riscv_vmimage.pipeline.graph import Stage, StageGraph
    from riscv_vmimage.pipeline.stamps import StampStore
    from riscv_vmimage.process import ProcessExecutor

logger = logging.getLogger(__name__)


class PipelineRunner:
    """Runs targets of a StageGraph.

    Args:
        graph: The stage graph.
        executor: Process executor used for stage commands.
        stamps: Optional stamp store; without it no stage is ever skipped.
        force: Run every stage even when its outputs are fresh.
        timeout: Per-command timeout in seconds (None = no limit).
    """

    def __init__(
        self,
        graph: StageGraph,
        executor: ProcessExecutor,
        stamps: StampStore | None = None,
        force: bool = False,
        timeout: float | None = None,
    ) -> None:
        self.graph = graph
        self.executor = executor
        self.stamps = stamps
        self.force = force
        self.timeout = timeout

    def plan(self, target: str) -> list[Stage]:
        """Return the stages a run of ``target`` would visit, in order."""
        return self.graph.resolve(target)

    def run(self, target: str) -> PipelineResult:
        """Run a target and its prerequisites.

        Args:
            target: Stage name.

        Returns:
            PipelineResult; on failure the last entry is the failed stage and
            no later stage has run.

        Raises:
            StageGraphError: If the target cannot be resolved.
        """
        stages = self.plan(target)
        logger.info(
            "Running target %s: %s", target, " -> ".join(s.name for s in stages)
        )

        result = PipelineResult(target=target)
        for stage in stages:
            stage_result = self._run_stage(stage)
            result.stages.append(stage_result)
            if stage_result.status == StageStatus.FAILED:
                logger.error(
                    "Aborting %s after stage %s failed (exit %d)",
                    target,
                    stage.name,
                    stage_result.exit_code,
                )
                break

        return result

    def _run_stage(self, stage: Stage) -> StageResult:
        if not self.force and self.stamps is not None and stage.cacheable:
            if self.stamps.is_fresh(stage):
                logger.info("Stage %s is up to date, skipping", stage.name)
                return StageResult(name=stage.name, status=StageStatus.SKIPPED)

        logger.info("Stage %s", stage.name)
        started = time.monotonic()
        try:
            exit_code = self._execute(stage)
            if not exit_code and self.stamps is not None and stage.cacheable:
                self.stamps.record(stage)
        except PipelineError as e:
            logger.error("Stage %s failed: %s", stage.name, e.message)
            return StageResult(
                name=stage.name,
                status=StageStatus.FAILED,
                exit_code=e.exit_code,
                duration_s=time.monotonic() - started,
                message=e.message,
                error_code=e.code,
            )

        duration = time.monotonic() - started
        if exit_code:
            logger.error("Stage %s exited with status %d", stage.name, exit_code)
            return StageResult(
                name=stage.name,
                status=StageStatus.FAILED,
                exit_code=exit_code,
                duration_s=duration,
                message=f"exited with status {exit_code}",
                error_code="nonzero_exit",
            )

        logger.debug("Stage %s finished in %.1fs", stage.name, duration)
        return StageResult(
            name=stage.name, status=StageStatus.SUCCEEDED, duration_s=duration
        )

    def _execute(self, stage: Stage) -> int | None:
        for command in stage.commands:
            proc = self.executor.run(command, cwd=stage.cwd, timeout=self.timeout)
            if proc.exit_code != 0:
                raise BuildFailure(stage.name, proc.command_str, proc.exit_code)
        if stage.action is not None:
            return stage.action()
        return None


__all__ = ["PipelineRunner"]
