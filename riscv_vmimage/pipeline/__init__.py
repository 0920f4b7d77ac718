"""Build-and-run pipeline.

This module handles:
- The stage graph and its runner
- Content-hash freshness stamps
- Artifact placement into the normalized namespace
- Storage image provisioning

Access submodules directly, e.g. riscv_vmimage.pipeline.service.
"""

from riscv_vmimage.pipeline.graph import Stage, StageGraph
from riscv_vmimage.pipeline.runner import PipelineRunner

__all__ = ["PipelineRunner", "Stage", "StageGraph"]
