"""Tests for pipeline/service.py module.

End-to-end runs of the workspace pipeline against a synthetic workspace,
with a recording FakeExecutor standing in for cargo, make, qemu and docker.
"""

import os

from conftest import FIRMWARE_BYTES, IMAGE_BYTES, KERNEL_BYTES, FakeExecutor, write_kernel
from riscv_vmimage.layout import WorkspaceLayout
from riscv_vmimage.pipeline.service import (
    BUILD_ALL,
    BUILD_KERNEL,
    BUILD_USER,
    FORMAT,
    PROVISION_IMAGE,
    RUN,
    Pipeline,
    PipelineOptions,
    build_stage_graph,
)
from riscv_vmimage.types import StageStatus


def make_pipeline(
    layout: WorkspaceLayout, executor: FakeExecutor, **options
) -> Pipeline:
    return Pipeline(layout, executor, PipelineOptions(image_name="rcore-tutorial-v3", **options))


class TestStageGraph:
    """Tests for build_stage_graph."""

    def test_run_order(self, layout: WorkspaceLayout) -> None:
        graph = build_stage_graph(
            layout, FakeExecutor(), PipelineOptions(image_name="img")
        )
        order = [s.name for s in graph.resolve(RUN)]
        assert order == [FORMAT, BUILD_USER, BUILD_KERNEL, BUILD_ALL, PROVISION_IMAGE, RUN]

    def test_build_all_is_cacheable(self, layout: WorkspaceLayout) -> None:
        graph = build_stage_graph(
            layout, FakeExecutor(), PipelineOptions(image_name="img")
        )
        assert graph.get(BUILD_ALL).cacheable
        assert not graph.get(FORMAT).cacheable


class TestBuildAll:
    """Tests for the build-all target."""

    def test_invokes_toolchains_in_order(
        self, layout: WorkspaceLayout, executor: FakeExecutor
    ) -> None:
        result = make_pipeline(layout, executor).build_all()

        assert result.success
        assert executor.calls == [
            (("cargo", "fmt"), layout.kernel_dir_path),
            (("make", "elf"), layout.user_dir_path),
            (("make", "build"), layout.kernel_dir_path),
        ]

    def test_places_executable_artifacts(
        self, layout: WorkspaceLayout, executor: FakeExecutor
    ) -> None:
        make_pipeline(layout, executor).build_all()

        assert layout.firmware_path.read_bytes() == FIRMWARE_BYTES
        assert layout.kernel_path.read_bytes() == KERNEL_BYTES

    def test_unwritable_destination_fails_stage(
        self, layout: WorkspaceLayout, executor: FakeExecutor
    ) -> None:
        """A filesystem error during placement becomes a failed stage."""
        layout.kernel_path.mkdir()

        result = make_pipeline(layout, executor).build_all()

        assert not result.success
        assert result.exit_code == 1
        assert result.stages[-1].name == BUILD_ALL
        assert result.stages[-1].error_code == "workspace_file_error"
        assert layout.kernel_path.is_dir()
        for path in (layout.firmware_path, layout.kernel_path):
            assert os.access(path, os.X_OK)

    def test_rebuild_overwrites_kernel(
        self,
        layout: WorkspaceLayout,
        executor: FakeExecutor,
        kernel_source: dict[str, bytes],
    ) -> None:
        make_pipeline(layout, executor).build_all()
        kernel_source["data"] = b"kernel v2" * 64

        result = make_pipeline(layout, executor).build_all()

        assert result.success
        assert layout.kernel_path.read_bytes() == b"kernel v2" * 64
        assert StageStatus.SKIPPED not in [s.status for s in result.stages]

    def test_unchanged_rebuild_skips_placement(
        self, layout: WorkspaceLayout, executor: FakeExecutor
    ) -> None:
        make_pipeline(layout, executor).build_all()
        result = make_pipeline(layout, executor).build_all()

        assert result.names(StageStatus.SKIPPED) == [BUILD_ALL]
        # Nested toolchains still run; their own incremental logic applies
        assert executor.commands.count(("make", "build")) == 2

    def test_force_ignores_stamps(
        self, layout: WorkspaceLayout, executor: FakeExecutor
    ) -> None:
        make_pipeline(layout, executor).build_all()
        pipeline = Pipeline(
            layout, executor, PipelineOptions(image_name="img"), force=True
        )
        result = pipeline.build_all()
        assert result.names(StageStatus.SKIPPED) == []

    def test_kernel_failure_aborts(self, layout: WorkspaceLayout) -> None:
        executor = FakeExecutor(exit_codes={("make", "build"): 2})
        result = make_pipeline(layout, executor).build_all()

        assert not result.success
        assert result.exit_code == 2
        assert result.stages[-1].name == BUILD_KERNEL
        assert result.stages[-1].error_code == "build_failure"
        assert not layout.firmware_path.exists()
        assert not layout.kernel_path.exists()

    def test_missing_kernel_output(self, layout: WorkspaceLayout) -> None:
        """A toolchain that exits 0 without producing the kernel fails placement."""
        result = make_pipeline(layout, FakeExecutor()).build_all()

        assert result.stages[-1].name == BUILD_ALL
        assert result.stages[-1].error_code == "missing_artifact"
        assert not layout.firmware_path.exists()

    def test_failed_rebuild_keeps_previous_artifacts(
        self, layout: WorkspaceLayout, executor: FakeExecutor
    ) -> None:
        make_pipeline(layout, executor).build_all()
        failing = FakeExecutor(exit_codes={("make", "build"): 2})

        make_pipeline(layout, failing).build_all()

        assert layout.kernel_path.read_bytes() == KERNEL_BYTES


class TestProvisionImage:
    """Tests for the provision-image target."""

    def test_extracts_once(self, layout: WorkspaceLayout, executor: FakeExecutor) -> None:
        pipeline = make_pipeline(layout, executor)
        archive_before = layout.image_archive_path.read_bytes()

        assert pipeline.provision_image().success
        first = layout.image_path.stat().st_mtime_ns
        assert pipeline.provision_image().success

        assert layout.image_path.read_bytes() == IMAGE_BYTES
        assert layout.image_path.stat().st_mtime_ns == first
        assert layout.image_archive_path.read_bytes() == archive_before
        assert executor.calls == []

    def test_force_image(self, layout: WorkspaceLayout, executor: FakeExecutor) -> None:
        layout.image_path.write_bytes(b"guest data")
        make_pipeline(layout, executor, force_image=True).provision_image()
        assert layout.image_path.read_bytes() == IMAGE_BYTES


class TestRun:
    """Tests for the run target."""

    def test_boots_after_build_and_provision(
        self, layout: WorkspaceLayout, executor: FakeExecutor
    ) -> None:
        result = make_pipeline(layout, executor).run()

        assert result.success
        assert result.names() == [FORMAT, BUILD_USER, BUILD_KERNEL, BUILD_ALL, PROVISION_IMAGE, RUN]
        cmd, cwd = executor.calls[-1]
        assert cmd[0] == "qemu-system-riscv64"
        assert cwd == layout.root
        assert layout.image_path.exists()
        assert executor.programs().count("qemu-system-riscv64") == 1

    def test_emulator_status_propagates(self, layout: WorkspaceLayout) -> None:
        executor = FakeExecutor(
            exit_codes={"qemu-system-riscv64": 3},
            hooks={("make", "build"): lambda cwd: write_kernel(layout)},
        )
        result = make_pipeline(layout, executor).run()

        assert result.exit_code == 3
        assert result.stages[-1].name == RUN
        assert result.stages[-1].error_code == "nonzero_exit"

    def test_kernel_failure_stops_before_image_and_boot(self, layout: WorkspaceLayout) -> None:
        executor = FakeExecutor(exit_codes={("make", "build"): 2})
        result = make_pipeline(layout, executor).run()

        assert result.exit_code == 2
        assert result.stages[-1].name == BUILD_KERNEL
        assert result.names() == [FORMAT, BUILD_USER, BUILD_KERNEL]
        assert not layout.image_path.exists()
        assert not layout.kernel_path.exists()
        assert "qemu-system-riscv64" not in executor.programs()

    def test_missing_archive_never_boots(
        self, layout: WorkspaceLayout, executor: FakeExecutor
    ) -> None:
        layout.image_archive_path.unlink()
        result = make_pipeline(layout, executor).run()

        assert result.stages[-1].name == PROVISION_IMAGE
        assert result.stages[-1].error_code == "decompression_failure"
        assert result.exit_code == 1
        assert "qemu-system-riscv64" not in executor.programs()

    def test_missing_emulator(self, layout: WorkspaceLayout) -> None:
        executor = FakeExecutor(
            hooks={("make", "build"): lambda cwd: write_kernel(layout)},
            available=(),
        )
        result = make_pipeline(layout, executor).run()

        assert result.stages[-1].error_code == "missing_dependency"
        assert "qemu-system-riscv64" not in executor.programs()

    def test_dry_run(self, layout: WorkspaceLayout, executor: FakeExecutor) -> None:
        result = make_pipeline(layout, executor, dry_run=True).run()
        assert result.success
        assert "qemu-system-riscv64" not in executor.programs()


class TestClean:
    """Tests for the clean target."""

    def test_removes_only_generated_files(
        self, layout: WorkspaceLayout, executor: FakeExecutor
    ) -> None:
        pipeline = make_pipeline(layout, executor)
        pipeline.run()
        assert layout.state_dir_path.exists()

        result = make_pipeline(layout, executor).clean()

        assert result.success
        assert executor.calls[-1] == (("make", "clean"), layout.kernel_dir_path)
        assert not layout.firmware_path.exists()
        assert not layout.kernel_path.exists()
        assert not layout.image_path.exists()
        assert not layout.state_dir_path.exists()
        assert layout.image_archive_path.exists()
        assert layout.firmware_source_path.read_bytes() == FIRMWARE_BYTES
        assert (layout.kernel_dir_path / "src" / "main.rs").exists()
        assert (layout.user_dir_path / "Makefile").exists()

    def test_unremovable_generated_path_fails_stage(self, layout: WorkspaceLayout) -> None:
        layout.firmware_path.mkdir()

        result = make_pipeline(layout, FakeExecutor()).clean()

        assert result.stages[-1].name == "clean"
        assert result.stages[-1].error_code == "workspace_file_error"
        assert layout.image_archive_path.exists()

    def test_clean_on_fresh_workspace(self, layout: WorkspaceLayout) -> None:
        assert make_pipeline(layout, FakeExecutor()).clean().success

    def test_build_after_clean_places_again(
        self, layout: WorkspaceLayout, executor: FakeExecutor
    ) -> None:
        make_pipeline(layout, executor).build_all()
        make_pipeline(layout, executor).clean()
        result = make_pipeline(layout, executor).build_all()

        assert result.names(StageStatus.SKIPPED) == []
        assert layout.kernel_path.exists()


class TestSandbox:
    """Tests for the sandbox targets."""

    def test_build_sandbox(self, layout: WorkspaceLayout) -> None:
        (layout.root / "Dockerfile").write_text("FROM ubuntu:22.04\n")
        executor = FakeExecutor()

        result = make_pipeline(layout, executor).build_sandbox()

        assert result.success
        assert executor.calls == [
            (("docker", "build", "-t", "rcore-tutorial-v3", "."), layout.root)
        ]

    def test_build_sandbox_without_recipe(self, layout: WorkspaceLayout) -> None:
        result = make_pipeline(layout, FakeExecutor()).build_sandbox()
        assert result.stages[-1].error_code == "missing_dependency"

    def test_enter_sandbox_status(self, layout: WorkspaceLayout) -> None:
        executor = FakeExecutor(exit_codes={"docker": 1})
        result = make_pipeline(layout, executor).enter_sandbox()
        assert result.exit_code == 1


class TestStatus:
    """Tests for Pipeline.status."""

    def test_reports_workspace_files(
        self, layout: WorkspaceLayout, executor: FakeExecutor
    ) -> None:
        pipeline = make_pipeline(layout, executor)
        pipeline.build_all()
        infos = {i.name: i for i in pipeline.status()}

        assert infos["kernel-qemu"].exists
        assert infos["kernel-qemu"].executable
        assert infos["sbi-qemu"].size_bytes == len(FIRMWARE_BYTES)
        assert not infos["sdcard-riscv.img"].exists
        assert infos["sdcard-riscv.img.gz"].exists

