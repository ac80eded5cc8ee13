"""Tests for the worker pool and the mesh build coordinator."""

import os
import threading
import time
from concurrent.futures.process import BrokenProcessPool

import numpy as np
import pytest

from wavefront.config import CoordinatorSettings
from wavefront.mesh_building.builders import build_test_mesh
from wavefront.mesh_building.coordinator import MeshBuildCoordinator, run_build_request
from wavefront.mesh_building.types import (
    BuildState,
    MeshBuilderType,
    MeshBuildRequest,
    WaveSource,
    WavefrontMeshData,
)
from wavefront.mesh_building.worker_pool import WorkerPool, WorkerPoolError, recommended_worker_count
from wavefront.utils import serial_kernels_enabled
from wavefront.wavefront_mesh import HostDevice


def tagged_mesh(value: float) -> WavefrontMeshData:
    """Single triangle whose amplitude column carries a tag."""
    x = np.array([0.0, 1.0, 0.0])
    y = np.array([0.0, 0.0, 1.0])
    n = 3
    return WavefrontMeshData.from_columns(
        x, y, np.full(n, value), np.zeros(n), np.zeros(n), np.ones(n), np.array([0, 1, 2]),
    )


def wavelength_builder(wave_source, coastline_bounds, terrain, tide_height, config):
    return tagged_mesh(wave_source.wavelength)


def failing_builder(wave_source, coastline_bounds, terrain, tide_height, config):
    raise RuntimeError("solver exploded")


def crashing_builder(wave_source, coastline_bounds, terrain, tide_height, config):
    os._exit(1)


class SleepingBuilder:
    """Takes a fixed time per build."""

    def __init__(self, delay_s: float):
        self.delay_s = delay_s

    def __call__(self, wave_source, coastline_bounds, terrain, tide_height, config):
        time.sleep(self.delay_s)
        return tagged_mesh(wave_source.wavelength)


class SlowOnWave:
    """Builder that stalls on one wave index, fast on every other."""

    def __init__(self, slow_index: int, delay_s: float):
        self.slow_index = slow_index
        self.delay_s = delay_s
        self.release = threading.Event()

    def __call__(self, wave_source, coastline_bounds, terrain, tide_height, config):
        if wave_source.index == self.slow_index:
            self.release.wait(self.delay_s)
        return tagged_mesh(wave_source.wavelength)


class ReverseOrderBuilder:
    """Finishes the first-submitted request last."""

    def __call__(self, wave_source, coastline_bounds, terrain, tide_height, config):
        time.sleep(0.05 * (3 - wave_source.index))
        return tagged_mesh(wave_source.wavelength)


# =============================================================================
# Worker Pool
# =============================================================================

class TestWorkerPool:

    def test_recommended_worker_count(self):
        n = recommended_worker_count(4)
        assert 1 <= n <= 4
        assert recommended_worker_count(1) == 1

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            WorkerPool(worker_count=2, mode="fiber")
        with pytest.raises(ValueError):
            WorkerPool(worker_count=0, mode="thread")

    def test_lifecycle(self):
        pool = WorkerPool(worker_count=2, mode="thread")
        assert not pool.is_initialized
        with pytest.raises(WorkerPoolError):
            pool.submit(sum, [1, 2])
        pool.initialize()
        assert pool.is_initialized
        assert pool.submit(sum, [1, 2]).result(timeout=5) == 3
        pool.terminate()
        assert not pool.is_initialized
        pool.terminate()

    def test_context_manager(self):
        with WorkerPool(worker_count=1, mode="thread") as pool:
            assert pool.submit(max, 3, 7).result(timeout=5) == 7
        assert not pool.is_initialized

    def test_init_failure(self, monkeypatch):
        pool = WorkerPool(worker_count=1, mode="thread")

        def broken():
            raise OSError("no more threads")

        monkeypatch.setattr(pool, "_create_executor", broken)
        with pytest.raises(WorkerPoolError):
            pool.initialize()
        assert not pool.is_initialized

    def test_process_pool_runs_builder(self, island_terrain):
        wave = WaveSource(wavelength=150.0, direction=0.0)
        request = MeshBuildRequest(
            request_id=1, order=0, builder_type=MeshBuilderType.TEST_GRID,
            wave_source=wave, terrain=island_terrain.clone(),
            coastline_bounds=island_terrain.coastline_bounds(), tide_height=0.0,
        )
        with WorkerPool(worker_count=1, mode="process", init_timeout_s=60.0) as pool:
            result = pool.submit(run_build_request, request, build_test_mesh).result(timeout=60)
        assert result.request_id == 1
        assert not result.mesh_data.is_empty
        assert result.build_time_ms >= 0.0

    def test_thread_workers_use_serial_kernels(self):
        with WorkerPool(worker_count=2, mode="thread") as pool:
            assert pool.submit(serial_kernels_enabled).result(timeout=5) is True
        assert serial_kernels_enabled() is False

    def test_process_workers_use_serial_kernels(self):
        with WorkerPool(worker_count=1, mode="process", init_timeout_s=60.0) as pool:
            assert pool.submit(serial_kernels_enabled).result(timeout=60) is True

    def test_restart_replaces_executor(self):
        with WorkerPool(worker_count=1, mode="thread") as pool:
            executor = pool._executor
            generation = pool.generation
            pool.restart()
            assert pool._executor is not executor
            assert pool.generation == generation + 1
            assert pool.submit(sum, [1, 2]).result(timeout=5) == 3

    def test_submit_after_worker_crash(self):
        with WorkerPool(worker_count=1, mode="process", init_timeout_s=60.0) as pool:
            generation = pool.generation
            with pytest.raises(BrokenProcessPool):
                pool.submit(os._exit, 1).result(timeout=60)
            # The broken executor is replaced on the next submit
            assert pool.submit(sum, [1, 2]).result(timeout=60) == 3
            assert pool.generation == generation + 1


# =============================================================================
# Coordinator
# =============================================================================

class TestCoordinator:

    def make(self, settings, builders, **kwargs):
        return MeshBuildCoordinator(settings=settings, builders=builders, **kwargs)

    def test_groups_by_builder_type(self, thread_settings, flat_terrain, wave_sources):
        builders = {MeshBuilderType.TERRAIN_EULERIAN: wavelength_builder,
                    MeshBuilderType.GRID_EULERIAN: wavelength_builder}
        with self.make(thread_settings, builders) as coordinator:
            meshes = coordinator.build_meshes(
                wave_sources, flat_terrain, None, 0.0,
                [MeshBuilderType.TERRAIN_EULERIAN, MeshBuilderType.GRID_EULERIAN],
            )
            assert list(meshes) == [MeshBuilderType.TERRAIN_EULERIAN, MeshBuilderType.GRID_EULERIAN]
            for mesh_list in meshes.values():
                assert [m.wave_source.index for m in mesh_list] == [0, 1, 2]
                assert [m.vertices[2] for m in mesh_list] == [150.0, 200.0, 300.0]
            assert all(o.state == BuildState.SUCCEEDED for o in coordinator.last_outcomes)
            assert [o.order for o in coordinator.last_outcomes] == list(range(6))

    def test_scenario_d_one_timeout(self, flat_terrain, wave_sources):
        settings = CoordinatorSettings(worker_mode="thread", request_timeout_s=0.5)
        # Fixed size so the stalled request never holds up its siblings
        pool = WorkerPool(worker_count=4, mode="thread")
        slow = SlowOnWave(slow_index=1, delay_s=10.0)
        builders = {MeshBuilderType.TERRAIN_EULERIAN: slow,
                    MeshBuilderType.GRID_EULERIAN: wavelength_builder}
        coordinator = self.make(settings, builders, pool=pool)
        try:
            meshes = coordinator.build_meshes(
                wave_sources, flat_terrain, None, 0.0,
                [MeshBuilderType.TERRAIN_EULERIAN, MeshBuilderType.GRID_EULERIAN],
            )
        finally:
            slow.release.set()
            coordinator.terminate()
            pool.terminate()

        assert sum(len(v) for v in meshes.values()) == 5
        assert [m.wave_source.index for m in meshes[MeshBuilderType.TERRAIN_EULERIAN]] == [0, 2]
        assert len(meshes[MeshBuilderType.GRID_EULERIAN]) == 3
        assert None not in meshes[MeshBuilderType.TERRAIN_EULERIAN]

        states = [o.state for o in coordinator.last_outcomes]
        assert states.count(BuildState.TIMED_OUT) == 1
        assert states.count(BuildState.SUCCEEDED) == 5
        timed_out = next(o for o in coordinator.last_outcomes if o.state == BuildState.TIMED_OUT)
        assert timed_out.label == "terrain-eulerian wave 1"

    def test_failure_is_contained(self, thread_settings, flat_terrain, wave_sources, caplog):
        builders = {MeshBuilderType.TERRAIN_EULERIAN: failing_builder,
                    MeshBuilderType.GRID_EULERIAN: wavelength_builder}
        with self.make(thread_settings, builders) as coordinator:
            meshes = coordinator.build_meshes(
                wave_sources, flat_terrain, None, 0.0,
                [MeshBuilderType.TERRAIN_EULERIAN, MeshBuilderType.GRID_EULERIAN],
            )
        assert meshes[MeshBuilderType.TERRAIN_EULERIAN] == []
        assert len(meshes[MeshBuilderType.GRID_EULERIAN]) == 3
        failed = [o for o in coordinator.last_outcomes if o.state == BuildState.FAILED]
        assert len(failed) == 3
        assert "solver exploded" in failed[0].error
        assert "Mesh build FAILED (terrain-eulerian wave 0)" in caplog.text

    def test_completion_order_does_not_matter(self, thread_settings, flat_terrain, wave_sources):
        builders = {MeshBuilderType.TERRAIN_EULERIAN: ReverseOrderBuilder()}
        with self.make(thread_settings, builders) as coordinator:
            meshes = coordinator.build_meshes(
                wave_sources, flat_terrain, None, 0.0, [MeshBuilderType.TERRAIN_EULERIAN],
            )
        assert [m.wave_source.index for m in meshes[MeshBuilderType.TERRAIN_EULERIAN]] == [0, 1, 2]

    def test_unknown_builder_type(self, thread_settings, flat_terrain, wave_sources):
        with self.make(thread_settings, {MeshBuilderType.TEST_GRID: wavelength_builder}) as coordinator:
            meshes = coordinator.build_meshes(
                wave_sources, flat_terrain, None, 0.0, ["spectral", MeshBuilderType.TEST_GRID],
            )
        assert meshes["spectral"] == []
        assert len(meshes[MeshBuilderType.TEST_GRID]) == 3
        states = [o.state for o in coordinator.last_outcomes]
        assert states.count(BuildState.FAILED) == 3

    def test_wave_index_from_position(self, thread_settings, flat_terrain):
        waves = [WaveSource(wavelength=100.0, direction=0.0, index=7),
                 WaveSource(wavelength=120.0, direction=0.0, index=7)]
        with self.make(thread_settings, {MeshBuilderType.TEST_GRID: wavelength_builder}) as coordinator:
            meshes = coordinator.build_meshes(waves, flat_terrain, None, 0.0, [MeshBuilderType.TEST_GRID])
        assert [m.wave_source.index for m in meshes[MeshBuilderType.TEST_GRID]] == [0, 1]

    def test_recompute_destroys_previous_meshes(self, thread_settings, flat_terrain, wave_sources):
        device = HostDevice()
        builders = {MeshBuilderType.TEST_GRID: wavelength_builder}
        with self.make(thread_settings, builders, device=device) as coordinator:
            first = coordinator.build_meshes(wave_sources, flat_terrain, None, 0.0, [MeshBuilderType.TEST_GRID])
            assert device.count_live() == 6
            second = coordinator.recompute(wave_sources, flat_terrain, None, 0.0, [MeshBuilderType.TEST_GRID])
            assert all(m.destroyed for m in first[MeshBuilderType.TEST_GRID])
            assert not any(m.destroyed for m in second[MeshBuilderType.TEST_GRID])
            assert device.count_live() == 6
            assert len(coordinator.meshes) == 3
        assert device.count_live() == 0

    def test_pool_reused_across_batches(self, thread_settings, flat_terrain, wave_sources):
        pool = WorkerPool(worker_count=2, mode="thread")
        coordinator = MeshBuildCoordinator(
            settings=thread_settings, pool=pool, builders={MeshBuilderType.TEST_GRID: wavelength_builder},
        )
        coordinator.build_meshes(wave_sources, flat_terrain, None, 0.0, [MeshBuilderType.TEST_GRID])
        executor = pool._executor
        coordinator.build_meshes(wave_sources, flat_terrain, None, 0.0, [MeshBuilderType.TEST_GRID])
        assert pool._executor is executor
        # An injected pool is not shut down by the coordinator
        coordinator.terminate()
        assert pool.is_initialized
        pool.terminate()

    def test_pool_failure_propagates(self, thread_settings, flat_terrain, wave_sources, monkeypatch):
        pool = WorkerPool(worker_count=1, mode="thread")

        def broken():
            raise OSError("cannot start workers")

        monkeypatch.setattr(pool, "_create_executor", broken)
        coordinator = MeshBuildCoordinator(settings=thread_settings, pool=pool)
        with pytest.raises(WorkerPoolError):
            coordinator.build_meshes(wave_sources, flat_terrain, None, 0.0, [MeshBuilderType.TEST_GRID])

    def test_requests_get_terrain_clones(self, thread_settings, island_terrain, wave_sources):
        seen = []

        def recording_builder(wave_source, coastline_bounds, terrain, tide_height, config):
            seen.append(terrain)
            return tagged_mesh(1.0)

        with self.make(thread_settings, {MeshBuilderType.TEST_GRID: recording_builder}) as coordinator:
            coordinator.build_meshes(
                wave_sources, island_terrain, island_terrain.coastline_bounds(), 0.0,
                [MeshBuilderType.TEST_GRID],
            )
        assert len(seen) == 3
        assert all(t is not island_terrain for t in seen)
        assert len({id(t.vertex_data) for t in seen}) == 3

    def test_queued_requests_do_not_time_out(self, flat_terrain, wave_sources):
        # Three 0.6s builds on one worker take 1.8s in total; each one
        # is still well inside its own 1s deadline
        settings = CoordinatorSettings(max_workers=1, worker_mode="thread", request_timeout_s=1.0)
        builders = {MeshBuilderType.TEST_GRID: SleepingBuilder(0.6)}
        with self.make(settings, builders) as coordinator:
            assert coordinator.pool.worker_count == 1
            meshes = coordinator.build_meshes(wave_sources, flat_terrain, None, 0.0, [MeshBuilderType.TEST_GRID])
            states = [o.state for o in coordinator.last_outcomes]
        assert states == [BuildState.SUCCEEDED] * 3
        assert [m.wave_source.index for m in meshes[MeshBuilderType.TEST_GRID]] == [0, 1, 2]

    def test_worker_crash_restarts_pool(self, flat_terrain, wave_sources):
        settings = CoordinatorSettings(max_workers=1, worker_mode="process", init_timeout_s=60.0,
                                       request_timeout_s=60.0)
        builders = {"crash": crashing_builder, MeshBuilderType.TEST_GRID: wavelength_builder}
        with self.make(settings, builders) as coordinator:
            meshes = coordinator.build_meshes(
                wave_sources[:1], flat_terrain, None, 0.0, ["crash", MeshBuilderType.TEST_GRID],
            )
            assert meshes["crash"] == []
            assert len(meshes[MeshBuilderType.TEST_GRID]) == 1
            crashed = coordinator.last_outcomes[0]
            assert crashed.state == BuildState.FAILED
            assert "BrokenProcessPool" in crashed.error

            # The replacement pool serves later batches
            meshes = coordinator.build_meshes(
                wave_sources, flat_terrain, None, 0.0, [MeshBuilderType.TEST_GRID],
            )
            assert len(meshes[MeshBuilderType.TEST_GRID]) == 3

    def test_real_builders_end_to_end(self, island_terrain, fast_config):
        # Process workers, like production; numba kernels run serially inside them
        settings = CoordinatorSettings(max_workers=2, worker_mode="process", init_timeout_s=60.0,
                                       request_timeout_s=120.0)
        waves = [WaveSource(wavelength=150.0, direction=0.0)]
        builder_types = [MeshBuilderType.TEST_GRID, MeshBuilderType.GRID_EULERIAN,
                         MeshBuilderType.CPU_LAGRANGIAN]
        with MeshBuildCoordinator(settings=settings, config=fast_config) as coordinator:
            meshes = coordinator.build_meshes(
                waves, island_terrain, island_terrain.coastline_bounds(), 0.0, builder_types,
            )
        for builder_type in builder_types:
            assert len(meshes[builder_type]) == 1
        mesh = meshes[MeshBuilderType.GRID_EULERIAN][0]
        assert mesh.destroyed
        assert mesh.vertex_count > 0

    def test_cache_hits(self, tmp_path, flat_terrain, wave_sources):
        settings = CoordinatorSettings(max_workers=2, worker_mode="thread", cache_dir=tmp_path / "cache")
        calls = []

        def counting_builder(wave_source, coastline_bounds, terrain, tide_height, config):
            calls.append(wave_source.index)
            return tagged_mesh(wave_source.wavelength)

        builders = {MeshBuilderType.TEST_GRID: counting_builder}
        with MeshBuildCoordinator(settings=settings, builders=builders) as coordinator:
            first = coordinator.build_meshes(wave_sources, flat_terrain, None, 0.0, [MeshBuilderType.TEST_GRID])
            second = coordinator.recompute(wave_sources, flat_terrain, None, 0.0, [MeshBuilderType.TEST_GRID])
            assert sorted(calls) == [0, 1, 2]
            assert all(o.from_cache for o in coordinator.last_outcomes)
            assert coordinator.cache.hits == 3
            a = [m.to_mesh_data().vertices.tobytes() for m in first[MeshBuilderType.TEST_GRID]]
            b = [m.to_mesh_data().vertices.tobytes() for m in second[MeshBuilderType.TEST_GRID]]
            assert a == b
            # Different tide: new inputs, new builds
            coordinator.build_meshes(wave_sources, flat_terrain, None, 1.0, [MeshBuilderType.TEST_GRID])
            assert len(calls) == 6
