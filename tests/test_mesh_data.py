"""Tests for mesh data, the device mesh wrapper, the build cache and config."""

import importlib.util
import json
import logging
import math
from pathlib import Path

import numpy as np
import pytest

from wavefront.config import CoordinatorSettings, MeshBuildConfig
from wavefront.mesh_building.cache import MeshCache, mesh_cache_key
from wavefront.mesh_building.types import MeshBuildBounds, MeshBuilderType, WaveSource, WavefrontMeshData
from wavefront.wavefront_mesh import HostDevice, WavefrontMesh

SCRIPTS_DIR = Path(__file__).parent.parent / "scripts"


def load_build_script():
    spec = importlib.util.spec_from_file_location(
        "build_wavefront_meshes", SCRIPTS_DIR / "build_wavefront_meshes.py",
    )
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def small_mesh() -> WavefrontMeshData:
    x = np.array([0.0, 10.0, 0.0, 10.0])
    y = np.array([0.0, 0.0, 10.0, 10.0])
    return WavefrontMeshData.from_columns(
        x, y,
        np.array([1.0, 0.8, 0.6, 0.0]),
        np.array([0.0, 0.1, -0.1, 0.0]),
        np.array([0.0, 0.5, 1.0, 0.0]),
        np.array([0.0, 1.0, 1.0, 0.0]),
        np.array([[0, 1, 2], [2, 1, 3]]),
    )


class TestWaveSource:

    def test_invalid_wavelength(self):
        with pytest.raises(ValueError):
            WaveSource(wavelength=0.0, direction=0.0)
        with pytest.raises(ValueError):
            WaveSource(wavelength=float('inf'), direction=0.0)
        with pytest.raises(ValueError):
            WaveSource(wavelength=100.0, direction=float('nan'))

    def test_derived_quantities(self):
        wave = WaveSource(wavelength=100.0, direction=math.pi / 2)
        dx, dy = wave.direction_vec
        assert dx == pytest.approx(0.0, abs=1e-12)
        assert dy == pytest.approx(1.0)
        assert wave.k == pytest.approx(2 * math.pi / 100.0)
        assert WaveSource.from_dict(wave.to_dict()) == wave


class TestMeshBuildBounds:

    def test_expanded_and_contains(self):
        b = MeshBuildBounds(0.0, 0.0, 10.0, 20.0).expanded(5.0)
        assert (b.width, b.height) == (20.0, 30.0)
        assert b.contains(-5.0, 25.0)
        assert not b.contains(-5.1, 0.0)


class TestWavefrontMeshData:

    def test_layout(self):
        mesh = small_mesh()
        assert mesh.vertex_count == 4
        assert mesh.index_count == 6
        assert mesh.triangle_count == 2
        assert mesh.vertices.dtype == np.float32
        assert mesh.indices.dtype == np.uint32
        assert mesh.vertex_view()[1].tolist() == pytest.approx([10.0, 0.0, 0.8, 0.1, 0.5, 1.0])
        assert mesh.triangle_view()[1].tolist() == [2, 1, 3]

    def test_empty(self):
        mesh = WavefrontMeshData.empty()
        assert mesh.is_empty
        assert mesh.vertex_count == 0 and mesh.index_count == 0
        assert mesh.summary() == "WavefrontMeshData: empty"

    def test_rejects_bad_lengths(self):
        with pytest.raises(ValueError):
            WavefrontMeshData(np.zeros(7, dtype=np.float32), np.zeros(0, dtype=np.uint32))
        with pytest.raises(ValueError):
            WavefrontMeshData(np.zeros(6, dtype=np.float32), np.zeros(2, dtype=np.uint32))

    def test_summary(self):
        text = small_mesh().summary()
        assert "4 vertices, 2 triangles" in text

    def test_save_load(self, tmp_path):
        mesh = small_mesh()
        npz = mesh.save(tmp_path / "mesh", metadata={'builder_type': 'test-grid'})
        assert npz.suffix == '.npz'
        with open(tmp_path / "mesh.json") as f:
            meta = json.load(f)
        assert meta['vertex_count'] == 4
        assert meta['builder_type'] == 'test-grid'
        loaded = WavefrontMeshData.load(tmp_path / "mesh")
        assert np.array_equal(loaded.vertices, mesh.vertices)
        assert np.array_equal(loaded.indices, mesh.indices)


class TestWavefrontMesh:

    def test_upload_and_destroy(self):
        device = HostDevice()
        wave = WaveSource(wavelength=100.0, direction=0.0, index=2)
        mesh = WavefrontMesh.from_mesh_data(small_mesh(), wave, MeshBuilderType.TERRAIN_EULERIAN, 12.5, device)

        assert device.buffers_created == 2
        assert mesh.vertex_buffer.label == "wavefront-terrain-eulerian-vertices-2"
        assert mesh.index_buffer.label == "wavefront-terrain-eulerian-indices-2"
        assert mesh.vertex_count == 4
        assert mesh.index_count == 6
        assert mesh.build_time_ms == 12.5

        mesh.destroy()
        assert mesh.destroyed
        assert device.count_live() == 0
        mesh.destroy()
        assert "destroyed" in repr(mesh)

    def test_device_forgets_destroyed_buffers(self):
        device = HostDevice()
        wave = WaveSource(wavelength=100.0, direction=0.0)
        for _ in range(10):
            mesh = WavefrontMesh.from_mesh_data(small_mesh(), wave, MeshBuilderType.TEST_GRID, 0.0, device)
            assert device.count_live() == 2
            mesh.destroy()
            assert device.count_live() == 0
        assert device.buffers_created == 20
        assert device._live == {}

        buf = device.create_buffer(np.arange(4.0), "vertex", "scratch")
        buf.destroy()
        buf.destroy()
        assert buf.destroyed
        assert buf.size_bytes == 0
        assert device.count_live() == 0

    def test_buffers_are_write_once(self):
        mesh = WavefrontMesh.from_mesh_data(
            small_mesh(), WaveSource(wavelength=100.0, direction=0.0), MeshBuilderType.TEST_GRID,
        )
        with pytest.raises(ValueError):
            mesh.vertex_buffer.data[0] = 1.0
        with pytest.raises(ValueError):
            mesh.vertices[0] = 1.0

    def test_source_data_not_shared(self):
        data = small_mesh()
        mesh = WavefrontMesh.from_mesh_data(data, WaveSource(wavelength=100.0, direction=0.0), "test-grid")
        data.vertices[0] = 99.0
        assert mesh.vertices[0] == 0.0
        assert np.array_equal(mesh.to_mesh_data().indices, data.indices)


class TestMeshCache:

    def test_put_get(self, tmp_path):
        cache = MeshCache(tmp_path)
        mesh = small_mesh()
        assert cache.get("abc") is None
        cache.put("abc", mesh, metadata={'note': 'x'})
        assert "abc" in cache
        assert len(cache) == 1
        loaded = cache.get("abc")
        assert np.array_equal(loaded.vertices, mesh.vertices)
        assert (cache.hits, cache.misses) == (1, 1)
        assert cache.clear() == 1
        assert len(cache) == 0

    def test_unreadable_entry_is_a_miss(self, tmp_path):
        cache = MeshCache(tmp_path)
        (tmp_path / "bad.npz").write_bytes(b"not a zip file")
        assert cache.get("bad") is None
        assert cache.misses == 1

    def test_key_covers_inputs(self, island_terrain):
        wave = WaveSource(wavelength=150.0, direction=0.0)
        bounds = island_terrain.coastline_bounds()
        base = mesh_cache_key(island_terrain, wave, 0.0, bounds, MeshBuilderType.TERRAIN_EULERIAN)

        assert base == mesh_cache_key(island_terrain.clone(), wave, 0.0, bounds, "terrain-eulerian")
        assert base != mesh_cache_key(island_terrain, wave, 0.5, bounds, MeshBuilderType.TERRAIN_EULERIAN)
        assert base != mesh_cache_key(
            island_terrain, WaveSource(wavelength=150.0, direction=0.1), 0.0, bounds,
            MeshBuilderType.TERRAIN_EULERIAN,
        )
        assert base != mesh_cache_key(island_terrain, wave, 0.0, None, MeshBuilderType.TERRAIN_EULERIAN)
        assert base != mesh_cache_key(island_terrain, wave, 0.0, bounds, MeshBuilderType.GRID_EULERIAN)
        assert base != mesh_cache_key(
            island_terrain, wave, 0.0, bounds, MeshBuilderType.TERRAIN_EULERIAN,
            MeshBuildConfig(min_spacing_divisor=4.0),
        )
        # Source index does not affect the output
        assert base == mesh_cache_key(
            island_terrain, WaveSource(wavelength=150.0, direction=0.0, index=3), 0.0, bounds,
            MeshBuilderType.TERRAIN_EULERIAN,
        )


class TestConfig:

    def test_build_config_round_trip(self):
        config = MeshBuildConfig(grid_spacing=40.0, fan_radii_wavelengths=(0.5, 1.0))
        d = config.to_dict()
        assert d['fan_radii_wavelengths'] == [0.5, 1.0]
        assert MeshBuildConfig.from_dict({**d, 'unknown': 1}) == config

    def test_derived_spacings(self):
        config = MeshBuildConfig()
        assert config.min_spacing(160.0) == 20.0
        assert config.ocean_grid_spacing(160.0) == 320.0
        assert config.domain_margin(100.0) == 2000.0
        assert config.domain_margin(1000.0) == 3000.0

    def test_settings_from_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("WAVEFRONT_MAX_WORKERS", "2")
        monkeypatch.setenv("WAVEFRONT_WORKER_MODE", "thread")
        monkeypatch.setenv("WAVEFRONT_REQUEST_TIMEOUT_S", "1.5")
        monkeypatch.setenv("WAVEFRONT_CACHE_DIR", str(tmp_path))
        settings = CoordinatorSettings()
        assert settings.max_workers == 2
        assert settings.worker_mode == "thread"
        assert settings.request_timeout_s == 1.5
        assert settings.cache_dir == tmp_path

    def test_log_level_from_environment(self, monkeypatch):
        script = load_build_script()
        monkeypatch.setenv("WAVEFRONT_LOG_LEVEL", "warning")
        settings = script.make_settings(workers=1)
        assert settings.log_level == "warning"
        assert script.log_level(settings) == logging.WARNING
        assert script.log_level(settings, verbose=True) == logging.DEBUG

        monkeypatch.setenv("WAVEFRONT_LOG_LEVEL", "chatty")
        with pytest.raises(ValueError):
            script.log_level(script.make_settings())
