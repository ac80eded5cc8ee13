"""Tests for the Fast Marching solver and property derivation."""

import math

import numpy as np
import pytest

from wavefront.mesh_building.adjacency import build_adjacency
from wavefront.mesh_building.delaunay import delaunay_triangulate
from wavefront.mesh_building.eikonal import (
    BLOCKED,
    KNOWN,
    dry_land_mask,
    eikonal_triangle_update,
    fast_marching,
    land_edges,
    upwave_shadow_mask,
    upwave_shadow_mask_serial,
)
from wavefront.mesh_building.properties import (
    compute_blend_weights,
    compute_diffraction_factor,
    compute_travel_time_gradient,
    derive_wave_properties,
)
from wavefront.mesh_building.seeding import seed_vertices
from wavefront.mesh_building.types import MeshBuildBounds, WaveSource
from wavefront.mesh_building.wave_physics import deep_water_speed


def solve(seeds, wave, terrain, tide=0.0):
    tris = delaunay_triangulate(seeds.points)
    adj = build_adjacency(seeds.n_points, tris)
    return tris, fast_marching(seeds.points, seeds.is_land, tris, adj, wave, terrain, tide)


class TestTriangleUpdate:

    def test_plane_wave_exact(self):
        # Wave travelling +X at speed 2: T = x / 2
        t = eikonal_triangle_update(0.0, 0.0, 0.0, 0.0, 1.0, 0.0, 1.0, 0.5, 2.0)
        assert t == pytest.approx(0.5)

    def test_oblique_plane_wave(self):
        d = (math.cos(0.3), math.sin(0.3))
        speed = 3.0

        def T(x, y):
            return (x * d[0] + y * d[1]) / speed

        t = eikonal_triangle_update(0.0, 0.0, T(0.0, 0.0), 0.0, 1.0, T(0.0, 1.0), 1.0, 0.6, speed)
        assert t == pytest.approx(T(1.0, 0.6), rel=1e-9)

    def test_not_worse_than_edge_updates(self):
        t = eikonal_triangle_update(0.0, 0.0, 1.0, 1.0, 0.0, 5.0, 0.5, 1.0, 1.0)
        assert t <= 1.0 + math.hypot(0.5, 1.0) + 1e-12
        assert t <= 5.0 + math.hypot(0.5, 1.0) + 1e-12

    def test_degenerate_edge(self):
        t = eikonal_triangle_update(0.0, 0.0, 2.0, 0.0, 0.0, 7.0, 3.0, 4.0, 5.0)
        assert t == pytest.approx(2.0 + 1.0)


class TestShadow:

    def test_upwave_shadow_mask(self):
        # One vertical land edge at x = 0 spanning y in [-1, 1], wave travelling +X
        ax, ay, bx, by = (np.array([v]) for v in (0.0, -1.0, 0.0, 1.0))
        px = np.array([5.0, 5.0, -5.0, 5.0])
        py = np.array([0.0, 3.0, 0.0, 0.5])
        candidates = np.array([True, True, True, False])
        mask = upwave_shadow_mask(px, py, candidates, 1.0, 0.0, ax, ay, bx, by)
        assert mask.tolist() == [True, False, False, False]

    def test_serial_shadow_mask_matches_parallel(self):
        rng = np.random.default_rng(3)
        angles = np.linspace(0.0, 2 * np.pi, 33)
        ax, ay = 100.0 * np.cos(angles[:-1]), 100.0 * np.sin(angles[:-1])
        bx, by = 100.0 * np.cos(angles[1:]), 100.0 * np.sin(angles[1:])
        px = rng.uniform(-400.0, 400.0, 500)
        py = rng.uniform(-400.0, 400.0, 500)
        candidates = rng.uniform(size=500) > 0.2
        args = (px, py, candidates, math.cos(0.4), math.sin(0.4), ax, ay, bx, by)
        parallel = upwave_shadow_mask(*args)
        assert parallel.any()
        assert np.array_equal(upwave_shadow_mask_serial(*args), parallel)

    def test_dry_land_is_strictly_above_tide(self):
        heights = np.array([-1.0, 2.0, 2.0 + 1e-9, 5.0])
        assert dry_land_mask(heights, 2.0).tolist() == [False, False, True, True]
        # Terrain exactly at the tide line counts as water in the marching solver too
        assert dry_land_mask(heights, 5.0).tolist() == [False, False, False, False]

    def test_land_edges_respect_tide(self, island_terrain):
        ax, _, _, _ = land_edges(island_terrain, 0.0)
        assert len(ax) == 64
        ax, _, _, _ = land_edges(island_terrain, 20.0)
        assert len(ax) == 0


class TestFastMarching:

    def test_flat_seabed_is_plane_wave(self, flat_terrain):
        wave = WaveSource(wavelength=200.0, direction=0.0)
        seeds = seed_vertices(wave, None, flat_terrain, 0.0)
        _, fmm = solve(seeds, wave, flat_terrain)
        assert np.all(fmm.status == KNOWN)
        assert fmm.n_band == 0
        assert fmm.n_corrected == 0
        c0 = deep_water_speed(200.0)
        assert np.allclose(fmm.travel_time, (seeds.points[:, 0] + 1000.0) / c0)

    def test_island_shadow_corrected(self, island_terrain, wave_east):
        seeds = seed_vertices(wave_east, island_terrain.coastline_bounds(), island_terrain, 0.0)
        _, fmm = solve(seeds, wave_east, island_terrain)

        assert np.all(fmm.status[seeds.is_land] == BLOCKED)
        assert fmm.n_shadowed > 0
        assert fmm.n_band > 0

        # Every water vertex is reached
        water = ~seeds.is_land
        assert np.all(np.isfinite(fmm.travel_time[water]))

        # Shadowed vertices arrive later than the straight plane wave
        pts = seeds.points
        behind = water & (pts[:, 0] > 320.0) & (np.abs(pts[:, 1]) < 50.0)
        assert behind.any()
        assert np.all(fmm.travel_time[behind] > fmm.plane_wave_time[behind])

    def test_causality(self, island_terrain, wave_east):
        seeds = seed_vertices(wave_east, island_terrain.coastline_bounds(), island_terrain, 0.0)
        _, fmm = solve(seeds, wave_east, island_terrain)
        order = fmm.extraction_order
        assert len(order) > 0
        times = fmm.travel_time[order]
        assert np.all(np.diff(times) >= 0.0)

    def test_deterministic(self, island_terrain, wave_east):
        seeds = seed_vertices(wave_east, island_terrain.coastline_bounds(), island_terrain, 0.0)
        _, a = solve(seeds, wave_east, island_terrain)
        _, b = solve(seeds, wave_east, island_terrain)
        assert np.array_equal(a.travel_time, b.travel_time)
        assert np.array_equal(a.extraction_order, b.extraction_order)


class TestProperties:

    def test_diffraction_factor_values(self):
        c0, wl = 10.0, 100.0
        assert float(compute_diffraction_factor(0.0, wl, c0)) == 1.0
        assert float(compute_diffraction_factor(-1.0, wl, c0)) == 1.0
        # L = 2 ft: F = 0.2 -> deep shadow branch
        assert float(compute_diffraction_factor(0.2, wl, c0)) == pytest.approx(0.5 / math.sqrt(1.2))
        # L = 0.125 ft: F = 0.05 -> halfway through the blend
        assert float(compute_diffraction_factor(0.0125, wl, c0)) == pytest.approx(0.75)
        # L = 100 ft: F = sqrt(2)
        assert float(compute_diffraction_factor(10.0, wl, c0)) == pytest.approx(0.5 / math.sqrt(1 + math.sqrt(2)))

    def test_diffraction_factor_floor(self):
        assert float(compute_diffraction_factor(1e12, 100.0, 10.0)) == pytest.approx(0.01)

    def test_diffraction_factor_monotonic(self):
        delays = np.linspace(0.01, 100.0, 200)
        factors = compute_diffraction_factor(delays, 100.0, 10.0)
        assert np.all(np.diff(factors) <= 1e-12)

    def test_blend_weights(self):
        bounds = MeshBuildBounds(0.0, 0.0, 1000.0, 1000.0)
        pts = np.array([[0.0, 500.0], [100.0, 500.0], [101.0, 500.0], [500.0, 950.0], [500.0, 500.0]])
        assert compute_blend_weights(pts, bounds, 100.0).tolist() == [0.0, 0.0, 1.0, 0.0, 1.0]

    def test_gradient_of_linear_field(self):
        rng = np.random.default_rng(8)
        pts = rng.uniform(0, 100, (80, 2))
        tris = delaunay_triangulate(pts)
        tt = 0.3 * pts[:, 0] - 0.1 * pts[:, 1]
        gx, gy = compute_travel_time_gradient(pts, tris, tt)
        assert np.allclose(gx, 0.3)
        assert np.allclose(gy, -0.1)

    def test_flat_properties(self, flat_terrain):
        wave = WaveSource(wavelength=200.0, direction=0.0)
        seeds = seed_vertices(wave, None, flat_terrain, 0.0)
        tris, fmm = solve(seeds, wave, flat_terrain)
        props = derive_wave_properties(seeds.points, tris, fmm, wave, 50.0)
        assert np.allclose(props.amplitude_factor, 1.0, atol=0.02)
        assert np.allclose(props.direction_offset, 0.0, atol=0.01)

    def test_land_is_zero(self, island_terrain, wave_east):
        seeds = seed_vertices(wave_east, island_terrain.coastline_bounds(), island_terrain, 0.0)
        tris, fmm = solve(seeds, wave_east, island_terrain)
        props = derive_wave_properties(seeds.points, tris, fmm, wave_east, 50.0)
        land = seeds.is_land
        assert np.all(props.amplitude_factor[land] == 0.0)
        assert np.all(props.direction_offset[land] == 0.0)
        assert np.all(props.phase_offset[land] == 0.0)
