"""Tests for depth-dependent wave physics."""

import math

import numpy as np
import pytest

from wavefront.constants import GRAVITY
from wavefront.mesh_building.wave_physics import (
    compute_damping_factor,
    compute_shoaling_factor,
    compute_wave_speed,
    compute_wave_speeds,
    compute_wave_terrain_factor,
    deep_water_speed,
    relative_terrain_factor,
    relative_terrain_factors,
    smoothstep,
)


class TestWaveSpeed:

    def test_deep_water(self):
        wl = 200.0
        expected = math.sqrt(GRAVITY * wl / (2 * math.pi))
        assert compute_wave_speed(wl, 100.0) == pytest.approx(expected)
        assert compute_wave_speed(wl, 5000.0) == pytest.approx(expected)
        assert deep_water_speed(wl) == pytest.approx(expected)

    def test_shallow_water(self):
        assert compute_wave_speed(200.0, 4.0) == pytest.approx(math.sqrt(GRAVITY * 4.0))

    def test_shallow_water_depth_floor(self):
        assert compute_wave_speed(200.0, 0.0) == pytest.approx(math.sqrt(GRAVITY * 0.1))
        assert compute_wave_speed(200.0, -3.0) == pytest.approx(math.sqrt(GRAVITY * 0.1))

    def test_intermediate(self):
        wl, d = 200.0, 30.0
        k = 2 * math.pi / wl
        assert compute_wave_speed(wl, d) == pytest.approx(math.sqrt(GRAVITY * math.tanh(k * d) / k))

    def test_speed_increases_with_depth(self):
        # Intermediate band through the deep-water limit
        depths = np.linspace(15.0, 150.0, 50)
        speeds = compute_wave_speeds(200.0, depths)
        assert np.all(np.diff(speeds) >= -1e-12)
        assert speeds[-1] == pytest.approx(deep_water_speed(200.0))

    def test_array_version_clamps_depth(self):
        speeds = compute_wave_speeds(200.0, np.array([-5.0, 0.0, 0.1]))
        assert np.allclose(speeds, math.sqrt(GRAVITY * 0.1))


class TestEnergyModifiers:

    def test_smoothstep(self):
        assert smoothstep(0.0, 1.0, -1.0) == 0.0
        assert smoothstep(0.0, 1.0, 0.5) == pytest.approx(0.5)
        assert smoothstep(0.0, 1.0, 2.0) == 1.0

    def test_shoaling_deep_is_one(self):
        assert compute_shoaling_factor(100.0, 200.0) == 1.0

    def test_shoaling_grows_in_shallow_water(self):
        assert compute_shoaling_factor(50.0, 200.0) == pytest.approx((100.0 / 50.0) ** 0.25)

    def test_shoaling_clamped(self):
        # (100 / 0.5)^(1/4) = 3.76, clamped to 2
        assert compute_shoaling_factor(0.01, 200.0) == 2.0

    def test_damping(self):
        wl = 200.0
        assert compute_damping_factor(-0.015 * wl - 1.0, wl) == 0.0
        assert compute_damping_factor(0.05 * wl + 1.0, wl) == 1.0
        assert 0.0 < compute_damping_factor(2.0, wl) < 1.0

    def test_terrain_factor_nan(self):
        assert compute_wave_terrain_factor(float('nan'), 200.0) == 0.0

    def test_terrain_factor_dry(self):
        # No shoaling above the waterline, damping alone
        wl = 200.0
        assert compute_wave_terrain_factor(-1.0, wl) == pytest.approx(compute_damping_factor(-1.0, wl))

    def test_relative_factor_flat_seabed_is_one(self):
        assert relative_terrain_factor(50.0, 50.0, 200.0) == pytest.approx(1.0)
        assert np.allclose(relative_terrain_factors(np.full(10, 50.0), 50.0, 200.0), 1.0)

    def test_relative_factor_shoals_toward_shore(self):
        assert relative_terrain_factor(20.0, 50.0, 200.0) > 1.0

    def test_relative_factor_deep_reference(self):
        # Reference in deep water: same as the absolute factor
        wl = 200.0
        assert relative_terrain_factor(30.0, 500.0, wl) == pytest.approx(compute_wave_terrain_factor(30.0, wl))
