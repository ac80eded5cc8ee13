"""
Wave Physics for Wavefront Mesh Building

Numba-accelerated functions for depth-dependent wave behaviour.
All functions use imperial units (feet, seconds, radians), matching the
terrain and the renderer.

- Phase speed from the linear dispersion relation, with deep and shallow
  water limits
- Depth-gradient refraction (Snell's Law) for the marching builder
- Shoaling (Green's Law) and shallow-water damping
- Combined terrain factor applied to wave amplitude
"""

import numpy as np
from numba import njit

from ..constants import GRAVITY, TWO_PI


# =============================================================================
# Helpers
# =============================================================================

@njit(cache=True)
def smoothstep(edge0: float, edge1: float, x: float) -> float:
    """Hermite interpolation between 0 and 1 as x goes from edge0 to edge1."""
    t = (x - edge0) / (edge1 - edge0)
    if t < 0.0:
        t = 0.0
    elif t > 1.0:
        t = 1.0
    return t * t * (3.0 - 2.0 * t)


@njit(cache=True)
def wavenumber(wavelength: float) -> float:
    """
    Wavenumber.

    k = 2π / λ

    Args:
        wavelength: Wavelength λ (ft)

    Returns:
        Wavenumber k (rad/ft)
    """
    return TWO_PI / wavelength


@njit(cache=True)
def angular_frequency(wavelength: float) -> float:
    """
    Deep-water angular frequency.

    ω = √(g·k)

    Args:
        wavelength: Wavelength λ (ft)

    Returns:
        Angular frequency ω (rad/s)
    """
    return np.sqrt(GRAVITY * wavenumber(wavelength))


# =============================================================================
# Phase Speed
# =============================================================================

@njit(cache=True)
def compute_wave_speed(wavelength: float, depth: float) -> float:
    """
    Wave phase speed at a given depth.

    Deep water (d ≥ λ/2):     c = √(g·λ / 2π)
    Shallow water (d ≤ λ/20): c = √(g·d)
    Intermediate:             c = √(g·tanh(kd) / k)

    Args:
        wavelength: Wavelength λ (ft)
        depth: Water depth d (ft)

    Returns:
        Phase speed c (ft/s)
    """
    k = TWO_PI / wavelength

    if depth >= wavelength * 0.5:
        return np.sqrt(GRAVITY * wavelength / TWO_PI)

    if depth <= wavelength * 0.05:
        return np.sqrt(GRAVITY * max(depth, 0.1))

    kd = k * depth
    return np.sqrt(GRAVITY * np.tanh(kd) / k)


@njit(cache=True)
def deep_water_speed(wavelength: float) -> float:
    """Deep water phase speed c₀ = √(g·λ / 2π) (ft/s)."""
    return compute_wave_speed(wavelength, wavelength)


# =============================================================================
# Refraction
# =============================================================================

@njit(cache=True)
def compute_refraction_offset(
    wave_dir: float,
    wavelength: float,
    depth: float,
    depth_gradient_x: float,
    depth_gradient_y: float,
) -> float:
    """
    Per-step direction change from depth-gradient refraction (Snell's Law).

    Waves bend toward shallower water. Only intermediate depths refract;
    the effect fades out toward both the deep and the shallow limit.

    Args:
        wave_dir: Current propagation direction (radians)
        wavelength: Wavelength λ (ft)
        depth: Water depth d (ft)
        depth_gradient_x, depth_gradient_y: ∇d (points toward deeper water)

    Returns:
        Direction offset (radians), clamped to [-0.2, 0.2]
    """
    deep_threshold = wavelength * 0.5
    shallow_threshold = wavelength * 0.05
    if depth >= deep_threshold or depth <= shallow_threshold:
        return 0.0

    grad_mag = np.sqrt(depth_gradient_x * depth_gradient_x + depth_gradient_y * depth_gradient_y)
    if grad_mag < 0.001:
        return 0.0

    grad_dir_x = depth_gradient_x / grad_mag
    grad_dir_y = depth_gradient_y / grad_mag
    wave_dx = np.cos(wave_dir)
    wave_dy = np.sin(wave_dir)

    # Wave direction across the gradient, and depth change one wavelength ahead
    perp_component = wave_dx * -grad_dir_y + wave_dy * grad_dir_x
    depth_change_rate = (wave_dx * grad_dir_x + wave_dy * grad_dir_y) * grad_mag
    depth_ahead = depth + depth_change_rate * wavelength

    speed_here = compute_wave_speed(wavelength, depth)
    speed_ahead = compute_wave_speed(wavelength, max(depth_ahead, 0.1))
    speed_ratio = (speed_ahead - speed_here) / max(speed_here, 0.1)

    incident_angle = np.arcsin(min(1.0, abs(perp_component)))
    strength = (
        smoothstep(shallow_threshold, deep_threshold * 0.3, depth)
        * smoothstep(deep_threshold, deep_threshold * 0.3, depth)
    )

    offset = -speed_ratio * np.sin(incident_angle) * strength
    return max(-0.2, min(0.2, offset))


# =============================================================================
# Energy Modifiers
# =============================================================================

@njit(cache=True)
def compute_shoaling_factor(depth: float, wavelength: float) -> float:
    """
    Shoaling factor (Green's Law).

    Waves grow taller as they enter shallow water:

    Ks = (λ/2 / d)^(1/4) for d < λ/2, else 1

    Args:
        depth: Water depth d (ft)
        wavelength: Wavelength λ (ft)

    Returns:
        Shoaling factor, clamped to [0, 2]
    """
    transition_depth = wavelength * 0.5
    if depth >= transition_depth:
        return 1.0

    safe_depth = max(depth, 0.5)
    raw = (transition_depth / safe_depth) ** 0.25
    return max(0.0, min(2.0, raw))


@njit(cache=True)
def compute_damping_factor(depth: float, wavelength: float) -> float:
    """
    Damping factor.

    Waves lose energy in very shallow water due to breaking and bottom
    friction. Fades from 0 at the swash depth (-0.015λ) to 1 at 0.05λ.

    Args:
        depth: Water depth d (ft)
        wavelength: Wavelength λ (ft)

    Returns:
        Damping factor in [0, 1]
    """
    damping_threshold = wavelength * 0.05
    swash_depth = wavelength * 0.015
    return smoothstep(-swash_depth, damping_threshold, depth)


@njit(cache=True)
def compute_wave_terrain_factor(depth: float, wavelength: float) -> float:
    """
    Combined wave-terrain energy modifier (shoaling × damping).

    Args:
        depth: Water depth d (ft)
        wavelength: Wavelength λ (ft)

    Returns:
        Terrain factor (0 for NaN depth)
    """
    if depth != depth:
        return 0.0

    shoaling = compute_shoaling_factor(depth, wavelength) if depth > 0 else 1.0
    damping = compute_damping_factor(depth, wavelength)
    return shoaling * damping


@njit(cache=True)
def relative_terrain_factor(depth: float, reference_depth: float, wavelength: float) -> float:
    """
    Terrain factor relative to the open-ocean reference depth.

    Shoaling is an energy-flux effect of depth change, so amplitude is
    normalized by the shoaling at the depth where waves enter the domain.

    Args:
        depth: Local water depth (ft)
        reference_depth: Open-ocean water depth (ft)
        wavelength: Wavelength λ (ft)

    Returns:
        terrain_factor(depth) / shoaling(reference_depth)
    """
    ref_shoaling = compute_shoaling_factor(reference_depth, wavelength) if reference_depth > 0 else 1.0
    return compute_wave_terrain_factor(depth, wavelength) / ref_shoaling


# =============================================================================
# Array Versions
# =============================================================================

@njit(cache=True)
def compute_wave_speeds(wavelength: float, depths: np.ndarray) -> np.ndarray:
    """Phase speed for each depth (depths clamped to ≥ 0.1 ft)."""
    n = len(depths)
    out = np.empty(n, dtype=np.float64)
    for i in range(n):
        out[i] = compute_wave_speed(wavelength, max(depths[i], 0.1))
    return out


@njit(cache=True)
def relative_terrain_factors(
    depths: np.ndarray,
    reference_depth: float,
    wavelength: float,
) -> np.ndarray:
    """relative_terrain_factor() for each depth."""
    n = len(depths)
    out = np.empty(n, dtype=np.float64)
    for i in range(n):
        out[i] = relative_terrain_factor(depths[i], reference_depth, wavelength)
    return out
