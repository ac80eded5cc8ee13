"""
Wave Property Derivation

Turns a solved travel-time field into per-vertex wave properties:

- directionOffset: local propagation direction (from ∇T) minus the base direction
- phaseOffset: ω·T minus the plane-wave phase k·(pos·waveDir - min_dot)
- amplitudeFactor: terrain factor × diffraction factor, clamped to [0, 2]
- blendWeight: 0 within one grid spacing of the domain edge, else 1
"""

import logging
from dataclasses import dataclass

import numpy as np

from ..utils import wrap_angles
from .eikonal import BLOCKED, FastMarchingResult
from .types import MeshBuildBounds, WaveSource
from .wave_physics import relative_terrain_factors

logger = logging.getLogger(__name__)

# Gradient magnitude below which the base direction is kept
MIN_GRADIENT = 1e-8

# Fresnel number below which the factor blends linearly from 1 to 0.5
FRESNEL_BLEND = 0.1


@dataclass
class WaveProperties:
    """Per-vertex wave properties (arrays of length n)."""
    amplitude_factor: np.ndarray
    direction_offset: np.ndarray
    phase_offset: np.ndarray


def compute_travel_time_gradient(points: np.ndarray, triangles: np.ndarray, travel_time: np.ndarray):
    """
    Gradient of the piecewise-linear travel-time field at each vertex.

    Each triangle's analytic gradient is accumulated onto its three corners,
    weighted by triangle area, then normalized. Triangles with |2A| < 1e-10
    or a non-finite corner time are skipped.

    Returns:
        Tuple of (grad_x, grad_y) arrays
    """
    n = len(points)
    grad_x = np.zeros(n)
    grad_y = np.zeros(n)
    total_weight = np.zeros(n)
    if len(triangles) == 0:
        return grad_x, grad_y

    a, b, c = triangles[:, 0], triangles[:, 1], triangles[:, 2]
    ax, ay = points[a, 0], points[a, 1]
    bx, by = points[b, 0], points[b, 1]
    cx, cy = points[c, 0], points[c, 1]
    t_a, t_b, t_c = travel_time[a], travel_time[b], travel_time[c]

    # Signed area × 2
    area2 = (bx - ax) * (cy - ay) - (cx - ax) * (by - ay)
    valid = (np.abs(area2) >= 1e-10) & np.isfinite(t_a) & np.isfinite(t_b) & np.isfinite(t_c)

    area2 = area2[valid]
    ax, ay, bx, by, cx, cy = ax[valid], ay[valid], bx[valid], by[valid], cx[valid], cy[valid]
    t_a, t_b, t_c = t_a[valid], t_b[valid], t_c[valid]

    gx = (t_a * (by - cy) + t_b * (cy - ay) + t_c * (ay - by)) / area2
    gy = (t_a * (cx - bx) + t_b * (ax - cx) + t_c * (bx - ax)) / area2
    weight = np.abs(area2)

    for corner in (a[valid], b[valid], c[valid]):
        np.add.at(grad_x, corner, gx * weight)
        np.add.at(grad_y, corner, gy * weight)
        np.add.at(total_weight, corner, weight)

    has_weight = total_weight > 0
    grad_x[has_weight] /= total_weight[has_weight]
    grad_y[has_weight] /= total_weight[has_weight]
    return grad_x, grad_y


def compute_diffraction_factor(delay, wavelength: float, c_deep: float):
    """
    Amplitude reduction in the geometric shadow.

    delay is the travel time beyond the straight plane-wave time. With
    extra path L = delay·c_deep, the Fresnel-style number is
    F = √(2L/λ). F < 0.1 blends linearly from 1.0 to 0.5, otherwise
    D = 0.5 / √(1 + F) clamped to [0.01, 1].

    Works on scalars or arrays. No delay (or a negative one) gives 1.
    """
    delay = np.asarray(delay, dtype=np.float64)
    positive = delay > 0
    extra_path = np.where(positive, delay, 0.0) * c_deep
    F = np.sqrt(2.0 * extra_path / wavelength)

    near_boundary = 0.5 + 0.5 * (1.0 - F / FRESNEL_BLEND)
    deep_shadow = np.clip(0.5 / np.sqrt(1.0 + F), 0.01, 1.0)
    factor = np.where(F < FRESNEL_BLEND, near_boundary, deep_shadow)
    return np.where(positive, factor, 1.0)


def compute_blend_weights(points: np.ndarray, bounds: MeshBuildBounds, margin: float) -> np.ndarray:
    """0.0 within margin of the domain edge (fade to open ocean), 1.0 inside."""
    x = points[:, 0]
    y = points[:, 1]
    on_boundary = (
        (x <= bounds.min_x + margin)
        | (x >= bounds.max_x - margin)
        | (y <= bounds.min_y + margin)
        | (y >= bounds.max_y - margin)
    )
    return np.where(on_boundary, 0.0, 1.0)


def derive_wave_properties(
    points: np.ndarray,
    triangles: np.ndarray,
    fmm: FastMarchingResult,
    wave_source: WaveSource,
    reference_depth: float,
) -> WaveProperties:
    """
    Derive per-vertex wave properties from FMM travel times.

    Args:
        points: (n, 2) vertex positions
        triangles: (m, 3) triangle indices
        fmm: Solved travel-time field
        wave_source: Wave being meshed
        reference_depth: Open-ocean water depth used to normalize shoaling

    Returns:
        WaveProperties; land and unreached vertices are all zero
    """
    wavelength = wave_source.wavelength
    base_dir = wave_source.direction
    wdx, wdy = wave_source.direction_vec
    travel_time = fmm.travel_time

    valid = (fmm.status != BLOCKED) & np.isfinite(travel_time)
    safe_time = np.where(valid, travel_time, 0.0)

    # Direction from gradient of travel time
    grad_x, grad_y = compute_travel_time_gradient(points, triangles, travel_time)
    grad_len = np.hypot(grad_x, grad_y)
    direction = np.where(grad_len > MIN_GRADIENT, np.arctan2(grad_y, grad_x), base_dir)
    direction_offset = wrap_angles(direction - base_dir)

    # Phase relative to the plane wave, same offset as the FMM initialization
    true_phase = wave_source.omega * safe_time
    plane_phase = (points[:, 0] * wdx + points[:, 1] * wdy - fmm.min_dot) * wave_source.k
    phase_offset = wrap_angles(true_phase - plane_phase)

    # Amplitude: terrain factor × diffraction factor
    terrain_factor = relative_terrain_factors(
        np.ascontiguousarray(fmm.depth, dtype=np.float64), reference_depth, wavelength,
    )
    diffraction = compute_diffraction_factor(safe_time - fmm.plane_wave_time, wavelength, fmm.c_deep)
    amplitude = np.clip(terrain_factor * diffraction, 0.0, 2.0)

    props = WaveProperties(
        amplitude_factor=np.where(valid, amplitude, 0.0),
        direction_offset=np.where(valid, direction_offset, 0.0),
        phase_offset=np.where(valid, phase_offset, 0.0),
    )
    if valid.any():
        logger.debug(
            f"Properties: amplitude {props.amplitude_factor[valid].min():.3f}-"
            f"{props.amplitude_factor[valid].max():.3f}, "
            f"{int((diffraction[valid] < 1.0).sum())} vertices in shadow"
        )
    return props
