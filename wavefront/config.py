"""
Wavefront Mesh Configuration

Two layers of configuration:
- MeshBuildConfig: algorithm tunables for the mesh builders. Plain dataclass,
  travels to workers inside each build request.
- CoordinatorSettings: process-level settings for the build coordinator
  (worker count, timeouts, cache). Read from the environment / .env file.
"""

import math
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Dict, Optional, Tuple

from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import MAX_WORKERS


@dataclass
class MeshBuildConfig:
    """Configuration for wavefront mesh building."""

    # Seeding density (all distances are multiples of the wavelength)
    min_spacing_divisor: float = 8.0          # Dedup spacing = wavelength / divisor
    densify_max_wavelengths: float = 2.0      # Coastline-normal densification reach
    fan_radii_wavelengths: Tuple[float, ...] = (0.25, 0.5, 1.0, 2.0)
    fan_half_angle: float = math.pi / 4       # Leeward fan spans ±half_angle
    fan_samples: int = 5                      # Angles across the fan
    ocean_grid_wavelengths: float = 2.0       # Open-ocean fill spacing

    # Domain extent
    domain_margin_min: float = 2000.0         # Margin around coastline bounds (ft)
    domain_margin_wavelengths: float = 3.0    # ... or this many wavelengths if larger
    default_half_extent: float = 1000.0       # Half-size of the domain without coastline

    # Grid-Eulerian builder
    grid_spacing: float = 25.0                # Regular grid spacing (ft)
    grid_default_half_extent: float = 2000.0  # Half-size of the grid without coastline
    max_grid_vertices: int = 40000            # Spacing grows to stay under this
    grid_simplify: bool = True                # Quadtree-merge cells after solving
    simplify_threshold: float = 0.02          # Max normalized bilinear error of a merged cell
    simplify_max_level: int = 5               # Coarsest cell is 2^level grid spacings

    # CPU-Lagrangian builder (distances are multiples of the wavelength)
    march_step_wavelengths: float = 0.5       # Deep-water step between wavefronts
    march_spacing_wavelengths: float = 1.0    # Initial vertex spacing along a wavefront
    march_max_spacing_wavelengths: float = 2.0
    march_min_spacing_wavelengths: float = 1.0 / 16
    march_insert_passes: int = 1              # Refinement passes per step (0 disables)
    march_max_vertices: int = 200             # Per wavefront
    march_default_half_extent: float = 500.0  # Half-size of the domain without coastline
    diffraction_max_vertices: int = 60        # Shadow vertices reached from each edge tip

    # Test-grid builder
    test_grid_spacing: float = 10.0
    test_grid_half_extent: float = 500.0
    test_grid_margin_wavelengths: float = 3.0

    def min_spacing(self, wavelength: float) -> float:
        return wavelength / self.min_spacing_divisor

    def ocean_grid_spacing(self, wavelength: float) -> float:
        return wavelength * self.ocean_grid_wavelengths

    def domain_margin(self, wavelength: float) -> float:
        return max(self.domain_margin_min, wavelength * self.domain_margin_wavelengths)

    def to_dict(self) -> Dict:
        """Convert to dictionary for serialization."""
        d = asdict(self)
        d['fan_radii_wavelengths'] = list(self.fan_radii_wavelengths)
        return d

    @classmethod
    def from_dict(cls, d: Dict) -> 'MeshBuildConfig':
        """Create from dictionary, ignoring unknown keys."""
        known_fields = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in d.items() if k in known_fields}
        if 'fan_radii_wavelengths' in filtered:
            filtered['fan_radii_wavelengths'] = tuple(filtered['fan_radii_wavelengths'])
        return cls(**filtered)


class CoordinatorSettings(BaseSettings):
    """Mesh build coordinator settings"""

    model_config = SettingsConfigDict(
        env_prefix="WAVEFRONT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Worker pool
    max_workers: int = MAX_WORKERS
    worker_mode: str = "process"      # "process" or "thread"
    init_timeout_s: float = 5.0

    # Per-request deadline, measured from when a worker takes the request
    request_timeout_s: float = 30.0

    # On-disk build cache (disabled when unset)
    cache_dir: Optional[Path] = None

    log_level: str = "INFO"
