#!/usr/bin/env python3
"""
Build Wavefront Meshes

Builds per-wave wavefront meshes (amplitude, direction and phase corrections)
for a terrain scenario and prints a summary of each mesh.

Usage:
    python scripts/build_wavefront_meshes.py [scenario] [options]

Scenarios:
    island   Circular island (radius 300 ft, height 10 ft) on a -50 ft seabed
    flat     Open ocean, no contours
    Or pass --terrain with a snapshot saved by TerrainSnapshot.save()

Examples:
    # Island, one 150 ft swell from the west
    python scripts/build_wavefront_meshes.py island --wavelength 150 --direction 0

    # Two swells, all builder types, saved to disk
    python scripts/build_wavefront_meshes.py island \\
        --wavelength 150 --direction 0 \\
        --wavelength 300 --direction 45 \\
        --builder terrain-eulerian --builder grid-eulerian --builder cpu-lagrangian \\
        --output-dir runs/wavefront

    # Saved terrain, thread workers
    python scripts/build_wavefront_meshes.py --terrain data/terrain/harbor.npz --mode thread
"""

import argparse
import logging
import math
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from wavefront.config import CoordinatorSettings
from wavefront.mesh_building import BuildState, MeshBuildCoordinator, MeshBuilderType, WaveSource
from wavefront.terrain import TerrainSnapshot, circular_island, flat_seabed

SCENARIOS = ("island", "flat")


def load_terrain(scenario: str, terrain_path: Path = None) -> TerrainSnapshot:
    if terrain_path is not None:
        print(f"Loading terrain from {terrain_path}")
        return TerrainSnapshot.load(terrain_path)
    if scenario == "flat":
        return flat_seabed(-50.0)
    return circular_island(radius=300.0, height=10.0, default_depth=-50.0)


def parse_wave_sources(wavelengths, directions_deg):
    """Pair each wavelength with a direction (a single direction applies to all)."""
    if len(directions_deg) == 1:
        directions_deg = directions_deg * len(wavelengths)
    if len(directions_deg) != len(wavelengths):
        raise ValueError(
            f"Got {len(wavelengths)} wavelengths but {len(directions_deg)} directions"
        )
    return [
        WaveSource(wavelength=wl, direction=math.radians(d), index=i)
        for i, (wl, d) in enumerate(zip(wavelengths, directions_deg))
    ]


def make_settings(workers: int = None, mode: str = None, timeout: float = None) -> CoordinatorSettings:
    """Coordinator settings from the environment, with command-line overrides."""
    overrides = {}
    if workers is not None:
        overrides['max_workers'] = workers
    if mode is not None:
        overrides['worker_mode'] = mode
    if timeout is not None:
        overrides['request_timeout_s'] = timeout
    return CoordinatorSettings(**overrides)


def log_level(settings: CoordinatorSettings, verbose: bool = False) -> int:
    """Root log level: --verbose, else WAVEFRONT_LOG_LEVEL."""
    if verbose:
        return logging.DEBUG
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level '{settings.log_level}'")
    return level


def build_meshes(
    scenario: str,
    wave_sources,
    builder_types,
    settings: CoordinatorSettings,
    tide_height: float = 0.0,
    terrain_path: Path = None,
    output_dir: Path = None,
):
    """Build, summarize and optionally save meshes for one scenario."""
    terrain = load_terrain(scenario, terrain_path)
    coastline_bounds = terrain.coastline_bounds()

    print("=" * 60)
    print("WAVEFRONT MESH BUILD")
    print("=" * 60)
    print(f"  Terrain: {terrain.contour_count} contours, default depth {terrain.default_depth:.1f} ft")
    print(f"  Coastline bounds: {coastline_bounds}")
    print(f"  Tide: {tide_height:.1f} ft")
    print(f"  Waves: {len(wave_sources)}")
    for ws in wave_sources:
        print(f"    [{ws.index}] λ={ws.wavelength:.0f} ft, dir={math.degrees(ws.direction):.0f}°")
    print(f"  Builders: {', '.join(str(t) for t in builder_types)}")
    print(f"  Workers: {settings.max_workers} ({settings.worker_mode})")

    with MeshBuildCoordinator(settings=settings) as coordinator:
        meshes = coordinator.build_meshes(
            wave_sources, terrain, coastline_bounds, tide_height, builder_types,
        )

        print("\n" + "=" * 60)
        print("RESULTS")
        print("=" * 60)
        for outcome in coordinator.last_outcomes:
            status = outcome.state.value.upper()
            line = f"  {outcome.label}: {status} ({outcome.elapsed_ms:.0f}ms)"
            if outcome.state != BuildState.SUCCEEDED:
                line += f" - {outcome.error}"
            print(line)

        for builder_type, mesh_list in meshes.items():
            for mesh in mesh_list:
                data = mesh.to_mesh_data()
                print(f"\n{builder_type} wave {mesh.wave_source.index} ({mesh.build_time_ms:.0f}ms)")
                print(data.summary())

                if output_dir is not None:
                    path = Path(output_dir) / f"{builder_type}_wave{mesh.wave_source.index}"
                    data.save(path, metadata={
                        'builder_type': str(builder_type),
                        'wave_source': mesh.wave_source.to_dict(),
                        'tide_height': tide_height,
                        'build_time_ms': mesh.build_time_ms,
                    })
                    print(f"  Saved to {path.with_suffix('.npz')}")

    return meshes


def main():
    parser = argparse.ArgumentParser(
        description="Build per-wave wavefront meshes for a terrain scenario",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    parser.add_argument(
        'scenario',
        nargs='?',
        default="island",
        choices=SCENARIOS,
        help="Synthetic scenario (default: island)"
    )

    parser.add_argument(
        '--terrain',
        type=Path,
        default=None,
        help="Terrain snapshot .npz saved by TerrainSnapshot.save (overrides scenario)"
    )

    parser.add_argument(
        '--wavelength',
        type=float,
        action='append',
        default=None,
        help="Wavelength in feet, repeat for several waves (default: 150)"
    )

    parser.add_argument(
        '--direction',
        type=float,
        action='append',
        default=None,
        help="Propagation direction in degrees, 0 = +X (default: 0)"
    )

    parser.add_argument(
        '--builder',
        type=str,
        action='append',
        default=None,
        choices=[t.value for t in MeshBuilderType],
        help="Builder type, repeat for several (default: terrain-eulerian)"
    )

    parser.add_argument(
        '--tide',
        type=float,
        default=0.0,
        help="Tide height in feet (default: 0)"
    )

    parser.add_argument(
        '--workers',
        type=int,
        default=None,
        help="Maximum worker count (default: WAVEFRONT_MAX_WORKERS or 4)"
    )

    parser.add_argument(
        '--mode',
        type=str,
        default=None,
        choices=["process", "thread"],
        help="Worker mode (default: WAVEFRONT_WORKER_MODE or process)"
    )

    parser.add_argument(
        '--timeout',
        type=float,
        default=None,
        help="Per-request timeout in seconds (default: WAVEFRONT_REQUEST_TIMEOUT_S or 30)"
    )

    parser.add_argument(
        '--output-dir',
        type=Path,
        default=None,
        help="Save each mesh as {builder}_wave{index}.npz/.json in this directory"
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help="Debug logging (default level: WAVEFRONT_LOG_LEVEL or INFO)"
    )

    args = parser.parse_args()
    settings = make_settings(args.workers, args.mode, args.timeout)

    logging.basicConfig(
        level=log_level(settings, args.verbose),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        wave_sources = parse_wave_sources(args.wavelength or [150.0], args.direction or [0.0])
    except ValueError as e:
        parser.print_help()
        print(f"\nError: {e}")
        sys.exit(1)

    build_meshes(
        scenario=args.scenario,
        wave_sources=wave_sources,
        builder_types=[MeshBuilderType(b) for b in (args.builder or ["terrain-eulerian"])],
        settings=settings,
        tide_height=args.tide,
        terrain_path=args.terrain,
        output_dir=args.output_dir,
    )


if __name__ == "__main__":
    main()
