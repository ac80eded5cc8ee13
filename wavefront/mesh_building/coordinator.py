"""
Mesh Build Coordinator

Fans a batch of (wave source × builder type) requests out across the worker
pool, collects the results, and creates WavefrontMesh objects from them.

- Each request carries its own clone of the terrain snapshot
- At most one request per worker is in flight; each request has its own
  deadline, measured from the moment a worker takes it
- A worker crash fails the requests it was running and the pool is
  restarted for the rest of the batch
- A failed or timed-out request is logged and dropped; siblings are unaffected
- Results are re-sorted into submission order before grouping by builder type,
  so the visible result does not depend on completion order

Only infrastructure failures (WorkerPoolError) reach the caller.
"""

import itertools
import logging
import time
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, wait
from dataclasses import dataclass, replace
from typing import Dict, List, Mapping, Optional, Sequence, Union

from ..config import CoordinatorSettings, MeshBuildConfig
from ..terrain.snapshot import TerrainSnapshot
from ..wavefront_mesh import HostDevice, MeshDevice, WavefrontMesh
from .builders import BuilderFn, BuilderRegistry
from .cache import MeshCache, mesh_cache_key
from .types import (
    BuildState,
    MeshBuildBounds,
    MeshBuilderType,
    MeshBuildRequest,
    MeshBuildResult,
    WaveSource,
)
from .worker_pool import BROKEN_POOL_ERRORS, WorkerPool, recommended_worker_count

logger = logging.getLogger(__name__)

BuilderKey = Union[MeshBuilderType, str]


def run_build_request(request: MeshBuildRequest, builder: BuilderFn) -> MeshBuildResult:
    """
    Worker entry point: run one build request.

    Build time is measured here and only carried on the result.
    """
    start = time.perf_counter()
    mesh_data = builder(
        request.wave_source,
        request.coastline_bounds,
        request.terrain,
        request.tide_height,
        request.config,
    )
    build_time_ms = (time.perf_counter() - start) * 1000.0
    return MeshBuildResult(
        request_id=request.request_id,
        order=request.order,
        builder_type=request.builder_type,
        wave_source=request.wave_source,
        mesh_data=mesh_data,
        build_time_ms=build_time_ms,
    )


@dataclass
class BuildOutcome:
    """Final state of one request in a batch."""
    request_id: int
    order: int
    label: str
    builder_type: BuilderKey
    wave_index: int
    state: BuildState = BuildState.PENDING
    elapsed_ms: float = 0.0
    error: Optional[str] = None
    from_cache: bool = False


def _worker_crashed(future: Future) -> bool:
    """True if the future failed because its executor lost a worker."""
    if not future.done() or future.cancelled():
        return False
    return isinstance(future.exception(), BROKEN_POOL_ERRORS)


def _normalize_builder_type(builder_type: BuilderKey) -> BuilderKey:
    try:
        return MeshBuilderType(builder_type)
    except ValueError:
        return str(builder_type)


class MeshBuildCoordinator:
    """
    Builds wavefront meshes for every (wave source, builder type) pair.

    Example:
        with MeshBuildCoordinator() as coordinator:
            meshes = coordinator.build_meshes(
                wave_sources, terrain, terrain.coastline_bounds(), 0.0,
                [MeshBuilderType.TERRAIN_EULERIAN],
            )
    """

    def __init__(
        self,
        settings: Optional[CoordinatorSettings] = None,
        pool: Optional[WorkerPool] = None,
        builders: Optional[Mapping[BuilderKey, BuilderFn]] = None,
        device: Optional[MeshDevice] = None,
        config: Optional[MeshBuildConfig] = None,
    ):
        self.settings = settings or CoordinatorSettings()
        self.config = config or MeshBuildConfig()
        self.device = device if device is not None else HostDevice()

        if pool is None:
            pool = WorkerPool(
                worker_count=recommended_worker_count(self.settings.max_workers),
                mode=self.settings.worker_mode,
                init_timeout_s=self.settings.init_timeout_s,
            )
            self._owns_pool = True
        else:
            self._owns_pool = False
        self.pool = pool

        # Built-in builders, overridden or extended by injected strategies
        self._builders: Dict[BuilderKey, BuilderFn] = dict(BuilderRegistry.all())
        for key, fn in (builders or {}).items():
            self._builders[_normalize_builder_type(key)] = fn

        self.cache = MeshCache(self.settings.cache_dir) if self.settings.cache_dir else None

        self._request_ids = itertools.count(1)
        self._meshes: List[WavefrontMesh] = []
        self.last_outcomes: List[BuildOutcome] = []

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def initialize(self) -> None:
        """Start the worker pool. Raises WorkerPoolError on failure."""
        self.pool.initialize()

    def terminate(self) -> None:
        """Destroy current meshes and shut down an owned pool."""
        self.destroy_meshes()
        if self._owns_pool:
            self.pool.terminate()

    def __enter__(self) -> 'MeshBuildCoordinator':
        self.initialize()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.terminate()
        return False

    @property
    def meshes(self) -> List[WavefrontMesh]:
        """Meshes built since the last recompute, in submission order."""
        return list(self._meshes)

    def destroy_meshes(self) -> None:
        """Destroy every tracked mesh as a unit."""
        for mesh in self._meshes:
            mesh.destroy()
        self._meshes = []

    # =========================================================================
    # Building
    # =========================================================================

    def _make_requests(
        self,
        wave_sources: Sequence[WaveSource],
        terrain: TerrainSnapshot,
        coastline_bounds: Optional[MeshBuildBounds],
        tide_height: float,
        builder_types: Sequence[BuilderKey],
    ) -> List[MeshBuildRequest]:
        requests = []
        order = 0
        for builder_type in builder_types:
            for i, source in enumerate(wave_sources):
                if source.index != i:
                    source = replace(source, index=i)
                requests.append(MeshBuildRequest(
                    request_id=next(self._request_ids),
                    order=order,
                    builder_type=builder_type,
                    wave_source=source,
                    terrain=terrain.clone(),
                    coastline_bounds=coastline_bounds,
                    tide_height=tide_height,
                    config=self.config,
                ))
                order += 1
        return requests

    def _cache_key(self, request: MeshBuildRequest) -> str:
        return mesh_cache_key(
            request.terrain, request.wave_source, request.tide_height,
            request.coastline_bounds, request.builder_type, request.config,
        )

    def _transition(self, outcome: BuildOutcome, state: BuildState) -> None:
        logger.debug(f"{outcome.label} (request {outcome.request_id}): {outcome.state.value} -> {state.value}")
        outcome.state = state

    def build_meshes(
        self,
        wave_sources: Sequence[WaveSource],
        terrain: TerrainSnapshot,
        coastline_bounds: Optional[MeshBuildBounds],
        tide_height: float,
        builder_types: Sequence[BuilderKey],
    ) -> Dict[BuilderKey, List[WavefrontMesh]]:
        """
        Build meshes for every (wave source, builder type) pair.

        Args:
            wave_sources: Waves to mesh; list position becomes the wave index
            terrain: Terrain snapshot (each request gets its own clone)
            coastline_bounds: Union bbox of coastline contours, or None
            tide_height: Current tide height (ft)
            builder_types: Builder types to run for every wave source

        Returns:
            Dict mapping each requested builder type to its meshes, in wave
            order. Failed or timed-out builds are absent.

        Raises:
            WorkerPoolError: If the worker pool cannot be started
        """
        self.initialize()

        builder_types = list(dict.fromkeys(_normalize_builder_type(t) for t in builder_types))
        requests = self._make_requests(wave_sources, terrain, coastline_bounds, tide_height, builder_types)
        timeout_s = self.settings.request_timeout_s

        logger.info(
            f"Building {len(requests)} meshes ({len(wave_sources)} waves × "
            f"{len(builder_types)} builder types) on {self.pool.worker_count} {self.pool.mode} workers"
        )
        batch_start = time.monotonic()

        outcomes: List[BuildOutcome] = []
        results: List[MeshBuildResult] = []
        queued = deque()

        for request in requests:
            outcome = BuildOutcome(
                request_id=request.request_id,
                order=request.order,
                label=request.label,
                builder_type=request.builder_type,
                wave_index=request.wave_source.index,
            )
            outcomes.append(outcome)

            if self.cache is not None:
                cached = self.cache.get(self._cache_key(request))
                if cached is not None:
                    self._transition(outcome, BuildState.SUCCEEDED)
                    outcome.from_cache = True
                    results.append(MeshBuildResult(
                        request_id=request.request_id,
                        order=request.order,
                        builder_type=request.builder_type,
                        wave_source=request.wave_source,
                        mesh_data=cached,
                        build_time_ms=0.0,
                        from_cache=True,
                    ))
                    continue

            builder = self._builders.get(request.builder_type)
            if builder is None:
                available = ", ".join(str(t) for t in self._builders)
                outcome.error = f"Unknown builder type '{request.builder_type}'. Available: {available}"
                self._transition(outcome, BuildState.FAILED)
                logger.error(f"Mesh build FAILED ({outcome.label}): {outcome.error}")
                continue

            queued.append((request, outcome, builder))

        # At most one request per worker is in flight, so a request's clock
        # starts when a worker is free to run it
        running: Dict[Future, tuple] = {}
        while queued or running:
            while queued and len(running) < self.pool.worker_count:
                request, outcome, builder = queued.popleft()
                future = self.pool.submit(run_build_request, request, builder)
                self._transition(outcome, BuildState.DISPATCHED)
                running[future] = (request, outcome, time.monotonic(), self.pool.generation)

            next_deadline = min(started for _, _, started, _ in running.values()) + timeout_s
            wait(list(running), timeout=max(0.0, next_deadline - time.monotonic()), return_when=FIRST_COMPLETED)

            now = time.monotonic()
            for future, (request, outcome, started, generation) in list(running.items()):
                if not future.done() and now < started + timeout_s:
                    continue
                del running[future]
                outcome.elapsed_ms = (now - started) * 1000.0
                result = self._collect(outcome, future, timeout_s)
                if result is None:
                    if _worker_crashed(future) and generation == self.pool.generation:
                        self.pool.restart()
                    continue
                results.append(result)
                if self.cache is not None:
                    self.cache.put(self._cache_key(request), result.mesh_data, metadata={
                        'builder_type': str(request.builder_type),
                        'wave_source': request.wave_source.to_dict(),
                        'tide_height': request.tide_height,
                    })

        # Visible result follows submission order, not completion order
        results.sort(key=lambda r: r.order)
        meshes: Dict[BuilderKey, List[WavefrontMesh]] = {t: [] for t in builder_types}
        new_meshes = []
        for result in results:
            mesh = WavefrontMesh.from_mesh_data(
                result.mesh_data, result.wave_source, result.builder_type,
                result.build_time_ms, self.device,
            )
            meshes[result.builder_type].append(mesh)
            new_meshes.append(mesh)

        self._meshes.extend(new_meshes)
        self.last_outcomes = outcomes

        n_ok = sum(1 for o in outcomes if o.state == BuildState.SUCCEEDED)
        logger.info(
            f"Built {n_ok}/{len(outcomes)} meshes in "
            f"{(time.monotonic() - batch_start) * 1000.0:.0f}ms"
        )
        return meshes

    def _collect(self, outcome: BuildOutcome, future: Future, timeout_s: float) -> Optional[MeshBuildResult]:
        """Record the final state of a dispatched request; None unless it succeeded."""
        if not future.done():
            future.cancel()
            outcome.error = f"timed out after {timeout_s:.1f}s"
            self._transition(outcome, BuildState.TIMED_OUT)
            logger.error(f"Mesh build FAILED ({outcome.label}): {outcome.error}")
            return None

        exc = future.exception()
        if exc is not None:
            outcome.error = f"{type(exc).__name__}: {exc}"
            self._transition(outcome, BuildState.FAILED)
            logger.error(f"Mesh build FAILED ({outcome.label}) after {outcome.elapsed_ms:.0f}ms: {outcome.error}")
            return None

        result = future.result()
        self._transition(outcome, BuildState.SUCCEEDED)
        logger.info(
            f"  {outcome.label}: {result.mesh_data.vertex_count} vertices, "
            f"{result.mesh_data.triangle_count} triangles in {result.build_time_ms:.0f}ms"
        )
        return result

    def recompute(
        self,
        wave_sources: Sequence[WaveSource],
        terrain: TerrainSnapshot,
        coastline_bounds: Optional[MeshBuildBounds],
        tide_height: float,
        builder_types: Sequence[BuilderKey],
    ) -> Dict[BuilderKey, List[WavefrontMesh]]:
        """Destroy every mesh from the previous batch, then rebuild."""
        self.destroy_meshes()
        return self.build_meshes(wave_sources, terrain, coastline_bounds, tide_height, builder_types)
