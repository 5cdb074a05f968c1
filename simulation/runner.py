"""Simulation Runner — frame loop for BVH collision testing.

Orchestrates the demo pipeline:
1. Generate meshes (falling box + terrain patch) → one BVH each, built once
2. Frame loop: box transform → clear flags → collision test → store results
3. Return per-frame results for inspection

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Notes
-----
The box (mesh A) is modelled with its lower face at local z = 0, centred
on the Z axis. On frame ``f`` its model matrix is

    M_A(f) = T(0, 0, h(f)) · R_z(ω · f)

with ``h`` interpolated linearly from ``start_height`` to ``end_height``
and ``ω`` the configured spin per frame. The terrain (mesh B) stays at the
identity transform.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from functools import partial

import numpy as np

from core_engine.bvh import (
    BVHNode,
    BVHStatistics,
    bvh_statistics,
    clear_collision_flags,
    construct,
    iter_nodes,
)
from core_engine.collision import CollisionTester
from core_engine.constants import SceneConfig, SimulationConfig
from core_engine.intersection import triangle_triangle_intersection
from core_engine.mesh import Triangle, TriangleMesh, box_mesh, heightfield_mesh
from core_engine.transforms import compose, identity, rotation_z, translation

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result Containers
# ---------------------------------------------------------------------------


@dataclass
class FrameResult:
    """Outcome of one collision test.

    Attributes
    ----------
    frame : int
        Frame number (0 for a standalone ``step``).
    box_height : float
        Height of the box's lower face, NaN for a standalone ``step``.
    nodes_flagged_a, nodes_flagged_b : int
        Number of BVH nodes with ``collision`` set, per tree.
    triangles_flagged_a, triangles_flagged_b : np.ndarray
        Sorted indices of flagged triangles, per mesh. dtype: int64.
    contacts : int
        Number of colliding triangle pairs.
    triangle_pairs_tested : int
        Narrow-phase predicate calls.
    wall_time_s : float
        Time spent in the collision test [s].
    """

    frame: int
    box_height: float
    nodes_flagged_a: int
    nodes_flagged_b: int
    triangles_flagged_a: np.ndarray
    triangles_flagged_b: np.ndarray
    contacts: int
    triangle_pairs_tested: int
    wall_time_s: float

    @property
    def in_contact(self) -> bool:
        return self.contacts > 0


@dataclass
class SimulationResults:
    """Container for the output of ``CollisionRunner.run``.

    Attributes
    ----------
    frames : list[FrameResult]
        One entry per simulated frame.
    box_stats, terrain_stats : BVHStatistics
        Shape summaries of the two trees.
    metadata : dict
        Configuration echo and timing.
    """

    frames: list[FrameResult] = field(default_factory=list)
    box_stats: BVHStatistics | None = None
    terrain_stats: BVHStatistics | None = None
    metadata: dict = field(default_factory=dict)

    @property
    def first_contact_frame(self) -> int | None:
        """Frame number of the first contact, or None if there never was one."""
        for result in self.frames:
            if result.in_contact:
                return result.frame
        return None


# ---------------------------------------------------------------------------
# Collision Runner
# ---------------------------------------------------------------------------


class CollisionRunner:
    """Builds the demo scene once and runs collision tests frame by frame.

    Parameters
    ----------
    config : SimulationConfig
        Full configuration loaded from YAML.
    max_depth : int, optional
        Override of ``config.bvh.max_depth``.
    min_triangles_for_split : int, optional
        Override of ``config.bvh.min_triangles_for_split``.
    """

    def __init__(
        self,
        config: SimulationConfig,
        max_depth: int | None = None,
        min_triangles_for_split: int | None = None,
    ) -> None:
        self._config = config

        if max_depth is not None or min_triangles_for_split is not None:
            bvh_cfg = replace(
                config.bvh,
                max_depth=(
                    max_depth if max_depth is not None else config.bvh.max_depth
                ),
                min_triangles_for_split=(
                    min_triangles_for_split
                    if min_triangles_for_split is not None
                    else config.bvh.min_triangles_for_split
                ),
            )
            self._config = replace(config, bvh=bvh_cfg)

        self._tester = CollisionTester(
            predicate=partial(
                triangle_triangle_intersection,
                epsilon=self._config.collision.epsilon,
            ),
            max_recursion_depth=self._config.collision.max_recursion_depth,
        )

        scene = self._config.scene
        self.box_mesh = _make_box(scene)
        self.terrain_mesh = _make_terrain(scene)

        self.box_triangles: list[Triangle] = self.box_mesh.to_triangles()
        self.terrain_triangles: list[Triangle] = self.terrain_mesh.to_triangles()

        self.box_tree: BVHNode = construct(
            self.box_triangles,
            self._config.bvh.max_depth,
            self._config.bvh.min_triangles_for_split,
            max_recursion_depth=self._config.collision.max_recursion_depth,
        )
        self.terrain_tree: BVHNode = construct(
            self.terrain_triangles,
            self._config.bvh.max_depth,
            self._config.bvh.min_triangles_for_split,
            max_recursion_depth=self._config.collision.max_recursion_depth,
        )

        logger.info(
            "CollisionRunner initialized: box %d tris, terrain %d tris, "
            "max_depth=%d, min_split=%d",
            len(self.box_triangles),
            len(self.terrain_triangles),
            self._config.bvh.max_depth,
            self._config.bvh.min_triangles_for_split,
        )

    @property
    def config(self) -> SimulationConfig:
        return self._config

    def box_transform(self, frame: int, num_frames: int) -> tuple[np.ndarray, float]:
        """Model matrix and lower-face height of the box on ``frame``."""
        scene = self._config.scene
        t = frame / (num_frames - 1) if num_frames > 1 else 0.0
        height = scene.start_height + (scene.end_height - scene.start_height) * t
        matrix = compose(
            translation(0.0, 0.0, height),
            rotation_z(scene.spin_deg_per_frame * frame),
        )
        return matrix, height

    def step(
        self,
        transform_a: np.ndarray,
        transform_b: np.ndarray | None = None,
        frame: int = 0,
        box_height: float = float("nan"),
    ) -> FrameResult:
        """Clear all flags, then test the box against the terrain once.

        Parameters
        ----------
        transform_a : np.ndarray
            Model matrix of the box.
        transform_b : np.ndarray, optional
            Model matrix of the terrain. Default: identity.
        frame : int
            Frame number recorded in the result.
        box_height : float
            Box height recorded in the result.

        Returns
        -------
        FrameResult
        """
        if transform_b is None:
            transform_b = identity()

        clear_collision_flags(self.box_tree)
        clear_collision_flags(self.terrain_tree)

        wall_start = time.perf_counter()
        report = self._tester.test(
            self.box_tree, transform_a, self.terrain_tree, transform_b
        )
        wall_elapsed = time.perf_counter() - wall_start

        return FrameResult(
            frame=frame,
            box_height=box_height,
            nodes_flagged_a=_count_flagged_nodes(self.box_tree),
            nodes_flagged_b=_count_flagged_nodes(self.terrain_tree),
            triangles_flagged_a=_flagged_indices(self.box_triangles),
            triangles_flagged_b=_flagged_indices(self.terrain_triangles),
            contacts=len(report.contacts),
            triangle_pairs_tested=report.triangle_pairs_tested,
            wall_time_s=wall_elapsed,
        )

    def run(self, frames: int | None = None) -> SimulationResults:
        """Execute the frame loop.

        Parameters
        ----------
        frames : int, optional
            Override of ``config.scene.frames``.

        Returns
        -------
        SimulationResults
            Per-frame results, tree statistics and metadata.
        """
        num_frames = frames if frames is not None else self._config.scene.frames
        if num_frames < 1:
            raise ValueError(f"Number of frames must be >= 1, got {num_frames}")

        results = SimulationResults(
            box_stats=bvh_statistics(self.box_tree),
            terrain_stats=bvh_statistics(self.terrain_tree),
            metadata={
                "num_frames": num_frames,
                "max_depth": self._config.bvh.max_depth,
                "min_triangles_for_split": self._config.bvh.min_triangles_for_split,
                "box_triangles": len(self.box_triangles),
                "terrain_triangles": len(self.terrain_triangles),
            },
        )

        logger.info("Running frame loop (%d frames)...", num_frames)
        wall_start = time.perf_counter()
        was_in_contact = False

        for frame in range(num_frames):
            matrix, height = self.box_transform(frame, num_frames)
            result = self.step(matrix, frame=frame, box_height=height)
            results.frames.append(result)

            logger.debug(
                "  Frame %d: h=%.3f, nodes=%d/%d, tris=%d/%d, contacts=%d",
                frame,
                height,
                result.nodes_flagged_a,
                result.nodes_flagged_b,
                result.triangles_flagged_a.size,
                result.triangles_flagged_b.size,
                result.contacts,
            )

            if result.in_contact and not was_in_contact:
                logger.info(
                    "  Contact begins at frame %d (h=%.3f): %d triangle pairs",
                    frame, height, result.contacts,
                )
            was_in_contact = result.in_contact

            # Progress logging
            if frame % max(1, num_frames // 10) == 0:
                logger.info(
                    "  Frame %d/%d: h=%.3f, box tris hit=%d, terrain tris hit=%d",
                    frame, num_frames, height,
                    result.triangles_flagged_a.size,
                    result.triangles_flagged_b.size,
                )

        wall_elapsed = time.perf_counter() - wall_start
        results.metadata["wall_time_s"] = wall_elapsed
        results.metadata["frames_per_second"] = (
            num_frames / wall_elapsed if wall_elapsed > 0 else float("inf")
        )
        results.metadata["first_contact_frame"] = results.first_contact_frame

        logger.info(
            "Frame loop complete: %.2f seconds wall time (%.1f frames/s)",
            wall_elapsed,
            results.metadata["frames_per_second"],
        )
        return results


# ---------------------------------------------------------------------------
# Scene Construction
# ---------------------------------------------------------------------------


def _make_box(scene: SceneConfig) -> TriangleMesh:
    half = scene.box_size / 2.0
    return box_mesh((-half, -half, 0.0), (half, half, scene.box_size))


def _make_terrain(scene: SceneConfig) -> TriangleMesh:
    """Bumpy heightfield centred on the origin, peak height ≈ amplitude."""
    rng = np.random.default_rng(scene.seed)
    n = scene.terrain_cells + 1
    extent = scene.terrain_cells * scene.terrain_spacing

    u = np.linspace(0.0, 2.0 * np.pi, n)
    bumps = np.outer(np.sin(u), np.cos(u))
    noise = rng.uniform(-0.1, 0.1, size=(n, n))
    heights = scene.terrain_amplitude * (bumps + noise) / 1.1

    return heightfield_mesh(
        heights,
        spacing=scene.terrain_spacing,
        origin=(-extent / 2.0, -extent / 2.0),
    )


def _count_flagged_nodes(root: BVHNode) -> int:
    return sum(1 for node in iter_nodes(root) if node.collision)


def _flagged_indices(triangles: list[Triangle]) -> np.ndarray:
    return np.array(
        sorted(t.index for t in triangles if t.collision), dtype=np.int64
    )
