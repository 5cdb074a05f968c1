"""Broad-phase and narrow-phase geometric predicates.

AABB overlap and a separating-axis triangle-triangle intersection test,
both compiled with Numba ``@njit(cache=True)``. The collision tester only
needs ``triangle_triangle_intersection``; any callable with the same
signature can be injected in its place.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Design Notes
------------
- **Closed sets**: triangles and boxes include their boundary, so shapes
  that merely touch are reported as intersecting.
- **Separating axes**: for two triangles it suffices to test the two face
  normals, the nine edge-edge cross products and, for coplanar pairs, the
  six in-plane edge normals (normal × edge). Any extra axis is harmless
  because a separating axis proves disjointness on its own, so all 17 are
  tried unconditionally, plus the six cross-normals (other triangle's
  normal × edge) that cover a zero-area triangle lying in the other
  triangle's plane.
- **Degenerate axes**: axes with squared length below ``epsilon``
  (parallel edges, zero-area triangles) are skipped.

References
----------
- Gottschalk, S., Lin, M.C. & Manocha, D. (1996). "OBBTree: A Hierarchical
  Structure for Rapid Interference Detection." Proc. SIGGRAPH '96.
- Ericson, C. (2005). "Real-Time Collision Detection", ch. 4-5.
"""

from __future__ import annotations

import numpy as np
from numba import njit

_DEFAULT_EPSILON: float = 1e-12


# ===================================================================
# AABB OVERLAP — Numba JIT
# ===================================================================


@njit(cache=True, fastmath=False)
def aabb_overlap(
    min_a: np.ndarray,
    max_a: np.ndarray,
    min_b: np.ndarray,
    max_b: np.ndarray,
) -> bool:
    """Test two axis-aligned boxes for overlap on X, Y and Z.

    Parameters
    ----------
    min_a, max_a : np.ndarray
        Corners of box A. Shape: (3,) or (4,); only the first three
        components are read.
    min_b, max_b : np.ndarray
        Corners of box B.

    Returns
    -------
    bool
        True iff ``max_a >= min_b`` and ``min_a <= max_b`` on every axis.
    """
    for axis in range(3):
        if not (max_a[axis] >= min_b[axis] and min_a[axis] <= max_b[axis]):
            return False
    return True


# ===================================================================
# TRIANGLE-TRIANGLE — Separating Axis Theorem (Numba JIT)
# ===================================================================


@njit(cache=True, fastmath=False)
def _separated_along(
    tri_a: np.ndarray,
    tri_b: np.ndarray,
    ax: float,
    ay: float,
    az: float,
    epsilon: float,
) -> bool:
    """Return True if the axis (ax, ay, az) separates the two triangles."""
    if ax * ax + ay * ay + az * az < epsilon:
        return False

    min_a = np.inf
    max_a = -np.inf
    min_b = np.inf
    max_b = -np.inf
    for i in range(3):
        pa = tri_a[i, 0] * ax + tri_a[i, 1] * ay + tri_a[i, 2] * az
        pb = tri_b[i, 0] * ax + tri_b[i, 1] * ay + tri_b[i, 2] * az
        if pa < min_a:
            min_a = pa
        if pa > max_a:
            max_a = pa
        if pb < min_b:
            min_b = pb
        if pb > max_b:
            max_b = pb

    return max_a < min_b or max_b < min_a


@njit(cache=True, fastmath=False)
def triangles_intersect(
    tri_a: np.ndarray,
    tri_b: np.ndarray,
    epsilon: float,
) -> bool:
    """Exact intersection test between two closed triangles.

    Parameters
    ----------
    tri_a, tri_b : np.ndarray
        Vertex positions in a common frame. Shape: (3, 3) each, rows are
        vertices (x, y, z).
    epsilon : float
        Squared-length threshold below which a candidate axis is ignored.

    Returns
    -------
    bool
        True if the triangles share at least one point.
    """
    edges_a = np.empty((3, 3), dtype=np.float64)
    edges_b = np.empty((3, 3), dtype=np.float64)
    for i in range(3):
        j = (i + 1) % 3
        for d in range(3):
            edges_a[i, d] = tri_a[j, d] - tri_a[i, d]
            edges_b[i, d] = tri_b[j, d] - tri_b[i, d]

    # Face normals
    na_x = edges_a[0, 1] * edges_a[1, 2] - edges_a[0, 2] * edges_a[1, 1]
    na_y = edges_a[0, 2] * edges_a[1, 0] - edges_a[0, 0] * edges_a[1, 2]
    na_z = edges_a[0, 0] * edges_a[1, 1] - edges_a[0, 1] * edges_a[1, 0]
    if _separated_along(tri_a, tri_b, na_x, na_y, na_z, epsilon):
        return False

    nb_x = edges_b[0, 1] * edges_b[1, 2] - edges_b[0, 2] * edges_b[1, 1]
    nb_y = edges_b[0, 2] * edges_b[1, 0] - edges_b[0, 0] * edges_b[1, 2]
    nb_z = edges_b[0, 0] * edges_b[1, 1] - edges_b[0, 1] * edges_b[1, 0]
    if _separated_along(tri_a, tri_b, nb_x, nb_y, nb_z, epsilon):
        return False

    # Edge-edge cross products
    for i in range(3):
        for j in range(3):
            ax = edges_a[i, 1] * edges_b[j, 2] - edges_a[i, 2] * edges_b[j, 1]
            ay = edges_a[i, 2] * edges_b[j, 0] - edges_a[i, 0] * edges_b[j, 2]
            az = edges_a[i, 0] * edges_b[j, 1] - edges_a[i, 1] * edges_b[j, 0]
            if _separated_along(tri_a, tri_b, ax, ay, az, epsilon):
                return False

    # In-plane edge normals (decisive only for coplanar pairs)
    for i in range(3):
        ax = na_y * edges_a[i, 2] - na_z * edges_a[i, 1]
        ay = na_z * edges_a[i, 0] - na_x * edges_a[i, 2]
        az = na_x * edges_a[i, 1] - na_y * edges_a[i, 0]
        if _separated_along(tri_a, tri_b, ax, ay, az, epsilon):
            return False

        ax = nb_y * edges_b[i, 2] - nb_z * edges_b[i, 1]
        ay = nb_z * edges_b[i, 0] - nb_x * edges_b[i, 2]
        az = nb_x * edges_b[i, 1] - nb_y * edges_b[i, 0]
        if _separated_along(tri_a, tri_b, ax, ay, az, epsilon):
            return False

        # Cross-normals: a zero-area triangle has no normal of its own
        ax = nb_y * edges_a[i, 2] - nb_z * edges_a[i, 1]
        ay = nb_z * edges_a[i, 0] - nb_x * edges_a[i, 2]
        az = nb_x * edges_a[i, 1] - nb_y * edges_a[i, 0]
        if _separated_along(tri_a, tri_b, ax, ay, az, epsilon):
            return False

        ax = na_y * edges_b[i, 2] - na_z * edges_b[i, 1]
        ay = na_z * edges_b[i, 0] - na_x * edges_b[i, 2]
        az = na_x * edges_b[i, 1] - na_y * edges_b[i, 0]
        if _separated_along(tri_a, tri_b, ax, ay, az, epsilon):
            return False

    return True


# ===================================================================
# HIGH-LEVEL API
# ===================================================================


def world_vertices(triangle, matrix: np.ndarray) -> np.ndarray:
    """Transform a triangle's vertices to world space.

    Parameters
    ----------
    triangle : Triangle
        Triangle with homogeneous vertices ``v1``, ``v2``, ``v3``.
    matrix : np.ndarray
        4×4 model matrix.

    Returns
    -------
    np.ndarray
        World-space positions, shape (3, 3).
    """
    local = triangle.vertices  # (3, 4)
    world = local @ matrix.T
    return np.ascontiguousarray(world[:, :3])


def triangle_triangle_intersection(
    t1,
    transform1: np.ndarray,
    t2,
    transform2: np.ndarray,
    epsilon: float = _DEFAULT_EPSILON,
) -> bool:
    """Narrow-phase predicate used by the collision tester.

    Parameters
    ----------
    t1, t2 : Triangle
        The two triangles, each in its own mesh-local space.
    transform1, transform2 : np.ndarray
        Model matrices of the two meshes. Shape: (4, 4).
    epsilon : float
        Degenerate-axis threshold forwarded to ``triangles_intersect``.

    Returns
    -------
    bool
        True if the world-space triangles intersect or touch.
    """
    return bool(
        triangles_intersect(
            world_vertices(t1, transform1),
            world_vertices(t2, transform2),
            epsilon,
        )
    )
