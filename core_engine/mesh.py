"""Triangles and triangle meshes consumed by the BVH builder.

Provides the ``Triangle`` record the BVH references (never copies), the
indexed ``TriangleMesh`` container and a few procedural mesh factories used
by the demo scene and the tests.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Notes
-----
Box faces are split along the diagonal that joins the face's lowest and
highest corner in its two in-plane coordinates (u, v), u being the lower
axis index. For every face the "lower" triangle (v ≤ u) comes first,
then the "upper" one (v ≥ u). Faces are ordered -X, +X, -Y, +Y, -Z, +Z.

Each heightfield cell becomes two triangles sharing the (i,j)-(i+1,j+1) diagonal:

    (i,j)-------(i,j+1)
      |  \\  T1  |
      |   \\     |
      | T0  \\   |
      |       \\  |
    (i+1,j)---(i+1,j+1)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np

from core_engine.errors import InvalidInputError

logger = logging.getLogger(__name__)


def _homogeneous(vertex) -> np.ndarray:
    """Return ``vertex`` as a float64 homogeneous point of shape (4,)."""
    v = np.asarray(vertex, dtype=np.float64).ravel()
    if v.shape[0] == 3:
        return np.append(v, 1.0)
    if v.shape[0] == 4:
        return v.copy()
    raise InvalidInputError(
        f"A vertex needs 3 or 4 components, got {v.shape[0]}"
    )


@dataclass(eq=False)
class Triangle:
    """A single triangle with a mutable collision flag.

    Attributes
    ----------
    v1, v2, v3 : np.ndarray
        Homogeneous vertex positions in mesh-local space. Shape: (4,).
        Three-component input gets ``w = 1``.
    index : int
        Position of the triangle in its owning mesh, -1 if free-standing.
    collision : bool
        Set by the collision tester, cleared by the caller between tests.
    """

    v1: np.ndarray
    v2: np.ndarray
    v3: np.ndarray
    index: int = -1
    collision: bool = False

    def __post_init__(self) -> None:
        self.v1 = _homogeneous(self.v1)
        self.v2 = _homogeneous(self.v2)
        self.v3 = _homogeneous(self.v3)

    @property
    def vertices(self) -> np.ndarray:
        """The three vertices stacked row-wise. Shape: (3, 4)."""
        return np.stack([self.v1, self.v2, self.v3])

    def __repr__(self) -> str:
        return f"Triangle(index={self.index}, collision={self.collision})"


@dataclass
class TriangleMesh:
    """Indexed triangle mesh.

    Attributes
    ----------
    vertices : np.ndarray
        Vertex positions. Shape: (num_vertices, 3), dtype: float64.
    triangles : np.ndarray
        Triangle vertex indices. Shape: (num_triangles, 3), dtype: int64.
    face_areas : np.ndarray
        Area of each face. Shape: (num_triangles,), dtype: float64.
    metadata : dict
        Generator name and mesh statistics.
    """

    vertices: np.ndarray
    triangles: np.ndarray
    face_areas: np.ndarray
    metadata: dict = field(default_factory=dict)

    @property
    def num_triangles(self) -> int:
        return int(self.triangles.shape[0])

    def to_triangles(self) -> list[Triangle]:
        """Create one ``Triangle`` per face, with ``index`` set to the face index.

        Each call returns new Triangle objects; keep the list for as long
        as its collision flags are of interest.
        """
        tri_verts = self.vertices[self.triangles]  # (M, 3, 3)
        return [
            Triangle(tri_verts[i, 0], tri_verts[i, 1], tri_verts[i, 2], index=i)
            for i in range(tri_verts.shape[0])
        ]


def mesh_from_arrays(
    vertices: np.ndarray,
    triangles: np.ndarray,
    metadata: dict | None = None,
) -> TriangleMesh:
    """Wrap raw vertex/index arrays into a validated ``TriangleMesh``.

    Parameters
    ----------
    vertices : np.ndarray
        Vertex positions, shape (num_vertices, 3).
    triangles : np.ndarray
        Vertex indices, shape (num_triangles, 3).
    metadata : dict, optional
        Extra metadata merged into the mesh metadata.

    Returns
    -------
    TriangleMesh

    Raises
    ------
    InvalidInputError
        If the arrays have the wrong shape or indices are out of range.
    """
    vertices = np.asarray(vertices, dtype=np.float64)
    triangles = np.asarray(triangles, dtype=np.int64)

    if vertices.ndim != 2 or vertices.shape[1] != 3:
        raise InvalidInputError(
            f"vertices must have shape (N, 3), got {vertices.shape}"
        )
    if triangles.ndim != 2 or triangles.shape[1] != 3:
        raise InvalidInputError(
            f"triangles must have shape (M, 3), got {triangles.shape}"
        )
    if triangles.size and (
        triangles.min() < 0 or triangles.max() >= vertices.shape[0]
    ):
        raise InvalidInputError("Triangle index out of range of the vertex array")

    face_areas = _compute_face_areas(vertices, triangles)

    degenerate_count = int(np.sum(face_areas < 1e-20))
    if degenerate_count > 0:
        logger.warning(
            "  %d degenerate triangles detected (area < 1e-20)", degenerate_count
        )

    meta = {
        "num_vertices": int(vertices.shape[0]),
        "num_triangles": int(triangles.shape[0]),
        "degenerate_triangles": degenerate_count,
        "total_surface_area": float(face_areas.sum()),
    }
    if metadata:
        meta.update(metadata)

    return TriangleMesh(
        vertices=vertices,
        triangles=triangles,
        face_areas=face_areas,
        metadata=meta,
    )


def box_mesh(bbox_min=(0.0, 0.0, 0.0), bbox_max=(1.0, 1.0, 1.0)) -> TriangleMesh:
    """Closed axis-aligned box made of 12 triangles.

    Triangle ``((axis * 2 + side) * 2 + half)`` lies on the face normal to
    ``axis`` (0=X, 1=Y, 2=Z) at ``bbox_min`` (side 0) or ``bbox_max``
    (side 1); half 0 is the lower triangle, half 1 the upper one (see the
    module notes).
    """
    lo = np.asarray(bbox_min, dtype=np.float64)
    hi = np.asarray(bbox_max, dtype=np.float64)
    if np.any(hi < lo):
        raise InvalidInputError("bbox_max must be >= bbox_min componentwise")

    # Corner c has coordinate hi[k] where bit k of c is set
    vertices = np.array(
        [[hi[k] if (c >> k) & 1 else lo[k] for k in range(3)] for c in range(8)],
        dtype=np.float64,
    )

    triangles = []
    for axis in range(3):
        u_axis, v_axis = [k for k in range(3) if k != axis]
        for side in (0, 1):

            def corner(bu: int, bv: int) -> int:
                return (side << axis) | (bu << u_axis) | (bv << v_axis)

            triangles.append([corner(0, 0), corner(1, 0), corner(1, 1)])
            triangles.append([corner(0, 0), corner(1, 1), corner(0, 1)])

    return mesh_from_arrays(vertices, np.array(triangles), metadata={"type": "box"})


def octahedron_mesh(center=(0.0, 0.0, 0.0), radius: float = 1.0) -> TriangleMesh:
    """Regular octahedron (8 triangles, one per octant).

    Vertices are ``center ± radius * e_k`` ordered +X, -X, +Y, -Y, +Z, -Z.
    """
    c = np.asarray(center, dtype=np.float64)
    offsets = np.array(
        [
            [1.0, 0.0, 0.0], [-1.0, 0.0, 0.0],
            [0.0, 1.0, 0.0], [0.0, -1.0, 0.0],
            [0.0, 0.0, 1.0], [0.0, 0.0, -1.0],
        ],
        dtype=np.float64,
    )
    vertices = c + radius * offsets

    triangles = [
        [sx, 2 + sy, 4 + sz]
        for sx in (0, 1)
        for sy in (0, 1)
        for sz in (0, 1)
    ]
    return mesh_from_arrays(
        vertices, np.array(triangles), metadata={"type": "octahedron"}
    )


def heightfield_mesh(
    heights: np.ndarray,
    spacing: float = 1.0,
    origin=(0.0, 0.0),
) -> TriangleMesh:
    """Triangulate a regular height grid.

    Parameters
    ----------
    heights : np.ndarray
        Z values on the grid. Shape: (ny, nx), both at least 2.
    spacing : float
        Grid spacing along X and Y.
    origin : tuple[float, float]
        (x, y) of grid sample (0, 0).

    Returns
    -------
    TriangleMesh
        ``2 * (ny - 1) * (nx - 1)`` triangles, interleaved lower/upper per cell.
    """
    heights = np.asarray(heights, dtype=np.float64)
    if heights.ndim != 2 or heights.shape[0] < 2 or heights.shape[1] < 2:
        raise InvalidInputError(
            f"heights must be a 2D grid of at least 2x2, got {heights.shape}"
        )
    ny, nx = heights.shape

    x = origin[0] + spacing * np.arange(nx, dtype=np.float64)
    y = origin[1] + spacing * np.arange(ny, dtype=np.float64)
    xx, yy = np.meshgrid(x, y, indexing="xy")
    vertices = np.column_stack([xx.ravel(), yy.ravel(), heights.ravel()])

    row_idx, col_idx = np.meshgrid(
        np.arange(ny - 1, dtype=np.int64),
        np.arange(nx - 1, dtype=np.int64),
        indexing="ij",
    )
    row_flat = row_idx.ravel()
    col_flat = col_idx.ravel()

    v00 = row_flat * nx + col_flat
    v10 = (row_flat + 1) * nx + col_flat
    v11 = (row_flat + 1) * nx + (col_flat + 1)
    v01 = row_flat * nx + (col_flat + 1)

    num_triangles = 2 * (ny - 1) * (nx - 1)
    triangles = np.empty((num_triangles, 3), dtype=np.int64)
    triangles[0::2] = np.column_stack([v00, v10, v11])
    triangles[1::2] = np.column_stack([v00, v11, v01])

    logger.debug("Heightfield %d x %d -> %d triangles", nx, ny, num_triangles)

    return mesh_from_arrays(
        vertices,
        triangles,
        metadata={"type": "heightfield", "nx": nx, "ny": ny, "spacing": spacing},
    )


def _compute_face_areas(vertices: np.ndarray, triangles: np.ndarray) -> np.ndarray:
    """Area of every triangle, shape (num_triangles,)."""
    v0 = vertices[triangles[:, 0]]
    v1 = vertices[triangles[:, 1]]
    v2 = vertices[triangles[:, 2]]
    cross = np.cross(v1 - v0, v2 - v0)
    return 0.5 * np.linalg.norm(cross, axis=1)
