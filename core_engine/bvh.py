"""Binary Bounding Volume Hierarchy over triangle lists.

Builds a pointer-based BVH by recursive midpoint subdivision of the
bounding box's longest axis. The tree is built once per mesh; afterwards
only the ``collision`` flags of nodes and triangles change.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Design Notes
------------
- **Non-owning triangles**: nodes keep references to the caller's
  ``Triangle`` objects. Every node (not only leaves) stores the full list
  of triangles it bounds; leaves hold the authoritative lists used by the
  narrow phase.
- **Leaf encoding**: a leaf has neither child. Children are always attached
  together through ``BVHNode.set_children``; ``is_leaf`` refuses to classify
  a node with a single child.
- **Split rule**: split coordinate = midpoint of the longest box extent
  (ties: X before Y before Z). A triangle goes left if all its vertices are
  ``<=`` the split, right if all are ``>``, otherwise to the side holding
  the larger part of its extent (ties left).
- **Depth budget**: a node splits only if both partitions are non-empty and
  ``depth <= max_depth``. Children receive ``max_depth - 1``, or
  ``max_depth = 0`` when their partition holds fewer than
  ``min_triangles_for_split`` triangles. Since depth grows while the budget
  shrinks, splitting stops around ``max_depth / 2``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterator, Sequence

import numpy as np

from core_engine.errors import (
    InvalidInputError,
    MalformedTreeError,
    StackLimitExceededError,
)
from core_engine.mesh import Triangle

logger = logging.getLogger(__name__)

_DEFAULT_MAX_RECURSION: int = 256


# ===================================================================
# NODE
# ===================================================================


@dataclass(eq=False)
class BVHNode:
    """One axis-aligned bounding box of the hierarchy.

    Attributes
    ----------
    bbox_min, bbox_max : np.ndarray
        Homogeneous AABB corners in mesh-local space (w = 1). Shape: (4,).
    triangles : list[Triangle]
        All triangles bounded by this node.
    depth : int
        Distance from the root (root = 0).
    left, right : BVHNode or None
        Children; both None for a leaf.
    collision : bool
        Set when this box overlapped a box of another hierarchy.
    """

    bbox_min: np.ndarray
    bbox_max: np.ndarray
    triangles: list[Triangle]
    depth: int = 0
    left: BVHNode | None = None
    right: BVHNode | None = None
    collision: bool = False

    @property
    def is_leaf(self) -> bool:
        """True if the node has no children.

        Raises
        ------
        MalformedTreeError
            If exactly one child is present.
        """
        if (self.left is None) != (self.right is None):
            raise MalformedTreeError(
                f"BVH node at depth {self.depth} has exactly one child"
            )
        return self.left is None

    def set_children(self, left: BVHNode, right: BVHNode) -> None:
        """Attach both children at once."""
        if left is None or right is None:
            raise MalformedTreeError("Both children must be given together")
        self.left = left
        self.right = right

    def __repr__(self) -> str:
        kind = "leaf" if self.left is None and self.right is None else "internal"
        return (
            f"BVHNode({kind}, depth={self.depth}, "
            f"triangles={len(self.triangles)}, collision={self.collision})"
        )


@dataclass
class BVHStatistics:
    """Shape summary of a built tree.

    Attributes
    ----------
    num_nodes : int
        Total node count.
    num_leaves : int
        Leaf count.
    max_depth : int
        Largest node depth.
    max_leaf_triangles : int
        Largest leaf triangle count.
    min_leaf_triangles : int
        Smallest leaf triangle count.
    leaf_depths : list[int]
        Depth of every leaf in pre-order.
    """

    num_nodes: int = 0
    num_leaves: int = 0
    max_depth: int = 0
    max_leaf_triangles: int = 0
    min_leaf_triangles: int = 0
    leaf_depths: list[int] = field(default_factory=list)


# ===================================================================
# BVH CONSTRUCTION
# ===================================================================


def construct(
    triangles: Sequence[Triangle],
    max_depth: int,
    min_triangles_for_split: int,
    max_recursion_depth: int = _DEFAULT_MAX_RECURSION,
) -> BVHNode:
    """Build a BVH over ``triangles``.

    Parameters
    ----------
    triangles : Sequence[Triangle]
        Non-empty list of triangles. They are referenced, not copied.
    max_depth : int
        Depth budget of the root call.
    min_triangles_for_split : int
        Partitions with fewer triangles are forced to become leaves.
    max_recursion_depth : int
        Deepest node the builder may create before giving up.

    Returns
    -------
    BVHNode
        Root of the new tree (depth 0).

    Raises
    ------
    InvalidInputError
        If ``triangles`` is empty.
    StackLimitExceededError
        If the tree would grow deeper than ``max_recursion_depth``.
    """
    if len(triangles) == 0:
        raise InvalidInputError("Cannot build a BVH from an empty triangle list")

    logger.info(
        "Building BVH for %d triangles (max_depth=%d, min_split=%d)...",
        len(triangles),
        max_depth,
        min_triangles_for_split,
    )

    root = _construct_recursive(
        list(triangles), max_depth, min_triangles_for_split, 0, max_recursion_depth
    )

    stats = bvh_statistics(root)
    logger.info(
        "BVH built: %d nodes, %d leaves, depth %d, leaf size %d-%d triangles",
        stats.num_nodes,
        stats.num_leaves,
        stats.max_depth,
        stats.min_leaf_triangles,
        stats.max_leaf_triangles,
    )
    return root


def _construct_recursive(
    triangles: list[Triangle],
    max_depth: int,
    min_triangles_for_split: int,
    depth: int,
    max_recursion_depth: int,
) -> BVHNode:
    """Build the subtree for ``triangles``. Returns its root node."""
    if depth > max_recursion_depth:
        raise StackLimitExceededError(
            f"BVH construction exceeded {max_recursion_depth} levels "
            f"({len(triangles)} triangles left)"
        )

    # (N, 3, 4) homogeneous vertices of this subset
    verts = np.stack([t.vertices for t in triangles])

    bbox_min = np.ones(4, dtype=np.float64)
    bbox_max = np.ones(4, dtype=np.float64)
    bbox_min[:3] = verts[:, :, :3].min(axis=(0, 1))
    bbox_max[:3] = verts[:, :, :3].max(axis=(0, 1))

    node = BVHNode(bbox_min=bbox_min, bbox_max=bbox_max, triangles=triangles, depth=depth)

    axis = _longest_axis(bbox_min, bbox_max)
    split_coord = (bbox_min[axis] + bbox_max[axis]) / 2.0

    left_mask = _partition_mask(verts[:, :, axis], split_coord)
    left_triangles = [t for t, go_left in zip(triangles, left_mask) if go_left]
    right_triangles = [t for t, go_left in zip(triangles, left_mask) if not go_left]

    if left_triangles and right_triangles and depth <= max_depth:
        left = _construct_recursive(
            left_triangles,
            _child_budget(len(left_triangles), max_depth, min_triangles_for_split),
            min_triangles_for_split,
            depth + 1,
            max_recursion_depth,
        )
        right = _construct_recursive(
            right_triangles,
            _child_budget(len(right_triangles), max_depth, min_triangles_for_split),
            min_triangles_for_split,
            depth + 1,
            max_recursion_depth,
        )
        node.set_children(left, right)

    return node


def _longest_axis(bbox_min: np.ndarray, bbox_max: np.ndarray) -> int:
    """Index of the longest box extent; X wins ties, then Y."""
    x_len = abs(bbox_max[0] - bbox_min[0])
    y_len = abs(bbox_max[1] - bbox_min[1])
    z_len = abs(bbox_max[2] - bbox_min[2])

    if x_len >= y_len and x_len >= z_len:
        return 0
    if y_len >= x_len and y_len >= z_len:
        return 1
    return 2


def _partition_mask(coords: np.ndarray, split_coord: float) -> np.ndarray:
    """Decide the side of each triangle.

    Parameters
    ----------
    coords : np.ndarray
        Vertex coordinates along the split axis. Shape: (N, 3).
    split_coord : float
        Split plane position.

    Returns
    -------
    np.ndarray
        Boolean mask, True where the triangle goes to the left child.
    """
    all_left = np.all(coords <= split_coord, axis=1)
    all_right = np.all(coords > split_coord, axis=1)

    min_v = coords.min(axis=1)
    max_v = coords.max(axis=1)
    mostly_left = (split_coord - min_v) >= (max_v - split_coord)

    return all_left | (~all_right & mostly_left)


def _child_budget(count: int, max_depth: int, min_triangles_for_split: int) -> int:
    if count >= min_triangles_for_split:
        return max_depth - 1
    return 0


# ===================================================================
# TREE UTILITIES
# ===================================================================


def iter_nodes(root: BVHNode) -> Iterator[BVHNode]:
    """Yield every node in pre-order (node, left subtree, right subtree)."""
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        if not node.is_leaf:
            stack.append(node.right)
            stack.append(node.left)


def iter_leaves(root: BVHNode) -> Iterator[BVHNode]:
    """Yield the leaves in pre-order."""
    for node in iter_nodes(root):
        if node.is_leaf:
            yield node


def bvh_statistics(root: BVHNode) -> BVHStatistics:
    """Count nodes and leaves and collect depth / leaf size extremes."""
    stats = BVHStatistics()
    leaf_sizes: list[int] = []

    for node in iter_nodes(root):
        stats.num_nodes += 1
        stats.max_depth = max(stats.max_depth, node.depth)
        if node.is_leaf:
            stats.num_leaves += 1
            stats.leaf_depths.append(node.depth)
            leaf_sizes.append(len(node.triangles))

    stats.max_leaf_triangles = max(leaf_sizes)
    stats.min_leaf_triangles = min(leaf_sizes)
    return stats


def tree_signature(root: BVHNode) -> np.ndarray:
    """Flatten the tree shape into a float64 array for hashing.

    Per node in pre-order: ``[depth, is_leaf, n_triangles, min_xyz, max_xyz]``
    (9 values), followed by the ``index`` of every leaf triangle in leaf
    order. Two builds from the same input give identical arrays.
    """
    node_rows: list[list[float]] = []
    leaf_indices: list[float] = []

    for node in iter_nodes(root):
        leaf = node.is_leaf
        node_rows.append(
            [float(node.depth), float(leaf), float(len(node.triangles))]
            + node.bbox_min[:3].tolist()
            + node.bbox_max[:3].tolist()
        )
        if leaf:
            leaf_indices.extend(float(t.index) for t in node.triangles)

    return np.concatenate(
        [
            np.asarray(node_rows, dtype=np.float64).ravel(),
            np.asarray(leaf_indices, dtype=np.float64),
        ]
    )


def clear_collision_flags(root: BVHNode) -> None:
    """Reset the ``collision`` flag of every node and every bounded triangle."""
    for node in iter_nodes(root):
        node.collision = False
    for triangle in root.triangles:
        triangle.collision = False
