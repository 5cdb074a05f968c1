"""Tests for BVH construction.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""

from __future__ import annotations

import numpy as np
import pytest

from core_engine.bvh import (
    BVHNode,
    bvh_statistics,
    clear_collision_flags,
    construct,
    iter_leaves,
    iter_nodes,
    tree_signature,
)
from core_engine.constants import hash_array
from core_engine.errors import (
    InvalidInputError,
    MalformedTreeError,
    StackLimitExceededError,
)
from core_engine.mesh import Triangle, box_mesh, octahedron_mesh

from conftest import make_random_triangles


def _leaf_indices(root: BVHNode) -> list[list[int]]:
    return [[t.index for t in leaf.triangles] for leaf in iter_leaves(root)]


def _x_segment(x0: float, x1: float, index: int) -> Triangle:
    """Triangle in z=0 spanning x ∈ [x0, x1], y ∈ [0, 1]."""
    return Triangle((x0, 0.0, 0.0), (x1, 0.0, 0.0), (x0, 1.0, 0.0), index=index)


class TestBounds:
    """Every node's box bounds its triangles, and tightly."""

    def test_unit_cube_root_box(self) -> None:
        root = construct(box_mesh().to_triangles(), 2, 2)
        np.testing.assert_array_equal(root.bbox_min, [0.0, 0.0, 0.0, 1.0])
        np.testing.assert_array_equal(root.bbox_max, [1.0, 1.0, 1.0, 1.0])

    def test_single_triangle_is_leaf(self) -> None:
        t = Triangle((1.0, 2.0, 3.0), (4.0, -1.0, 3.5), (2.0, 2.0, 7.0), index=0)
        root = construct([t], 5, 1)
        assert root.is_leaf
        assert root.depth == 0
        assert root.triangles == [t]
        np.testing.assert_array_equal(root.bbox_min, [1.0, -1.0, 3.0, 1.0])
        np.testing.assert_array_equal(root.bbox_max, [4.0, 2.0, 7.0, 1.0])

    def test_every_node_contains_its_triangles(self, random_triangles) -> None:
        root = construct(random_triangles, 8, 2)
        for node in iter_nodes(root):
            verts = np.stack([t.vertices for t in node.triangles])[:, :, :3]
            lo = verts.min(axis=(0, 1))
            hi = verts.max(axis=(0, 1))
            # Tight: the box is exactly the vertex extent
            np.testing.assert_array_equal(node.bbox_min[:3], lo)
            np.testing.assert_array_equal(node.bbox_max[:3], hi)
            assert node.bbox_min[3] == 1.0
            assert node.bbox_max[3] == 1.0

    def test_children_inside_parent(self, random_triangles) -> None:
        root = construct(random_triangles, 8, 2)
        for node in iter_nodes(root):
            if node.is_leaf:
                continue
            for child in (node.left, node.right):
                assert np.all(child.bbox_min[:3] >= node.bbox_min[:3])
                assert np.all(child.bbox_max[:3] <= node.bbox_max[:3])


class TestPartition:
    """Each triangle ends up in exactly one leaf."""

    def test_leaves_partition_input(self, random_triangles) -> None:
        root = construct(random_triangles, 10, 1)
        seen = [t.index for leaf in iter_leaves(root) for t in leaf.triangles]
        assert sorted(seen) == list(range(len(random_triangles)))

    def test_children_split_parent_list(self, random_triangles) -> None:
        root = construct(random_triangles, 10, 1)
        for node in iter_nodes(root):
            if node.is_leaf:
                continue
            left_ids = {id(t) for t in node.left.triangles}
            right_ids = {id(t) for t in node.right.triangles}
            assert not left_ids & right_ids
            assert left_ids | right_ids == {id(t) for t in node.triangles}
            assert node.left.triangles and node.right.triangles

    def test_triangles_are_referenced_not_copied(self, strip8) -> None:
        root = construct(strip8, 2, 2)
        leaf_objects = [t for leaf in iter_leaves(root) for t in leaf.triangles]
        assert all(any(t is s for s in strip8) for t in leaf_objects)

    def test_input_list_not_modified(self, strip8) -> None:
        original = list(strip8)
        construct(strip8, 2, 2)
        assert all(a is b for a, b in zip(strip8, original))

    def test_straddling_triangles_go_to_larger_side(self) -> None:
        """Split at x=5: [4,7] leans right, [3,6] leans left, [4,6] ties left."""
        triangles = [
            _x_segment(0.0, 1.0, 0),
            _x_segment(9.0, 10.0, 1),
            _x_segment(4.0, 7.0, 2),
            _x_segment(3.0, 6.0, 3),
            _x_segment(4.0, 6.0, 4),
        ]
        root = construct(triangles, 0, 1)
        assert [t.index for t in root.left.triangles] == [0, 3, 4]
        assert [t.index for t in root.right.triangles] == [1, 2]

    def test_vertex_on_split_plane_goes_left(self) -> None:
        triangles = [_x_segment(0.0, 2.0, 0), _x_segment(2.0, 4.0, 1)]
        root = construct(triangles, 0, 1)
        # Split at x=2: triangle 0 is all <= 2, triangle 1 touches 2 but leans right
        assert [t.index for t in root.left.triangles] == [0]
        assert [t.index for t in root.right.triangles] == [1]


class TestSplitAxis:
    """Longest extent wins, ties go X before Y before Z."""

    def test_x_wins_tie_with_y(self) -> None:
        low_x = Triangle((0, 3, 0), (1, 3, 0), (0, 4, 0), index=0)
        high_x = Triangle((3, 0, 0), (4, 0, 0), (3, 1, 0), index=1)
        root = construct([low_x, high_x], 1, 1)
        # A Y split would put high_x on the left
        assert root.left.triangles == [low_x]
        assert root.right.triangles == [high_x]

    def test_y_wins_tie_with_z(self) -> None:
        low_y = Triangle((0, 0, 3), (0, 1, 4), (0.5, 0, 4), index=0)
        high_y = Triangle((0, 3, 0), (0, 4, 1), (0.5, 3, 1), index=1)
        root = construct([low_y, high_y], 1, 1)
        # A Z split would put high_y on the left
        assert root.left.triangles == [low_y]
        assert root.right.triangles == [high_y]

    def test_z_when_longest(self) -> None:
        top = Triangle((0, 0, 9), (1, 0, 10), (0, 1, 10), index=0)
        bottom = Triangle((1, 1, 0), (2, 1, 1), (1, 2, 1), index=1)
        root = construct([top, bottom], 1, 1)
        assert root.left.triangles == [bottom]
        assert root.right.triangles == [top]

    def test_no_split_when_all_on_one_side(self) -> None:
        """Two coincident triangles cannot be separated."""
        a = Triangle((0, 0, 0), (1, 0, 0), (0, 1, 0), index=0)
        b = Triangle((0, 0, 0), (1, 0, 0), (0, 1, 0), index=1)
        root = construct([a, b], 10, 1)
        assert root.is_leaf
        assert root.triangles == [a, b]


class TestDepthBudget:
    """``max_depth`` and ``min_triangles_for_split`` shape the tree."""

    def test_strip_depth_two(self, strip8) -> None:
        root = construct(strip8, 2, 2)
        stats = bvh_statistics(root)
        assert stats.num_nodes == 7
        assert stats.num_leaves == 4
        assert stats.leaf_depths == [2, 2, 2, 2]
        assert _leaf_indices(root) == [[0, 1], [2, 3], [4, 5], [6, 7]]

    def test_strip_depth_one(self, strip8) -> None:
        root = construct(strip8, 1, 2)
        assert bvh_statistics(root).num_nodes == 3
        assert _leaf_indices(root) == [[0, 1, 2, 3], [4, 5, 6, 7]]

    def test_zero_budget_still_splits_root(self, strip8) -> None:
        """The root splits whenever depth 0 <= max_depth."""
        root = construct(strip8, 0, 2)
        assert not root.is_leaf
        assert _leaf_indices(root) == [[0, 1, 2, 3], [4, 5, 6, 7]]

    def test_negative_budget_gives_single_leaf(self, strip8) -> None:
        root = construct(strip8, -1, 2)
        assert root.is_leaf
        assert len(root.triangles) == 8

    def test_small_partitions_forced_to_leaves(self, strip8) -> None:
        """With min_split=3 the 2-triangle partitions stop at depth 2."""
        forced = construct(strip8, 10, 3)
        assert _leaf_indices(forced) == [[0, 1], [2, 3], [4, 5], [6, 7]]
        assert bvh_statistics(forced).leaf_depths == [2, 2, 2, 2]

        free = construct(strip8, 10, 2)
        free_stats = bvh_statistics(free)
        assert free_stats.num_leaves == 8
        assert free_stats.leaf_depths == [3] * 8

    @pytest.mark.parametrize("max_depth", [0, 1, 2, 5, 10])
    def test_depth_bounded(self, max_depth) -> None:
        triangles = make_random_triangles(200, seed=max_depth)
        root = construct(triangles, max_depth, 1)
        assert bvh_statistics(root).max_depth <= max_depth + 1

    def test_unit_cube_shape(self) -> None:
        """X split at 0.5: the +X face goes right, everything else straddles left."""
        root = construct(box_mesh().to_triangles(), 2, 2)
        assert not root.is_leaf
        assert root.left.is_leaf and root.right.is_leaf
        assert [t.index for t in root.left.triangles] == [0, 1, 4, 5, 6, 7, 8, 9, 10, 11]
        assert [t.index for t in root.right.triangles] == [2, 3]
        assert root.left.depth == root.right.depth == 1

    def test_octahedron_splits(self) -> None:
        root = construct(octahedron_mesh().to_triangles(), 4, 1)
        stats = bvh_statistics(root)
        assert stats.num_leaves >= 2
        assert sum(len(leaf.triangles) for leaf in iter_leaves(root)) == 8


class TestDeterminism:
    """Same input, same tree."""

    def test_signature_reproducible(self, random_triangles) -> None:
        first = tree_signature(construct(random_triangles, 8, 2))
        copies = make_random_triangles(60, seed=7)
        second = tree_signature(construct(copies, 8, 2))
        np.testing.assert_array_equal(first, second)
        assert hash_array(first) == hash_array(second)

    def test_signature_changes_with_budget(self, random_triangles) -> None:
        a = tree_signature(construct(random_triangles, 8, 2))
        b = tree_signature(construct(random_triangles, 1, 2))
        assert hash_array(a) != hash_array(b)


class TestErrors:
    """Invalid input and malformed trees."""

    def test_empty_input(self) -> None:
        with pytest.raises(InvalidInputError):
            construct([], 4, 2)

    def test_empty_input_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            construct([], 4, 2)

    def test_bad_vertex_shape(self) -> None:
        with pytest.raises(InvalidInputError):
            Triangle((0, 0), (1, 0, 0), (0, 1, 0))

    def test_single_child_is_malformed(self, strip8) -> None:
        leaf = construct(strip8[:1], 0, 1)
        node = BVHNode(
            bbox_min=leaf.bbox_min.copy(),
            bbox_max=leaf.bbox_max.copy(),
            triangles=list(leaf.triangles),
        )
        node.left = leaf
        with pytest.raises(MalformedTreeError):
            _ = node.is_leaf
        with pytest.raises(MalformedTreeError):
            list(iter_nodes(node))

    def test_set_children_requires_both(self, strip8) -> None:
        leaf = construct(strip8[:1], 0, 1)
        with pytest.raises(MalformedTreeError):
            leaf.set_children(leaf, None)


class TestFlags:
    """Collision flags start cleared and can be reset."""

    def test_new_tree_has_no_flags(self, strip8) -> None:
        root = construct(strip8, 2, 2)
        assert not any(node.collision for node in iter_nodes(root))
        assert not any(t.collision for t in strip8)

    def test_clear_collision_flags(self, strip8) -> None:
        root = construct(strip8, 2, 2)
        for node in iter_nodes(root):
            node.collision = True
        for t in strip8:
            t.collision = True

        clear_collision_flags(root)

        assert not any(node.collision for node in iter_nodes(root))
        assert not any(t.collision for t in strip8)


class TestRecursionGuard:
    """Pathological inputs that peel off one triangle per level."""

    @staticmethod
    def _peeling(count: int) -> list[Triangle]:
        # Split at the midpoint leaves only the farthest triangle on the right
        return [_x_segment(2.0**i, 2.0**i + 1.0, i) for i in range(count)]

    def test_deep_chain_within_limit(self) -> None:
        root = construct(self._peeling(100), 10000, 1)
        stats = bvh_statistics(root)
        assert stats.max_depth == 99
        assert stats.num_leaves == 100

    def test_deep_chain_exceeds_limit(self) -> None:
        with pytest.raises(StackLimitExceededError):
            construct(self._peeling(300), 10000, 1)

    def test_custom_limit(self) -> None:
        with pytest.raises(RecursionError):
            construct(self._peeling(20), 10000, 1, max_recursion_depth=10)
        root = construct(self._peeling(20), 10000, 1, max_recursion_depth=19)
        assert bvh_statistics(root).max_depth == 19
