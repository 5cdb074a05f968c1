"""Collision testing between two BVHs under independent world transforms.

Walks both hierarchies top-down. Box pairs that do not overlap in world
space are pruned; overlapping pairs get their ``collision`` flags set and
are refined until both sides are leaves, where every triangle pair is
handed to the narrow-phase predicate.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Design Notes
------------
- **Corner-only transform**: only ``bbox_min`` and ``bbox_max`` are moved
  to world space. Under rotation the result is not the true world box;
  the broad phase is a fast reject and accepts this.
- **No early exit**: traversal visits every overlapping pair so that all
  colliding nodes and triangles end up flagged.
- **Flags are only ever set**: a test never clears a flag. Use
  ``bvh.clear_collision_flags`` between tests.
- **Recursion guard**: the combined depth of the traversal is bounded by
  ``max_recursion_depth``; exceeding it raises ``StackLimitExceededError``
  instead of exhausting the interpreter stack.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

import numpy as np

from core_engine.bvh import BVHNode
from core_engine.errors import StackLimitExceededError
from core_engine.intersection import aabb_overlap, triangle_triangle_intersection
from core_engine.mesh import Triangle
from core_engine.transforms import as_matrix

logger = logging.getLogger(__name__)

_DEFAULT_MAX_RECURSION: int = 256

TrianglePredicate = Callable[[Triangle, np.ndarray, Triangle, np.ndarray], bool]


@dataclass
class CollisionReport:
    """Counters and contacts gathered during one top-level test.

    Attributes
    ----------
    node_pairs_tested : int
        Box pairs that went through the broad phase.
    node_pairs_overlapping : int
        Box pairs found overlapping (both flags set).
    triangle_pairs_tested : int
        Calls made to the narrow-phase predicate.
    contacts : list[tuple[Triangle, Triangle]]
        Colliding triangle pairs ``(from tree A, from tree B)`` in
        discovery order.
    """

    node_pairs_tested: int = 0
    node_pairs_overlapping: int = 0
    triangle_pairs_tested: int = 0
    contacts: list[tuple[Triangle, Triangle]] = field(default_factory=list)

    @property
    def has_contact(self) -> bool:
        return bool(self.contacts)

    def contact_indices(self) -> list[tuple[int, int]]:
        """Contacts as ``(index_a, index_b)`` pairs of triangle indices."""
        return [(t1.index, t2.index) for t1, t2 in self.contacts]


class CollisionTester:
    """Recursive BVH-vs-BVH collision tester.

    Parameters
    ----------
    predicate : callable, optional
        Narrow-phase test ``(t1, transform1, t2, transform2) -> bool``.
        Default: ``triangle_triangle_intersection``.
    max_recursion_depth : int
        Largest allowed traversal depth before ``StackLimitExceededError``.
    """

    def __init__(
        self,
        predicate: TrianglePredicate | None = None,
        max_recursion_depth: int = _DEFAULT_MAX_RECURSION,
    ) -> None:
        self._predicate = predicate if predicate is not None else triangle_triangle_intersection
        self._max_recursion_depth = max_recursion_depth

    @property
    def max_recursion_depth(self) -> int:
        return self._max_recursion_depth

    def test(
        self,
        node_a: BVHNode,
        transform_a: np.ndarray,
        node_b: BVHNode,
        transform_b: np.ndarray,
    ) -> CollisionReport:
        """Test two hierarchies and flag every colliding node and triangle.

        Parameters
        ----------
        node_a, node_b : BVHNode
            Roots (or any subtrees) of the two hierarchies.
        transform_a, transform_b : np.ndarray
            Model matrices of the two hierarchies. Shape: (4, 4).

        Returns
        -------
        CollisionReport
            Counters and the list of colliding triangle pairs.

        Raises
        ------
        InvalidInputError
            If a transform is not 4×4.
        MalformedTreeError
            If a visited node has exactly one child.
        StackLimitExceededError
            If the traversal exceeds ``max_recursion_depth``.
        """
        transform_a = as_matrix(transform_a)
        transform_b = as_matrix(transform_b)

        report = CollisionReport()
        self._test_recursive(node_a, transform_a, node_b, transform_b, report, 0)

        logger.debug(
            "Collision test: %d box pairs (%d overlapping), %d triangle pairs, "
            "%d contacts",
            report.node_pairs_tested,
            report.node_pairs_overlapping,
            report.triangle_pairs_tested,
            len(report.contacts),
        )
        return report

    def _test_recursive(
        self,
        node_a: BVHNode,
        transform_a: np.ndarray,
        node_b: BVHNode,
        transform_b: np.ndarray,
        report: CollisionReport,
        level: int,
    ) -> None:
        if level > self._max_recursion_depth:
            raise StackLimitExceededError(
                f"Collision traversal exceeded {self._max_recursion_depth} levels "
                f"(node depths {node_a.depth} / {node_b.depth})"
            )

        report.node_pairs_tested += 1

        # Local → world space, corners only
        first_min = transform_a @ node_a.bbox_min
        first_max = transform_a @ node_a.bbox_max
        second_min = transform_b @ node_b.bbox_min
        second_max = transform_b @ node_b.bbox_max

        if not aabb_overlap(first_min, first_max, second_min, second_max):
            return

        node_a.collision = True
        node_b.collision = True
        report.node_pairs_overlapping += 1

        a_is_leaf = node_a.is_leaf
        b_is_leaf = node_b.is_leaf

        if a_is_leaf and b_is_leaf:
            self._narrow_phase(node_a, transform_a, node_b, transform_b, report)
        elif a_is_leaf:
            self._test_recursive(node_a, transform_a, node_b.left, transform_b, report, level + 1)
            self._test_recursive(node_a, transform_a, node_b.right, transform_b, report, level + 1)
        elif b_is_leaf:
            self._test_recursive(node_a.left, transform_a, node_b, transform_b, report, level + 1)
            self._test_recursive(node_a.right, transform_a, node_b, transform_b, report, level + 1)
        else:
            self._test_recursive(node_a.left, transform_a, node_b.left, transform_b, report, level + 1)
            self._test_recursive(node_a.left, transform_a, node_b.right, transform_b, report, level + 1)
            self._test_recursive(node_a.right, transform_a, node_b.left, transform_b, report, level + 1)
            self._test_recursive(node_a.right, transform_a, node_b.right, transform_b, report, level + 1)

    def _narrow_phase(
        self,
        leaf_a: BVHNode,
        transform_a: np.ndarray,
        leaf_b: BVHNode,
        transform_b: np.ndarray,
        report: CollisionReport,
    ) -> None:
        """Run the predicate on every triangle pair of two leaves."""
        for t1 in leaf_a.triangles:
            for t2 in leaf_b.triangles:
                report.triangle_pairs_tested += 1
                if self._predicate(t1, transform_a, t2, transform_b):
                    t1.collision = True
                    t2.collision = True
                    report.contacts.append((t1, t2))


def test_collision(
    node_a: BVHNode,
    transform_a: np.ndarray,
    node_b: BVHNode,
    transform_b: np.ndarray,
) -> None:
    """Flag colliding nodes and triangles of two hierarchies.

    Uses the default narrow-phase predicate and recursion guard; see
    ``CollisionTester`` for a configurable variant that also returns a report.
    """
    CollisionTester().test(node_a, transform_a, node_b, transform_b)
