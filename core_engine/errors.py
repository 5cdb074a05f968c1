"""Exception hierarchy for BVH construction and collision testing.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Every failure in this package is a contract violation by the caller or a
corrupted tree. Nothing here is retried; exceptions propagate to whoever
drives the frame loop.
"""

from __future__ import annotations


class CollisionSystemError(Exception):
    """Base class for all errors raised by the collision core."""


class InvalidInputError(CollisionSystemError, ValueError):
    """Raised for unusable input, e.g. an empty triangle list or a bad matrix."""


class MalformedTreeError(CollisionSystemError):
    """Raised when a BVH node has exactly one child."""


class StackLimitExceededError(CollisionSystemError, RecursionError):
    """Raised when tree traversal recurses deeper than the configured limit."""
