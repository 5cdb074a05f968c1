"""Pytest configuration and shared fixtures for MeshCollide tests.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import numpy as np
import pytest


# Add project root to path so imports work
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from core_engine.mesh import Triangle  # noqa: E402


def pytest_configure(config: pytest.Config) -> None:
    """Configure logging for tests."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s [%(levelname)s] %(message)s",
    )


def make_strip(count: int) -> list[Triangle]:
    """``count`` unit right triangles in z=0, triangle i spanning x ∈ [2i, 2i+1]."""
    return [
        Triangle(
            (2.0 * i, 0.0, 0.0),
            (2.0 * i + 1.0, 0.0, 0.0),
            (2.0 * i, 1.0, 0.0),
            index=i,
        )
        for i in range(count)
    ]


def make_random_triangles(
    count: int,
    seed: int,
    extent: float = 4.0,
    size: float = 0.8,
) -> list[Triangle]:
    """Random small triangles scattered in a cube of side ``extent``."""
    rng = np.random.default_rng(seed)
    anchors = rng.uniform(0.0, extent, size=(count, 3))
    offsets = rng.uniform(-size, size, size=(count, 2, 3))
    return [
        Triangle(
            anchors[i],
            anchors[i] + offsets[i, 0],
            anchors[i] + offsets[i, 1],
            index=i,
        )
        for i in range(count)
    ]


@pytest.fixture
def strip8() -> list[Triangle]:
    """Eight separated triangles along +X."""
    return make_strip(8)


@pytest.fixture
def random_triangles() -> list[Triangle]:
    """Sixty reproducible random triangles."""
    return make_random_triangles(60, seed=7)
