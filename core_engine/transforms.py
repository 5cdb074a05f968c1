"""4×4 homogeneous world transforms (model matrices).

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Notes
-----
Column-vector convention: a point ``p`` (shape (4,), w = 1) is moved to
world space as ``M @ p``. ``compose(A, B, C)`` returns ``A @ B @ C``, i.e.
``C`` is applied first. All matrices are float64.
"""

from __future__ import annotations

from math import cos, radians, sin

import numpy as np

from core_engine.errors import InvalidInputError


def identity() -> np.ndarray:
    """Return the 4×4 identity matrix."""
    return np.identity(4, dtype=np.float64)


def translation(x: float, y: float, z: float) -> np.ndarray:
    """Translation matrix moving points by (x, y, z)."""
    m = np.identity(4, dtype=np.float64)
    m[0, 3] = x
    m[1, 3] = y
    m[2, 3] = z
    return m


def scaling(sx: float, sy: float, sz: float) -> np.ndarray:
    """Axis-aligned scale matrix."""
    m = np.identity(4, dtype=np.float64)
    m[0, 0] = sx
    m[1, 1] = sy
    m[2, 2] = sz
    return m


def rotation_x(angle_deg: float) -> np.ndarray:
    """Rotation about +X by ``angle_deg`` degrees (right-handed)."""
    a = radians(angle_deg)
    c, s = cos(a), sin(a)
    m = np.identity(4, dtype=np.float64)
    m[1, 1] = c
    m[1, 2] = -s
    m[2, 1] = s
    m[2, 2] = c
    return m


def rotation_y(angle_deg: float) -> np.ndarray:
    """Rotation about +Y by ``angle_deg`` degrees (right-handed)."""
    a = radians(angle_deg)
    c, s = cos(a), sin(a)
    m = np.identity(4, dtype=np.float64)
    m[0, 0] = c
    m[0, 2] = s
    m[2, 0] = -s
    m[2, 2] = c
    return m


def rotation_z(angle_deg: float) -> np.ndarray:
    """Rotation about +Z by ``angle_deg`` degrees (right-handed)."""
    a = radians(angle_deg)
    c, s = cos(a), sin(a)
    m = np.identity(4, dtype=np.float64)
    m[0, 0] = c
    m[0, 1] = -s
    m[1, 0] = s
    m[1, 1] = c
    return m


def compose(*matrices: np.ndarray) -> np.ndarray:
    """Multiply matrices left to right; the right-most one acts first.

    Parameters
    ----------
    *matrices : np.ndarray
        Any number of 4×4 matrices. No argument yields the identity.

    Returns
    -------
    np.ndarray
        The product, shape (4, 4).
    """
    result = identity()
    for m in matrices:
        result = result @ as_matrix(m)
    return result


def as_matrix(matrix) -> np.ndarray:
    """Validate and convert ``matrix`` to a float64 (4, 4) array.

    Raises
    ------
    InvalidInputError
        If the input cannot be viewed as a 4×4 matrix.
    """
    m = np.asarray(matrix, dtype=np.float64)
    if m.shape != (4, 4):
        raise InvalidInputError(f"Expected a 4x4 transform, got shape {m.shape}")
    return m


def transform_point(matrix: np.ndarray, point: np.ndarray) -> np.ndarray:
    """Apply ``matrix`` to a homogeneous point (shape (4,))."""
    return matrix @ point
