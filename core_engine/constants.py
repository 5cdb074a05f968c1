"""Configuration loader, documented approximations and reproducibility helpers.

All tunable values (BVH subdivision limits, traversal guard, narrow-phase
tolerance, demo scene parameters) are loaded from YAML configuration files.
This module provides a typed, validated interface to the configuration.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""

from __future__ import annotations

import hashlib
import logging
import platform
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numba
import numpy as np
import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / "config" / "default_config.yaml"

# ---------------------------------------------------------------------------
# Configuration Data Classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BVHConfig:
    """BVH builder parameters.

    Attributes
    ----------
    max_depth : int
        Depth budget handed to the root call of ``construct``.
    min_triangles_for_split : int
        A partition smaller than this is forced to terminate as a leaf.
    """

    max_depth: int
    min_triangles_for_split: int


@dataclass(frozen=True)
class CollisionConfig:
    """Collision tester parameters.

    Attributes
    ----------
    max_recursion_depth : int
        Combined traversal depth at which ``StackLimitExceededError`` is raised.
    epsilon : float
        Degenerate-axis threshold of the triangle-triangle predicate.
    """

    max_recursion_depth: int
    epsilon: float


@dataclass(frozen=True)
class SceneConfig:
    """Demo scene: a spinning box dropped onto a bumpy terrain patch.

    Attributes
    ----------
    box_size : float
        Edge length of the falling box.
    terrain_cells : int
        Number of grid cells per side of the terrain patch.
    terrain_spacing : float
        Grid spacing of the terrain patch.
    terrain_amplitude : float
        Peak height of the terrain bumps.
    frames : int
        Number of frames simulated by ``CollisionRunner.run``.
    start_height : float
        Height of the box's lower face above z=0 on the first frame.
    end_height : float
        Height of the box's lower face on the last frame.
    spin_deg_per_frame : float
        Rotation about +Z applied to the box per frame [deg].
    seed : int
        Random seed for the terrain noise.
    """

    box_size: float
    terrain_cells: int
    terrain_spacing: float
    terrain_amplitude: float
    frames: int
    start_height: float
    end_height: float
    spin_deg_per_frame: float
    seed: int


@dataclass(frozen=True)
class Assumption:
    """A documented approximation of the collision pipeline.

    Attributes
    ----------
    parameter : str
        Name of the behaviour.
    value : str
        What the code does.
    consequence : str
        Observable effect for callers.
    """

    parameter: str
    value: str
    consequence: str


@dataclass
class SimulationConfig:
    """Top-level configuration loaded from YAML.

    Attributes
    ----------
    bvh : BVHConfig
        BVH builder parameters.
    collision : CollisionConfig
        Collision tester parameters.
    scene : SceneConfig
        Demo scene parameters.
    assumptions : list[Assumption]
        Registry of documented approximations.
    """

    bvh: BVHConfig
    collision: CollisionConfig
    scene: SceneConfig
    assumptions: list[Assumption] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Configuration Loader
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path = DEFAULT_CONFIG_PATH) -> SimulationConfig:
    """Load and validate a configuration from a YAML file.

    Parameters
    ----------
    config_path : str or Path
        Path to the YAML configuration file.

    Returns
    -------
    SimulationConfig
        Fully populated, typed configuration object.

    Raises
    ------
    FileNotFoundError
        If the configuration file does not exist.
    ValueError
        If required configuration keys are missing or values are invalid.
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        raw: dict[str, Any] = yaml.safe_load(f)

    logger.info("Loading configuration from: %s", config_path)

    try:
        config = parse_config(raw)
    except KeyError as exc:
        raise ValueError(f"Missing configuration key: {exc}") from exc

    logger.info(
        "Configuration loaded successfully. %d assumptions registered.",
        len(config.assumptions),
    )
    return config


def parse_config(raw: dict[str, Any]) -> SimulationConfig:
    """Build a validated ``SimulationConfig`` from an already-parsed mapping.

    Raises
    ------
    KeyError
        If a required key is missing.
    ValueError
        If a value is invalid.
    """
    # --- Parse BVH config ---
    b = raw["bvh"]
    bvh = BVHConfig(
        max_depth=int(b["max_depth"]),
        min_triangles_for_split=int(b["min_triangles_for_split"]),
    )

    # --- Parse collision config ---
    c = raw["collision"]
    collision = CollisionConfig(
        max_recursion_depth=int(c["max_recursion_depth"]),
        epsilon=float(c["epsilon"]),
    )

    # --- Parse scene config ---
    s = raw["scene"]
    scene = SceneConfig(
        box_size=float(s["box_size"]),
        terrain_cells=int(s["terrain_cells"]),
        terrain_spacing=float(s["terrain_spacing"]),
        terrain_amplitude=float(s["terrain_amplitude"]),
        frames=int(s["frames"]),
        start_height=float(s["start_height"]),
        end_height=float(s["end_height"]),
        spin_deg_per_frame=float(s["spin_deg_per_frame"]),
        seed=int(s["seed"]),
    )

    config = SimulationConfig(
        bvh=bvh,
        collision=collision,
        scene=scene,
        assumptions=_build_assumptions_registry(),
    )

    _validate_config(config)
    return config


def _build_assumptions_registry() -> list[Assumption]:
    """Build the registry of documented approximations.

    Returns
    -------
    list[Assumption]
        List of all documented approximations.
    """
    return [
        Assumption(
            "World AABB",
            "Only bbox_min/bbox_max are transformed",
            "Approximate box under rotation; broad phase may over- or under-report",
        ),
        Assumption(
            "Straddling Triangles",
            "Assigned to the side holding more of their extent",
            "Ties go left; no clipping, child boxes may overlap",
        ),
        Assumption(
            "Small Partitions",
            "Recursed once more with max_depth = 0",
            "One extra bounding box level before the branch stops",
        ),
        Assumption(
            "Depth Budget",
            "Split only while depth <= remaining max_depth",
            "Budget shrinks from both ends; trees stay shallower than max_depth",
        ),
        Assumption(
            "Touching Contact",
            "Closed triangles and boxes",
            "Shared edges or vertices count as collisions",
        ),
        Assumption(
            "Flag Lifetime",
            "Tester only sets flags",
            "Callers must clear flags between tests",
        ),
    ]


def _validate_config(config: SimulationConfig) -> None:
    """Validate value ranges of the configuration.

    Parameters
    ----------
    config : SimulationConfig
        Configuration to validate.

    Raises
    ------
    ValueError
        If any value is invalid.
    """
    if config.bvh.max_depth < 0:
        raise ValueError(f"BVH max_depth must be >= 0, got {config.bvh.max_depth}")
    if config.bvh.min_triangles_for_split < 1:
        raise ValueError(
            "BVH min_triangles_for_split must be >= 1, "
            f"got {config.bvh.min_triangles_for_split}"
        )
    if config.collision.max_recursion_depth < 1:
        raise ValueError("Collision max_recursion_depth must be >= 1.")
    if config.collision.epsilon <= 0:
        raise ValueError("Collision epsilon must be positive.")
    if config.scene.box_size <= 0:
        raise ValueError("Scene box_size must be positive.")
    if config.scene.terrain_cells < 1:
        raise ValueError("Scene terrain_cells must be >= 1.")
    if config.scene.terrain_spacing <= 0:
        raise ValueError("Scene terrain_spacing must be positive.")
    if config.scene.frames < 1:
        raise ValueError("Scene frames must be >= 1.")

    logger.debug("Configuration validation passed.")


def log_assumptions(config: SimulationConfig) -> None:
    """Log all documented approximations to the logger.

    Parameters
    ----------
    config : SimulationConfig
        Configuration with populated assumptions registry.
    """
    logger.info("=" * 70)
    logger.info("DOCUMENTED APPROXIMATIONS")
    logger.info("=" * 70)
    for i, a in enumerate(config.assumptions, 1):
        logger.info(
            "  [%02d] %-22s = %-50s | %s",
            i,
            a.parameter,
            a.value,
            a.consequence,
        )
    logger.info("=" * 70)


def log_platform_info() -> None:
    """Log platform and library version information for reproducibility."""
    logger.info("=" * 70)
    logger.info("PLATFORM INFORMATION (for reproducibility)")
    logger.info("=" * 70)
    logger.info("  Python:    %s", sys.version)
    logger.info("  Platform:  %s", platform.platform())
    logger.info("  Processor: %s", platform.processor())
    logger.info("  NumPy:     %s", np.__version__)
    logger.info("  Numba:     %s", numba.__version__)
    logger.info("  Float64 eps: %e", np.finfo(np.float64).eps)
    logger.info("=" * 70)


def hash_array(arr: np.ndarray) -> str:
    """Compute SHA-256 hash of a NumPy array for reproducibility verification.

    Parameters
    ----------
    arr : np.ndarray
        Array to hash.

    Returns
    -------
    str
        Hex digest of the SHA-256 hash.
    """
    return hashlib.sha256(arr.tobytes()).hexdigest()
