"""MeshCollide — CLI entry point.

Builds one BVH per mesh of the demo scene (a spinning box dropped onto a
terrain patch) and runs the BVH-vs-BVH collision test every frame.

Usage
-----
    python main.py
    python main.py --frames 120 --max-depth 10 --min-split 2
    python main.py --config my_config.yaml --log-level DEBUG

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path


def setup_logging(level: str = "INFO") -> None:
    """Configure structured logging."""
    fmt = "%(name)s [%(levelname)s] %(message)s"
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=fmt,
        stream=sys.stdout,
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(
        prog="meshcollide",
        description="MeshCollide — BVH construction & mesh collision demo",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  python main.py\n"
            "  python main.py --frames 120\n"
            "  python main.py --max-depth 4 --min-split 2 --log-level DEBUG\n"
        ),
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to config YAML (default: bundled core_engine/config/default_config.yaml)",
    )
    parser.add_argument(
        "--frames",
        type=int,
        default=None,
        help="Number of frames to simulate (default: from config)",
    )
    parser.add_argument(
        "--max-depth",
        type=int,
        default=None,
        help="Override the BVH depth budget (default: from config)",
    )
    parser.add_argument(
        "--min-split",
        type=int,
        default=None,
        help="Override min_triangles_for_split (default: from config)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: INFO)",
    )

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    setup_logging(args.log_level)

    logger = logging.getLogger("meshcollide")
    logger.info("=" * 60)
    logger.info("  MeshCollide — BVH Collision Demo")
    logger.info("=" * 60)

    from core_engine.constants import (
        DEFAULT_CONFIG_PATH,
        load_config,
        log_assumptions,
        log_platform_info,
    )
    from simulation.runner import CollisionRunner

    config_path = Path(args.config) if args.config else DEFAULT_CONFIG_PATH
    logger.info("Loading config: %s", config_path)
    config = load_config(config_path)

    log_platform_info()
    log_assumptions(config)

    runner = CollisionRunner(
        config=config,
        max_depth=args.max_depth,
        min_triangles_for_split=args.min_split,
    )
    results = runner.run(frames=args.frames)

    # Summary
    contact_frames = [r for r in results.frames if r.in_contact]
    logger.info("=" * 60)
    logger.info("  RUN COMPLETE")
    logger.info("=" * 60)
    logger.info(
        "  Box BVH: %d nodes, %d leaves, depth %d",
        results.box_stats.num_nodes,
        results.box_stats.num_leaves,
        results.box_stats.max_depth,
    )
    logger.info(
        "  Terrain BVH: %d nodes, %d leaves, depth %d",
        results.terrain_stats.num_nodes,
        results.terrain_stats.num_leaves,
        results.terrain_stats.max_depth,
    )
    logger.info(
        "  Frames: %d (%d in contact)", len(results.frames), len(contact_frames)
    )
    if results.first_contact_frame is not None:
        logger.info("  First contact: frame %d", results.first_contact_frame)
    else:
        logger.info("  No contact detected")
    logger.info("  Wall time: %.2f s", results.metadata.get("wall_time_s", 0.0))
    logger.info("=" * 60)

    return 0


if __name__ == "__main__":
    sys.exit(main())
