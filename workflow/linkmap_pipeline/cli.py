from __future__ import annotations

import argparse
import logging
import sys

from .config import ConfigError, load_config
from .errors import LinkageMapError
from .pipeline import STEP_SEQUENCE, LinkageMapPipeline
from .utils import get_logger


LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="linkmap-pipeline",
        description="Encode outcross genotypes for linkage-mapping engines and decode their maps",
    )
    parser.add_argument("--config", default="config/pipeline.yaml", help="Pipeline YAML configuration")
    parser.add_argument(
        "--log-level",
        default="INFO",
        type=str.upper,
        choices=LOG_LEVELS,
        help="Verbosity of the console and run-history logs",
    )
    action = parser.add_mutually_exclusive_group()
    action.add_argument(
        "--list-steps",
        action="store_true",
        help="Show every step with its short alias and whether it is configured, then exit",
    )
    action.add_argument(
        "--steps",
        nargs="+",
        metavar="STEP",
        help="Steps to run, by full name or alias, comma or space separated",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Record the planned steps in the run history without executing them",
    )
    return parser


def describe_steps(pipeline: LinkageMapPipeline) -> list[str]:
    configured = set(pipeline.configured_steps())
    return [
        f"{'*' if primary in configured else ' '} {primary} ({alias})"
        for primary, alias in STEP_SEQUENCE
    ]


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logger = get_logger()
    logger.setLevel(getattr(logging, args.log_level))

    try:
        pipeline = LinkageMapPipeline(load_config(args.config))
        if args.list_steps:
            logger.info("Steps (* = configured):\n%s", "\n".join(describe_steps(pipeline)))
            return 0
        pipeline.run(selected_steps=args.steps, dry_run=args.dry_run)
    except ConfigError as exc:
        logger.error("Configuration problem: %s", exc)
        return 1
    except LinkageMapError as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
