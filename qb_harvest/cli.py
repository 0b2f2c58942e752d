"""Command-line entry point for the question-bank harvester."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Optional, Sequence

from .config import DEFAULT_LOGIN_URL, IMAGE_STRATEGIES, VARIANTS, build_config
from .crawler import run_pipeline

logger = logging.getLogger("qb_harvest.cli")

USERNAME_ENV = "QB_HARVEST_USERNAME"
PASSWORD_ENV = "QB_HARVEST_PASSWORD"


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Harvest question explanations behind a login and compile them into a PDF.",
    )
    parser.add_argument("start_url", help="URL of the first question page")
    parser.add_argument(
        "--count",
        type=int,
        required=True,
        help="Maximum number of questions to harvest",
    )
    parser.add_argument(
        "--name",
        required=True,
        help="Output file name (without the .pdf extension)",
    )
    parser.add_argument(
        "--variant",
        choices=sorted(VARIANTS),
        default="standard",
        help="Page layout preset to use (default: standard)",
    )
    parser.add_argument(
        "--output",
        default="output",
        type=Path,
        help="Directory where the PDF should be written",
    )
    parser.add_argument(
        "--reference",
        type=Path,
        help="Existing PDF to interleave with the generated pages",
    )
    parser.add_argument(
        "--group-size",
        type=int,
        default=4,
        help="Reference pages placed before each question when merging (default: 4)",
    )
    parser.add_argument(
        "--images",
        choices=IMAGE_STRATEGIES,
        help="Override how remote images are captured",
    )
    parser.add_argument(
        "--login-url",
        default=DEFAULT_LOGIN_URL,
        help="Login form URL",
    )
    parser.add_argument(
        "--font",
        type=Path,
        help="TrueType font for the PDF instead of the built-in Japanese CID fonts",
    )
    parser.add_argument(
        "--headful",
        action="store_true",
        help="Show the browser window while harvesting",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(levelname)s] %(message)s",
    )

    username = os.getenv(USERNAME_ENV)
    password = os.getenv(PASSWORD_ENV)
    if not username or not password:
        logger.error("Set %s and %s before running", USERNAME_ENV, PASSWORD_ENV)
        return 2

    overrides = {
        "start_location": args.start_url,
        "item_count": args.count,
        "output_name": args.name,
        "output_root": Path(args.output).resolve(),
        "login_url": args.login_url,
        "headless": not args.headful,
        "merge_group_size": args.group_size,
    }
    if args.reference is not None:
        overrides["merge_with_reference"] = True
        overrides["reference_document_path"] = args.reference
    if args.images:
        overrides["image_strategy"] = args.images

    try:
        config = build_config(args.variant, **overrides)
    except ValueError as exc:
        logger.error("%s", exc)
        return 2
    if args.font is not None:
        config.layout.font_path = args.font
    if config.merge_with_reference and config.reference_document_path is None:
        logger.error("The %s variant needs --reference", args.variant)
        return 2

    try:
        metrics = asyncio.run(run_pipeline(config, username, password))
    except Exception:  # pylint: disable=broad-except
        logger.exception("Run aborted")
        return 1

    logger.debug(
        "Finished in %.2fs (harvest %.2fs): %d item(s), %d skipped",
        metrics.total_seconds,
        metrics.harvest_seconds,
        metrics.item_count,
        metrics.skipped,
    )
    return 0 if metrics.output_path else 1


if __name__ == "__main__":
    sys.exit(main())
