"""Bulk-import runs from a JSON file.

Usage: python -m keytracker.imports.runner runs.json
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from keytracker.app import lifespan
from keytracker.config import get_settings
from keytracker.errors import ImportValidationError
from keytracker.imports.service import ImportSummary
from keytracker.log_config import setup_logging

logger = logging.getLogger(__name__)

MAX_LISTED_ERRORS = 10


def format_summary(summary: ImportSummary) -> str:
    lines = [
        f"Total runs: {summary.total}",
        f"Added: {summary.added}",
        f"Duplicates skipped: {summary.skipped}",
        f"Errors: {len(summary.errors)}",
    ]
    for error in summary.errors[:MAX_LISTED_ERRORS]:
        lines.append(f"  Run {error.index}: {error.message}")
    if len(summary.errors) > MAX_LISTED_ERRORS:
        lines.append(f"  ...and {len(summary.errors) - MAX_LISTED_ERRORS} more")
    return "\n".join(lines)


async def main(path: Path) -> int:
    settings = get_settings()
    setup_logging(settings)

    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        logger.error("Invalid JSON in %s: %s", path, exc)
        return 1

    async with lifespan(settings) as services:
        try:
            summary = await services.importer.import_runs(payload)
        except ImportValidationError as exc:
            logger.error("Import rejected: %s", exc)
            return 1

    print(format_summary(summary))
    return 0 if not summary.errors else 2


def run() -> None:
    parser = argparse.ArgumentParser(description="Import Mythic+ runs from a JSON array.")
    parser.add_argument("path", type=Path, help="JSON file containing a list of runs")
    args = parser.parse_args()
    sys.exit(asyncio.run(main(args.path)))


if __name__ == "__main__":
    run()
