"""
Command-line runner.

Usage:
    python -m legacymigrate list
    python -m legacymigrate run [ENTITY ...] [--batch-size N] [--resume] [--row-fallback] [--json]
    python -m legacymigrate coverage [ENTITY ...] [--threshold PCT] [--json]

Connection settings come from the environment or a ``.env`` file (see
:mod:`legacymigrate.settings`). Exit status is 0 when every requested
migration ran to completion and 1 on a fatal error.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence
from typing import Any

from legacymigrate.checkpoints import SQLCheckpointStore
from legacymigrate.connections import open_stores_from_settings
from legacymigrate.coverage import DEFAULT_HEALTH_THRESHOLD, CoverageChecker
from legacymigrate.engine import MigrationEngine
from legacymigrate.entities import build_plan, entity_names, get_config
from legacymigrate.exceptions import MigrationError
from legacymigrate.models import BatchProgress
from legacymigrate.serialization import json_dumps
from legacymigrate.settings import MigrationSettings

logger = logging.getLogger("legacymigrate")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="legacymigrate",
        description="Migrate legacy dispatch_* records into the normalized schema.",
    )
    parser.add_argument("--env-file", help="Path to a .env file (default: search from cwd)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list", help="List available entity migrations")

    run = subparsers.add_parser("run", help="Run entity migrations in dependency order")
    run.add_argument("entities", nargs="*", metavar="ENTITY", help="Entities to migrate (default: all)")
    run.add_argument("--batch-size", type=int, help="Rows per batch (default: MIGRATION_BATCH_SIZE)")
    run.add_argument("--resume", action="store_true", help="Resume from saved checkpoints")
    run.add_argument(
        "--row-fallback",
        action="store_true",
        help="Retry failed batches row by row so only bad rows count as errored",
    )
    run.add_argument("--json", action="store_true", help="Print reports as JSON")

    coverage = subparsers.add_parser("coverage", help="Compare source and target row counts")
    coverage.add_argument("entities", nargs="*", metavar="ENTITY", help="Entities to check (default: all)")
    coverage.add_argument(
        "--threshold",
        type=float,
        default=DEFAULT_HEALTH_THRESHOLD,
        help="Minimum healthy coverage percent (default: %(default)s)",
    )
    coverage.add_argument("--json", action="store_true", help="Print results as JSON")

    return parser


def _validate_entities(parser: argparse.ArgumentParser, names: Sequence[str]) -> None:
    unknown = [name for name in names if name not in entity_names()]
    if unknown:
        parser.error(f"unknown entities: {', '.join(unknown)} (choose from {', '.join(entity_names())})")


def _log_progress(progress: BatchProgress) -> None:
    logger.info(
        "%s: %d processed (%.0f rows/s)",
        progress.migration_name,
        progress.processed,
        progress.rows_per_second,
    )


def command_list() -> int:
    for name in entity_names():
        config = get_config(name)
        print(f"{config.dependency_level}  {name:<24} {config.description}")
    return 0


async def command_run(settings: MigrationSettings, args: argparse.Namespace) -> int:
    overrides: dict[str, Any] = {
        "batch_size": args.batch_size or settings.batch_size,
        "row_fallback": args.row_fallback,
        "resume": args.resume,
    }
    plan = build_plan(args.entities, **overrides)

    async with open_stores_from_settings(settings) as stores:
        checkpoint_store = None
        if args.resume:
            checkpoint_store = SQLCheckpointStore(stores.target)
            await checkpoint_store.create_table()

        engine = MigrationEngine(stores.source, stores.target, checkpoint_store=checkpoint_store)
        result = await plan.run(engine, progress_callback=_log_progress)

    for report in result.reports:
        if args.json:
            print(json_dumps(report.to_dict()))
        else:
            print(
                f"{report.migration_name}: processed={report.processed} "
                f"inserted={report.inserted} already_migrated={report.already_migrated} "
                f"skipped={report.skipped} errored={report.errored} "
                f"success_rate={report.success_rate_percent:.2f}%"
            )

    if not result.completed:
        print(f"{result.failed_migration}: {result.error}", file=sys.stderr)
        return 1
    return 0


async def command_coverage(settings: MigrationSettings, args: argparse.Namespace) -> int:
    configs = [get_config(name) for name in (args.entities or entity_names())]

    async with open_stores_from_settings(settings) as stores:
        checker = CoverageChecker(stores.source, stores.target, threshold=args.threshold)
        results = await checker.check_all(configs)

    for result in results:
        if args.json:
            print(json_dumps(result.to_dict()))
        else:
            marker = "ok" if result.is_healthy else "LOW"
            print(
                f"{result.migration_name}: {result.target_count}/{result.source_count} "
                f"({result.coverage_percent:.2f}%) {marker}"
            )
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "list":
        return command_list()

    _validate_entities(parser, args.entities)
    if args.command == "run" and args.batch_size is not None and args.batch_size < 1:
        parser.error("--batch-size must be >= 1")

    try:
        settings = MigrationSettings.from_env(dotenv_path=args.env_file)
    except MigrationError as e:
        logging.basicConfig(level=logging.INFO)
        logger.error("%s", e)
        return 1

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.command == "run":
            return asyncio.run(command_run(settings, args))
        return asyncio.run(command_coverage(settings, args))
    except MigrationError as e:
        logger.error("%s", e)
        if e.suggested_action:
            logger.error("Suggested action: %s", e.suggested_action)
        return 1


if __name__ == "__main__":
    sys.exit(main())
