"""Command line entry point: run, schedule and query"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime

from apscheduler.schedulers.blocking import BlockingScheduler
from dotenv import load_dotenv

from repovec.config import config
from repovec.exceptions import RepovecError
from repovec.models.query import Query
from repovec.services.refresh_orchestrator import RefreshOrchestrator
from repovec.services.search import SearchService
from repovec.services.snapshot_store import VectorQueryStore, create_snapshot_source
from repovec.services.telemetry import get_telemetry_service
from repovec.utils.sources_loader import load_sources_config

logger = logging.getLogger(__name__)


def setup_logging() -> None:
    """Configure logging for CLI (stdout for K8s)"""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def parse_filter(values: list[str] | None) -> dict | None:
    """Parse key=value pairs; values are JSON when they parse, plain strings otherwise"""
    if not values:
        return None

    metadata_filter = {}
    for value in values:
        key, sep, raw = value.partition("=")
        if not sep or not key:
            raise argparse.ArgumentTypeError(f"Filter must be key=value, got {value!r}")
        try:
            metadata_filter[key] = json.loads(raw)
        except json.JSONDecodeError:
            metadata_filter[key] = raw
    return metadata_filter


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="repovec", description="Embedding lifecycle manager for repository Q&A"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run the pipeline once")
    run_parser.add_argument("--reset", action="store_true", help="Ignore stored state")
    run_parser.add_argument("--skip-cleanup", action="store_true", help="Skip retention")

    subparsers.add_parser("schedule", help="Run the pipeline on the configured interval")

    query_parser = subparsers.add_parser("query", help="Query the published snapshot")
    query_parser.add_argument("text", help="Query text")
    query_parser.add_argument("--limit", type=int, default=config.query_result_limit)
    query_parser.add_argument("--min-score", type=float, default=None)
    query_parser.add_argument(
        "--filter", action="append", metavar="KEY=VALUE", help="Exact metadata match"
    )

    return parser


def cmd_run(args: argparse.Namespace) -> int:
    orchestrator = RefreshOrchestrator(
        telemetry=get_telemetry_service(), reset=args.reset, skip_cleanup=args.skip_cleanup
    )
    result = orchestrator.refresh_once()

    if not result.success:
        logger.error(f"Pipeline failed: {result.error}")
        return 1

    for failure in result.failures:
        logger.warning(f"  Isolated failure: {failure}")
    logger.info(f"Pipeline completed successfully in {result.duration_seconds:.2f}s")
    return 0


def cmd_schedule(args: argparse.Namespace) -> int:
    sources_config = load_sources_config(config.sources_config_path)
    refresh = sources_config.refresh

    orchestrator = RefreshOrchestrator(telemetry=get_telemetry_service())
    scheduler = BlockingScheduler()
    orchestrator.configure_scheduler(
        scheduler, refresh.interval_hours, refresh.max_concurrent_jobs
    )

    logger.info("Starting scheduler (Ctrl+C to stop)")
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        orchestrator.stop_scheduler()
        logger.info("Scheduler stopped")
    return 0


def cmd_query(args: argparse.Namespace) -> int:
    query = Query(
        text=args.text,
        limit=args.limit,
        min_score=args.min_score,
        metadata_filter=parse_filter(args.filter),
    )
    store = VectorQueryStore(create_snapshot_source())
    service = SearchService(store, telemetry=get_telemetry_service())
    try:
        output = asyncio.run(service.query(query))
    finally:
        store.close()
    print(output.model_dump_json(indent=2))
    return 0


COMMANDS = {"run": cmd_run, "schedule": cmd_schedule, "query": cmd_query}


def main(argv: list[str] | None = None) -> int:
    """
    Main entry point

    Returns:
        int: Exit code (0 for success, 1 for failure)
    """
    load_dotenv()
    setup_logging()
    args = build_parser().parse_args(argv)

    try:
        logger.info(f"repovec {args.command} at {datetime.now().isoformat()}")
        return COMMANDS[args.command](args)
    except argparse.ArgumentTypeError as e:
        logger.error(str(e))
        return 1
    except RepovecError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
