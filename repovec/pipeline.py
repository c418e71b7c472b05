"""Pipeline orchestration: ingest, merge, retain, export and persist state"""

import asyncio
import logging
import os
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from repovec.config import config
from repovec.exceptions import ConfigurationError, PartialFailure, SnapshotNotFoundError
from repovec.models.embedding_item import EmbeddingItem
from repovec.models.reports import PipelineResult
from repovec.models.sources_config import SourcesConfig
from repovec.services.chunker import Chunker
from repovec.services.embedder import Embedder
from repovec.services.exporter import IndexExporter
from repovec.services.github_fetcher import GitHubFetcher
from repovec.services.ingestion import Ingestor, merge_items
from repovec.services.mirror_store import MirrorStore
from repovec.services.qa_history import QAHistorySource, SqliteQAHistorySource
from repovec.services.retention import RetentionEngine
from repovec.services.snapshot_sink import LocalFileSink, SnapshotSink
from repovec.services.snapshot_store import LocalSnapshotSource, SnapshotSource, parse_snapshot
from repovec.services.state_manager import RetentionStateManager
from repovec.utils.sources_loader import load_sources_config

logger = logging.getLogger(__name__)


def _validate_configuration(sources_config: SourcesConfig, fetcher_injected: bool) -> None:
    """Fail before any state is touched"""
    if not sources_config.get_enabled_repositories():
        raise ConfigurationError("No enabled repositories in sources configuration")

    token = sources_config.github.token or os.getenv("GITHUB_TOKEN")
    if config.github_token_required and not token and not fetcher_injected:
        raise ConfigurationError(
            "GitHub token is required: set github.token in sources.yaml or GITHUB_TOKEN"
        )

    if not config.snapshot_dir or not config.snapshot_name:
        raise ConfigurationError("snapshot_dir and snapshot_name must be configured")


def load_previous_items(source: SnapshotSource) -> list[EmbeddingItem] | None:
    """
    Items of the currently published snapshot

    Returns:
        The items, or None when no usable snapshot exists (missing or unsupported version)

    Raises:
        SnapshotFormatError: If the published snapshot is malformed
    """
    try:
        fetched = source.fetch()
    except SnapshotNotFoundError as e:
        logger.info(f"No previous snapshot ({e})")
        return None

    if fetched.data is None:
        return None

    try:
        snapshot = parse_snapshot(fetched.data)
    except SnapshotNotFoundError as e:
        logger.warning(f"Ignoring previous snapshot: {e}")
        return None

    logger.info(f"Loaded previous snapshot with {snapshot.count} items")
    return list(snapshot.items)


async def run_pipeline(
    sources_config: SourcesConfig | None = None,
    state_manager: RetentionStateManager | None = None,
    fetcher: GitHubFetcher | None = None,
    embedder: Embedder | None = None,
    sink: SnapshotSink | None = None,
    previous_source: SnapshotSource | None = None,
    qa_history: QAHistorySource | None = None,
    mirror: MirrorStore | None = None,
    reset: bool = False,
    skip_cleanup: bool = False,
    clock: Callable[[], datetime] | None = None,
) -> PipelineResult:
    """
    Run one ingestion, retention and export cycle

    Stages run strictly in order; the state document is written only after the
    snapshot has been published.

    Args:
        sources_config: Repository sources (loaded from sources_config_path when None)
        state_manager: State persistence (default: config.state_path)
        fetcher: Source repository lister (default: GitHub API)
        embedder: Embedding generator (default: fastembed)
        sink: Snapshot sink (default: local directory config.snapshot_dir)
        previous_source: Where the current snapshot is read from (default: the sink's file)
        qa_history: Q&A history source (default: config.qa_history_db_path, if set)
        mirror: Durable mirror (default: config.mirror_db_path, if set)
        reset: Ignore stored state and the previous snapshot
        skip_cleanup: Skip the retention stages
        clock: Returns the current time (default: UTC now)

    Returns:
        PipelineResult of the run

    Raises:
        ConfigurationError: If required configuration is missing
        SnapshotError: If the previous snapshot is malformed or publishing fails
    """
    clock = clock or (lambda: datetime.now(UTC))
    start_time = clock()

    # [1/7] Configuration
    logger.info("[1/7] Loading configuration...")
    sources_config = sources_config or load_sources_config(config.sources_config_path)
    _validate_configuration(sources_config, fetcher is not None)
    repositories = sources_config.get_enabled_repositories()
    logger.info(f"  {len(repositories)} repositories enabled")

    state_manager = state_manager or RetentionStateManager(config.state_path)
    snapshot_path = Path(config.snapshot_dir) / config.snapshot_name
    if sink is None:
        sink = LocalFileSink(config.snapshot_dir)
        sink.cleanup_stale()
    previous_source = previous_source or LocalSnapshotSource(snapshot_path)

    if qa_history is None and config.qa_history_db_path:
        qa_history = SqliteQAHistorySource(config.qa_history_db_path)
    if mirror is None and config.mirror_db_path:
        mirror = MirrorStore(config.mirror_db_path)

    owns_fetcher = fetcher is None
    fetcher = fetcher or GitHubFetcher(
        sources_config.github, timeout=sources_config.fetching.timeout
    )
    embedder = embedder or Embedder(chunker=Chunker())

    try:
        # [2/7] State and previous snapshot
        logger.info("[2/7] Loading state and previous snapshot...")
        previous_items = None if reset else load_previous_items(previous_source)
        if previous_items is None and not reset:
            # Stored positions describe a snapshot that is gone; ingest from scratch
            logger.warning("No usable previous snapshot, ignoring stored state for this run")
        state = state_manager.load(reset=reset or previous_items is None)
        previous_items = previous_items or []

        failures: list[str] = []
        if mirror is not None:
            try:
                await mirror.initialize()
            except Exception as e:
                logger.warning(f"Mirror unavailable, continuing without it: {e}")
                failures.append(PartialFailure("mirror initialize", e).describe())
                mirror = None

        # [3/7] Ingestion
        logger.info("[3/7] Ingesting commits, files and Q&A history...")
        ingestor = Ingestor(
            fetcher,
            embedder,
            concurrency=sources_config.fetching.concurrent_limit,
            commit_limit=sources_config.fetching.commit_limit,
        )

        outcomes = await asyncio.gather(
            *[
                ingestor.collect_repository(
                    source, state.get_repository(source.owner, source.repo), previous_items
                )
                for source in repositories
            ],
            return_exceptions=True,
        )

        new_items: list[EmbeddingItem] = []
        replaced_paths = set()
        ingested = []
        for source, outcome in zip(repositories, outcomes, strict=True):
            if isinstance(outcome, Exception):
                logger.warning(f"Skipping repository {source.key}: {outcome}")
                failures.append(PartialFailure(f"repository {source.key}", outcome).describe())
                continue
            ingested.append((source, outcome))
            new_items.extend(outcome.items)
            replaced_paths.update(outcome.replaced_paths)
            failures.extend(outcome.failures)

        qa_result = None
        if qa_history is not None:
            qa_result = await ingestor.collect_qa(qa_history, state.last_qa_timestamp)
            new_items.extend(qa_result.items)
            failures.extend(qa_result.failures)

        logger.info(f"  Ingested {len(new_items)} new items ({len(failures)} failures)")

        # [4/7] Merge
        logger.info("[4/7] Merging with previous snapshot...")
        items = merge_items(previous_items, new_items, replaced_paths)
        logger.info(f"  {len(previous_items)} previous + {len(new_items)} new -> {len(items)}")

        # [5/7] Retention
        retention_report = None
        if skip_cleanup:
            logger.info("[5/7] Skipping retention")
        else:
            logger.info("[5/7] Running retention...")
            engine = RetentionEngine(
                fetcher,
                repositories,
                mirror=mirror,
                clock=clock,
                concurrency=sources_config.fetching.concurrent_limit,
            )
            items, retention_report = await engine.run(items)
            failures.extend(retention_report.failures)

        # [6/7] Export
        logger.info("[6/7] Exporting snapshot...")
        export_result = IndexExporter(sink).export(items, config.snapshot_name, clock())

        if mirror is not None:
            await _mirror_items(mirror, items, {item.id for item in new_items}, failures)

        # [7/7] State
        logger.info("[7/7] Saving state...")
        for source, outcome in ingested:
            state_manager.update_repository(
                state,
                source.owner,
                source.repo,
                outcome.newest_commit_hash,
                outcome.tree_hash,
                start_time if outcome.commits_listed else None,
            )
        if qa_result is not None and qa_result.newest_timestamp is not None:
            state.last_qa_timestamp = qa_result.newest_timestamp
        if retention_report is not None:
            state.last_cleanup_run = clock()
        state_manager.save(state)

    finally:
        if owns_fetcher:
            await fetcher.close()

    end_time = clock()
    result = PipelineResult(
        success=True,
        start_time=start_time,
        end_time=end_time,
        duration_seconds=(end_time - start_time).total_seconds(),
        new_items=len(new_items),
        total_items=export_result.count,
        retention=retention_report,
        export=export_result,
        failures=failures,
    )
    logger.info(
        f"Pipeline completed in {result.duration_seconds:.2f}s: "
        f"{result.total_items} items published, {len(failures)} isolated failures"
    )
    return result


async def _mirror_items(
    mirror: MirrorStore, items: list[EmbeddingItem], new_ids: set[str], failures: list[str]
) -> None:
    """Best-effort upsert of surviving new items into the mirror"""
    try:
        await mirror.upsert([item for item in items if item.id in new_ids])
    except Exception as e:
        logger.warning(f"Mirror upsert failed: {e}")
        failures.append(PartialFailure("mirror upsert", e).describe())
