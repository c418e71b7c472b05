"""Three-stage retention: age expiry, deleted-source reconciliation, capacity pruning"""

import asyncio
import calendar
import logging
import math
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from repovec.config import config
from repovec.exceptions import PartialFailure
from repovec.models.embedding_item import EmbeddingItem
from repovec.models.reports import RetentionReport, StageReport
from repovec.models.sources_config import RepositorySource
from repovec.services.exporter import estimate_compressed_size

logger = logging.getLogger(__name__)

SOURCE_EXTENSIONS = frozenset(
    {"ts", "tsx", "js", "jsx", "py", "java", "go", "rs", "c", "cpp", "h", "hpp"}
)
SOURCE_SUFFIXES = tuple(f".{ext}" for ext in sorted(SOURCE_EXTENSIONS))
RECENT_COMMIT_WINDOW = timedelta(days=90)
RECENT_QA_WINDOW = timedelta(days=30)

FileKey = tuple[str, str, str]


def subtract_months(moment: datetime, months: int) -> datetime:
    """Same wall-clock time `months` calendar months earlier, day clamped to month end"""
    total = moment.year * 12 + (moment.month - 1) - months
    year, month_index = divmod(total, 12)
    month = month_index + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def item_date(item: EmbeddingItem) -> datetime | None:
    """Date that ages an item: commit date, file's last commit date, or Q&A timestamp"""
    if item.type == "commit":
        return item.metadata.date
    if item.type == "file":
        return item.metadata.commit_date
    if item.type == "qa":
        return item.metadata.timestamp
    return None


def expire_by_age(
    items: list[EmbeddingItem], cutoff: datetime
) -> tuple[list[EmbeddingItem], list[str]]:
    """
    Drop items dated before cutoff

    Returns:
        Tuple of (kept items, removed ids); undated items are kept
    """
    kept: list[EmbeddingItem] = []
    removed: list[str] = []
    for item in items:
        date = item_date(item)
        if date is None or date >= cutoff:
            kept.append(item)
        else:
            removed.append(item.id)
    return kept, removed


def file_key(item: EmbeddingItem) -> FileKey | None:
    """(owner, repo, path) of a file item, None when any part is missing"""
    if item.type != "file":
        return None
    metadata = item.metadata
    if not metadata.owner or not metadata.repo or not metadata.path:
        return None
    return metadata.owner, metadata.repo, metadata.path


def reconcile_deleted_files(
    items: list[EmbeddingItem],
    live_keys: set[FileKey],
    unknown_repos: set[str] | None = None,
) -> tuple[list[EmbeddingItem], list[str]]:
    """
    Drop file items whose source file no longer exists

    A file item is kept when its key is incomplete, its key is live, or its
    repository ('owner/repo') could not be listed. Other item types are kept.

    Returns:
        Tuple of (kept items, removed ids)
    """
    unknown_repos = unknown_repos or set()
    kept: list[EmbeddingItem] = []
    removed: list[str] = []
    for item in items:
        key = file_key(item)
        if key is None or key in live_keys or f"{key[0]}/{key[1]}" in unknown_repos:
            kept.append(item)
        else:
            removed.append(item.id)
    return kept, removed


def pruning_score(item: EmbeddingItem, now: datetime) -> int:
    """Priority of an item under capacity pruning (higher survives)"""
    if item.type == "commit":
        date = item.metadata.date
        if date is None:
            return 50
        return 100 if now - date < RECENT_COMMIT_WINDOW else 50

    if item.type == "file":
        score = 40
        path = item.metadata.path or ""
        if path.lower().endswith(SOURCE_SUFFIXES):
            score += 40
        if item.metadata.chunk_index > 0:
            score -= 30
        return score

    if item.type == "qa":
        timestamp = item.metadata.timestamp
        if timestamp is None:
            return 30
        return 90 if now - timestamp < RECENT_QA_WINDOW else 30

    return 0


def enforce_capacity(
    items: list[EmbeddingItem],
    budget_bytes: int,
    now: datetime,
    margin: float = 0.95,
    estimate: Callable[[list[EmbeddingItem]], int] | None = None,
) -> list[EmbeddingItem]:
    """
    Prune lowest-priority items until the compressed estimate fits the budget

    Each pass keeps floor(count * budget / estimate * margin) items ranked by
    pruning_score (stable, so ties keep input order). Passes repeat while the
    estimate is still over budget, so the result always fits (or is empty).
    """
    estimate = estimate or estimate_compressed_size

    size = estimate(items)
    logger.info(f"Current size: {size / (1024 * 1024):.2f} MB (budget {budget_bytes} bytes)")
    if size <= budget_bytes:
        return list(items)

    kept = list(items)
    while kept and size > budget_bytes:
        target = math.floor(len(kept) * (budget_bytes / size) * margin)
        # Always make progress
        target = min(target, len(kept) - 1)
        ranked = sorted(kept, key=lambda item: -pruning_score(item, now))
        kept = ranked[:target]
        size = estimate(kept)
        logger.info(f"Pruned to {len(kept)} items ({size} bytes)")

    return kept


class RetentionEngine:
    """Runs the retention stages in order: age, deleted files, capacity"""

    def __init__(
        self,
        lister,
        repositories: list[RepositorySource],
        mirror=None,
        clock: Callable[[], datetime] | None = None,
        retention_months: int | None = None,
        budget_bytes: int | None = None,
        margin: float | None = None,
        concurrency: int | None = None,
        delete_batch_size: int | None = None,
    ):
        """
        Initialize retention engine

        Args:
            lister: Object with async list_tree(owner, repo, branch) -> list of paths
            repositories: Configured source repositories
            mirror: Optional mirror store with async delete_ids(ids, batch_size)
            clock: Returns the current time (default: UTC now)
            retention_months: Age cutoff in months (default from config)
            budget_bytes: Compressed snapshot budget (default from config)
            margin: Capacity safety margin (default from config)
            concurrency: Max concurrent repository listings (default from config)
            delete_batch_size: Ids per mirror delete batch (default from config)
        """
        self.lister = lister
        self.repositories = repositories
        self.mirror = mirror
        self.clock = clock or (lambda: datetime.now(UTC))
        self.retention_months = (
            config.retention_months if retention_months is None else retention_months
        )
        self.budget_bytes = (
            config.max_snapshot_size_bytes if budget_bytes is None else budget_bytes
        )
        self.margin = config.capacity_safety_margin if margin is None else margin
        self.concurrency = concurrency or config.worker_concurrency
        self.delete_batch_size = delete_batch_size or config.mirror_delete_batch_size

    async def run(
        self, items: list[EmbeddingItem]
    ) -> tuple[list[EmbeddingItem], RetentionReport]:
        """
        Apply all three stages

        Returns:
            Tuple of (kept items, report)
        """
        now = self.clock()
        failures: list[str] = []
        logger.info(f"Running retention on {len(items)} items")

        after_age, age_report = await self.expire_stage(items, now, failures)
        after_files, files_report = await self.deleted_files_stage(after_age, failures)
        kept, capacity_report = self.capacity_stage(after_files, now)

        report = RetentionReport(
            age=age_report,
            deleted_files=files_report,
            capacity=capacity_report,
            total=StageReport.from_counts(len(items), len(kept)),
            failures=failures,
        )
        logger.info(
            f"Retention complete: {len(items)} -> {len(kept)} items "
            f"(age -{age_report.removed}, deleted files -{files_report.removed}, "
            f"capacity -{capacity_report.removed})"
        )
        return kept, report

    async def expire_stage(
        self, items: list[EmbeddingItem], now: datetime, failures: list[str]
    ) -> tuple[list[EmbeddingItem], StageReport]:
        cutoff = subtract_months(now, self.retention_months)
        logger.info(f"Age-based cleanup (cutoff: {cutoff.date().isoformat()})")

        kept, removed = expire_by_age(items, cutoff)
        logger.info(f"Removed {len(removed)} items older than {self.retention_months} months")

        failures.extend(await self._delete_from_mirror(removed))
        return kept, StageReport.from_counts(len(items), len(kept))

    async def deleted_files_stage(
        self, items: list[EmbeddingItem], failures: list[str]
    ) -> tuple[list[EmbeddingItem], StageReport]:
        logger.info("Deleted files cleanup")

        live_keys, unknown_repos, listing_failures = await self._list_live_files()
        failures.extend(listing_failures)

        kept, removed = reconcile_deleted_files(items, live_keys, unknown_repos)
        logger.info(f"Removed {len(removed)} items for deleted files")

        failures.extend(await self._delete_from_mirror(removed))
        return kept, StageReport.from_counts(len(items), len(kept))

    def capacity_stage(
        self, items: list[EmbeddingItem], now: datetime
    ) -> tuple[list[EmbeddingItem], StageReport]:
        logger.info(f"Capacity limit enforcement (limit: {self.budget_bytes} bytes)")
        kept = enforce_capacity(items, self.budget_bytes, now, self.margin)
        return kept, StageReport.from_counts(len(items), len(kept))

    async def _list_live_files(self) -> tuple[set[FileKey], set[str], list[str]]:
        """List blob paths of every repository concurrently"""
        semaphore = asyncio.Semaphore(self.concurrency)

        async def list_with_limit(source: RepositorySource):
            async with semaphore:
                return await self.lister.list_tree(source.owner, source.repo, source.branch)

        results = await asyncio.gather(
            *[list_with_limit(source) for source in self.repositories], return_exceptions=True
        )

        live_keys: set[FileKey] = set()
        unknown_repos: set[str] = set()
        failures: list[str] = []
        for source, result in zip(self.repositories, results, strict=True):
            if isinstance(result, Exception):
                failure = PartialFailure(f"list {source.key}", result)
                logger.warning(
                    f"Failed to fetch tree for {source.key}, keeping its files: {result}"
                )
                unknown_repos.add(source.key)
                failures.append(failure.describe())
                continue

            live_keys.update((source.owner, source.repo, path) for path in result)
            logger.info(f"{source.key}: {len(result)} files")

        return live_keys, unknown_repos, failures

    async def _delete_from_mirror(self, ids: list[str]) -> list[str]:
        """Best-effort mirror deletion; failures are returned, never raised"""
        if self.mirror is None or not ids:
            return []

        try:
            failures = await self.mirror.delete_ids(ids, self.delete_batch_size)
        except Exception as e:
            logger.warning(f"Mirror cleanup failed: {e}")
            return [PartialFailure("mirror delete", e).describe()]

        if not failures:
            logger.info(f"Mirror cleanup removed {len(ids)} ids")
        return failures
