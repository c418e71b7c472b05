"""Ingestion of commits, files and Q&A records into embedding items"""

import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import dataclass, field
from datetime import datetime

from repovec.config import config
from repovec.exceptions import PartialFailure, ProviderError
from repovec.models.embedding_item import (
    CommitItem,
    CommitMetadata,
    EmbeddingItem,
    FileItem,
    FileMetadata,
    QAItem,
    QAMetadata,
    commit_item_id,
    file_item_id,
    qa_item_id,
)
from repovec.models.records import CommitRecord, QARecord, TreeEntry
from repovec.models.retention_state import RepositoryState
from repovec.models.sources_config import RepositorySource
from repovec.services.chunker import Chunker
from repovec.services.embedder import Embedder
from repovec.services.github_fetcher import GitHubFetcher, select_files
from repovec.services.qa_history import QAHistorySource
from repovec.services.retention import FileKey, file_key

logger = logging.getLogger(__name__)


@dataclass
class RepositoryIngestion:
    """Items and position reached for one repository"""

    key: str
    items: list[EmbeddingItem] = field(default_factory=list)
    replaced_paths: set[FileKey] = field(default_factory=set)
    newest_commit_hash: str | None = None
    commits_listed: bool = False
    tree_hash: str | None = None
    failures: list[str] = field(default_factory=list)


@dataclass
class QAIngestion:
    """Items and newest timestamp from the Q&A history"""

    items: list[EmbeddingItem] = field(default_factory=list)
    newest_timestamp: datetime | None = None
    failures: list[str] = field(default_factory=list)


def commit_text(commit: CommitRecord) -> str:
    return f"{commit.message} | Author: {commit.author or 'unknown'}"


def qa_text(record: QARecord) -> str:
    if record.question_summary:
        return f"{record.question} | {record.question_summary}"
    return record.question


def file_extension(path: str) -> str | None:
    name = path.rsplit("/", 1)[-1]
    if "." not in name.lstrip("."):
        return None
    return name.rsplit(".", 1)[-1].lower()


def merge_items(
    previous: list[EmbeddingItem],
    new: list[EmbeddingItem],
    replaced_paths: set[FileKey] | None = None,
) -> list[EmbeddingItem]:
    """
    Overlay new items onto the previous collection by id

    Previous file items of re-ingested paths are dropped first so chunks that
    no longer exist do not linger. New items win on id collisions.
    """
    replaced_paths = replaced_paths or set()
    merged: dict[str, EmbeddingItem] = {}

    for item in previous:
        key = file_key(item)
        if key is not None and key in replaced_paths:
            continue
        merged[item.id] = item

    for item in new:
        merged[item.id] = item

    return list(merged.values())


class Ingestor:
    """Turns repository and Q&A sources into embedded items

    Every commit, file and Q&A record is an isolated unit: a failing unit is
    logged and recorded, and its siblings continue.
    """

    def __init__(
        self,
        fetcher: GitHubFetcher,
        embedder: Embedder,
        chunker: Chunker | None = None,
        concurrency: int | None = None,
        commit_limit: int = 100,
        chunk_size_tokens: int | None = None,
        max_file_chunks: int | None = None,
    ):
        self.fetcher = fetcher
        self.embedder = embedder
        self.chunker = chunker or embedder.chunker
        self.semaphore = asyncio.Semaphore(concurrency or config.worker_concurrency)
        self.commit_limit = commit_limit
        self.chunk_size_tokens = chunk_size_tokens or config.chunk_size_tokens
        self.max_file_chunks = max_file_chunks or config.max_file_chunks

    async def _run_units(self, units: list[tuple[str, Awaitable]]) -> list:
        """Run units concurrently under the semaphore; failures come back as PartialFailure"""

        async def run_with_limit(unit: str, work: Awaitable):
            async with self.semaphore:
                try:
                    return await work
                except Exception as e:
                    logger.warning(f"Skipping {unit}: {e}")
                    return PartialFailure(unit, e)

        return await asyncio.gather(*[run_with_limit(unit, work) for unit, work in units])

    async def collect_repository(
        self,
        source: RepositorySource,
        repo_state: RepositoryState | None,
        previous_items: list[EmbeddingItem],
    ) -> RepositoryIngestion:
        """
        Ingest new commits and changed files of one repository

        Args:
            source: Repository configuration
            repo_state: Position reached by the last successful run (None = first run)
            previous_items: Items of the previously published snapshot

        Returns:
            RepositoryIngestion with items, replaced file paths and position reached
        """
        result = RepositoryIngestion(key=source.key)
        logger.info(f"Ingesting {source.key}")

        branch = source.branch or await self.fetcher.get_default_branch(source.owner, source.repo)

        try:
            await self._collect_commits(source, branch, repo_state, result)
        except ProviderError as e:
            logger.warning(f"Failed to list commits of {source.key}: {e}")
            result.failures.append(PartialFailure(f"commits {source.key}", e).describe())

        try:
            await self._collect_files(source, branch, repo_state, previous_items, result)
        except ProviderError as e:
            logger.warning(f"Failed to list files of {source.key}: {e}")
            result.failures.append(PartialFailure(f"files {source.key}", e).describe())

        logger.info(
            f"{source.key}: {len(result.items)} new items, {len(result.failures)} failures"
        )
        return result

    async def _collect_commits(
        self,
        source: RepositorySource,
        branch: str,
        repo_state: RepositoryState | None,
        result: RepositoryIngestion,
    ) -> None:
        since = repo_state.last_updated if repo_state else None
        last_hash = repo_state.last_processed_commit_hash if repo_state else None

        commits = await self.fetcher.list_commits(
            source.owner, source.repo, since=since, limit=self.commit_limit, branch=branch
        )

        # Newest first; stop at the last processed commit
        new_commits: list[CommitRecord] = []
        for commit in commits:
            if commit.sha == last_hash:
                break
            new_commits.append(commit)

        result.commits_listed = True

        if not new_commits:
            logger.info(f"{source.key}: no new commits")
            return

        result.newest_commit_hash = new_commits[0].sha
        logger.info(f"{source.key}: embedding {len(new_commits)} commits")

        outcomes = await self._run_units(
            [
                (f"commit {source.key}@{commit.sha[:7]}", self._embed_commit(source, commit))
                for commit in new_commits
            ]
        )
        for outcome in outcomes:
            if isinstance(outcome, PartialFailure):
                result.failures.append(outcome.describe())
            else:
                result.items.append(outcome)

    async def _embed_commit(self, source: RepositorySource, commit: CommitRecord) -> CommitItem:
        text = commit_text(commit)
        embedding = await self.embedder.embed_document(text)
        return CommitItem(
            id=commit_item_id(commit.sha),
            content=text,
            embedding=embedding,
            metadata=CommitMetadata(
                owner=source.owner,
                repo=source.repo,
                sha=commit.sha,
                author=commit.author,
                date=commit.date,
                message=commit.message,
                extra={"url": commit.url} if commit.url else {},
            ),
        )

    async def _collect_files(
        self,
        source: RepositorySource,
        branch: str,
        repo_state: RepositoryState | None,
        previous_items: list[EmbeddingItem],
        result: RepositoryIngestion,
    ) -> None:
        tree = await self.fetcher.get_tree(source.owner, source.repo, branch)
        result.tree_hash = tree.sha

        if repo_state and tree.sha and repo_state.last_tree_hash == tree.sha:
            logger.info(f"{source.key}: tree unchanged, skipping files")
            return

        previous_blobs: dict[FileKey, str | None] = {}
        for item in previous_items:
            key = file_key(item)
            if key is not None:
                previous_blobs[key] = item.metadata.blob_sha

        changed = [
            entry
            for entry in select_files(tree, source)
            if entry.sha is None
            or previous_blobs.get((source.owner, source.repo, entry.path)) != entry.sha
        ]
        logger.info(f"{source.key}: embedding {len(changed)} changed files")

        outcomes = await self._run_units(
            [
                (f"file {source.key}:{entry.path}", self._embed_file(source, entry, branch))
                for entry in changed
            ]
        )
        for entry, outcome in zip(changed, outcomes, strict=True):
            if isinstance(outcome, PartialFailure):
                result.failures.append(outcome.describe())
            elif outcome:
                result.items.extend(outcome)
                result.replaced_paths.add((source.owner, source.repo, entry.path))

        if any(isinstance(outcome, PartialFailure) for outcome in outcomes):
            # Unchanged tree would skip the failed files next run
            result.tree_hash = None

    async def _embed_file(
        self, source: RepositorySource, entry: TreeEntry, branch: str
    ) -> list[FileItem]:
        content = await self.fetcher.get_file_content(source.owner, source.repo, entry.path, branch)
        if content is None or not content.strip():
            return []

        try:
            commit_date = await self.fetcher.get_last_commit_date(
                source.owner, source.repo, entry.path
            )
        except ProviderError as e:
            logger.warning(f"No commit date for {entry.path}: {e}")
            commit_date = None

        chunks = self.chunker.chunk_file(content, self.chunk_size_tokens, self.max_file_chunks)
        texts = [f"{entry.path}: {text}" for _, _, text in chunks]
        embeddings = await self.embedder.embed_batch(texts)

        return [
            FileItem(
                id=file_item_id(source.owner, source.repo, entry.path, chunk_index),
                content=text,
                embedding=embedding,
                metadata=FileMetadata(
                    owner=source.owner,
                    repo=source.repo,
                    path=entry.path,
                    chunk_index=chunk_index,
                    total_chunks=total_chunks,
                    extension=file_extension(entry.path),
                    commit_date=commit_date,
                    blob_sha=entry.sha,
                    size=entry.size,
                ),
            )
            for (chunk_index, total_chunks, _), text, embedding in zip(
                chunks, texts, embeddings, strict=True
            )
        ]

    async def collect_qa(self, history: QAHistorySource, since: datetime) -> QAIngestion:
        """Embed Q&A records created after since"""
        result = QAIngestion()

        try:
            records = await asyncio.to_thread(history.fetch_since, since)
        except ProviderError as e:
            logger.warning(f"Failed to read Q&A history: {e}")
            result.failures.append(PartialFailure("qa history", e).describe())
            return result

        if not records:
            logger.info("No new Q&A records")
            return result

        outcomes = await self._run_units(
            [(f"qa {record.id}", self._embed_qa(record)) for record in records]
        )
        for outcome in outcomes:
            if isinstance(outcome, PartialFailure):
                result.failures.append(outcome.describe())
            else:
                result.items.append(outcome)

        result.newest_timestamp = max(record.created_at for record in records)
        logger.info(f"Embedded {len(result.items)} of {len(records)} Q&A records")
        return result

    async def _embed_qa(self, record: QARecord) -> QAItem:
        text = qa_text(record)
        embedding = await self.embedder.embed_document(text)
        return QAItem(
            id=qa_item_id(record.id),
            content=text,
            embedding=embedding,
            metadata=QAMetadata(
                qa_id=record.id,
                session_id=record.session_id,
                timestamp=record.created_at,
                category=record.category,
            ),
        )
