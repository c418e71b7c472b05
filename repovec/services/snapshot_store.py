"""Query-time snapshot store with TTL cache and brute-force cosine search"""

import gzip
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Protocol

import httpx
import numpy as np
from pydantic import ValidationError

from repovec.config import config
from repovec.exceptions import SnapshotFormatError, SnapshotNotFoundError
from repovec.models.search_result import CacheStatus, SearchResult
from repovec.models.snapshot import SNAPSHOT_SCHEMA_VERSION, VectorIndex
from repovec.utils.vector_math import cosine_scores, embedding_matrix

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"


@dataclass(frozen=True)
class FetchedSnapshot:
    """Raw snapshot bytes; data is None when the source reports it unchanged"""

    data: bytes | None
    etag: str | None = None


class SnapshotSource(Protocol):
    def fetch(self, etag: str | None = None) -> FetchedSnapshot: ...

    def close(self) -> None: ...


class LocalSnapshotSource:
    """Reads the snapshot from a local file"""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def fetch(self, etag: str | None = None) -> FetchedSnapshot:
        if not self.path.exists():
            raise SnapshotNotFoundError(f"Snapshot file not found: {self.path}")
        try:
            return FetchedSnapshot(data=self.path.read_bytes())
        except OSError as e:
            raise SnapshotNotFoundError(f"Cannot read snapshot {self.path}: {e}") from e

    def close(self) -> None:
        pass


class HttpSnapshotSource:
    """Downloads the snapshot over HTTP(S) with ETag revalidation"""

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.url = url
        self.client = httpx.Client(
            timeout=httpx.Timeout(timeout), follow_redirects=True, transport=transport
        )

    def fetch(self, etag: str | None = None) -> FetchedSnapshot:
        headers = {"If-None-Match": etag} if etag else {}

        try:
            response = self.client.get(self.url, headers=headers)
        except httpx.HTTPError as e:
            raise SnapshotNotFoundError(f"Failed to download snapshot from {self.url}: {e}") from e

        if response.status_code == 304:
            logger.debug("Snapshot not modified")
            return FetchedSnapshot(data=None, etag=etag)
        if response.status_code == 404:
            raise SnapshotNotFoundError(f"Snapshot not found at {self.url}")

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise SnapshotNotFoundError(
                f"Snapshot download returned {response.status_code}: {self.url}"
            ) from e

        return FetchedSnapshot(data=response.content, etag=response.headers.get("etag"))

    def close(self) -> None:
        self.client.close()


def parse_snapshot(data: bytes) -> VectorIndex:
    """
    Decode and validate a published snapshot

    Gzip data is decompressed first. No partial result is ever returned.

    Raises:
        SnapshotNotFoundError: If the schema version is not supported
        SnapshotFormatError: If the data is malformed or violates snapshot invariants
    """
    if data[:2] == GZIP_MAGIC:
        try:
            data = gzip.decompress(data)
        except (OSError, EOFError) as e:
            raise SnapshotFormatError(f"Corrupt gzip snapshot: {e}") from e

    try:
        document = json.loads(data)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise SnapshotFormatError(f"Snapshot is not valid JSON: {e}") from e

    if not isinstance(document, dict):
        raise SnapshotFormatError("Snapshot document must be a JSON object")

    version = document.get("schema_version")
    if version != SNAPSHOT_SCHEMA_VERSION:
        raise SnapshotNotFoundError(f"Unsupported snapshot schema version: {version!r}")

    try:
        return VectorIndex.model_validate(document)
    except ValidationError as e:
        raise SnapshotFormatError(f"Invalid snapshot: {e}") from e


@dataclass(frozen=True)
class CacheEntry:
    """Loaded snapshot with its precomputed embedding matrix"""

    snapshot: VectorIndex
    matrix: np.ndarray
    norms: np.ndarray
    loaded_at: float
    etag: str | None = None


class SnapshotCache:
    """Holds at most one loaded snapshot, valid for ttl_seconds after loading

    Installing replaces the whole entry in one assignment, so readers never see
    a partially updated snapshot; concurrent installs resolve last-writer-wins.
    """

    def __init__(
        self, ttl_seconds: float | None = None, clock: Callable[[], float] = time.monotonic
    ):
        self.ttl_seconds = (
            config.snapshot_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        )
        self.clock = clock
        self._entry: CacheEntry | None = None

    def _is_valid(self, entry: CacheEntry) -> bool:
        return self.clock() - entry.loaded_at < self.ttl_seconds

    def get(self) -> CacheEntry | None:
        """Current entry while within its TTL"""
        entry = self._entry
        if entry is not None and self._is_valid(entry):
            return entry
        return None

    def last(self) -> CacheEntry | None:
        """Current entry even when expired"""
        return self._entry

    def install(self, snapshot: VectorIndex, etag: str | None = None) -> CacheEntry:
        matrix, norms = embedding_matrix(
            [item.embedding for item in snapshot.items], snapshot.dimension
        )
        entry = CacheEntry(
            snapshot=snapshot, matrix=matrix, norms=norms, loaded_at=self.clock(), etag=etag
        )
        self._entry = entry
        return entry

    def revalidate(self, entry: CacheEntry) -> CacheEntry:
        """Restart the TTL of an unchanged snapshot"""
        refreshed = replace(entry, loaded_at=self.clock())
        self._entry = refreshed
        return refreshed

    def clear(self) -> None:
        self._entry = None

    def status(self) -> CacheStatus:
        entry = self._entry
        if entry is None:
            return CacheStatus(loaded=False, valid=False, age_seconds=0.0)

        stats = entry.snapshot.statistics()
        return CacheStatus(
            loaded=True,
            valid=self._is_valid(entry),
            age_seconds=max(0.0, self.clock() - entry.loaded_at),
            total_items=stats["total"],
            commit_items=stats["commit"],
            file_items=stats["file"],
            qa_items=stats["qa"],
            etag=entry.etag,
        )


def matches_filter(view: dict[str, Any], metadata_filter: dict[str, Any] | None) -> bool:
    """Every filter key must be present in view with an equal value"""
    if not metadata_filter:
        return True
    return all(key in view and view[key] == value for key, value in metadata_filter.items())


def search_entry(
    entry: CacheEntry,
    vector: list[float],
    k: int = 5,
    min_score: float | None = None,
    metadata_filter: dict[str, Any] | None = None,
) -> list[SearchResult]:
    """
    Top-k items of a loaded snapshot by cosine similarity

    Raises:
        ValueError: If k < 1 or the vector length differs from the snapshot dimension
    """
    if k < 1:
        raise ValueError(f"k must be >= 1, got {k}")

    snapshot = entry.snapshot
    if len(vector) != snapshot.dimension:
        raise ValueError(
            f"Query embedding dimension mismatch: expected {snapshot.dimension}, "
            f"got {len(vector)}"
        )

    scores = cosine_scores(vector, entry.matrix, entry.norms)

    candidates: list[tuple[float, int]] = []
    for index, item in enumerate(snapshot.items):
        if not matches_filter(item.metadata_view(), metadata_filter):
            continue
        score = float(scores[index])
        if min_score is not None and score < min_score:
            continue
        candidates.append((score, index))

    # Stable: equal scores keep snapshot order
    candidates.sort(key=lambda candidate: -candidate[0])

    results = []
    for score, index in candidates[:k]:
        item = snapshot.items[index]
        results.append(
            SearchResult(
                id=item.id,
                type=item.type,
                content=item.content,
                metadata=item.metadata_view(),
                score=score,
            )
        )
    return results


class VectorQueryStore:
    """Serves similarity queries from the most recently published snapshot

    Loading is not locked: callers that find the cache expired at the same time
    may each fetch the snapshot, and the last install wins.
    """

    def __init__(self, source: SnapshotSource, cache: SnapshotCache | None = None):
        self.source = source
        self.cache = cache or SnapshotCache()

    def current_entry(self) -> CacheEntry:
        """
        Cached entry, reloading from the source once the TTL has passed

        Raises:
            SnapshotNotFoundError: If the snapshot is missing or unsupported
            SnapshotFormatError: If the snapshot is malformed
        """
        entry = self.cache.get()
        if entry is not None:
            return entry

        previous = self.cache.last()
        fetched = self.source.fetch(previous.etag if previous else None)

        if fetched.data is None:
            if previous is None:
                raise SnapshotNotFoundError("Source reported no change but nothing is cached")
            return self.cache.revalidate(previous)

        snapshot = parse_snapshot(fetched.data)
        entry = self.cache.install(snapshot, fetched.etag)
        stats = snapshot.statistics()
        logger.info(
            f"Loaded snapshot with {stats['total']} items "
            f"(commit: {stats['commit']}, file: {stats['file']}, qa: {stats['qa']})"
        )
        return entry

    def get_snapshot(self) -> VectorIndex:
        return self.current_entry().snapshot

    def query(
        self,
        vector: list[float],
        k: int = 5,
        min_score: float | None = None,
        metadata_filter: dict[str, Any] | None = None,
    ) -> list[SearchResult]:
        """Top-k similarity search against the current snapshot"""
        return search_entry(self.current_entry(), vector, k, min_score, metadata_filter)

    def clear_cache(self) -> None:
        self.cache.clear()
        logger.info("Snapshot cache cleared")

    def cache_status(self) -> CacheStatus:
        return self.cache.status()

    def close(self) -> None:
        """Release the source's connections"""
        self.source.close()


def create_snapshot_source(url: str | None = None, path: str | Path | None = None):
    """HTTP source when a URL is configured, local file source otherwise"""
    url = url if url is not None else config.snapshot_url
    if url:
        return HttpSnapshotSource(url)
    if path is None:
        if not config.snapshot_dir:
            raise SnapshotNotFoundError("No snapshot URL or directory configured")
        path = Path(config.snapshot_dir) / config.snapshot_name
    return LocalSnapshotSource(path)
