"""Snapshot serialization, compression and publishing"""

import gzip
import logging
from datetime import UTC, datetime

from pydantic import ValidationError

from repovec.config import config
from repovec.exceptions import SnapshotError
from repovec.models.embedding_item import EmbeddingItem
from repovec.models.reports import ExportResult
from repovec.models.snapshot import VectorIndex
from repovec.services.snapshot_sink import SnapshotSink

logger = logging.getLogger(__name__)

# Fixed so that estimates of the same items are equal
ESTIMATE_TIMESTAMP = datetime(2000, 1, 1, tzinfo=UTC)


def build_snapshot(
    items: list[EmbeddingItem],
    created_at: datetime | None = None,
    default_dimension: int | None = None,
) -> VectorIndex:
    """
    Assemble a snapshot from items

    The dimension is taken from the first item; an empty snapshot uses
    default_dimension (the configured embedding dimension when None).

    Raises:
        SnapshotError: If dimensions are inconsistent or ids repeat
    """
    if items:
        dimension = len(items[0].embedding)
    else:
        dimension = default_dimension or config.embedding_dimension

    try:
        return VectorIndex(
            dimension=dimension,
            count=len(items),
            created_at=created_at or datetime.now(UTC),
            items=list(items),
        )
    except ValidationError as e:
        raise SnapshotError(f"Cannot build snapshot: {e}") from e


def serialize_snapshot(snapshot: VectorIndex) -> bytes:
    """Compact JSON encoding of a snapshot"""
    return snapshot.model_dump_json().encode("utf-8")


def compress(data: bytes) -> bytes:
    """Gzip data with a fixed header timestamp so equal input gives equal output"""
    return gzip.compress(data, mtime=0)


def estimate_compressed_size(items: list[EmbeddingItem]) -> int:
    """Size in bytes the published snapshot of items would have"""
    snapshot = build_snapshot(items, created_at=ESTIMATE_TIMESTAMP)
    return len(compress(serialize_snapshot(snapshot)))


class IndexExporter:
    """Serialize, compress and publish snapshots through a sink"""

    def __init__(self, sink: SnapshotSink, default_dimension: int | None = None):
        self.sink = sink
        self.default_dimension = default_dimension or config.embedding_dimension

    def export(
        self,
        items: list[EmbeddingItem],
        name: str | None = None,
        created_at: datetime | None = None,
    ) -> ExportResult:
        """
        Publish items as a new snapshot

        Args:
            items: Items to publish
            name: Artifact name (default from config)
            created_at: Export timestamp (default now)

        Returns:
            ExportResult describing the published artifact

        Raises:
            SnapshotError: If building or publishing fails; the previous snapshot remains
        """
        name = name or config.snapshot_name

        snapshot = build_snapshot(items, created_at, self.default_dimension)
        data = serialize_snapshot(snapshot)
        compressed = compress(data)

        try:
            locator = self.sink.publish(compressed, name)
        except SnapshotError:
            raise
        except Exception as e:
            raise SnapshotError(f"Failed to publish snapshot {name}: {e}") from e

        ratio = (1 - len(compressed) / len(data)) * 100 if data else 0.0
        logger.info(f"Exported {snapshot.count} items to {locator}")
        logger.info(
            f"  Size: {len(data) / 1024:.1f} KB -> {len(compressed) / 1024:.1f} KB "
            f"({ratio:.1f}% reduction)"
        )

        return ExportResult(
            locator=locator,
            count=snapshot.count,
            dimension=snapshot.dimension,
            uncompressed_bytes=len(data),
            compressed_bytes=len(compressed),
        )
