"""Search service for querying the published snapshot"""

import logging
import time

from repovec.exceptions import SnapshotError
from repovec.models.query import Query
from repovec.models.search_result import QueryInfo, QueryOutput
from repovec.services.embedder import Embedder
from repovec.services.snapshot_store import VectorQueryStore, search_entry

logger = logging.getLogger(__name__)


class SearchService:
    """Handle text similarity queries"""

    def __init__(self, store: VectorQueryStore, embedder: Embedder | None = None, telemetry=None):
        self.store = store
        self.embedder = embedder or Embedder()
        self.telemetry = telemetry

    async def query(self, query: Query) -> QueryOutput:
        """
        Execute a similarity search query

        When the snapshot cannot be reloaded but an expired one is cached, the
        expired snapshot answers and the output is flagged as degraded.

        Args:
            query: Query object with search parameters

        Returns:
            QueryOutput: Search results with metadata

        Raises:
            SnapshotError: If no snapshot can be loaded and none is cached
        """
        start_time = time.time()

        try:
            output = await self._execute(query, start_time)
        except Exception as e:
            if self.telemetry is not None:
                self.telemetry.log_query(query.text, query.model_dump(exclude={"text"}), error=e)
            raise

        if self.telemetry is not None:
            self.telemetry.log_query(
                query.text, query.model_dump(exclude={"text"}), output=output
            )
        return output

    async def _execute(self, query: Query, start_time: float) -> QueryOutput:
        degraded = False
        try:
            entry = self.store.current_entry()
        except SnapshotError as e:
            entry = self.store.cache.last()
            if entry is None:
                raise
            logger.warning(f"Snapshot reload failed, serving expired snapshot: {e}")
            degraded = True

        query_embedding = await self.embedder.embed_document(query.text)
        results = search_entry(
            entry, query_embedding, query.limit, query.min_score, query.metadata_filter
        )

        query_time_ms = (time.time() - start_time) * 1000

        query_info = QueryInfo(
            original_query=query.text,
            total_results=len(results),
            query_time_ms=query_time_ms,
            snapshot_created_at=entry.snapshot.created_at,
            degraded=degraded,
        )

        return QueryOutput(results=results, query_info=query_info)
