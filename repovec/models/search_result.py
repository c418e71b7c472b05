"""Search result models"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class SearchResult(BaseModel):
    """Snapshot item returned in response to a query"""

    id: str = Field(description="Item identifier")
    type: str = Field(description="Item type (commit, file, qa)")
    content: str = Field(description="Embedded text of the item")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Flat item metadata")
    score: float = Field(ge=-1.0, le=1.0, description="Cosine similarity (higher is better)")


class QueryInfo(BaseModel):
    """Metadata about the query execution"""

    original_query: str = Field(description="The query that was executed")
    total_results: int = Field(ge=0, description="Number of results returned")
    query_time_ms: float = Field(ge=0.0, description="Query execution time in milliseconds")
    snapshot_created_at: datetime | None = Field(
        default=None, description="Export time of the snapshot that answered the query"
    )
    degraded: bool = Field(
        default=False, description="True when an expired snapshot answered because reload failed"
    )


class QueryOutput(BaseModel):
    """Complete output of a text query"""

    results: list[SearchResult] = Field(description="List of search results")
    query_info: QueryInfo = Field(description="Metadata about the query")


class CacheStatus(BaseModel):
    """State of the query-time snapshot cache"""

    loaded: bool = Field(description="A snapshot is installed")
    valid: bool = Field(description="The installed snapshot is within its TTL")
    age_seconds: float = Field(ge=0.0, description="Seconds since the snapshot was loaded")
    total_items: int = Field(default=0, ge=0)
    commit_items: int = Field(default=0, ge=0)
    file_items: int = Field(default=0, ge=0)
    qa_items: int = Field(default=0, ge=0)
    etag: str | None = None
