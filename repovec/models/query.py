"""Query request model"""

from typing import Any

from pydantic import BaseModel, Field


class Query(BaseModel):
    """Similarity search request against the published snapshot"""

    text: str = Field(min_length=1, description="The query string (natural language)")
    limit: int = Field(default=5, ge=1, le=50, description="Maximum number of results to return")
    min_score: float | None = Field(
        default=None, ge=-1.0, le=1.0, description="Minimum cosine similarity threshold"
    )
    metadata_filter: dict[str, Any] | None = Field(
        default=None, description="Key/value pairs that must all match the item metadata"
    )
