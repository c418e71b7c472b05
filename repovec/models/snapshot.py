"""Versioned snapshot (vector index) data model"""

from collections import Counter
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from repovec.models.embedding_item import EmbeddingItem, ensure_utc

# Readers treat any other version as "not found"
SNAPSHOT_SCHEMA_VERSION = 2


class VectorIndex(BaseModel):
    """Published collection of embedding items served at query time"""

    model_config = ConfigDict(frozen=True)

    schema_version: int = Field(
        default=SNAPSHOT_SCHEMA_VERSION, description="Snapshot format version"
    )
    dimension: int = Field(ge=1, description="Length of every embedding vector")
    count: int = Field(ge=0, description="Number of items (always equals len(items))")
    created_at: datetime = Field(description="When the snapshot was exported")
    items: list[EmbeddingItem] = Field(default_factory=list)

    @field_validator("created_at")
    @classmethod
    def validate_created_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @model_validator(mode="after")
    def check_invariants(self) -> "VectorIndex":
        """Validate count, dimension and id uniqueness"""
        if self.count != len(self.items):
            raise ValueError(f"Snapshot count {self.count} != number of items {len(self.items)}")

        for item in self.items:
            if len(item.embedding) != self.dimension:
                raise ValueError(
                    f"Embedding dimension mismatch for {item.id}: "
                    f"expected {self.dimension}, got {len(item.embedding)}"
                )

        duplicates = [item_id for item_id, n in Counter(i.id for i in self.items).items() if n > 1]
        if duplicates:
            raise ValueError(f"Duplicate item ids in snapshot: {duplicates[:5]}")

        return self

    def statistics(self) -> dict[str, int]:
        """Item counts per type"""
        counts = Counter(item.type for item in self.items)
        return {
            "total": self.count,
            "commit": counts.get("commit", 0),
            "file": counts.get("file", 0),
            "qa": counts.get("qa", 0),
        }
