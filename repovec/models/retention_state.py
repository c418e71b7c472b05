"""Persisted incremental pipeline state"""

from datetime import UTC, datetime

from pydantic import BaseModel, Field, field_validator

from repovec.models.embedding_item import ensure_utc

STATE_VERSION = "2.0"
EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


class RepositoryState(BaseModel):
    """Last processed position of one source repository"""

    last_processed_commit_hash: str | None = Field(
        default=None, description="Newest commit hash ingested so far"
    )
    last_tree_hash: str | None = Field(
        default=None, description="Default-branch tree hash at the last successful run"
    )
    last_updated: datetime | None = Field(
        default=None, description="Start time of the last successful run for this repository"
    )

    @field_validator("last_updated")
    @classmethod
    def validate_last_updated(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v)


class RetentionState(BaseModel):
    """Pipeline-wide incremental state document"""

    version: str = Field(default=STATE_VERSION, description="State document format version")
    repositories: dict[str, RepositoryState] = Field(
        default_factory=dict, description="Mapping of 'owner/repo' to repository state"
    )
    last_qa_timestamp: datetime = Field(
        default=EPOCH, description="Newest Q&A record timestamp ingested so far"
    )
    last_cleanup_run: datetime = Field(
        default=EPOCH, description="When retention last ran to completion"
    )
    last_updated: datetime = Field(
        default_factory=lambda: datetime.now(UTC), description="When the state was last saved"
    )

    @field_validator("last_qa_timestamp", "last_cleanup_run", "last_updated")
    @classmethod
    def validate_timestamps(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    def get_repository(self, owner: str, repo: str) -> RepositoryState | None:
        return self.repositories.get(f"{owner}/{repo}")
