"""Embedding item data model (tagged union per source type)"""

from datetime import UTC, datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter, field_validator

ItemType = Literal["commit", "file", "qa"]


def ensure_utc(value: datetime | None) -> datetime | None:
    """Interpret naive datetimes as UTC"""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class CommitMetadata(BaseModel):
    """Metadata of a commit item"""

    owner: str | None = Field(default=None, description="Repository owner")
    repo: str | None = Field(default=None, description="Repository name")
    sha: str = Field(min_length=1, description="Source-control commit hash")
    author: str | None = Field(default=None, description="Commit author name")
    date: datetime | None = Field(default=None, description="Commit date")
    message: str = Field(default="", description="Full commit message")
    extra: dict[str, str] = Field(default_factory=dict)

    @field_validator("date")
    @classmethod
    def validate_date(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v)


class FileMetadata(BaseModel):
    """Metadata of a file chunk item"""

    owner: str | None = Field(default=None, description="Repository owner")
    repo: str | None = Field(default=None, description="Repository name")
    path: str | None = Field(default=None, description="Path of the file in the repository")
    chunk_index: int = Field(default=0, ge=0, description="Position of this chunk (0-indexed)")
    total_chunks: int = Field(default=1, ge=1, description="Number of chunks of the file")
    extension: str | None = Field(default=None, description="File extension without dot")
    commit_date: datetime | None = Field(
        default=None, description="Date of the last known commit touching the file"
    )
    blob_sha: str | None = Field(default=None, description="Git blob hash of the file content")
    size: int | None = Field(default=None, ge=0, description="File size in bytes")
    extra: dict[str, str] = Field(default_factory=dict)

    @field_validator("commit_date")
    @classmethod
    def validate_commit_date(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v)


class QAMetadata(BaseModel):
    """Metadata of a Q&A history item"""

    qa_id: str | None = Field(default=None, description="Identifier of the history record")
    session_id: str | None = Field(default=None, description="Conversation session identifier")
    timestamp: datetime | None = Field(default=None, description="Interaction timestamp")
    category: str | None = Field(default=None, description="Question category")
    extra: dict[str, str] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v)


class _BaseItem(BaseModel):
    id: str = Field(min_length=1, description="Unique identifier within a snapshot")
    content: str = Field(description="Text that was embedded")
    embedding: list[float] = Field(min_length=1, description="Embedding vector")

    def metadata_view(self) -> dict[str, Any]:
        """Flat JSON-compatible view of type and metadata used for exact-match filtering"""
        metadata = self.metadata  # type: ignore[attr-defined]
        view = metadata.model_dump(mode="json", exclude={"extra"})
        view.update(metadata.extra)
        view["type"] = self.type  # type: ignore[attr-defined]
        return view


class CommitItem(_BaseItem):
    """Embedded commit message"""

    type: Literal["commit"] = "commit"
    metadata: CommitMetadata


class FileItem(_BaseItem):
    """Embedded chunk of a repository file"""

    type: Literal["file"] = "file"
    metadata: FileMetadata


class QAItem(_BaseItem):
    """Embedded Q&A history record"""

    type: Literal["qa"] = "qa"
    metadata: QAMetadata


EmbeddingItem = Annotated[CommitItem | FileItem | QAItem, Field(discriminator="type")]

embedding_items_adapter: TypeAdapter[list[EmbeddingItem]] = TypeAdapter(list[EmbeddingItem])


def commit_item_id(sha: str) -> str:
    return f"commit-{sha}"


def file_item_id(owner: str, repo: str, path: str, chunk_index: int) -> str:
    return f"file-{owner}/{repo}:{path}#{chunk_index}"


def qa_item_id(qa_id: str) -> str:
    return f"qa-{qa_id}"
