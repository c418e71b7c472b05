"""Records returned by the source repository lister and Q&A history source"""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from repovec.models.embedding_item import ensure_utc


class CommitRecord(BaseModel):
    """Commit as listed by the source repository"""

    sha: str = Field(min_length=1)
    author: str | None = None
    date: datetime | None = None
    message: str = ""
    url: str | None = None

    @field_validator("date")
    @classmethod
    def validate_date(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v)


class TreeEntry(BaseModel):
    """Entry of a recursive git tree listing"""

    path: str
    type: str = Field(description="blob, tree or commit")
    sha: str | None = None
    size: int | None = None


class RepoTree(BaseModel):
    """Recursive tree of one branch"""

    sha: str | None = Field(default=None, description="Tree hash")
    entries: list[TreeEntry] = Field(default_factory=list)
    truncated: bool = Field(default=False, description="GitHub truncated the listing")

    def blob_paths(self) -> list[str]:
        return [entry.path for entry in self.entries if entry.type == "blob"]


class QARecord(BaseModel):
    """Row of the Q&A history store"""

    id: str
    question: str
    question_summary: str | None = None
    category: str | None = None
    session_id: str | None = None
    created_at: datetime

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: object) -> str:
        return str(v)

    @field_validator("created_at")
    @classmethod
    def validate_created_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)
