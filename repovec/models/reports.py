"""Report models for retention, export and pipeline runs"""

from datetime import datetime

from pydantic import BaseModel, Field


class StageReport(BaseModel):
    """Item counts around one retention stage"""

    before: int = Field(ge=0, description="Items entering the stage")
    after: int = Field(ge=0, description="Items surviving the stage")
    removed: int = Field(ge=0, description="Items removed by the stage")

    @classmethod
    def from_counts(cls, before: int, after: int) -> "StageReport":
        return cls(before=before, after=after, removed=before - after)


class RetentionReport(BaseModel):
    """Combined report of the three retention stages"""

    age: StageReport
    deleted_files: StageReport
    capacity: StageReport
    total: StageReport
    failures: list[str] = Field(
        default_factory=list, description="Isolated unit failures (listing, mirror batches)"
    )


class ExportResult(BaseModel):
    """Result of publishing a snapshot"""

    locator: str = Field(description="Where the sink published the snapshot")
    count: int = Field(ge=0, description="Number of exported items")
    dimension: int = Field(ge=1, description="Embedding dimension of the snapshot")
    uncompressed_bytes: int = Field(ge=0, description="Size of the serialized document")
    compressed_bytes: int = Field(ge=0, description="Size of the published artifact")


class PipelineResult(BaseModel):
    """Result of one pipeline run"""

    success: bool = Field(description="Whether the run published a snapshot")
    start_time: datetime = Field(description="When the run started")
    end_time: datetime = Field(description="When the run ended")
    duration_seconds: float = Field(description="Duration in seconds")
    new_items: int = Field(default=0, ge=0, description="Items ingested during this run")
    total_items: int = Field(default=0, ge=0, description="Items in the published snapshot")
    retention: RetentionReport | None = Field(default=None, description="None when skipped")
    export: ExportResult | None = Field(default=None)
    failures: list[str] = Field(default_factory=list, description="Isolated unit failures")
    error: str | None = Field(default=None, description="Error message if failed")
