"""Data models for the embedding pipeline and query-time store"""

from repovec.models.embedding_item import (
    CommitItem,
    CommitMetadata,
    EmbeddingItem,
    FileItem,
    FileMetadata,
    QAItem,
    QAMetadata,
)
from repovec.models.query import Query
from repovec.models.reports import ExportResult, PipelineResult, RetentionReport, StageReport
from repovec.models.retention_state import RepositoryState, RetentionState
from repovec.models.search_result import CacheStatus, QueryInfo, QueryOutput, SearchResult
from repovec.models.snapshot import VectorIndex

__all__ = [
    "CommitItem",
    "CommitMetadata",
    "EmbeddingItem",
    "FileItem",
    "FileMetadata",
    "QAItem",
    "QAMetadata",
    "Query",
    "StageReport",
    "RetentionReport",
    "ExportResult",
    "PipelineResult",
    "RepositoryState",
    "RetentionState",
    "SearchResult",
    "QueryInfo",
    "QueryOutput",
    "CacheStatus",
    "VectorIndex",
]
