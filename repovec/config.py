"""Centralized configuration using Pydantic BaseSettings"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppConfig(BaseSettings):
    """Application configuration with environment variable support"""

    # Sources and persisted state
    sources_config_path: str = Field(
        default="sources.yaml", description="Path to the repository sources YAML file"
    )
    state_path: str = Field(
        default="./data/retention-state.json",
        description="Path to the persisted retention state document",
    )
    github_token_required: bool = Field(
        default=True, description="Abort the pipeline when no GitHub token is configured"
    )

    # Snapshot export
    snapshot_dir: str = Field(
        default="./data/snapshots", description="Directory the local snapshot sink publishes to"
    )
    snapshot_name: str = Field(
        default="embeddings.json.gz", description="File name of the published snapshot"
    )

    # Query-time store
    snapshot_url: str | None = Field(
        default=None,
        description="HTTP(S) URL of the published snapshot (None = read from snapshot_dir)",
    )
    snapshot_cache_ttl_seconds: float = Field(
        default=300.0, gt=0, description="How long a loaded snapshot stays valid"
    )

    # Embedding (Local model using fastembed)
    embedding_model: str = Field(
        default="sentence-transformers/all-MiniLM-L6-v2",
        description="Local embedding model name (fastembed)",
    )
    fastembed_cache_dir: str = Field(
        default="./data/models", description="Directory to cache embedding model"
    )
    embedding_batch_size: int = Field(
        default=32, ge=1, le=256, description="Batch size for embedding generation"
    )
    embedding_dimension: int = Field(
        default=384, ge=1, description="Embedding vector dimension (384 for all-MiniLM-L6-v2)"
    )
    embedding_max_tokens: int = Field(
        default=8000,
        ge=1,
        description="Token limit per embedding call; longer text is chunked and averaged",
    )

    # Chunking
    chunk_size_tokens: int = Field(
        default=512, ge=64, le=8192, description="Token size of one file chunk item"
    )
    max_file_chunks: int = Field(
        default=8, ge=1, le=100, description="Maximum chunk items kept per file"
    )

    # Retention
    retention_months: int = Field(
        default=6, ge=1, le=120, description="Items older than this many months are expired"
    )
    max_snapshot_size_mb: float = Field(
        default=10.0, gt=0, description="Compressed snapshot size budget in megabytes"
    )
    capacity_safety_margin: float = Field(
        default=0.95, gt=0, lt=1, description="Fraction of the budget targeted when pruning"
    )

    # Concurrency
    worker_concurrency: int = Field(
        default=5, ge=1, le=20, description="Max concurrent external calls within a stage"
    )

    # Durable mirror (optional)
    mirror_db_path: str | None = Field(
        default=None, description="SQLite mirror database path (None = mirror disabled)"
    )
    mirror_delete_batch_size: int = Field(
        default=100, ge=1, le=1000, description="Ids per mirror delete statement"
    )

    # Q&A history (optional)
    qa_history_db_path: str | None = Field(
        default=None, description="SQLite database holding the qa_history table"
    )

    # Query
    query_result_limit: int = Field(
        default=5, ge=1, le=50, description="Default maximum number of search results"
    )

    # OpenTelemetry
    otel_logging_enabled: bool = Field(
        default=False, description="Enable OpenTelemetry logging"
    )
    otel_tracing_enabled: bool = Field(
        default=False, description="Enable OpenTelemetry tracing for HTTP requests"
    )
    otel_endpoint: str = Field(
        default="http://localhost:4318",
        description="OpenTelemetry collector endpoint (HTTP/protobuf)",
    )
    otel_service_name: str = Field(default="repovec", description="Service name for OpenTelemetry")
    otel_service_version: str = Field(
        default="1.0.0", description="Service version for OpenTelemetry"
    )

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    @property
    def max_snapshot_size_bytes(self) -> int:
        """Capacity budget in bytes"""
        return int(self.max_snapshot_size_mb * 1024 * 1024)


# Global config instance
config = AppConfig()
