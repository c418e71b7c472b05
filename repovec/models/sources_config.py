"""Models for sources configuration (sources.yaml)"""

from pydantic import BaseModel, Field

DEFAULT_EXCLUDE_PATTERNS = [
    "node_modules/*",
    "*/node_modules/*",
    ".git/*",
    "dist/*",
    "*/dist/*",
    "build/*",
    "*/build/*",
    "*.png",
    "*.jpg",
    "*.jpeg",
    "*.gif",
    "*.svg",
    "*.ico",
    "*.woff",
    "*.woff2",
    "*.ttf",
    "*.eot",
]


class RepositorySource(BaseModel):
    """Configuration for one source repository"""

    owner: str = Field(description="GitHub repository owner (username or org)")
    repo: str = Field(description="GitHub repository name")
    branch: str | None = Field(
        default=None, description="Branch to read files from (None = default branch)"
    )
    description: str | None = Field(default=None, description="Human-readable description")
    paths: list[str] = Field(
        default_factory=lambda: ["*"],
        description="Glob patterns for files to embed (e.g., 'src/**/*.py')",
    )
    exclude: list[str] = Field(
        default_factory=lambda: list(DEFAULT_EXCLUDE_PATTERNS),
        description="Glob patterns for files never embedded",
    )
    max_files: int = Field(default=200, ge=0, le=5000, description="Max files embedded per run")
    max_file_bytes: int = Field(
        default=500 * 1024, ge=1, description="Files larger than this are skipped"
    )
    enabled: bool = Field(default=True, description="Whether this source is enabled")

    @property
    def key(self) -> str:
        return f"{self.owner}/{self.repo}"


class FetchingConfig(BaseModel):
    """Configuration for fetching behavior"""

    timeout: int = Field(default=30, ge=5, le=300, description="HTTP timeout in seconds")
    concurrent_limit: int = Field(default=5, ge=1, le=20, description="Max concurrent requests")
    commit_limit: int = Field(
        default=100, ge=1, le=1000, description="Max commits fetched per repository per run"
    )


class GitHubConfig(BaseModel):
    """Configuration for GitHub API access"""

    token: str | None = Field(
        default=None, description="GitHub personal access token (or use GITHUB_TOKEN env var)"
    )
    api_url: str = Field(default="https://api.github.com", description="GitHub API base URL")


class RefreshConfig(BaseModel):
    """Configuration for scheduled pipeline runs"""

    enabled: bool = Field(default=False, description="Run the pipeline on a schedule")
    interval_hours: int = Field(default=24, ge=1, le=720, description="Hours between runs")
    max_concurrent_jobs: int = Field(default=1, ge=1, le=4)


class SourcesConfig(BaseModel):
    """Complete sources configuration"""

    repositories: list[RepositorySource] = Field(default_factory=list)
    fetching: FetchingConfig = Field(default_factory=FetchingConfig)
    github: GitHubConfig = Field(default_factory=GitHubConfig)
    refresh: RefreshConfig = Field(default_factory=RefreshConfig)

    def get_enabled_repositories(self) -> list[RepositorySource]:
        """Get all enabled source repositories"""
        return [source for source in self.repositories if source.enabled]
