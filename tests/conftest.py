"""Shared fixtures: item factories and in-memory fakes for external services"""

from datetime import UTC, datetime, timedelta

import pytest

from repovec.models.embedding_item import (
    CommitItem,
    CommitMetadata,
    FileItem,
    FileMetadata,
    QAItem,
    QAMetadata,
    commit_item_id,
    file_item_id,
    qa_item_id,
)
from repovec.models.records import CommitRecord, RepoTree, TreeEntry

NOW = datetime(2026, 6, 15, 12, 0, tzinfo=UTC)
DIMENSION = 4


def unit_vector(index: int, dimension: int = DIMENSION) -> list[float]:
    vector = [0.0] * dimension
    vector[index % dimension] = 1.0
    return vector


def make_commit(sha="abc123", days_old=1, embedding=None, owner="acme", repo="app"):
    date = NOW - timedelta(days=days_old) if days_old is not None else None
    return CommitItem(
        id=commit_item_id(sha),
        content=f"commit {sha} | Author: dev",
        embedding=embedding or unit_vector(0),
        metadata=CommitMetadata(
            owner=owner, repo=repo, sha=sha, author="dev", date=date, message=f"commit {sha}"
        ),
    )


def make_file(
    path="src/a.ts",
    chunk_index=0,
    days_old=1,
    embedding=None,
    owner="acme",
    repo="app",
    blob_sha="blob1",
    content=None,
):
    date = NOW - timedelta(days=days_old) if days_old is not None else None
    return FileItem(
        id=file_item_id(owner or "?", repo or "?", path or "?", chunk_index),
        content=content or f"{path}: chunk {chunk_index}",
        embedding=embedding or unit_vector(1),
        metadata=FileMetadata(
            owner=owner,
            repo=repo,
            path=path,
            chunk_index=chunk_index,
            total_chunks=chunk_index + 1,
            extension=path.rsplit(".", 1)[-1] if path and "." in path else None,
            commit_date=date,
            blob_sha=blob_sha,
        ),
    )


def make_qa(qa_id="1", days_old=1, embedding=None, category="general"):
    timestamp = NOW - timedelta(days=days_old) if days_old is not None else None
    return QAItem(
        id=qa_item_id(qa_id),
        content=f"question {qa_id} | summary",
        embedding=embedding or unit_vector(2),
        metadata=QAMetadata(qa_id=qa_id, session_id="s1", timestamp=timestamp, category=category),
    )


class FakeEmbedder:
    """Deterministic embedder: vector derived from the text length"""

    def __init__(self, dimension: int = DIMENSION, fail_on: str | None = None):
        self.dimension = dimension
        self.fail_on = fail_on
        self.calls: list[str] = []

        from repovec.services.chunker import Chunker

        self.chunker = Chunker()

    def _vector(self, text: str) -> list[float]:
        from repovec.services.embedder import EmbeddingError

        if self.fail_on and self.fail_on in text:
            raise EmbeddingError(f"cannot embed {text[:20]}")
        self.calls.append(text)
        return unit_vector(len(text), self.dimension)

    async def embed_text(self, text: str) -> list[float]:
        return self._vector(text)

    async def embed_document(self, text: str) -> list[float]:
        return self._vector(text)

    async def embed_batch(self, texts, batch_size=None):
        return [self._vector(text) for text in texts]


class FakeFetcher:
    """In-memory repository lister"""

    def __init__(self):
        self.commits: dict[str, list[CommitRecord]] = {}
        self.trees: dict[str, RepoTree] = {}
        self.files: dict[tuple[str, str], str] = {}
        self.failing_repos: set[str] = set()
        self.closed = False

    def add_file(self, key: str, path: str, content: str, blob_sha: str = "blob1"):
        tree = self.trees.setdefault(key, RepoTree(sha=f"tree-{key}", entries=[]))
        tree.entries.append(TreeEntry(path=path, type="blob", sha=blob_sha, size=len(content)))
        self.files[(key, path)] = content

    def _check(self, owner, repo):
        from repovec.services.github_fetcher import GitHubFetchError

        if f"{owner}/{repo}" in self.failing_repos:
            raise GitHubFetchError(f"GitHub API returned 500 for {owner}/{repo}")

    async def get_default_branch(self, owner, repo):
        return "main"

    async def list_commits(self, owner, repo, since=None, limit=100, branch=None):
        self._check(owner, repo)
        commits = self.commits.get(f"{owner}/{repo}", [])
        if since is not None:
            commits = [c for c in commits if c.date is None or c.date > since]
        return commits[:limit]

    async def get_tree(self, owner, repo, branch):
        self._check(owner, repo)
        return self.trees.get(f"{owner}/{repo}", RepoTree(sha=f"tree-{owner}/{repo}"))

    async def list_tree(self, owner, repo, branch=None):
        tree = await self.get_tree(owner, repo, branch or "main")
        return tree.blob_paths()

    async def get_file_content(self, owner, repo, path, ref):
        self._check(owner, repo)
        return self.files.get((f"{owner}/{repo}", path))

    async def get_last_commit_date(self, owner, repo, path):
        return NOW - timedelta(days=3)

    async def close(self):
        self.closed = True


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture
def fake_fetcher():
    return FakeFetcher()
