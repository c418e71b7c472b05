"""Integration tests for repository and Q&A ingestion"""

from datetime import UTC, datetime, timedelta

import httpx
import pytest

from conftest import NOW, FakeEmbedder, FakeFetcher, make_commit, make_file
from repovec.models.records import CommitRecord, QARecord
from repovec.models.retention_state import RepositoryState
from repovec.models.sources_config import GitHubConfig, RepositorySource
from repovec.services.github_fetcher import GitHubFetcher
from repovec.services.ingestion import Ingestor, commit_text, file_extension, merge_items, qa_text
from repovec.services.qa_history import QAHistoryError

SOURCE = RepositorySource(owner="acme", repo="app")


def commits(*shas):
    return [
        CommitRecord(sha=sha, author="Dev", date=NOW - timedelta(days=i), message=f"msg {sha}")
        for i, sha in enumerate(shas)
    ]


class FakeHistory:
    def __init__(self, records=None, error=None):
        self.records = records or []
        self.error = error

    def fetch_since(self, timestamp):
        if self.error:
            raise self.error
        return [r for r in self.records if r.created_at > timestamp]


@pytest.fixture
def fetcher():
    fetcher = FakeFetcher()
    fetcher.commits["acme/app"] = commits("c3", "c2", "c1")
    fetcher.add_file("acme/app", "src/a.ts", "export const a = 1", blob_sha="b1")
    fetcher.add_file("acme/app", "README.md", "# App", blob_sha="b2")
    return fetcher


class TestHelpers:
    """Test text and merge helpers"""

    def test_commit_text(self):
        record = CommitRecord(sha="c1", author=None, message="fix: crash")
        assert commit_text(record) == "fix: crash | Author: unknown"

    def test_qa_text(self):
        with_summary = QARecord(id=1, question="q?", question_summary="s", created_at=NOW)
        without = QARecord(id=2, question="q?", created_at=NOW)

        assert qa_text(with_summary) == "q? | s"
        assert qa_text(without) == "q?"

    def test_file_extension(self):
        assert file_extension("src/App.TSX") == "tsx"
        assert file_extension("Makefile") is None
        assert file_extension(".gitignore") is None

    def test_merge_new_wins_and_replaced_paths_dropped(self):
        previous = [
            make_commit("a"),
            make_file("src/a.ts", chunk_index=0, blob_sha="old"),
            make_file("src/a.ts", chunk_index=1, blob_sha="old"),
        ]
        new = [make_file("src/a.ts", chunk_index=0, blob_sha="new"), make_commit("b")]

        merged = merge_items(previous, new, {("acme", "app", "src/a.ts")})

        assert [item.id for item in merged] == ["commit-a", new[0].id, "commit-b"]
        assert merged[1].metadata.blob_sha == "new"


class TestCollectRepository:
    """Test incremental repository ingestion"""

    @pytest.mark.asyncio
    async def test_first_run_embeds_everything(self, fetcher):
        result = await Ingestor(fetcher, FakeEmbedder()).collect_repository(SOURCE, None, [])

        types = sorted(item.type for item in result.items)
        assert types == ["commit", "commit", "commit", "file", "file"]
        assert result.newest_commit_hash == "c3"
        assert result.commits_listed is True
        assert result.tree_hash == "tree-acme/app"
        assert result.replaced_paths == {("acme", "app", "src/a.ts"), ("acme", "app", "README.md")}
        assert result.failures == []

        file_item = next(i for i in result.items if i.id == "file-acme/app:src/a.ts#0")
        assert file_item.content.startswith("src/a.ts: ")
        assert file_item.metadata.extension == "ts"
        assert file_item.metadata.commit_date == NOW - timedelta(days=3)
        assert file_item.metadata.total_chunks == 1

    @pytest.mark.asyncio
    async def test_stops_at_last_processed_commit(self, fetcher):
        state = RepositoryState(last_processed_commit_hash="c2", last_tree_hash="tree-acme/app")

        result = await Ingestor(fetcher, FakeEmbedder()).collect_repository(SOURCE, state, [])

        assert [item.id for item in result.items] == ["commit-c3"]
        assert result.newest_commit_hash == "c3"

    @pytest.mark.asyncio
    async def test_no_new_commits_keeps_position(self, fetcher):
        state = RepositoryState(last_processed_commit_hash="c3", last_tree_hash="tree-acme/app")

        result = await Ingestor(fetcher, FakeEmbedder()).collect_repository(SOURCE, state, [])

        assert result.items == []
        assert result.newest_commit_hash is None
        assert result.commits_listed is True

    @pytest.mark.asyncio
    async def test_unchanged_blobs_skipped(self, fetcher):
        previous = [make_file("src/a.ts", blob_sha="b1")]
        state = RepositoryState(last_processed_commit_hash="c3", last_tree_hash="older-tree")

        result = await Ingestor(fetcher, FakeEmbedder()).collect_repository(
            SOURCE, state, previous
        )

        assert [item.metadata.path for item in result.items] == ["README.md"]
        assert result.replaced_paths == {("acme", "app", "README.md")}

    @pytest.mark.asyncio
    async def test_failed_unit_is_isolated(self, fetcher):
        embedder = FakeEmbedder(fail_on="msg c2")

        result = await Ingestor(fetcher, embedder).collect_repository(SOURCE, None, [])

        assert "commit-c2" not in {item.id for item in result.items}
        assert len([i for i in result.items if i.type == "commit"]) == 2
        assert len(result.failures) == 1
        assert "c2" in result.failures[0]

    @pytest.mark.asyncio
    async def test_failed_file_clears_tree_hash(self, fetcher):
        embedder = FakeEmbedder(fail_on="README.md")

        result = await Ingestor(fetcher, embedder).collect_repository(SOURCE, None, [])

        assert result.tree_hash is None
        assert ("acme", "app", "README.md") not in result.replaced_paths
        assert len(result.failures) == 1

    @pytest.mark.asyncio
    async def test_listing_failure_reported(self, fetcher):
        fetcher.failing_repos.add("acme/app")

        result = await Ingestor(fetcher, FakeEmbedder()).collect_repository(SOURCE, None, [])

        assert result.items == []
        assert result.commits_listed is False
        assert len(result.failures) == 2

    @pytest.mark.asyncio
    async def test_truncated_tree_records_no_position(self):
        def handler(request):
            if request.url.path.endswith("/commits"):
                return httpx.Response(200, json=[])
            return httpx.Response(
                200,
                json={
                    "sha": "t1",
                    "truncated": True,
                    "tree": [{"path": "a.ts", "type": "blob", "sha": "b1", "size": 10}],
                },
            )

        fetcher = GitHubFetcher(
            GitHubConfig(token="ghp_test"), transport=httpx.MockTransport(handler)
        )
        source = RepositorySource(owner="acme", repo="app", branch="main")

        result = await Ingestor(fetcher, FakeEmbedder()).collect_repository(source, None, [])
        await fetcher.close()

        assert result.items == []
        assert result.tree_hash is None
        assert result.commits_listed is True
        assert len(result.failures) == 1
        assert "truncated" in result.failures[0]

    @pytest.mark.asyncio
    async def test_large_file_chunked_and_capped(self, fetcher):
        fetcher.add_file("acme/app", "src/big.py", "x = 1\n" * 2000, blob_sha="b3")
        ingestor = Ingestor(fetcher, FakeEmbedder(), chunk_size_tokens=100, max_file_chunks=3)

        result = await ingestor.collect_repository(SOURCE, None, [])

        chunks = [i for i in result.items if i.type == "file" and i.metadata.path == "src/big.py"]
        assert [c.metadata.chunk_index for c in chunks] == [0, 1, 2]
        assert all(c.metadata.total_chunks > 3 for c in chunks)


class TestCollectQA:
    """Test Q&A ingestion"""

    @pytest.mark.asyncio
    async def test_embeds_new_records(self):
        records = [
            QARecord(id=1, question="old", created_at=datetime(2026, 1, 1, tzinfo=UTC)),
            QARecord(id=2, question="new", category="ops", created_at=NOW),
        ]

        result = await Ingestor(FakeFetcher(), FakeEmbedder()).collect_qa(
            FakeHistory(records), datetime(2026, 3, 1, tzinfo=UTC)
        )

        assert [item.id for item in result.items] == ["qa-2"]
        assert result.items[0].metadata.category == "ops"
        assert result.newest_timestamp == NOW

    @pytest.mark.asyncio
    async def test_history_failure_is_isolated(self):
        result = await Ingestor(FakeFetcher(), FakeEmbedder()).collect_qa(
            FakeHistory(error=QAHistoryError("locked")), NOW
        )

        assert result.items == []
        assert result.newest_timestamp is None
        assert len(result.failures) == 1
