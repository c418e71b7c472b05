"""Unit tests for RetentionStateManager"""

import json
import tempfile
from datetime import UTC, datetime
from pathlib import Path

from conftest import NOW
from repovec.models.retention_state import EPOCH, STATE_VERSION, RepositoryState, RetentionState
from repovec.services.state_manager import RetentionStateManager


class TestLoad:
    """Test state loading and recovery"""

    def test_missing_file_gives_fresh_state(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            state = RetentionStateManager(Path(tmpdir) / "state.json").load()

            assert state.version == STATE_VERSION
            assert state.repositories == {}
            assert state.last_qa_timestamp == EPOCH

    def test_save_then_load(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            manager = RetentionStateManager(Path(tmpdir) / "nested" / "state.json")
            state = RetentionState(last_qa_timestamp=NOW)
            manager.update_repository(state, "acme", "app", "c1", "t1", NOW)

            manager.save(state)
            loaded = manager.load()

            assert loaded.last_qa_timestamp == NOW
            assert loaded.repositories["acme/app"].last_processed_commit_hash == "c1"
            assert loaded.repositories["acme/app"].last_tree_hash == "t1"
            assert loaded.repositories["acme/app"].last_updated == NOW
            assert not list(Path(tmpdir, "nested").glob("*.tmp"))

    def test_reset_ignores_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            manager = RetentionStateManager(Path(tmpdir) / "state.json")
            state = RetentionState()
            manager.update_repository(state, "acme", "app", "c1", None, None)
            manager.save(state)

            assert manager.load(reset=True).repositories == {}

    def test_corrupt_json_gives_fresh_state(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "state.json"
            path.write_text("{not json")

            assert RetentionStateManager(path).load().repositories == {}

    def test_non_object_gives_fresh_state(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "state.json"
            path.write_text("[]")

            assert RetentionStateManager(path).load().repositories == {}

    def test_unknown_version_gives_fresh_state(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "state.json"
            path.write_text(json.dumps({"version": "9.0", "repositories": {}}))

            assert RetentionStateManager(path).load().version == STATE_VERSION

    def test_invalid_document_gives_fresh_state(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "state.json"
            path.write_text(json.dumps({"version": STATE_VERSION, "last_qa_timestamp": "nope"}))

            assert RetentionStateManager(path).load().last_qa_timestamp == EPOCH

    def test_migrates_version_one(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "state.json"
            path.write_text(
                json.dumps(
                    {
                        "version": "1.0",
                        "lastQATimestamp": "2026-01-01T00:00:00Z",
                        "repositories": {
                            "acme/app": {"lastProcessedCommit": "c9", "lastTreeSha": "t9"},
                            "acme/lib": {"lastCommitSha": "c3"},
                            "broken": "not a dict",
                        },
                    }
                )
            )

            state = RetentionStateManager(path).load()

            assert state.version == STATE_VERSION
            assert state.repositories["acme/app"].last_processed_commit_hash == "c9"
            assert state.repositories["acme/app"].last_tree_hash == "t9"
            assert state.repositories["acme/lib"].last_processed_commit_hash == "c3"
            assert state.repositories["acme/lib"].last_updated is None
            assert "broken" not in state.repositories
            assert state.last_qa_timestamp == EPOCH


class TestUpdateRepository:
    """Test per-repository position updates"""

    def test_creates_entry(self):
        state = RetentionState()

        updated = RetentionStateManager.update_repository(state, "acme", "app", "c1", "t1", NOW)

        assert state.repositories["acme/app"] == updated
        assert updated.last_updated == NOW

    def test_none_keeps_existing_values(self):
        earlier = datetime(2026, 1, 1, tzinfo=UTC)
        state = RetentionState(
            repositories={
                "acme/app": RepositoryState(
                    last_processed_commit_hash="c1", last_tree_hash="t1", last_updated=earlier
                )
            }
        )

        updated = RetentionStateManager.update_repository(state, "acme", "app", None, None, None)

        assert updated.last_processed_commit_hash == "c1"
        assert updated.last_tree_hash == "t1"
        assert updated.last_updated == earlier

    def test_save_sets_last_updated(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            state = RetentionState(last_updated=EPOCH)

            RetentionStateManager(Path(tmpdir) / "state.json").save(state)

            assert state.last_updated > EPOCH
