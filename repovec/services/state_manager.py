"""Persistence of the incremental pipeline state"""

import json
import logging
import os
from datetime import UTC, datetime
from pathlib import Path

from pydantic import ValidationError

from repovec.models.retention_state import STATE_VERSION, RepositoryState, RetentionState

logger = logging.getLogger(__name__)


class RetentionStateManager:
    """Loads and atomically saves the RetentionState document"""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self, reset: bool = False) -> RetentionState:
        """
        Load the stored state

        A missing file, or reset=True, gives a fresh state. An unreadable
        document is logged and replaced by a fresh state. Documents without a
        version or at version 1.0 are migrated.
        """
        if reset:
            logger.info("Ignoring stored state (reset)")
            return RetentionState()

        if not self.path.exists():
            logger.info(f"No state file at {self.path}, starting fresh")
            return RetentionState()

        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load state file, initializing new state: {e}")
            return RetentionState()

        if not isinstance(document, dict):
            logger.warning("State file is not a JSON object, initializing new state")
            return RetentionState()

        version = document.get("version")
        if version is None or version == "1.0":
            return self._migrate_v1(document)

        if version != STATE_VERSION:
            logger.warning(f"Unsupported state version {version!r}, initializing new state")
            return RetentionState()

        try:
            return RetentionState.model_validate(document)
        except ValidationError as e:
            logger.warning(f"Invalid state file, initializing new state: {e}")
            return RetentionState()

    def _migrate_v1(self, document: dict) -> RetentionState:
        """Keep per-repository commit positions; reset all timestamps"""
        repositories: dict[str, RepositoryState] = {}
        for key, entry in (document.get("repositories") or {}).items():
            if not isinstance(entry, dict):
                continue
            repositories[key] = RepositoryState(
                last_processed_commit_hash=entry.get("lastProcessedCommit")
                or entry.get("lastCommitSha"),
                last_tree_hash=entry.get("lastTreeSha"),
            )

        logger.info(f"Migrated state file to version {STATE_VERSION} ({len(repositories)} repos)")
        return RetentionState(repositories=repositories)

    def save(self, state: RetentionState) -> None:
        """Write state atomically (temp file + rename)"""
        state.last_updated = datetime.now(UTC)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.path.with_name(f"{self.path.name}.tmp")

        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                f.write(state.model_dump_json(indent=2))
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, self.path)
        except OSError:
            if temp_path.exists():
                temp_path.unlink()
            raise

        logger.info(f"Saved state to {self.path}")

    @staticmethod
    def update_repository(
        state: RetentionState,
        owner: str,
        repo: str,
        commit_hash: str | None,
        tree_hash: str | None,
        updated_at: datetime | None,
    ) -> RepositoryState:
        """Record the position reached for one repository; None arguments keep stored values"""
        key = f"{owner}/{repo}"
        existing = state.repositories.get(key) or RepositoryState()
        updated = RepositoryState(
            last_processed_commit_hash=commit_hash or existing.last_processed_commit_hash,
            last_tree_hash=tree_hash or existing.last_tree_hash,
            last_updated=updated_at or existing.last_updated,
        )
        state.repositories[key] = updated
        return updated
