"""Snapshot sinks with atomic publish and backup rollback"""

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Protocol

from repovec.exceptions import SnapshotError

logger = logging.getLogger(__name__)


class SnapshotSink(Protocol):
    """Destination of published snapshots"""

    def publish(self, data: bytes, name: str) -> str:
        """Store data under name and return its locator"""
        ...


class LocalFileSink:
    """Publishes snapshots into a local directory with atomic replacement"""

    def __init__(self, directory: str | Path, keep_backups: int = 1):
        self.directory = Path(directory)
        self.keep_backups = keep_backups

    def publish(self, data: bytes, name: str) -> str:
        """
        Atomically replace the snapshot file

        Process:
        1. Write and fsync <name>.tmp
        2. Move the current file to a timestamped backup
        3. Atomic rename: temp -> active
        4. On success: prune old backups
        5. On failure: remove temp file, restore backup and raise

        Returns:
            Path of the published file

        Raises:
            SnapshotError: If publishing fails (after attempting rollback)
        """
        self.directory.mkdir(parents=True, exist_ok=True)
        active_path = self.directory / name
        temp_path = self.directory / f"{name}.tmp"
        backup_path: Path | None = (
            self.directory / f"{name}.backup-{datetime.now().strftime('%Y%m%d-%H%M%S-%f')}"
        )

        try:
            with open(temp_path, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())

            if active_path.exists():
                logger.debug(f"Creating backup: {active_path} -> {backup_path}")
                os.rename(active_path, backup_path)
            else:
                backup_path = None

            os.replace(temp_path, active_path)
            logger.info(f"Published snapshot: {active_path} ({len(data)} bytes)")

        except OSError as e:
            logger.error(f"Snapshot publish failed: {e}")
            if temp_path.exists():
                temp_path.unlink()

            # Rollback - restore from backup
            if backup_path and backup_path.exists():
                try:
                    logger.info("Rolling back to backup snapshot")
                    os.replace(backup_path, active_path)
                    logger.info("Rollback completed")
                except OSError as rollback_error:
                    raise SnapshotError(
                        f"Snapshot publish failed and rollback also failed: {e}"
                    ) from rollback_error

            raise SnapshotError(f"Snapshot publish failed: {e}") from e

        if backup_path is not None:
            self._cleanup_old_backups(active_path)

        return str(active_path)

    def _cleanup_old_backups(self, active_path: Path) -> None:
        """Remove old backup files, keeping only the most recent ones"""
        try:
            backups = sorted(
                active_path.parent.glob(f"{active_path.name}.backup-*"),
                key=lambda p: p.name,
                reverse=True,
            )
            for backup in backups[self.keep_backups :]:
                logger.info(f"Removing old backup: {backup}")
                backup.unlink()
        except OSError as e:
            logger.error(f"Error cleaning up old backups: {e}")

    def cleanup_stale(self) -> int:
        """Remove temporary files left behind by interrupted publishes"""
        removed = 0
        if not self.directory.exists():
            return removed

        for temp_path in self.directory.glob("*.tmp"):
            try:
                logger.info(f"Removing stale temp snapshot: {temp_path}")
                temp_path.unlink()
                removed += 1
            except OSError as e:
                logger.error(f"Error removing stale temp snapshot {temp_path}: {e}")
        return removed
