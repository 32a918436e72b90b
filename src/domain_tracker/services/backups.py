"""Backup generations and update changelog for rollback support.

Directory structure:
    data/backups/
    ├── 20250101_120000/          # Generation (one update run)
    │   ├── files/                # Pre-update bytes at their relative paths
    │   │   └── src/repo.php
    │   └── manifest.json         # created / overwritten / deleted
    ├── 20250102_090000/
    └── changelog.json            # Append-only log, survives pruning
"""

import json
import logging
import re
import shutil
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from domain_tracker.models.errors import RollbackError
from domain_tracker.models.manifest import (
    GENERATION_PATTERN,
    ChangelogEntry,
    UpdateManifest,
)
from domain_tracker.utils.files import atomic_write_json, resolve_inside

GENERATION_FORMAT = "%Y%m%d_%H%M%S"
MANIFEST_NAME = "manifest.json"
FILES_DIR = "files"


def generation_label(generation: str) -> str:
    """Human-readable form of a generation id (``2025-01-01 12:00:00``)."""
    try:
        return datetime.strptime(generation, GENERATION_FORMAT).strftime("%Y-%m-%d %H:%M:%S")
    except ValueError:
        return generation


class BackupStore:
    """Manages backup generations under ``backups_dir``."""

    def __init__(self, backups_dir: Path, keep: int = 5, changelog_path: Optional[Path] = None):
        """Initialize backup store.

        Args:
            backups_dir: Root directory holding generation directories
            keep: Number of generations retained by :meth:`prune`
            changelog_path: Changelog file (default: backups_dir/changelog.json)
        """
        self.logger = logging.getLogger("domain_tracker.backups")
        self.backups_dir = Path(backups_dir)
        self.keep = keep
        self.changelog_path = changelog_path or self.backups_dir / "changelog.json"

    def generation_dir(self, generation: str) -> Path:
        if not re.match(GENERATION_PATTERN, generation):
            raise RollbackError(f"Invalid backup name: {generation}")
        return self.backups_dir / generation

    def payload_path(self, generation: str, relative: str) -> Path:
        return resolve_inside(self.generation_dir(generation) / FILES_DIR, relative)

    def new_generation(self, now: datetime) -> str:
        """Create an empty generation directory named after ``now``.

        If that second is already taken the name moves forward one second at
        a time, so ids stay unique and sortable.
        """
        self.backups_dir.mkdir(parents=True, exist_ok=True)
        moment = now.replace(microsecond=0)
        while True:
            generation = moment.strftime(GENERATION_FORMAT)
            try:
                (self.backups_dir / generation).mkdir(exist_ok=False)
                break
            except FileExistsError:
                moment += timedelta(seconds=1)

        (self.backups_dir / generation / FILES_DIR).mkdir()
        self.logger.info(f"Created backup generation: {generation}")
        return generation

    def list_generations(self) -> list[str]:
        """Generation ids, newest first."""
        if not self.backups_dir.is_dir():
            return []

        generations = [
            item.name
            for item in self.backups_dir.iterdir()
            if item.is_dir() and not item.is_symlink() and re.match(GENERATION_PATTERN, item.name)
        ]
        generations.sort(reverse=True)
        return generations

    def latest(self) -> Optional[str]:
        generations = self.list_generations()
        return generations[0] if generations else None

    def backup_file(self, generation: str, source: Path, relative: str) -> Path:
        """Copy ``source`` into the generation at ``relative``.

        Raises:
            OSError: If the copy fails (callers must not modify ``source`` then)
        """
        target = self.payload_path(generation, relative)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, target)
        self.logger.debug(f"Backed up {relative} to generation {generation}")
        return target

    def write_manifest(self, manifest: UpdateManifest) -> Path:
        path = self.generation_dir(manifest.timestamp) / MANIFEST_NAME
        atomic_write_json(path, manifest.model_dump(mode="json"))
        self.logger.info(
            f"Wrote manifest for {manifest.timestamp}: created={len(manifest.created)}, "
            f"overwritten={len(manifest.overwritten)}, deleted={len(manifest.deleted)}"
        )
        return path

    def read_manifest(self, generation: str) -> UpdateManifest:
        """Load a generation's manifest.

        Raises:
            RollbackError: If the generation or its manifest is missing or invalid
        """
        generation_dir = self.generation_dir(generation)
        if not generation_dir.is_dir():
            raise RollbackError(f"Backup not found: {generation}")

        path = generation_dir / MANIFEST_NAME
        if not path.is_file():
            raise RollbackError("Backup manifest missing.")

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            manifest = UpdateManifest(**data)
        except (json.JSONDecodeError, TypeError, ValidationError) as e:
            raise RollbackError(f"Invalid backup manifest: {e}") from e

        if manifest.timestamp != generation:
            raise RollbackError(
                f"Invalid backup manifest: timestamp {manifest.timestamp} "
                f"does not match {generation}"
            )
        return manifest

    def discard_generation(self, generation: str) -> None:
        """Remove a generation that never recorded any change."""
        shutil.rmtree(self.generation_dir(generation), ignore_errors=True)
        self.logger.info(f"Discarded unused backup generation: {generation}")

    def prune(self) -> list[str]:
        """Delete generations beyond ``keep``, oldest first.

        The changelog is not touched.
        """
        generations = self.list_generations()
        removed = generations[self.keep:]
        for generation in removed:
            shutil.rmtree(self.backups_dir / generation)
            self.logger.info(f"Pruned backup generation: {generation}")
        return removed

    def _load_changelog(self) -> Optional[list[dict]]:
        """Changelog entries, or None if the file exists but is unreadable."""
        if not self.changelog_path.is_file():
            return []
        try:
            with open(self.changelog_path, "r", encoding="utf-8") as f:
                entries = json.load(f)
        except json.JSONDecodeError as e:
            self.logger.warning(f"Changelog unreadable: {e}")
            return None
        if not isinstance(entries, list):
            self.logger.warning("Changelog is not a JSON array")
            return None
        return entries

    def read_changelog(self) -> list[dict]:
        return self._load_changelog() or []

    def append_changelog(self, entry: ChangelogEntry) -> None:
        entries = self._load_changelog()
        if entries is None:
            # Keep the unreadable log for inspection instead of overwriting it
            corrupt = self.changelog_path.with_name(
                f"{self.changelog_path.name}.{datetime.now().strftime(GENERATION_FORMAT)}.corrupt"
            )
            self.changelog_path.replace(corrupt)
            self.logger.warning(f"Moved unreadable changelog to {corrupt.name}")
            entries = []
        entries.append(entry.to_json())
        atomic_write_json(self.changelog_path, entries)
