"""Self-update engine: diff, apply and roll back the installation's files.

Files are managed only when the inclusion policy allows them. Every file
that is overwritten or deleted is copied into the run's backup generation
before it is modified, so rolling back that generation restores the
previous bytes exactly.
"""

import logging
import shutil
import tempfile
import zipfile
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterator, Optional

from domain_tracker.models.errors import RollbackError, UpdateError
from domain_tracker.models.manifest import (
    ChangelogEntry,
    RollbackResult,
    UpdateDiff,
    UpdateManifest,
    UpdateResult,
)
from domain_tracker.models.settings import Settings
from domain_tracker.models.status import StageEnum
from domain_tracker.services.backups import BackupStore
from domain_tracker.services.download import DownloadService
from domain_tracker.services.state_manager import StateManager
from domain_tracker.services.update_flag import UpdateFlagStore
from domain_tracker.utils.files import (
    remove_empty_parents,
    resolve_inside,
    scan_files,
)
from domain_tracker.utils.verification import files_differ


class UpdateEngine:
    """Brings project files in line with the remote archive."""

    def __init__(
        self,
        settings: Settings,
        downloader: Optional[DownloadService] = None,
        state_manager: Optional[StateManager] = None,
        backups: Optional[BackupStore] = None,
        flags: Optional[UpdateFlagStore] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize update engine.

        Args:
            settings: Application settings (paths, archive URL, policy)
            downloader: DownloadService instance (created from settings if None)
            state_manager: StateManager instance (uses singleton if None)
            backups: BackupStore instance (created from settings if None)
            flags: UpdateFlagStore instance (created from settings if None)
            clock: Returns the current time; names backup generations
        """
        self.logger = logging.getLogger("domain_tracker.update_engine")
        self.settings = settings
        self.base_path = Path(settings.base_path)
        self.policy = settings.policy
        self.downloader = downloader or DownloadService(timeout=settings.download_timeout)
        self.state_manager = state_manager or StateManager()
        self.backups = backups or BackupStore(
            settings.backups_dir, keep=settings.backups_keep, changelog_path=settings.changelog_path
        )
        self.flags = flags or UpdateFlagStore(settings.update_flag_path, settings.update_check_path)
        self.clock = clock or datetime.now

    # --- archive handling ---

    @contextmanager
    def scratch_dir(self) -> Iterator[Path]:
        """Temporary working directory, removed on every exit path."""
        path = Path(tempfile.mkdtemp(prefix="domain_tracker_update_"))
        try:
            yield path
        finally:
            shutil.rmtree(path, ignore_errors=True)
            self.logger.debug(f"Removed scratch directory {path}")

    def extract_archive(self, zip_path: Path, dest: Path) -> Path:
        """Extract ``zip_path`` into ``dest`` and return the project root.

        The project root is the archive's (first) top-level directory.

        Raises:
            UpdateError: If the zip is unreadable, unsafe, or has no top-level directory
        """
        dest.mkdir(parents=True, exist_ok=True)
        try:
            with zipfile.ZipFile(zip_path, "r") as zf:
                for name in zf.namelist():
                    try:
                        resolve_inside(dest, name)
                    except ValueError as e:
                        raise UpdateError(f"Unsafe path in update zip: {name}") from e
                zf.extractall(dest)
        except zipfile.BadZipFile as e:
            raise UpdateError(f"Unable to open update zip: {e}") from e

        roots = sorted(item for item in dest.iterdir() if item.is_dir())
        if not roots:
            raise UpdateError("Update archive did not contain files.")
        return roots[0]

    async def fetch_remote_tree(self, scratch: Path, report: bool = True) -> Path:
        """Download and extract the archive into ``scratch``.

        Progress goes to the state manager only when ``report`` is True.
        """
        if report:
            self._status(StageEnum.DOWNLOADING, 20, "Downloading update...")
        zip_path = await self.downloader.download_archive(
            self.settings.archive_url, scratch / "update.zip"
        )

        if report:
            self._status(StageEnum.EXTRACTING, 35, "Extracting update...")
        return self.extract_archive(zip_path, scratch / "extract")

    # --- diff ---

    def local_files(self) -> list[str]:
        """Managed files currently in the installation."""
        if not self.base_path.is_dir():
            return []
        files = scan_files(self.base_path, skip_dir=self.policy.is_protected_dir)
        return [path for path in files if self.policy.is_managed(path)]

    def compute_diff(self, remote_root: Path) -> UpdateDiff:
        """Compare the extracted archive at ``remote_root`` with local files.

        Pure: reads both trees, writes nothing.
        """
        diff = UpdateDiff()
        remote_files = scan_files(remote_root)
        remote_managed = set()

        for relative in remote_files:
            remote_path = remote_root / relative
            local_path = self.base_path / relative

            if not self.policy.is_managed(relative):
                if (
                    self.policy.should_exclude(relative)
                    and local_path.is_file()
                    and files_differ(remote_path, local_path)
                ):
                    diff.excluded_changed.append(relative)
                continue

            remote_managed.add(relative)
            if not local_path.is_file():
                diff.created.append(relative)
            elif files_differ(remote_path, local_path):
                diff.overwritten.append(relative)

        diff.deleted = [path for path in self.local_files() if path not in remote_managed]

        self.logger.info(
            f"Diff: created={len(diff.created)}, overwritten={len(diff.overwritten)}, "
            f"deleted={len(diff.deleted)}, excluded_changed={len(diff.excluded_changed)}"
        )
        return diff

    async def preview(self) -> UpdateDiff:
        """Download the archive and report what an update would change.

        The shared progress status is left as it was, so a preview never
        hides a running update or the error of a failed one.

        Raises:
            UpdateError: If the download or archive is unusable
        """
        try:
            with self.scratch_dir() as scratch:
                remote_root = await self.fetch_remote_tree(scratch, report=False)
                diff = self.compute_diff(remote_root)
        except Exception as e:
            self.logger.error(f"Preview failed: {e}")
            if isinstance(e, UpdateError):
                raise
            raise UpdateError(str(e)) from e

        self.logger.info(f"Preview: {diff.count} file(s) would change")
        return diff

    # --- apply ---

    async def update(self) -> UpdateResult:
        """Apply the remote archive to the installation.

        Returns:
            UpdateResult with the run's manifest

        Raises:
            UpdateError: If any step fails; files already changed are covered
                by the partially written manifest of this generation
        """
        manifest: Optional[UpdateManifest] = None

        try:
            self._status(StageEnum.PREPARING, 10, "Preparing backup...")
            generation = self.backups.new_generation(self.clock())
            manifest = UpdateManifest(timestamp=generation)

            with self.scratch_dir() as scratch:
                remote_root = await self.fetch_remote_tree(scratch)

                self._status(StageEnum.SCANNING, 50, "Scanning files...")
                diff = self.compute_diff(remote_root)

                self._status(StageEnum.APPLYING, 65, "Applying changes...")
                self._apply(remote_root, diff, manifest)

            self._status(StageEnum.FINALIZING, 85, "Finalizing update...")
            self.backups.write_manifest(manifest)
            self.backups.append_changelog(
                ChangelogEntry(
                    timestamp=self.clock().astimezone().isoformat(timespec="seconds"),
                    backup=generation,
                    created=manifest.created,
                    overwritten=manifest.overwritten,
                    deleted=manifest.deleted,
                    excluded_changed=diff.excluded_changed,
                )
            )
            pruned = self.backups.prune()
            self.flags.clear_flag()

        except Exception as e:
            self._persist_partial(manifest)
            self.logger.error(f"Update failed: {e}", exc_info=True)
            self._status(StageEnum.FAILED, 0, "Update failed.", error=f"UPDATE_FAILED: {e}")
            if isinstance(e, UpdateError):
                raise
            raise UpdateError(str(e)) from e

        if diff.excluded_changed:
            self.logger.warning(
                f"Protected files differ from upstream (not applied): {diff.excluded_changed}"
            )
        self.logger.info(f"Update complete: generation {manifest.timestamp}")
        self._status(StageEnum.SUCCESS, 100, "Update completed successfully.")
        return UpdateResult(manifest=manifest, excluded_changed=diff.excluded_changed, pruned=pruned)

    def _apply(self, remote_root: Path, diff: UpdateDiff, manifest: UpdateManifest) -> None:
        generation = manifest.timestamp

        # Deletions first: a path may switch between file and directory upstream
        for relative in diff.deleted:
            local_path = resolve_inside(self.base_path, relative)
            self.backups.backup_file(generation, local_path, relative)
            manifest.deleted.append(relative)
            local_path.unlink()
            remove_empty_parents(local_path, self.base_path, keep=self._is_protected_path)
            self.logger.debug(f"Deleted {relative}")

        for relative in diff.created:
            local_path = resolve_inside(self.base_path, relative)
            self._install_file(remote_root / relative, local_path)
            manifest.created.append(relative)
            self.logger.debug(f"Created {relative}")

        for relative in diff.overwritten:
            local_path = resolve_inside(self.base_path, relative)
            self.backups.backup_file(generation, local_path, relative)
            # Recorded before the write so a failed write still gets restored
            manifest.overwritten.append(relative)
            self._install_file(remote_root / relative, local_path)
            self.logger.debug(f"Overwrote {relative}")

        self.logger.info(
            f"Applied generation {generation}: created={len(manifest.created)}, "
            f"overwritten={len(manifest.overwritten)}, deleted={len(manifest.deleted)}"
        )

    def _install_file(self, source: Path, target: Path) -> None:
        """Copy via a temp file and rename onto ``target``."""
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = target.parent / f".{target.name}.tmp"
        try:
            shutil.copyfile(source, tmp_path)
            tmp_path.replace(target)
        except Exception:
            tmp_path.unlink(missing_ok=True)
            raise

    def _is_protected_path(self, directory: Path) -> bool:
        relative = directory.relative_to(self.base_path.resolve()).as_posix()
        return self.policy.is_protected_dir(relative)

    def _persist_partial(self, manifest: Optional[UpdateManifest]) -> None:
        """Keep a failed run's generation only if it recorded changes."""
        if manifest is None:
            return
        if manifest.is_empty:
            self.backups.discard_generation(manifest.timestamp)
            return
        try:
            self.backups.write_manifest(manifest)
            self.logger.warning(
                f"Partial update recorded in generation {manifest.timestamp}; "
                f"roll back to it to restore the previous files"
            )
        except Exception as e:
            self.logger.error(f"Failed to write partial manifest: {e}", exc_info=True)

    # --- rollback ---

    async def rollback(self, generation: Optional[str] = None) -> RollbackResult:
        """Undo the update recorded in ``generation`` (latest if None).

        Returns:
            RollbackResult; ``restored`` is False when there are no backups

        Raises:
            RollbackError: If the generation, its manifest, or a listed
                payload file is missing; nothing is modified in that case
        """
        target = generation or self.backups.latest()
        if target is None:
            self.logger.info("Rollback requested but no backups exist")
            self._status(StageEnum.IDLE, 0, "No backups found.")
            return RollbackResult(restored=False)

        try:
            self._status(StageEnum.ROLLING_BACK, 15, "Loading backup...")
            manifest = self.backups.read_manifest(target)

            missing = [
                relative
                for relative in manifest.backed_up
                if not self.backups.payload_path(target, relative).is_file()
            ]
            if missing:
                raise RollbackError(f"Backup payload missing for: {', '.join(missing)}")

            result = RollbackResult(restored=True, generation=target)

            self._status(StageEnum.ROLLING_BACK, 40, "Removing created files...")
            for relative in manifest.created:
                local_path = resolve_inside(self.base_path, relative)
                if local_path.is_file():
                    local_path.unlink()
                    remove_empty_parents(local_path, self.base_path, keep=self._is_protected_path)
                    result.removed.append(relative)

            self._status(StageEnum.ROLLING_BACK, 70, "Restoring previous versions...")
            for relative in manifest.backed_up:
                local_path = resolve_inside(self.base_path, relative)
                self._install_file(self.backups.payload_path(target, relative), local_path)
                result.restored_files.append(relative)

            self._status(StageEnum.FINALIZING, 90, "Finalizing rollback...")
            self.flags.clear_flag()
            self.backups.append_changelog(
                ChangelogEntry(
                    timestamp=self.clock().astimezone().isoformat(timespec="seconds"),
                    rollback_to=target,
                )
            )

        except Exception as e:
            self.logger.error(f"Rollback failed: {e}", exc_info=True)
            self._status(StageEnum.FAILED, 0, "Rollback failed.", error=f"ROLLBACK_FAILED: {e}")
            if isinstance(e, RollbackError):
                raise
            raise RollbackError(str(e)) from e

        self.logger.info(
            f"Rolled back generation {target}: removed={len(result.removed)}, "
            f"restored={len(result.restored_files)}"
        )
        self._status(StageEnum.SUCCESS, 100, "Rollback completed successfully.")
        return result

    def _status(self, stage: StageEnum, progress: int, message: str, error: Optional[str] = None) -> None:
        self.state_manager.update_status(stage=stage, progress=progress, message=message, error=error)
