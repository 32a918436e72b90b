"""Unit tests for UpdateEngine: diff, apply, backup and rollback."""

import json
import tempfile
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from domain_tracker.models.errors import RollbackError, UpdateError
from domain_tracker.models.status import StageEnum
from domain_tracker.services.state_manager import StateManager
from domain_tracker.services.update_engine import UpdateEngine
from domain_tracker.utils.files import scan_files

UPSTREAM = {
    "public/index.php": "<?php echo 'new index';",
    "public/updater.php": "<?php // upstream updater",
    "views/layout.php": "<html>layout</html>",
    "src/repo.php": "<?php // repo v1",
    "src/new_service.php": "<?php // brand new",
    "README.md": "# Domain Tracker",
    "config/app.php": "<?php return [];",
    ".gitignore": "vendor/\n",
    "random_unrelated_dir/file.txt": "ignored",
}


def snapshot(root):
    """Every installation file's bytes, ignoring updater bookkeeping."""
    return {
        path: (root / path).read_bytes()
        for path in scan_files(root)
        if not path.startswith("data/backups/") and not path.startswith("data/update_")
    }


@pytest.fixture
def upstream_zip(make_archive):
    return make_archive(UPSTREAM)


@pytest.fixture
def engine(settings, upstream_zip, fake_downloader, clock):
    return UpdateEngine(settings, downloader=fake_downloader(archive=upstream_zip), clock=clock)


@pytest.mark.unit
class TestExtractArchive:

    def test_returns_top_level_directory(self, engine, upstream_zip, tmp_path):
        root = engine.extract_archive(upstream_zip, tmp_path / "out")

        assert root.name == "domain_tracker-main"
        assert (root / "src" / "repo.php").is_file()

    def test_bad_zip(self, engine, tmp_path):
        bogus = tmp_path / "bogus.zip"
        bogus.write_text("this is not a zip")

        with pytest.raises(UpdateError, match="Unable to open update zip"):
            engine.extract_archive(bogus, tmp_path / "out")

    def test_unsafe_member_rejected(self, engine, make_archive, tmp_path):
        archive = make_archive({"../evil.php": "<?php"}, root="")

        with pytest.raises(UpdateError, match="Unsafe path in update zip"):
            engine.extract_archive(archive, tmp_path / "out")
        assert not (tmp_path / "evil.php").exists()

    def test_archive_without_directory(self, engine, make_archive, tmp_path):
        archive = make_archive({"README.md": "loose file"}, root="")

        with pytest.raises(UpdateError, match="did not contain files"):
            engine.extract_archive(archive, tmp_path / "out")


@pytest.mark.unit
class TestComputeDiff:

    def test_classifies_changes(self, engine, upstream_zip, tmp_path):
        remote_root = engine.extract_archive(upstream_zip, tmp_path / "out")

        diff = engine.compute_diff(remote_root)

        assert diff.created == ["src/new_service.php"]
        assert diff.overwritten == ["public/index.php"]
        assert diff.deleted == ["scripts/old_script.php"]
        assert diff.excluded_changed == ["config/app.php", "public/updater.php"]
        assert diff.count == 3

    def test_identical_excluded_file_not_reported(self, engine, install_dir, make_archive, tmp_path):
        files = dict(UPSTREAM)
        files["config/app.php"] = (install_dir / "config" / "app.php").read_text()
        remote_root = engine.extract_archive(make_archive(files), tmp_path / "out")

        assert "config/app.php" not in engine.compute_diff(remote_root).excluded_changed

    def test_local_files_skip_protected_directories(self, engine):
        local = engine.local_files()

        assert "src/repo.php" in local
        assert "README.md" in local
        assert not any(path.startswith(("data/", "config/")) for path in local)
        assert ".env" not in local
        assert "public/updater.php" not in local


@pytest.mark.unit
class TestPreview:

    @pytest.mark.asyncio
    async def test_preview_changes_nothing(self, engine, install_dir):
        before = snapshot(install_dir)

        diff = await engine.preview()

        assert diff.count == 3
        assert snapshot(install_dir) == before
        assert engine.backups.list_generations() == []
        assert StateManager().get_status().stage == StageEnum.IDLE

    @pytest.mark.asyncio
    async def test_preview_failure(self, settings, fake_downloader):
        engine = UpdateEngine(settings, downloader=fake_downloader(error=UpdateError("Download failed: 503")))

        with pytest.raises(UpdateError, match="503"):
            await engine.preview()

        status = StateManager().get_status()
        assert status.stage == StageEnum.IDLE
        assert status.error is None

    @pytest.mark.asyncio
    async def test_preview_keeps_running_update_status(self, engine):
        StateManager().update_status(stage=StageEnum.APPLYING, progress=65, message="Applying changes...")

        await engine.preview()

        status = StateManager().get_status()
        assert status.stage == StageEnum.APPLYING
        assert status.progress == 65
        assert StateManager().is_busy()

    @pytest.mark.asyncio
    async def test_preview_keeps_failed_update_error(self, engine):
        StateManager().update_status(
            stage=StageEnum.FAILED, progress=0, message="Update failed.",
            error="UPDATE_FAILED: disk full",
        )

        await engine.preview()

        status = StateManager().get_status()
        assert status.stage == StageEnum.FAILED
        assert status.error == "UPDATE_FAILED: disk full"


@pytest.mark.unit
class TestUpdate:

    @pytest.mark.asyncio
    async def test_update_applies_and_backs_up(self, engine, install_dir):
        original_index = (install_dir / "public" / "index.php").read_bytes()
        original_script = (install_dir / "scripts" / "old_script.php").read_bytes()

        result = await engine.update()

        manifest = result.manifest
        assert manifest.timestamp == "20250101_120000"
        assert manifest.created == ["src/new_service.php"]
        assert manifest.overwritten == ["public/index.php"]
        assert manifest.deleted == ["scripts/old_script.php"]
        assert result.excluded_changed == ["config/app.php", "public/updater.php"]

        # Installation now matches upstream for managed files
        assert (install_dir / "src" / "new_service.php").read_text() == UPSTREAM["src/new_service.php"]
        assert (install_dir / "public" / "index.php").read_text() == UPSTREAM["public/index.php"]
        assert not (install_dir / "scripts").exists()

        # Backups hold the pre-update bytes
        files = install_dir / "data" / "backups" / manifest.timestamp / "files"
        assert (files / "public" / "index.php").read_bytes() == original_index
        assert (files / "scripts" / "old_script.php").read_bytes() == original_script
        assert not (files / "src" / "new_service.php").exists()

    @pytest.mark.asyncio
    async def test_update_never_touches_protected_files(self, engine, install_dir):
        protected = ["public/updater.php", "config/app.php", ".env", "data/app.db"]
        before = {path: (install_dir / path).read_bytes() for path in protected}

        await engine.update()

        assert {path: (install_dir / path).read_bytes() for path in protected} == before
        assert not (install_dir / ".gitignore").exists()
        assert not (install_dir / "random_unrelated_dir").exists()

    @pytest.mark.asyncio
    async def test_manifest_and_changelog_written(self, engine, install_dir):
        result = await engine.update()

        generation_dir = install_dir / "data" / "backups" / result.manifest.timestamp
        stored = json.loads((generation_dir / "manifest.json").read_text())
        assert stored == result.manifest.model_dump(mode="json")

        entry = engine.backups.read_changelog()[-1]
        assert entry["backup"] == result.manifest.timestamp
        assert entry["created"] == ["src/new_service.php"]
        assert entry["excluded_changed"] == ["config/app.php", "public/updater.php"]
        assert "rollback_to" not in entry

    @pytest.mark.asyncio
    async def test_second_run_is_a_no_op(self, engine, install_dir):
        await engine.update()
        after_first = snapshot(install_dir)

        second = await engine.update()

        assert second.manifest.is_empty
        assert snapshot(install_dir) == after_first
        assert len(engine.backups.list_generations()) == 2

    @pytest.mark.asyncio
    async def test_update_clears_flag(self, engine, settings):
        engine.flags.write_flag(3, "2025-01-01T00:00:00+00:00")

        await engine.update()

        assert not settings.update_flag_path.exists()

    @pytest.mark.asyncio
    async def test_stage_sequence(self, settings, upstream_zip, fake_downloader, clock):
        state_manager = MagicMock()
        engine = UpdateEngine(
            settings,
            downloader=fake_downloader(archive=upstream_zip),
            state_manager=state_manager,
            clock=clock,
        )

        await engine.update()

        stages = [c.kwargs["stage"] for c in state_manager.update_status.call_args_list]
        assert stages == [
            StageEnum.PREPARING,
            StageEnum.DOWNLOADING,
            StageEnum.EXTRACTING,
            StageEnum.SCANNING,
            StageEnum.APPLYING,
            StageEnum.FINALIZING,
            StageEnum.SUCCESS,
        ]
        progress = [c.kwargs["progress"] for c in state_manager.update_status.call_args_list]
        assert progress == sorted(progress)

    @pytest.mark.asyncio
    async def test_prunes_old_generations(self, settings, upstream_zip, fake_downloader, clock):
        settings = settings.model_copy(update={"backups_keep": 2})
        engine = UpdateEngine(settings, downloader=fake_downloader(archive=upstream_zip), clock=clock)

        await engine.update()
        await engine.update()
        third = await engine.update()

        assert third.pruned == ["20250101_120000"]
        assert len(engine.backups.list_generations()) == 2
        assert len(engine.backups.read_changelog()) == 3

    @pytest.mark.asyncio
    async def test_download_failure_changes_nothing(self, settings, install_dir, fake_downloader, clock):
        engine = UpdateEngine(
            settings,
            downloader=fake_downloader(error=UpdateError("Download failed: timeout")),
            clock=clock,
        )
        engine.flags.write_flag(2, "2025-01-01T00:00:00+00:00")
        before = snapshot(install_dir)

        with pytest.raises(UpdateError, match="timeout"):
            await engine.update()

        assert snapshot(install_dir) == before
        assert settings.update_flag_path.exists()
        assert engine.backups.list_generations() == []
        status = StateManager().get_status()
        assert status.stage == StageEnum.FAILED
        assert status.error.startswith("UPDATE_FAILED:")

    @pytest.mark.asyncio
    async def test_bad_archive_changes_nothing(self, settings, install_dir, fake_downloader, clock, tmp_path):
        bogus = tmp_path / "bogus.zip"
        bogus.write_bytes(b"<html>rate limited</html>")
        engine = UpdateEngine(settings, downloader=fake_downloader(archive=bogus), clock=clock)
        before = snapshot(install_dir)

        with pytest.raises(UpdateError, match="Unable to open update zip"):
            await engine.update()

        assert snapshot(install_dir) == before
        assert engine.backups.list_generations() == []

    @pytest.mark.asyncio
    async def test_scratch_directory_removed(self, engine):
        created = []
        real_mkdtemp = tempfile.mkdtemp

        def tracking_mkdtemp(**kwargs):
            path = real_mkdtemp(**kwargs)
            created.append(Path(path))
            return path

        with patch("tempfile.mkdtemp", side_effect=tracking_mkdtemp):
            await engine.update()

        assert len(created) == 1
        assert created[0].name.startswith("domain_tracker_update_")
        assert not created[0].exists()

    @pytest.mark.asyncio
    async def test_partial_failure_recorded_and_recoverable(self, engine, install_dir):
        before = snapshot(install_dir)
        original_install = engine._install_file

        def failing_install(source, target):
            if target.name == "index.php":
                raise OSError("disk full")
            return original_install(source, target)

        with patch.object(engine, "_install_file", side_effect=failing_install):
            with pytest.raises(UpdateError, match="disk full"):
                await engine.update()

        generation = engine.backups.latest()
        manifest = engine.backups.read_manifest(generation)
        assert manifest.created == ["src/new_service.php"]
        assert manifest.overwritten == ["public/index.php"]

        result = await engine.rollback(generation)

        assert result.restored
        assert snapshot(install_dir) == before


@pytest.mark.unit
class TestPathTypeChanges:
    """Upstream turning a file into a directory, or the reverse."""

    @pytest.mark.asyncio
    async def test_file_becomes_directory(self, settings, install_dir, make_archive, fake_downloader, clock):
        before = snapshot(install_dir)
        files = dict(UPSTREAM)
        del files["src/repo.php"]
        files["src/repo.php/index.php"] = "<?php // repo as a package"
        engine = UpdateEngine(settings, downloader=fake_downloader(archive=make_archive(files)), clock=clock)

        result = await engine.update()

        assert (install_dir / "src" / "repo.php").is_dir()
        assert (install_dir / "src" / "repo.php" / "index.php").read_text() == "<?php // repo as a package"
        assert "src/repo.php" in result.manifest.deleted
        assert "src/repo.php/index.php" in result.manifest.created

        await engine.rollback()

        assert (install_dir / "src" / "repo.php").is_file()
        assert snapshot(install_dir) == before

    @pytest.mark.asyncio
    async def test_directory_becomes_file(self, settings, install_dir, make_archive, fake_downloader, clock):
        partials = install_dir / "views" / "partials"
        partials.mkdir()
        (partials / "header.php").write_text("<header></header>")
        (partials / "footer.php").write_text("<footer></footer>")
        before = snapshot(install_dir)
        files = dict(UPSTREAM)
        files["views/partials"] = "<?php // partials merged"
        engine = UpdateEngine(settings, downloader=fake_downloader(archive=make_archive(files)), clock=clock)

        result = await engine.update()

        assert partials.is_file()
        assert partials.read_text() == "<?php // partials merged"
        assert result.manifest.deleted == [
            "scripts/old_script.php", "views/partials/footer.php", "views/partials/header.php",
        ]
        assert "views/partials" in result.manifest.created

        await engine.rollback()

        assert (partials / "header.php").read_text() == "<header></header>"
        assert snapshot(install_dir) == before


@pytest.mark.unit
class TestRollback:

    @pytest.mark.asyncio
    async def test_rollback_restores_previous_state(self, engine, install_dir):
        before = snapshot(install_dir)
        update = await engine.update()

        result = await engine.rollback()

        assert result.restored
        assert result.generation == update.manifest.timestamp
        assert result.removed == ["src/new_service.php"]
        assert sorted(result.restored_files) == ["public/index.php", "scripts/old_script.php"]
        assert snapshot(install_dir) == before
        assert StateManager().get_status().stage == StageEnum.SUCCESS

    @pytest.mark.asyncio
    async def test_rollback_removes_emptied_directories(self, install_dir, settings, make_archive, fake_downloader, clock):
        files = dict(UPSTREAM)
        files["migrations/2025/001_init.sql"] = "CREATE TABLE t (id INTEGER);"
        engine = UpdateEngine(settings, downloader=fake_downloader(archive=make_archive(files)), clock=clock)

        await engine.update()
        assert (install_dir / "migrations" / "2025" / "001_init.sql").is_file()

        await engine.rollback()

        assert not (install_dir / "migrations").exists()
        assert (install_dir / "data").is_dir()

    @pytest.mark.asyncio
    async def test_rollback_changelog_entry(self, engine):
        update = await engine.update()
        await engine.rollback()

        entry = engine.backups.read_changelog()[-1]
        assert entry["rollback_to"] == update.manifest.timestamp
        assert "backup" not in entry

    @pytest.mark.asyncio
    async def test_rollback_of_no_op_generation(self, engine, install_dir):
        await engine.update()
        await engine.update()
        current = snapshot(install_dir)

        result = await engine.rollback()

        assert result.restored
        assert result.removed == [] and result.restored_files == []
        assert snapshot(install_dir) == current

    @pytest.mark.asyncio
    async def test_specific_generation(self, engine, install_dir):
        before = snapshot(install_dir)
        first = await engine.update()
        await engine.update()

        result = await engine.rollback(first.manifest.timestamp)

        assert result.generation == first.manifest.timestamp
        assert snapshot(install_dir) == before

    @pytest.mark.asyncio
    async def test_no_backups(self, engine):
        result = await engine.rollback()

        assert result.restored is False
        status = StateManager().get_status()
        assert status.stage == StageEnum.IDLE
        assert status.message == "No backups found."

    @pytest.mark.asyncio
    async def test_unknown_generation(self, engine):
        with pytest.raises(RollbackError, match="Backup not found: 20200101_000000"):
            await engine.rollback("20200101_000000")

    @pytest.mark.asyncio
    async def test_missing_manifest(self, engine):
        generation = engine.backups.new_generation(engine.clock())

        with pytest.raises(RollbackError, match="Backup manifest missing"):
            await engine.rollback(generation)

    @pytest.mark.asyncio
    async def test_missing_payload_modifies_nothing(self, engine, install_dir):
        update = await engine.update()
        payload = install_dir / "data" / "backups" / update.manifest.timestamp / "files" / "public" / "index.php"
        payload.unlink()
        current = snapshot(install_dir)

        with pytest.raises(RollbackError, match="Backup payload missing for: public/index.php"):
            await engine.rollback()

        assert snapshot(install_dir) == current
        status = StateManager().get_status()
        assert status.stage == StageEnum.FAILED
        assert status.error.startswith("ROLLBACK_FAILED:")

    @pytest.mark.asyncio
    async def test_rollback_clears_flag(self, engine, settings):
        await engine.update()
        engine.flags.write_flag(1, "2025-01-01T00:00:00+00:00")

        await engine.rollback()

        assert not settings.update_flag_path.exists()

    @pytest.mark.asyncio
    async def test_tampered_manifest_rejected(self, engine, install_dir):
        update = await engine.update()
        manifest_path = install_dir / "data" / "backups" / update.manifest.timestamp / "manifest.json"
        data = json.loads(manifest_path.read_text())
        data["created"] = ["../outside.php"]
        manifest_path.write_text(json.dumps(data))

        with pytest.raises(RollbackError, match="Invalid backup manifest"):
            await engine.rollback()
