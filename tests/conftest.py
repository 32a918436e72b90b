"""Global pytest fixtures and configuration."""

import shutil
import sys
import zipfile
from datetime import datetime, timedelta
from pathlib import Path

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from domain_tracker.models.settings import Settings  # noqa: E402
from domain_tracker.services.state_manager import StateManager  # noqa: E402

ARCHIVE_ROOT = "domain_tracker-main"


@pytest.fixture(autouse=True)
def reset_state_manager():
    """Fresh progress singleton for every test."""
    StateManager._instance = None
    yield
    StateManager._instance = None


@pytest.fixture
def install_dir(tmp_path):
    """A small installation tree with protected and managed files."""
    base = tmp_path / "install"
    files = {
        "public/index.php": "<?php echo 'old index';",
        "public/updater.php": "<?php // local updater",
        "views/layout.php": "<html>layout</html>",
        "src/repo.php": "<?php // repo v1",
        "scripts/old_script.php": "<?php // legacy",
        "README.md": "# Domain Tracker",
        "data/app.db": "sqlite-bytes",
        "config/app.php": "<?php return ['local' => true];",
        ".env": "APP_KEY=local-key",
    }
    for relative, content in files.items():
        path = base / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return base


@pytest.fixture
def settings(install_dir):
    """Settings pointing at the temporary installation."""
    return Settings(
        base_path=install_dir,
        app_key="test_key_32_chars_minimum_required",
        archive_url="https://example.com/domain_tracker/main.zip",
        log_file=install_dir / "logs" / "test.log",
    )


@pytest.fixture
def make_archive(tmp_path):
    """Build a GitHub-style zip with a single top-level directory."""
    counter = {"n": 0}

    def _make(files: dict, root: str = ARCHIVE_ROOT) -> Path:
        counter["n"] += 1
        zip_path = tmp_path / f"archive-{counter['n']}.zip"
        with zipfile.ZipFile(zip_path, "w") as zf:
            for relative, content in files.items():
                name = f"{root}/{relative}" if root else relative
                if isinstance(content, str):
                    content = content.encode("utf-8")
                zf.writestr(name, content)
        return zip_path

    return _make


class FakeDownloader:
    """Stands in for DownloadService by copying a local zip."""

    def __init__(self, archive: Path = None, error: Exception = None):
        self.archive = archive
        self.error = error
        self.calls = []

    async def download_archive(self, url: str, target_path: Path) -> Path:
        self.calls.append(url)
        if self.error is not None:
            raise self.error
        shutil.copyfile(self.archive, target_path)
        return target_path


@pytest.fixture
def fake_downloader():
    return FakeDownloader


class StepClock:
    """Deterministic clock advancing one minute per call."""

    def __init__(self, start: datetime = datetime(2025, 1, 1, 12, 0, 0)):
        self.current = start

    def __call__(self) -> datetime:
        now = self.current
        self.current += timedelta(minutes=1)
        return now


@pytest.fixture
def clock():
    return StepClock()
