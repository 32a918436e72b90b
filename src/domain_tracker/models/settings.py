"""Application settings, built once and passed to every service."""

import logging
import os
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, Field, field_validator

from domain_tracker.models.policy import InclusionPolicy

DEFAULT_ARCHIVE_URL = (
    "https://github.com/getblazeweb/domain_tracker/archive/refs/heads/main.zip"
)

# Settings field -> environment variable
ENV_VARS = {
    "app_name": "APP_NAME",
    "app_key": "APP_KEY",
    "admin_username": "ADMIN_USERNAME",
    "database_path": "DB_PATH",
    "archive_url": "UPDATE_ARCHIVE_URL",
    "backups_keep": "UPDATE_BACKUPS_KEEP",
    "check_interval_seconds": "UPDATE_CHECK_INTERVAL",
    "download_timeout": "UPDATE_DOWNLOAD_TIMEOUT",
    "log_file": "LOG_FILE",
    "log_level": "LOG_LEVEL",
    "host": "HOST",
    "port": "PORT",
}


def load_env_file(path: Path) -> dict[str, str]:
    """Parse a ``KEY=VALUE`` file.

    Blank lines and ``#`` comments are skipped; surrounding quotes and
    whitespace are stripped from values. A missing file yields ``{}``.
    """
    values: dict[str, str] = {}
    if not path.is_file():
        return values

    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            key, sep, value = line.partition("=")
            key = key.strip()
            if not sep or not key:
                continue
            values[key] = value.strip().strip(" \t\"'")
    return values


class Settings(BaseModel):
    """Explicit configuration for the secret store, updater and HTTP layer."""

    base_path: Path = Field(default_factory=Path.cwd, description="Installation root")
    app_name: str = Field(default="Domain Tracker")
    app_key: str = Field(default="", repr=False, description="Secret store key material")
    admin_username: str = Field(default="admin")
    database_path: Optional[Path] = Field(
        default=None, description="SQLite database (defaults to data/app.db)"
    )
    archive_url: str = Field(default=DEFAULT_ARCHIVE_URL, pattern=r"^https?://.+")
    backups_keep: int = Field(default=5, ge=1, description="Backup generations retained")
    check_interval_seconds: int = Field(default=43200, ge=0)
    download_timeout: float = Field(default=60.0, gt=0)
    log_file: Optional[Path] = Field(default=None)
    log_level: str = Field(default="INFO")
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=12315, gt=0, lt=65536)
    policy: InclusionPolicy = Field(default_factory=InclusionPolicy)

    @field_validator("log_level")
    @classmethod
    def known_log_level(cls, v: str) -> str:
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {v}")
        return level

    @classmethod
    def from_env(
        cls,
        base_path: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "Settings":
        """Build settings from ``<base>/.env`` and the process environment.

        Process environment wins over the ``.env`` file.
        """
        environ = os.environ if environ is None else environ
        if base_path is None:
            base_path = Path(environ.get("DOMAIN_TRACKER_BASE_PATH") or Path.cwd())
        base_path = Path(base_path)

        merged = load_env_file(base_path / ".env")
        merged.update({k: v for k, v in environ.items() if v != ""})

        data: dict = {"base_path": base_path}
        for field, var in ENV_VARS.items():
            if var in merged:
                data[field] = merged[var]
        return cls(**data)

    @property
    def data_dir(self) -> Path:
        return self.base_path / "data"

    @property
    def backups_dir(self) -> Path:
        return self.data_dir / "backups"

    @property
    def changelog_path(self) -> Path:
        return self.backups_dir / "changelog.json"

    @property
    def update_flag_path(self) -> Path:
        return self.data_dir / "update_available.json"

    @property
    def update_check_path(self) -> Path:
        return self.data_dir / "update_check.json"

    @property
    def db_path(self) -> Path:
        return self.database_path or self.data_dir / "app.db"

    @property
    def log_path(self) -> Path:
        return self.log_file or self.base_path / "logs" / "domain_tracker.log"
