"""Persistent "update available" flag and last-check timestamp."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from domain_tracker.utils.files import atomic_write_json


class UpdateFlagStore:
    """Reads and writes ``update_available.json`` and ``update_check.json``."""

    def __init__(self, flag_path: Path, check_path: Path):
        self.logger = logging.getLogger("domain_tracker.update_flag")
        self.flag_path = Path(flag_path)
        self.check_path = Path(check_path)

    def _read_json(self, path: Path) -> Optional[dict]:
        if not path.is_file():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            self.logger.warning(f"Ignoring unreadable {path.name}: {e}")
            return None
        return data if isinstance(data, dict) else None

    def read_flag(self) -> Optional[dict]:
        """Stored flag payload, or None when no update is flagged."""
        return self._read_json(self.flag_path)

    def write_flag(self, count: int, checked_at: str) -> dict:
        payload = {"available": True, "count": count, "checked_at": checked_at}
        atomic_write_json(self.flag_path, payload)
        self.logger.info(f"Flagged update available: {count} file(s)")
        return payload

    def clear_flag(self) -> None:
        if self.flag_path.exists():
            self.flag_path.unlink()
            self.logger.info("Cleared update available flag")

    def last_checked(self) -> Optional[datetime]:
        data = self._read_json(self.check_path)
        if not data or not data.get("checked_at"):
            return None
        try:
            return datetime.fromisoformat(str(data["checked_at"]))
        except ValueError:
            return None

    def record_check(self, checked_at: str) -> None:
        atomic_write_json(self.check_path, {"checked_at": checked_at})
