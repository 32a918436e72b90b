"""Periodic "is an update available?" check."""

import logging
from datetime import datetime
from typing import Callable, Optional

from pydantic import BaseModel, Field

from domain_tracker.models.settings import Settings
from domain_tracker.services.update_engine import UpdateEngine
from domain_tracker.services.update_flag import UpdateFlagStore


class UpdateCheckResult(BaseModel):
    available: bool = False
    count: int = Field(default=0, ge=0)
    checked_at: Optional[str] = None
    cached: bool = Field(default=False, description="Answered from the last check")
    error: Optional[str] = None


class UpdateCheckService:
    """Runs a preview at most once per check interval and records the result."""

    def __init__(
        self,
        settings: Settings,
        engine: Optional[UpdateEngine] = None,
        flags: Optional[UpdateFlagStore] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.logger = logging.getLogger("domain_tracker.update_check")
        self.settings = settings
        self.engine = engine or UpdateEngine(settings)
        self.flags = flags or self.engine.flags
        self.clock = clock or datetime.now

    def cached_result(self) -> Optional[UpdateCheckResult]:
        """Last result if it is younger than the check interval."""
        last = self.flags.last_checked()
        if last is None:
            return None

        now = self.clock()
        if last.tzinfo is not None and now.tzinfo is None:
            now = now.astimezone()
        elif last.tzinfo is None and now.tzinfo is not None:
            last = last.astimezone()
        age = (now - last).total_seconds()
        if age < 0 or age >= self.settings.check_interval_seconds:
            return None

        flag = self.flags.read_flag()
        if flag is not None:
            return UpdateCheckResult(
                available=bool(flag.get("available", True)),
                count=int(flag.get("count", 0)),
                checked_at=flag.get("checked_at"),
                cached=True,
            )
        return UpdateCheckResult(available=False, checked_at=last.isoformat(), cached=True)

    async def run(self, force: bool = False) -> UpdateCheckResult:
        """Check the remote archive for changes.

        Failures are reported in ``error`` rather than raised, and leave the
        existing flag untouched.
        """
        if not force:
            cached = self.cached_result()
            if cached is not None:
                self.logger.debug("Update check answered from cache")
                return cached

        try:
            diff = await self.engine.preview()
        except Exception as e:
            self.logger.error(f"Update check failed: {e}", exc_info=True)
            return UpdateCheckResult(error=str(e))

        checked_at = self.clock().astimezone().isoformat(timespec="seconds")
        self.flags.record_check(checked_at)

        if diff.count:
            self.flags.write_flag(diff.count, checked_at)
            return UpdateCheckResult(available=True, count=diff.count, checked_at=checked_at)

        self.flags.clear_flag()
        self.logger.info("No updates found")
        return UpdateCheckResult(available=False, checked_at=checked_at)
