"""In-memory progress state for update and rollback runs."""

from typing import Optional
import logging

from domain_tracker.models.status import StageEnum
from domain_tracker.api.models import ProgressData


class StateManager:
    """Singleton progress tracker read by GET /progress.

    Holds advisory status only; nothing here is persisted.
    """

    _instance: Optional["StateManager"] = None

    def __new__(cls):
        """Implement singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        """Initialize state manager (only once due to singleton)."""
        if self._initialized:
            return

        self.logger = logging.getLogger("domain_tracker.state_manager")

        self._current_stage: StageEnum = StageEnum.IDLE
        self._current_progress: int = 0
        self._current_message: str = "Updater ready"
        self._current_error: Optional[str] = None

        self._initialized = True
        self.logger.info("StateManager initialized")

    def get_status(self) -> ProgressData:
        """Get current status for GET /progress endpoint.

        Returns:
            ProgressData with current stage, progress, message, error
        """
        return ProgressData(
            stage=self._current_stage,
            progress=self._current_progress,
            message=self._current_message,
            error=self._current_error,
        )

    def is_busy(self) -> bool:
        return self._current_stage.is_busy

    def update_status(
        self,
        stage: StageEnum,
        progress: int,
        message: str,
        error: Optional[str] = None,
    ) -> None:
        """Update in-memory status state.

        Args:
            stage: Current lifecycle stage
            progress: Percentage completion (0-100)
            message: Human-readable description
            error: Error message if stage == failed
        """
        self._current_stage = stage
        self._current_progress = progress
        self._current_message = message
        self._current_error = error
        self.logger.debug(
            f"Status updated: stage={stage.value}, progress={progress}%, message={message}"
        )

    def reset(self) -> None:
        """Reset to idle state."""
        self._current_stage = StageEnum.IDLE
        self._current_progress = 0
        self._current_message = "Updater ready"
        self._current_error = None
        self.logger.info("State reset to idle")
