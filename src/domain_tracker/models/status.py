"""Status enums for update and rollback runs."""

from enum import Enum


class StageEnum(str, Enum):
    """Update/rollback lifecycle stages.

    State transitions:
    idle → preparing → downloading → extracting → scanning → applying → finalizing → success
    idle → rolling_back → success
                ↓            ↓           ↓           ↓          ↓           ↓
              failed ←───────────────────────────────────────────────────────
    """

    IDLE = "idle"
    PREPARING = "preparing"
    DOWNLOADING = "downloading"
    EXTRACTING = "extracting"
    SCANNING = "scanning"
    APPLYING = "applying"
    FINALIZING = "finalizing"
    ROLLING_BACK = "rolling_back"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_busy(self) -> bool:
        return self not in (StageEnum.IDLE, StageEnum.SUCCESS, StageEnum.FAILED)
