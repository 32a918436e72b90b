"""Update manifest, diff and changelog models."""

from typing import Optional
from pydantic import BaseModel, Field, field_validator

GENERATION_PATTERN = r"^\d{8}_\d{6}$"


def _check_relative_paths(paths: list[str]) -> list[str]:
    for path in paths:
        if path.startswith("/") or "\\" in path:
            raise ValueError(f"Path must be forward-slash relative: {path}")
        if ".." in path.split("/"):
            raise ValueError(f"Path must not contain '..': {path}")
    return paths


class UpdateManifest(BaseModel):
    """manifest.json stored in each backup generation.

    ``overwritten`` and ``deleted`` list exactly the files whose pre-update
    bytes are in the generation's ``files/`` directory.
    """

    created: list[str] = Field(default_factory=list, description="Paths written where none existed")
    overwritten: list[str] = Field(default_factory=list, description="Paths replaced, original backed up")
    deleted: list[str] = Field(default_factory=list, description="Paths removed, original backed up")
    timestamp: str = Field(..., pattern=GENERATION_PATTERN, description="Generation id")

    @field_validator("created", "overwritten", "deleted")
    @classmethod
    def no_directory_traversal(cls, v: list[str]) -> list[str]:
        """Prevent directory traversal in recorded paths."""
        return _check_relative_paths(v)

    @property
    def backed_up(self) -> list[str]:
        return self.overwritten + self.deleted

    @property
    def is_empty(self) -> bool:
        return not (self.created or self.overwritten or self.deleted)


class UpdateDiff(BaseModel):
    """Result of comparing the remote archive with the local installation."""

    created: list[str] = Field(default_factory=list)
    overwritten: list[str] = Field(default_factory=list)
    deleted: list[str] = Field(default_factory=list)
    excluded_changed: list[str] = Field(
        default_factory=list,
        description="Protected paths that differ from upstream (never applied)",
    )

    @property
    def count(self) -> int:
        return len(self.created) + len(self.overwritten) + len(self.deleted)

    @property
    def is_empty(self) -> bool:
        return self.count == 0


class ChangelogEntry(BaseModel):
    """One line of the append-only update changelog.

    Update entries carry the manifest lists; rollback entries carry
    ``rollback_to`` instead.
    """

    timestamp: str = Field(..., description="ISO 8601 time of the run")
    backup: Optional[str] = Field(None, description="Generation created by an update")
    created: Optional[list[str]] = None
    overwritten: Optional[list[str]] = None
    deleted: Optional[list[str]] = None
    excluded_changed: Optional[list[str]] = None
    rollback_to: Optional[str] = Field(None, description="Generation restored by a rollback")

    def to_json(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)


class UpdateResult(BaseModel):
    manifest: UpdateManifest
    excluded_changed: list[str] = Field(default_factory=list)
    pruned: list[str] = Field(default_factory=list)


class RollbackResult(BaseModel):
    """Outcome of a rollback; ``restored`` is False when no backups exist."""

    restored: bool
    generation: Optional[str] = None
    removed: list[str] = Field(default_factory=list)
    restored_files: list[str] = Field(default_factory=list)
