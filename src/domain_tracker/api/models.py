"""Pydantic models for HTTP API requests and responses."""

from typing import Any, Optional
from pydantic import BaseModel, Field

from domain_tracker.models.status import StageEnum


class CheckRequest(BaseModel):
    """POST /api/v1.0/check payload.

    Example:
        {"force": true}
    """

    force: bool = Field(
        default=False,
        description="Ignore the cached result and query the archive now",
    )


class RollbackRequest(BaseModel):
    """POST /api/v1.0/rollback payload.

    Example:
        {"backup": "20250101_120000"}
    """

    backup: Optional[str] = Field(
        None,
        pattern=r"^\d{8}_\d{6}$",
        description="Generation to restore (latest when omitted)",
        examples=["20250101_120000"],
    )


class ProgressData(BaseModel):
    """Progress data nested in response."""

    stage: StageEnum = Field(..., description="Current lifecycle stage")
    progress: int = Field(..., ge=0, le=100, description="Percentage completion (0-100)")
    message: str = Field(..., description="Human-readable status description")
    error: Optional[str] = Field(
        None, description="Error code and message if stage == failed"
    )


class ProgressResponse(BaseModel):
    """GET /api/v1.0/progress response.

    Returns current status state with application-level status code.
    """

    code: int = Field(..., description="Application-level status code (200/500)")
    msg: str = Field(..., description="Status message or error description")
    data: ProgressData = Field(..., description="Progress data")
    stage: Optional[StageEnum] = Field(
        None, description="Current stage (for failed responses at root level)"
    )
    progress: Optional[int] = Field(
        None, description="Current progress (for failed responses at root level)"
    )


class BackupInfo(BaseModel):
    id: str = Field(..., description="Generation id (YYYYMMDD_HHMMSS)")
    label: str = Field(..., description="Human-readable timestamp")


class SuccessResponse(BaseModel):
    """Success envelope for command and query endpoints.

    HTTP status code is always 200, real status in 'code' field.
    """

    code: int = Field(default=200, description="Application-level status code (200)")
    msg: str = Field(default="success", description="Success message")
    data: Optional[Any] = Field(None, description="Optional response data")


class ErrorResponse(BaseModel):
    """Error response for all endpoints.

    HTTP status code is always 200, real status in 'code' field.
    """

    code: int = Field(
        ..., description="Application-level error code (400/404/409/500)"
    )
    msg: str = Field(..., description="Error message with error code prefix")
    stage: Optional[StageEnum] = Field(
        None, description="Current stage (for operation state errors)"
    )
    progress: Optional[int] = Field(
        None, description="Current progress (for operation state errors)"
    )
