"""API route handlers for updater endpoints."""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse

from domain_tracker.api.models import (
    BackupInfo,
    CheckRequest,
    ProgressResponse,
    RollbackRequest,
    SuccessResponse,
)
from domain_tracker.models.settings import Settings
from domain_tracker.models.status import StageEnum
from domain_tracker.services.backups import BackupStore, generation_label
from domain_tracker.services.state_manager import StateManager
from domain_tracker.services.update_check import UpdateCheckService
from domain_tracker.services.update_engine import UpdateEngine

router = APIRouter(prefix="/api/v1.0")
logger = logging.getLogger("domain_tracker.api")


def get_settings(request: Request) -> Settings:
    """Settings injected into the app at startup."""
    return request.app.state.settings


def _backup_store(settings: Settings) -> BackupStore:
    return BackupStore(
        settings.backups_dir, keep=settings.backups_keep, changelog_path=settings.changelog_path
    )


def _busy_response(state_manager: StateManager) -> JSONResponse:
    status = state_manager.get_status()
    return JSONResponse(
        status_code=200,
        content={
            "code": 409,
            "msg": f"Operation already in progress: {status.stage.value}",
            "stage": status.stage.value,
            "progress": status.progress,
        },
    )


@router.get("/progress", response_model=ProgressResponse)
async def get_progress():
    """GET /api/v1.0/progress - Query current update/rollback status.

    Response format (failed stage):
        {
            "code": 500,
            "msg": "Update failed: UPDATE_FAILED: Download failed: ...",
            "data": {"stage": "failed", "progress": 0, ...},
            "stage": "failed",
            "progress": 0
        }
    """
    state_manager = StateManager()
    status = state_manager.get_status()

    if status.stage == StageEnum.FAILED:
        msg = f"Update failed: {status.error}" if status.error else "Update failed"
        return ProgressResponse(
            code=500,
            msg=msg,
            data=status,
            stage=status.stage,
            progress=status.progress,
        )
    return ProgressResponse(code=200, msg="success", data=status)


@router.post("/check", response_model=SuccessResponse)
async def post_check(request: CheckRequest, settings: Settings = Depends(get_settings)):
    """POST /api/v1.0/check - Ask whether the remote archive has changes."""
    state_manager = StateManager()
    if state_manager.is_busy():
        return _busy_response(state_manager)

    result = await UpdateCheckService(settings).run(force=request.force)
    if result.error:
        return JSONResponse(
            status_code=200,
            content={"code": 500, "msg": f"Update check failed: {result.error}"},
        )
    return SuccessResponse(data=result.model_dump(mode="json"))


@router.get("/preview", response_model=SuccessResponse)
async def get_preview(settings: Settings = Depends(get_settings)):
    """GET /api/v1.0/preview - List files an update would create, overwrite or delete."""
    state_manager = StateManager()
    if state_manager.is_busy():
        return _busy_response(state_manager)

    try:
        diff = await UpdateEngine(settings).preview()
    except Exception as e:
        return JSONResponse(
            status_code=200,
            content={"code": 500, "msg": f"Preview failed: {e}"},
        )

    data = diff.model_dump(mode="json")
    data["count"] = diff.count
    return SuccessResponse(data=data)


@router.post("/update", response_model=SuccessResponse)
async def post_update(background_tasks: BackgroundTasks, settings: Settings = Depends(get_settings)):
    """POST /api/v1.0/update - Start applying the remote archive.

    Progress is reported through GET /progress.
    """
    state_manager = StateManager()
    if state_manager.is_busy():
        return _busy_response(state_manager)

    state_manager.update_status(stage=StageEnum.PREPARING, progress=0, message="Update queued...")
    background_tasks.add_task(_update_workflow, settings)

    return JSONResponse(
        status_code=200,
        content={"code": 200, "msg": "success", "data": None},
    )


@router.post("/rollback", response_model=SuccessResponse)
async def post_rollback(
    request: RollbackRequest,
    background_tasks: BackgroundTasks,
    settings: Settings = Depends(get_settings),
):
    """POST /api/v1.0/rollback - Restore a backup generation (latest by default)."""
    state_manager = StateManager()
    if state_manager.is_busy():
        return _busy_response(state_manager)

    generations = _backup_store(settings).list_generations()
    if not generations:
        return JSONResponse(status_code=200, content={"code": 404, "msg": "No backups found."})
    if request.backup is not None and request.backup not in generations:
        return JSONResponse(
            status_code=200,
            content={"code": 404, "msg": f"Backup not found: {request.backup}"},
        )

    state_manager.update_status(
        stage=StageEnum.ROLLING_BACK, progress=0, message="Rollback queued..."
    )
    background_tasks.add_task(_rollback_workflow, settings, request.backup)

    return JSONResponse(
        status_code=200,
        content={"code": 200, "msg": "success", "data": None},
    )


@router.get("/backups", response_model=SuccessResponse)
async def get_backups(settings: Settings = Depends(get_settings)):
    """GET /api/v1.0/backups - Backup generations, newest first."""
    backups = [
        BackupInfo(id=generation, label=generation_label(generation)).model_dump()
        for generation in _backup_store(settings).list_generations()
    ]
    return SuccessResponse(data=backups)


@router.get("/changelog", response_model=SuccessResponse)
async def get_changelog(settings: Settings = Depends(get_settings)):
    """GET /api/v1.0/changelog - Update and rollback history."""
    return SuccessResponse(data=_backup_store(settings).read_changelog())


async def _update_workflow(settings: Settings) -> None:
    """Background task for update workflow."""
    try:
        await UpdateEngine(settings).update()
    except Exception as e:
        # Status already set to failed by the engine
        logger.error(f"Update workflow ended with error: {e}")


async def _rollback_workflow(settings: Settings, backup) -> None:
    """Background task for rollback workflow."""
    try:
        await UpdateEngine(settings).rollback(backup)
    except Exception as e:
        logger.error(f"Rollback workflow ended with error: {e}")
