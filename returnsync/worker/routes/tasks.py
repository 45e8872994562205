"""
Cloud Tasks endpoint for execution grants.

Cloud Tasks sends an HTTP POST here when the next scheduled sync is due.
"""

import logging

from fastapi import APIRouter, Header, HTTPException, Request

from returnsync.models.task import SyncRefreshTask

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/sync-refresh")
async def sync_refresh_task(
    task: SyncRefreshTask,
    request: Request,
    x_cloudtasks_taskname: str | None = Header(default=None),
):
    """
    Process one execution grant.

    A failed run still answers 200: retrying a grant would only start a
    second run, the next one is already scheduled.

    Args:
        task: Grant payload
        x_cloudtasks_taskname: Grant id, used to ignore repeated deliveries

    Returns:
        dict: Run outcome
    """
    services = request.app.state.services

    try:
        ran, result = await services.scheduler.invoke(
            task, grant_id=x_cloudtasks_taskname
        )
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown job: {task.job_id}")

    if not ran:
        return {"status": "duplicate", "job_id": task.job_id}

    if result is None:
        return {"status": "skipped", "job_id": task.job_id, "reason": "run in progress"}

    return {
        "status": "success" if result.success else "failed",
        "job_id": task.job_id,
        "result": {
            "run_id": result.run_id,
            "timed_out": result.timed_out,
            "items_updated": result.tracking.items_updated,
            "items_failed": result.tracking.items_failed,
            "transitions": result.tracking.transitions,
            "candidates": len(result.candidates),
            "new_candidates": result.inbox.new_candidates,
        },
    }
