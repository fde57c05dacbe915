"""
Job management API endpoints.
"""

from typing import List

from fastapi import APIRouter, Depends, HTTPException
from fastapi import status as http_status

from ..control import JobNotFoundError
from ..dependencies import ControllerDep, verify_token
from ..types import JobStatus

router = APIRouter(prefix="/jobs", tags=["jobs"], dependencies=[Depends(verify_token)])


def _not_found(e: JobNotFoundError) -> HTTPException:
    return HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail=str(e))


@router.get("/", response_model=List[JobStatus])
async def list_jobs(controller: ControllerDep):
    """
    List all registered jobs with their schedule and run state.
    """
    return controller.list_jobs()


@router.get("/{name}", response_model=JobStatus)
async def get_job(name: str, controller: ControllerDep):
    try:
        return controller.get_job(name)
    except JobNotFoundError as e:
        raise _not_found(e)


@router.post("/{name}/start", response_model=JobStatus)
async def start_job(name: str, controller: ControllerDep):
    """
    Start a job. Starting an active job has no effect.
    """
    try:
        return controller.start_job(name)
    except JobNotFoundError as e:
        raise _not_found(e)


@router.post("/{name}/stop", response_model=JobStatus)
async def stop_job(name: str, controller: ControllerDep):
    """
    Stop a job. A run already in progress is not interrupted.
    """
    try:
        return controller.stop_job(name)
    except JobNotFoundError as e:
        raise _not_found(e)


@router.delete("/{name}", response_model=dict)
async def remove_job(name: str, controller: ControllerDep):
    """
    Remove a job from the registry immediately.

    The job's crontab entry is kept, so the job comes back with the same
    schedule on the next reload if its module still exists.
    """
    try:
        await controller.remove_job(name)
    except JobNotFoundError as e:
        raise _not_found(e)
    return {"name": name, "message": "Job removed successfully"}
