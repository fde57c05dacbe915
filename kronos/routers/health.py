from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel

from ..dependencies import ControllerDep

router = APIRouter(tags=["health"])


class HealthCheck(BaseModel):
    status: str


@router.get("/health", response_model=HealthCheck)
async def health_check(controller: ControllerDep):
    if not controller.is_healthy():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Job registry is closed",
        )
    return HealthCheck(status="ok")
