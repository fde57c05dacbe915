from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, Request, status

from .config import settings
from .control import JobController


def get_controller(request: Request) -> JobController:
    return request.app.state.controller


def verify_token(authorization: Annotated[Optional[str], Header()] = None) -> None:
    """
    Require ``Authorization: Bearer <token>`` when an API token is configured.
    """
    expected = settings.http.token
    if not expected:
        return

    scheme, _, given_token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or given_token != expected:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="A valid bearer token is required",
            headers={"WWW-Authenticate": "Bearer"},
        )


ControllerDep = Annotated[JobController, Depends(get_controller)]
