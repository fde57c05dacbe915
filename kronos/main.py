from fastapi import FastAPI

from .control import JobController
from .routers import health, jobs


def create_app(controller: JobController, title: str = "Kronos") -> FastAPI:
    """Build the HTTP application around a job controller."""
    app = FastAPI(title=title)
    app.state.controller = controller

    app.include_router(health.router)
    app.include_router(jobs.router)
    return app
