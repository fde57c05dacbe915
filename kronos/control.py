"""
Command surface handed to the HTTP layer.

The web app only ever sees a JobController, never the registry itself.
"""

from typing import List

from .engine import JobHandle
from .registry import JobRegistry
from .types import JobStatus


class JobNotFoundError(LookupError):
    """Raised when a by-name operation targets a job that is not registered."""

    def __init__(self, name: str):
        super().__init__(f"Job '{name}' not found")
        self.name = name


def job_status(handle: JobHandle) -> JobStatus:
    return JobStatus(
        name=handle.name,
        schedule=handle.schedule,
        is_active=handle.is_active,
        is_running=handle.is_running,
        last_fire_time=handle.last_fire_time,
        next_fire_time=handle.next_fire_time,
    )


class JobController:
    """List, start, stop and remove jobs by name."""

    def __init__(self, registry: JobRegistry):
        self._registry = registry

    def list_jobs(self) -> List[JobStatus]:
        return [job_status(handle) for handle in self._registry.list_jobs()]

    def get_job(self, name: str) -> JobStatus:
        return job_status(self._get_handle(name))

    def start_job(self, name: str) -> JobStatus:
        handle = self._get_handle(name)
        handle.start()
        return job_status(handle)

    def stop_job(self, name: str) -> JobStatus:
        handle = self._get_handle(name)
        handle.stop()
        return job_status(handle)

    async def remove_job(self, name: str) -> None:
        handle = self._get_handle(name)
        await self._registry.remove(handle, force=True)

    def is_healthy(self) -> bool:
        return not self._registry.is_closed

    def _get_handle(self, name: str) -> JobHandle:
        handle = self._registry.job(name)
        if handle is None:
            raise JobNotFoundError(name)
        return handle
