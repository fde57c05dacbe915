"""
Type definitions for the job registry.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Union

from pydantic import BaseModel, ConfigDict

# Job bodies take no required arguments; an optional ``log`` parameter receives
# the job's logger.
JobCallback = Callable[..., Union[Awaitable[Any], Any]]

Schedule = Union[str, datetime]

DEFAULT_SCHEDULE = "* * * * *"
DEFAULT_TIMEZONE = "UTC"


@dataclass
class JobDefinition:
    """Everything needed to build a job handle."""

    callback: JobCallback
    schedule: Schedule = DEFAULT_SCHEDULE
    name: Optional[str] = None
    timezone: Optional[str] = None
    autostart: bool = False
    wait_for_completion: bool = False


class JobConfig(BaseModel):
    """
    Configuration returned by a job module's ``config`` provider.

    Missing keys fall back to the module defaults.
    """

    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    schedule: Schedule = DEFAULT_SCHEDULE
    timezone: str = DEFAULT_TIMEZONE
    start: bool = False
    wait_for_completion: bool = False


class JobStatus(BaseModel):
    """Public view of a registered job."""

    name: str
    schedule: str
    is_active: bool
    is_running: bool
    last_fire_time: Optional[datetime] = None
    next_fire_time: Optional[datetime] = None
