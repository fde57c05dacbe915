"""
Kronos - a registry of scheduled jobs kept in sync with a crontab file and a
directory of job modules.
"""

from .control import JobController, JobNotFoundError
from .crontab import CrontabStore, parse_crontab, serialize_crontab
from .engine import JobHandle, build_trigger
from .loader import DirectoryLoader, ModuleRecord
from .registry import JobRegistry
from .types import JobConfig, JobDefinition, JobStatus

__all__ = [
    "CrontabStore",
    "DirectoryLoader",
    "JobConfig",
    "JobController",
    "JobDefinition",
    "JobHandle",
    "JobNotFoundError",
    "JobRegistry",
    "JobStatus",
    "ModuleRecord",
    "build_trigger",
    "parse_crontab",
    "serialize_crontab",
]
