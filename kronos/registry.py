"""
Job registry - owns the live job handles and keeps them consistent with the
crontab file and the jobs directory.
"""

import asyncio
import inspect
import logging
import secrets
from dataclasses import replace
from pathlib import Path
from types import MappingProxyType
from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Union

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .crontab import CrontabStore, Snapshot
from .engine import JobHandle
from .loader import DirectoryLoader, ModuleRecord
from .logger import NULL_LOGGER, job_logger
from .types import JobConfig, JobDefinition

LoadedCallback = Callable[[int], Union[None, Awaitable[None]]]


class JobRegistry:
    """
    Registry of named scheduled jobs.

    Jobs come from ``add()`` calls or from the modules of a jobs directory. When
    a crontab store is attached, the schedule stored under a job's name always
    wins over the schedule the job was defined with; jobs without a stored
    schedule seed the store. Any external change to the crontab file or the
    jobs directory rebuilds every job from scratch.

    Example:
        ```python
        registry = await JobRegistry.create(
            crontab_path=Path("kronos.crontab"),
            jobs_dir=Path("jobs"),
            logger=logger,
        )
        registry.add(JobDefinition(name="ping", schedule="*/5 * * * *", callback=ping))
        ...
        await registry.close()
        ```
    """

    def __init__(self, *, name: str = "Kronos", logger: Optional[logging.Logger] = None):
        self.name = name
        self.scheduler = AsyncIOScheduler()
        self.crontab: Optional[CrontabStore] = None
        self.loader: Optional[DirectoryLoader] = None

        self._log = logger or NULL_LOGGER
        self._jobs: Dict[str, JobHandle] = {}
        self._loaded_subscribers: List[LoadedCallback] = []
        self._reload_lock = asyncio.Lock()
        self._closed = False

    @classmethod
    async def create(
        cls,
        crontab_path: Optional[Path] = None,
        jobs_dir: Optional[Path] = None,
        *,
        name: str = "Kronos",
        logger: Optional[logging.Logger] = None,
        debounce_ms: int = 300,
    ) -> "JobRegistry":
        """
        Create a registry, load the jobs directory and start watching.

        Args:
            crontab_path: Crontab file to keep schedules in (optional)
            jobs_dir: Directory of job modules (optional)
            name: Display name used in logs
            logger: Log sink; a silent sink is used when omitted
            debounce_ms: Debounce window of the file watchers

        Returns:
            The initialized registry

        Raises:
            FileNotFoundError: If ``jobs_dir`` does not exist
        """
        registry = cls(name=name, logger=logger)
        try:
            await registry.initialize(crontab_path, jobs_dir, debounce_ms=debounce_ms)
        except BaseException:
            await registry.close()
            raise
        return registry

    async def initialize(
        self,
        crontab_path: Optional[Path] = None,
        jobs_dir: Optional[Path] = None,
        *,
        debounce_ms: int = 300,
    ) -> None:
        self._log.info(f"{self.name} starting...")
        if not self.scheduler.running:
            self.scheduler.start()

        if crontab_path is not None:
            self.crontab = await CrontabStore.open(crontab_path, debounce_ms=debounce_ms)
        if jobs_dir is not None:
            self.loader = await DirectoryLoader.create(
                jobs_dir, log=self._log, debounce_ms=debounce_ms
            )

        # Subscribed before the first scan so edits made during it queue another reload
        if self.crontab is not None:
            self.crontab.on_change(self._on_crontab_change)
        if self.loader is not None:
            self.loader.on_change(self._on_directory_change)

        self._log.info("Loading cron jobs...")
        await self.reload_all()

        self._log.info(f"Cron started with {self.count()} jobs")

    # Lookup

    @property
    def jobs(self) -> Mapping[str, JobHandle]:
        return MappingProxyType(self._jobs)

    def count(self) -> int:
        return len(self._jobs)

    def job(self, name_or_index: Union[str, int]) -> Optional[JobHandle]:
        """Get a job by name, or by its position in registration order."""
        if isinstance(name_or_index, str):
            return self._jobs.get(name_or_index)
        handles = list(self._jobs.values())
        if 0 <= name_or_index < len(handles):
            return handles[name_or_index]
        return None

    def list_jobs(self) -> List[JobHandle]:
        return list(self._jobs.values())

    @property
    def is_closed(self) -> bool:
        return self._closed

    # Lifecycle

    def add(self, definition: JobDefinition) -> JobHandle:
        """
        Register a job and return its handle.

        Raises:
            ValueError: If the (possibly crontab-provided) schedule is malformed
        """
        if not definition.name:
            definition = replace(
                definition, name=f"cron-job-{secrets.token_urlsafe(8)}"
            )
        name = definition.name
        assert name is not None

        stored = self.crontab.get(name) if self.crontab is not None else None
        if stored is not None:
            definition = replace(definition, schedule=stored)

        handle = JobHandle(
            self.scheduler,
            name,
            definition.schedule,
            definition.callback,
            tz=definition.timezone,
            wait_for_completion=definition.wait_for_completion,
            log=job_logger(self._log, name),
        )

        # First registration of a name seeds the crontab, once the schedule is known to be valid
        if self.crontab is not None and stored is None:
            self.crontab.set(name, handle.schedule)

        previous = self._jobs.get(name)
        if previous is not None:
            self._log.warning(f"Job {name} is already registered, replacing it")
            previous.stop()

        self._jobs[name] = handle
        if definition.autostart:
            handle.start()

        self._log.info(f"Added job {name} ({handle.schedule})")
        return handle

    async def remove(self, job: Union[str, JobHandle], force: bool = False) -> None:
        """
        Stop a job and take it out of the registry.

        Without ``force`` the call waits for a run in progress to finish before
        stopping the job. A run that starts right after that wait is not
        prevented. Unknown jobs are ignored.
        """
        handle = self._resolve(job)
        if handle is None:
            return

        if not force and handle.is_running:
            self._log.debug(f"Waiting for job {handle.name} to finish")
            await handle.wait_idle()
        handle.stop()

        if self._jobs.get(handle.name) is handle:
            del self._jobs[handle.name]
        self._log.info(f"Removed job {handle.name}")

    async def remove_all(self, force: bool = False) -> None:
        for handle in list(self._jobs.values()):
            await self.remove(handle, force)

    def start(self) -> None:
        for handle in self._jobs.values():
            handle.start()

    def stop(self) -> None:
        for handle in self._jobs.values():
            handle.stop()

    async def reload_all(self) -> None:
        """
        Rebuild every job from the jobs directory.

        All current jobs are removed without waiting for running callbacks.
        Modules whose config or schedule is invalid are logged and skipped.
        Concurrent calls run one after another; none is dropped.
        """
        async with self._reload_lock:
            if self.count() != 0:
                await self.remove_all(force=True)

            records = self.loader.modules() if self.loader is not None else []
            for record in records:
                try:
                    definition = await self._definition_from_module(record)
                    self.add(definition)
                except Exception as e:
                    self._log.error(
                        f"Failed to load job module {record.path}: {type(e).__name__}: {e}",
                        exc_info=True,
                    )

            self._log.info(f"Loaded {self.count()} jobs")
        await self._emit_loaded()

    async def close(self) -> None:
        """Stop every job and release the watchers. Safe to call twice."""
        if self._closed:
            return
        self._closed = True

        self.stop()
        if self.crontab is not None:
            await self.crontab.close()
        if self.loader is not None:
            await self.loader.close()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self._log.info(f"{self.name} closed")

    # Notifications

    def on_loaded(self, callback: LoadedCallback) -> None:
        self._loaded_subscribers.append(callback)

    def off_loaded(self, callback: LoadedCallback) -> None:
        if callback in self._loaded_subscribers:
            self._loaded_subscribers.remove(callback)

    async def _emit_loaded(self) -> None:
        count = self.count()
        for callback in list(self._loaded_subscribers):
            try:
                result = callback(count)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self._log.error(f"Loaded subscriber {callback!r} failed: {e}", exc_info=True)

    async def _on_crontab_change(self, new: Snapshot, old: Snapshot) -> None:
        self._log.info("Crontab changed, reloading all jobs")
        await self.reload_all()

    async def _on_directory_change(self) -> None:
        self._log.info("Jobs directory changed, reloading all jobs")
        await self.reload_all()

    # Internal helpers

    def _resolve(self, job: Union[str, JobHandle]) -> Optional[JobHandle]:
        if isinstance(job, JobHandle):
            return job if self._jobs.get(job.name) is job else None
        return self._jobs.get(job)

    async def _definition_from_module(self, record: ModuleRecord) -> JobDefinition:
        provider = record.config
        data = provider() if callable(provider) else provider
        if inspect.isawaitable(data):
            data = await data

        config = JobConfig.model_validate(data or {})
        return JobDefinition(
            name=config.name or record.name,
            schedule=config.schedule,
            timezone=config.timezone,
            autostart=config.start,
            wait_for_completion=config.wait_for_completion,
            callback=record.callback,
        )
