"""Filesystem watching using watchfiles."""

import asyncio
from pathlib import Path
from typing import Awaitable, Callable, Optional

from watchfiles import Change, awatch

from .logger import logger

ChangeSet = set[tuple[Change, str]]
ChangeHandler = Callable[[ChangeSet], Awaitable[None]]
WatchFilter = Callable[[Change, str], bool]

# How often the watcher thread wakes up when nothing changes. The first wake-up
# proves the underlying notifier is installed, which is what `start()` waits for.
PROBE_INTERVAL_MS = 100


class PathWatcher:
    """Watches a path in a background task and hands change batches to a handler."""

    def __init__(
        self,
        path: Path,
        on_changes: ChangeHandler,
        *,
        watch_filter: Optional[WatchFilter] = None,
        recursive: bool = True,
        debounce_ms: int = 300,
    ):
        """Initialize the watcher.

        Args:
            path: File or directory to watch
            on_changes: Coroutine called with every non-empty batch of changes
            watch_filter: Optional predicate deciding which changes are reported
            recursive: Whether to watch subdirectories
            debounce_ms: Time window used to group changes into one batch
        """
        self.path = path
        self._on_changes = on_changes
        self._watch_filter = watch_filter
        self._recursive = recursive
        self._debounce_ms = debounce_ms

        self._ready = asyncio.Event()
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    async def start(self) -> None:
        """Start watching and wait until the notifier is installed."""
        if self._task is not None:
            return

        self._task = asyncio.create_task(self._watch_loop())
        ready = asyncio.create_task(self._ready.wait())
        try:
            await asyncio.wait(
                {self._task, ready}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            ready.cancel()

        if self._task.done():
            # the loop ended before it ever became ready, surface why
            task, self._task = self._task, None
            task.result()
            raise RuntimeError(f"Watcher for {self.path} stopped before it was ready")

    async def stop(self) -> None:
        """Stop watching and wait for the background task to finish."""
        self._stop_event.set()
        task, self._task = self._task, None
        if task is None:
            return

        try:
            await asyncio.wait_for(task, timeout=(PROBE_INTERVAL_MS / 1000) * 10)
        except asyncio.TimeoutError:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _watch_loop(self) -> None:
        async for changes in awatch(
            self.path,
            watch_filter=self._watch_filter,
            stop_event=self._stop_event,
            debounce=self._debounce_ms,
            rust_timeout=PROBE_INTERVAL_MS,
            yield_on_timeout=True,
            recursive=self._recursive,
        ):
            if not self._ready.is_set():
                self._ready.set()
                logger.debug(f"Watching {self.path}")

            if not changes or self._stop_event.is_set():
                continue

            try:
                await self._on_changes(changes)
            except Exception as e:
                logger.error(
                    f"Error handling changes for {self.path}: {e}", exc_info=True
                )
