"""
File-backed job schedule store.

The crontab file holds one ``<schedule> <job name>`` entry per line. It is
watched for edits made by operators. Watcher events caused by the store's own
writes are dropped because the re-read content equals what is in memory.
"""

import inspect
from pathlib import Path
from types import MappingProxyType
from typing import Awaitable, Callable, Dict, Iterator, List, Mapping, Optional, Union

import aiofiles
from aiofiles import os as aioos
from watchfiles import Change

from .logger import log_exception, logger
from .watch import ChangeSet, PathWatcher

Snapshot = Mapping[str, str]
ChangeCallback = Callable[[Snapshot, Snapshot], Union[None, Awaitable[None]]]


def parse_crontab(content: str) -> Dict[str, str]:
    """
    Parse crontab text into a job name -> schedule mapping.

    Blank lines, comments and lines with fewer than two tokens are skipped. The
    last token of a line is the job name; the tokens before it, joined by single
    spaces, are the schedule.
    """
    entries: Dict[str, str] = {}
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        parts = line.split()
        if len(parts) < 2:
            continue
        entries[parts[-1]] = " ".join(parts[:-1])
    return entries


def serialize_crontab(entries: Mapping[str, str]) -> str:
    lines = [f"{schedule} {name}" for name, schedule in entries.items()]
    return "\n".join(lines) + ("\n" if lines else "")


class CrontabStore:
    """
    Persistent job name -> schedule map backed by a crontab file.

    Every mutation rewrites the whole file. External edits to the file replace
    the in-memory map and notify subscribers with (new, old) snapshots.

    Example:
        store = await CrontabStore.open(Path("kronos.crontab"))
        store.on_change(lambda new, old: print(new))
        store.set("backup", "0 3 * * *")
        await store.close()
    """

    def __init__(self, path: Path, debounce_ms: int = 300):
        self.path = Path(path).absolute()
        self._entries: Dict[str, str] = {}
        self._subscribers: List[ChangeCallback] = []
        self._watcher = PathWatcher(
            self.path.parent,
            self._handle_changes,
            watch_filter=self._is_crontab_change,
            recursive=False,
            debounce_ms=debounce_ms,
        )

    @classmethod
    async def open(cls, path: Path, debounce_ms: int = 300) -> "CrontabStore":
        """
        Open (creating if needed) a crontab file and start watching it.

        Fails softly: creation, read and watcher failures are logged and leave
        the store empty (and unwatched when the watcher could not start).
        """
        store = cls(path, debounce_ms=debounce_ms)
        await store._ensure_file()
        store._entries = await store._load() or {}
        await store._start_watching()
        logger.debug(f"Opened crontab {store.path} with {len(store._entries)} entries")
        return store

    # Read operations

    def get(self, name: str) -> Optional[str]:
        return self._entries.get(name)

    def snapshot(self) -> Snapshot:
        """Return an immutable copy of the current entries."""
        return MappingProxyType(dict(self._entries))

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(dict(self._entries))

    # Write operations, each one persists the whole file

    def set(self, name: str, schedule: str) -> None:
        self._entries[name] = schedule
        self._write()

    def delete(self, name: str) -> bool:
        if name not in self._entries:
            return False
        del self._entries[name]
        self._write()
        return True

    def clear(self) -> None:
        if not self._entries:
            return
        self._entries.clear()
        self._write()

    # Subscriptions

    def on_change(self, callback: ChangeCallback) -> None:
        self._subscribers.append(callback)

    def off_change(self, callback: ChangeCallback) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    async def close(self) -> None:
        await self._watcher.stop()
        self._subscribers.clear()

    # Internal helpers

    @log_exception("Preparing crontab file {self.path}")
    async def _ensure_file(self) -> None:
        await aioos.makedirs(self.path.parent, exist_ok=True)
        if not await aioos.path.exists(self.path):
            async with aiofiles.open(self.path, "w", encoding="utf-8") as f:
                await f.write("")

    @log_exception("Watching crontab file {self.path}")
    async def _start_watching(self) -> None:
        await self._watcher.start()

    @log_exception("Loading crontab file {self.path}")
    async def _load(self) -> Dict[str, str]:
        return parse_crontab(await self._read_file())

    async def _read_file(self) -> str:
        async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
            return await f.read()

    def _write(self) -> None:
        self.path.write_text(serialize_crontab(self._entries), encoding="utf-8")

    def _is_crontab_change(self, change: Change, path: str) -> bool:
        return Path(path).resolve() == self.path.resolve()

    async def _handle_changes(self, changes: ChangeSet) -> None:
        await self._reload_from_file()

    @log_exception("Reloading crontab file {self.path}")
    async def _reload_from_file(self) -> None:
        before = dict(self._entries)
        entries = parse_crontab(await self._read_file())

        if self._entries != before:
            # written locally while reading; that write's own event re-reads the file
            return
        if entries == self._entries:
            return

        old = self.snapshot()
        self._entries = entries
        new = self.snapshot()
        logger.info(f"Crontab {self.path} changed on disk ({len(entries)} entries)")
        await self._notify(new, old)

    async def _notify(self, new: Snapshot, old: Snapshot) -> None:
        for callback in list(self._subscribers):
            try:
                result = callback(new, old)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    f"Crontab change subscriber {callback!r} failed: {e}",
                    exc_info=True,
                )
