"""Job module discovery and directory watching."""

import importlib.util
import inspect
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from types import ModuleType
from typing import Any, Awaitable, Callable, List, Optional, Union

from watchfiles import PythonFilter

from .logger import NULL_LOGGER
from .types import JobCallback
from .watch import ChangeSet, PathWatcher

# Parent name under which job modules are registered in sys.modules.
JOBS_PACKAGE = "kronos_jobs"

DirectoryChangeCallback = Callable[[], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class ModuleRecord:
    """A job module loaded during one directory scan."""

    name: str
    path: str  # relative to the jobs directory, e.g. "/hello_world.py"
    callback: JobCallback
    config: Any = None  # dict, sync or async provider, or None


class DirectoryLoader:
    """
    Loads job modules from a directory and reports changes to it.

    Example:
        loader = await DirectoryLoader.create(Path("jobs"), logger)
        loader.on_change(reload_everything)
        records = loader.modules()
    """

    def __init__(
        self,
        path: Path,
        log: Optional[logging.Logger] = None,
        debounce_ms: int = 300,
    ):
        self.path = Path(path).absolute()
        self._log = log or NULL_LOGGER
        self._subscribers: List[DirectoryChangeCallback] = []
        self._watcher = PathWatcher(
            self.path,
            self._handle_changes,
            watch_filter=PythonFilter(),
            recursive=True,
            debounce_ms=debounce_ms,
        )

    @classmethod
    async def create(
        cls,
        path: Path,
        log: Optional[logging.Logger] = None,
        debounce_ms: int = 300,
    ) -> "DirectoryLoader":
        """
        Create a loader; returns once the directory watcher is ready.

        Raises:
            FileNotFoundError: If the directory does not exist
        """
        loader = cls(path, log=log, debounce_ms=debounce_ms)
        if not loader.path.is_dir():
            raise FileNotFoundError(f"Jobs directory {loader.path} does not exist")
        await loader._watcher.start()
        return loader

    def modules(self) -> List[ModuleRecord]:
        """
        Import every job module under the directory, from scratch.

        Modules that fail to import, or that do not define a callable
        ``default``, are logged and left out.

        Returns:
            Records ordered by relative path
        """
        records: List[ModuleRecord] = []
        for file_path in self._module_files():
            relative = file_path.relative_to(self.path)
            try:
                module = self._import(file_path)
                callback = getattr(module, "default", None)
                if not callable(callback):
                    raise AttributeError("module does not define a callable 'default'")
            except Exception as e:
                self._log.error(
                    f"Error while importing job module {relative}: "
                    f"{type(e).__name__}: {e}"
                )
                continue

            records.append(
                ModuleRecord(
                    name=file_path.stem,
                    path=f"/{relative.as_posix()}",
                    callback=callback,
                    config=getattr(module, "config", None),
                )
            )
        return records

    def on_change(self, callback: DirectoryChangeCallback) -> None:
        self._subscribers.append(callback)

    def off_change(self, callback: DirectoryChangeCallback) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    async def close(self) -> None:
        await self._watcher.stop()
        self._subscribers.clear()

    def _module_files(self) -> List[Path]:
        if not self.path.is_dir():
            self._log.error(f"Jobs directory {self.path} does not exist")
            return []

        files = []
        for file_path in self.path.rglob("*.py"):
            relative = file_path.relative_to(self.path)
            if any(part.startswith((".", "_")) for part in relative.parts):
                continue
            files.append(file_path)
        return sorted(files)

    def _import(self, file_path: Path) -> ModuleType:
        relative = file_path.relative_to(self.path).with_suffix("")
        module_name = ".".join((JOBS_PACKAGE, *relative.parts))

        spec = importlib.util.spec_from_file_location(module_name, file_path)
        if spec is None or spec.loader is None:
            raise ImportError(f"cannot load {file_path}")

        # Always compiled from source, never from __pycache__
        code = compile(file_path.read_bytes(), str(file_path), "exec")
        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            exec(code, module.__dict__)
        except BaseException:
            sys.modules.pop(module_name, None)
            raise
        return module

    async def _handle_changes(self, changes: ChangeSet) -> None:
        self._log.debug(f"Jobs directory {self.path} changed ({len(changes)} changes)")
        for callback in list(self._subscribers):
            try:
                result = callback()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self._log.error(
                    f"Directory change subscriber {callback!r} failed: {e}",
                    exc_info=True,
                )
