"""Shared helpers for tests that wait on file watchers."""

import asyncio
from typing import Callable

# Watchers in tests use a short debounce; detection still goes through a thread.
WATCH_DEBOUNCE_MS = 50
WATCH_TIMEOUT = 5.0


async def wait_until(predicate: Callable[[], bool], timeout: float = WATCH_TIMEOUT) -> None:
    """Poll ``predicate`` until it is true, failing the test after ``timeout``."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError(f"condition not met within {timeout}s")
        await asyncio.sleep(0.02)


def write_module(path, body: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(body, encoding="utf-8")
