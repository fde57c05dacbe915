import functools
import gzip
import inspect
import logging
import logging.handlers
import os
import shutil
import sys
from pathlib import Path
from typing import Callable, Optional, ParamSpec, TypeVar

logger = logging.getLogger("kronos")
logger.setLevel(logging.INFO)
formatter = logging.Formatter(
    "%(asctime)s %(levelname)s [%(module)s:%(funcName)s:%(lineno)d] %(message)s"
)

log_stream_handler = logging.StreamHandler(sys.stdout)
log_stream_handler.setFormatter(formatter)
logger.addHandler(log_stream_handler)

# Sink with the same shape as a real logger that drops everything.
NULL_LOGGER = logging.getLogger("kronos.null")
NULL_LOGGER.addHandler(logging.NullHandler())
NULL_LOGGER.propagate = False


def rotator(source, dest):
    with open(source, "rb") as f_in:
        with gzip.open(dest + ".gz", "wb") as f_out:
            shutil.copyfileobj(f_in, f_out)
    os.remove(source)


def configure_logging(level: str = "INFO", logs_dir: Optional[Path] = None) -> None:
    """Apply the configured level and, if requested, attach the rotating file log."""
    logger.setLevel(level.upper())
    if logs_dir is None:
        return

    logs_dir = Path(logs_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_file = (logs_dir / "kronos.log").resolve()
    for handler in logger.handlers:
        if getattr(handler, "baseFilename", None) == str(log_file):
            return

    log_file_handler = logging.handlers.TimedRotatingFileHandler(
        log_file, when="midnight"
    )
    log_file_handler.setFormatter(formatter)
    log_file_handler.rotator = rotator
    logger.addHandler(log_file_handler)


def job_logger(sink: Optional[logging.Logger], job_name: str) -> logging.Logger:
    """Derive the logger bound to a single job from a sink (or the null sink)."""
    return (sink or NULL_LOGGER).getChild(job_name)


P = ParamSpec("P")
R = TypeVar("R")


def log_exception(
    prefix: str = "",
    default_return: R | None = None,
) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """
    Decorator that logs and swallows any exception raised by the wrapped callable.

    Works for sync and async functions. The prefix may reference parameters of
    the wrapped function by name, e.g. ``"Reloading {self}"``.

    Args:
        prefix: Optional prefix to prepend to the error message
        default_return: Value returned when an exception was swallowed

    Usage:
        @log_exception("Reading crontab {path}", default_return={})
        def read(path): ...
    """

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        sig = inspect.signature(func)

        def describe(args: tuple, kwargs: dict) -> str:
            try:
                bound = sig.bind(*args, **kwargs)
                bound.apply_defaults()
            except TypeError:
                return prefix
            if prefix and "{" in prefix:
                try:
                    return prefix.format_map(bound.arguments)
                except (KeyError, ValueError, AttributeError):
                    return prefix
            return prefix

        def report(exc: Exception, args: tuple, kwargs: dict) -> None:
            label = describe(args, kwargs)
            message = f"{type(exc).__name__}: {exc}"
            logger.error(
                f"{label}: {message}" if label else message,
                exc_info=True,
                stacklevel=3,
            )

        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    report(e, args, kwargs)
                    return default_return  # type: ignore[return-value]

            return async_wrapper  # type: ignore[return-value]

        @functools.wraps(func)
        def sync_wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                report(e, args, kwargs)
                return default_return  # type: ignore[return-value]

        return sync_wrapper

    return decorator
