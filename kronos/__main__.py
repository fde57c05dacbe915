import asyncio

import uvicorn

from .config import settings
from .control import JobController
from .logger import configure_logging, logger
from .main import create_app
from .registry import JobRegistry


async def serve() -> None:
    registry = await JobRegistry.create(
        crontab_path=settings.crontab_path,
        jobs_dir=settings.jobs_dir,
        name=settings.name,
        logger=logger,
        debounce_ms=settings.watch_debounce_ms,
    )
    try:
        if settings.http.enabled:
            app = create_app(JobController(registry), title=settings.name)
            server = uvicorn.Server(
                uvicorn.Config(
                    app,
                    host=settings.http.host,
                    port=settings.http.port,
                    log_level=settings.log_level.lower(),
                )
            )
            await server.serve()
        else:
            await asyncio.Event().wait()
    finally:
        await registry.close()


def main() -> None:
    configure_logging(settings.log_level, settings.logs_dir)
    try:
        asyncio.run(serve())
    except KeyboardInterrupt:
        logger.info(f"{settings.name} stopped")


if __name__ == "__main__":
    main()
