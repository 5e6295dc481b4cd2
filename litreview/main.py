# litreview/main.py
"""Worker process: `python -m litreview.main`."""
import asyncio
import logging
import signal

from litreview.database import engine, init_db
from litreview.services.worker import start_worker, stop_worker
from litreview.settings.config import settings

logger = logging.getLogger(__name__)


async def run() -> None:
    from litreview import models  # noqa: F401  Required for SQLAlchemy model detection
    await init_db()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # not available on Windows event loops
            pass

    start_worker()
    try:
        await stop.wait()
    finally:
        stop_worker()
        await engine.dispose()
        logger.info("Worker shut down")


def main() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(run())


if __name__ == "__main__":
    main()
