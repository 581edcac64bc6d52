"""
Sync worker: runs the cron scheduler until SIGINT/SIGTERM.

    python -m app.worker

Several workers may run side by side; the advisory locks make sure each lock
key executes in one process at a time.
"""

import asyncio
import logging
import signal

from dotenv import load_dotenv

load_dotenv()

from prometheus_client import start_http_server  # noqa: E402

from app.config import get_settings  # noqa: E402
from app.database import close_db, init_db  # noqa: E402
from app.scheduler import JobScheduler  # noqa: E402
from app.telemetry.sentry import init_sentry  # noqa: E402

logger = logging.getLogger("app.worker")


async def run_worker() -> None:
    settings = get_settings()

    if settings.METRICS_PORT:
        start_http_server(settings.METRICS_PORT)
        logger.info(f"[WORKER] Prometheus metrics on :{settings.METRICS_PORT}")

    await init_db()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop_event.set))

    job_scheduler = JobScheduler()
    try:
        started = await job_scheduler.start()
        if not started:
            logger.warning("[WORKER] Scheduler disabled; worker idle until stopped")
        await stop_event.wait()
        logger.info("[WORKER] Shutdown signal received")
    finally:
        job_scheduler.shutdown()
        await close_db()


def main() -> int:
    settings = get_settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    init_sentry()
    asyncio.run(run_worker())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
