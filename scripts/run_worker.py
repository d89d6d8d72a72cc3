#!/usr/bin/env python3
"""
Queue Worker Startup Script
Runs the job queue without the HTTP API: resumes unfinished jobs and keeps
executing until interrupted. Do not run it next to the API process against
the same database; each process owns its own queue.

Usage:
    python scripts/run_worker.py                  # Settings from environment
    python scripts/run_worker.py --concurrency 4  # Override concurrency
    python scripts/run_worker.py --check          # Check Redis/database and exit
"""

import argparse
import asyncio
import logging
import os
import signal
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import text

from app.core.config import settings
from app.core.database import SessionLocal, init_db
from app.core.logging import configure_logging
from app.core.redis import RedisManager
from app.workers.runtime import build_runtime

logger = logging.getLogger("worker")


def check_services() -> bool:
    """Report database and Redis reachability."""
    ok = True
    try:
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()
        logger.info("Database: ok")
    except Exception as e:
        logger.error(f"Database: {e}")
        ok = False

    if settings.HANDLE_CACHE_BACKEND.lower() == "redis":
        health = RedisManager(settings.REDIS_URL).health_check()
        logger.info(f"Redis Status: {health}")
        ok = ok and bool(health.get("connected"))
    return ok


async def serve(concurrency: int = None) -> None:
    config = settings
    if concurrency:
        config = settings.model_copy(update={"JOB_QUEUE_CONCURRENCY": concurrency})

    init_db()
    runtime = build_runtime(config)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows: fall back to KeyboardInterrupt
            pass

    resumed = await runtime.queue.resume_on_boot()
    logger.info(f"Worker started (concurrency={runtime.queue.concurrency}, resumed={len(resumed)})")
    try:
        await stop.wait()
    finally:
        logger.info("Shutting down worker...")
        await runtime.close()


def main():
    parser = argparse.ArgumentParser(description="Run the image job queue worker")
    parser.add_argument(
        "--concurrency", "-c",
        type=int,
        default=None,
        help="Maximum simultaneous executions (default: JOB_QUEUE_CONCURRENCY)"
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level (default: LOG_LEVEL)"
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Check database and Redis connections and exit"
    )

    args = parser.parse_args()
    configure_logging(args.log_level)

    if args.check:
        sys.exit(0 if check_services() else 1)

    try:
        asyncio.run(serve(args.concurrency))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
