"""Standalone reminder scanner: ``python -m app.worker``.

Safe to run alongside the API's in-process scanner or as several replicas;
jobs are claimed before dispatch so each reminder goes out once.
"""

import asyncio
import logging
import os

from app.core.clock import system_clock
from app.core.db import async_session_maker, engine
from app.services.notification_service import PushSender
from app.services.reminder_service import run_reminder_scanner

logging.basicConfig(
    level=logging.INFO if os.getenv("ENV") == "production" else logging.DEBUG,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("app.worker")


async def main() -> None:
    try:
        await run_reminder_scanner(async_session_maker, system_clock, PushSender(async_session_maker))
    finally:
        await engine.dispose()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Reminder worker stopped")
