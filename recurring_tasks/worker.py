"""
Scheduled worker for the Recurring Task Service.

Runs the generation batch periodically, or once with --once for cron-style triggers.
"""

import argparse
import asyncio
import logging
from datetime import datetime
from typing import Optional

import pytz

from recurring_tasks.config import GenerationSettings, LOG_LEVEL, get_generation_settings
from recurring_tasks.exceptions import BatchError
from recurring_tasks.services.generation_driver import GenerationDriver, GenerationReport
from recurring_tasks.services.instance_store import InstanceStore

logger = logging.getLogger(__name__)


def run_once(store: InstanceStore, settings: Optional[GenerationSettings] = None,
             now: Optional[datetime] = None) -> Optional[GenerationReport]:
    """Run a single generation batch; returns None when the batch failed."""
    driver = GenerationDriver.from_settings(store, settings)
    try:
        report = driver.generate(now or datetime.now(pytz.utc))
    except BatchError as e:
        logger.error(f"Generation batch failed: {e.message}")
        return None

    logger.info(
        f"Generation batch finished: {report.templates_processed} templates, "
        f"{report.total_instances_created} instances created, {len(report.errors)} errors"
    )
    return report


async def run_forever(store: InstanceStore, settings: Optional[GenerationSettings] = None):
    """Run generation batches every settings.interval_seconds."""
    settings = settings or get_generation_settings()
    logger.info(f"Starting recurring task worker (every {settings.interval_seconds}s)...")

    while True:
        try:
            await asyncio.to_thread(run_once, store, settings)
        except Exception as e:
            logger.error(f"Error in recurring task worker: {e}")
        await asyncio.sleep(settings.interval_seconds)


def main(argv=None):
    """Main entry point for the recurring task worker."""
    parser = argparse.ArgumentParser(description="Generate recurring task instances")
    parser.add_argument("--once", action="store_true", help="run a single batch and exit")
    args = parser.parse_args(argv)

    logging.basicConfig(level=LOG_LEVEL)

    from recurring_tasks.db.config import engine
    from recurring_tasks.db.init import init_db
    from recurring_tasks.services.instance_store import SQLModelInstanceStore

    init_db(engine)
    store = SQLModelInstanceStore(engine)

    if args.once:
        report = run_once(store)
        return 0 if report is not None else 1

    asyncio.run(run_forever(store))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
