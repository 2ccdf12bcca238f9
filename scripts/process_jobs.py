"""
Background job worker
---------------------
Run from cron for one pass, or with --loop as a long-running worker.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

BACKEND_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(BACKEND_ROOT / ".env")

sys.path.insert(0, str(BACKEND_ROOT))

from app.core.config import settings  # noqa: E402
from app.db.init_db import init_db  # noqa: E402
from app.db.session import SessionLocal  # noqa: E402
from app.services.container import build_services  # noqa: E402

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


async def run_once(services, batch_size: int, schedule_stale: bool, cleanup: bool) -> dict:
    scheduler = services.scheduler
    report: dict = {}
    if schedule_stale:
        scheduled, total = await asyncio.to_thread(scheduler.schedule_stale_refreshes, batch_size)
        report["stale_refresh"] = {"scheduled": scheduled, "total": total}
    if cleanup:
        job = await asyncio.to_thread(scheduler.schedule_cleanup)
        report["cleanup_job"] = job.id if job else None
    summary = await scheduler.process_pending(batch_size)
    report["processed"] = summary.model_dump()
    return report


async def run_worker(args: argparse.Namespace) -> None:
    init_db()
    services = build_services(settings, SessionLocal)
    while True:
        report = await run_once(services, args.batch_size, args.schedule_stale, args.cleanup)
        if args.json_output:
            print(json.dumps(report, ensure_ascii=False))
        else:
            logger.info("Job pass: %s", report)
        if not args.loop:
            break
        await asyncio.sleep(args.interval)


def run_cli() -> None:
    parser = argparse.ArgumentParser(description="Process background jobs")
    parser.add_argument("--batch-size", type=int, default=settings.job_batch_size, help="Jobs claimed per pass")
    parser.add_argument("--schedule-stale", action="store_true", help="Queue refreshes for stale cache entries first")
    parser.add_argument("--cleanup", action="store_true", help="Queue a cleanup job")
    parser.add_argument("--loop", action="store_true", help="Keep polling instead of exiting after one pass")
    parser.add_argument("--interval", type=float, default=60.0, help="Seconds between passes with --loop")
    parser.add_argument("--json-output", action="store_true", help="Print each pass report as JSON")
    args = parser.parse_args()

    try:
        asyncio.run(run_worker(args))
    except KeyboardInterrupt:
        logger.info("Worker stopped")


if __name__ == "__main__":
    run_cli()
