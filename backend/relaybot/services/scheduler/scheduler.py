"""Background scheduler that crawls due sites on a fixed tick."""

import asyncio
import logging
from datetime import datetime, timezone

from relaybot.services.crawler import CrawlResult, CrawlService

logger = logging.getLogger(__name__)


async def run_tick(crawl_service: CrawlService, now: datetime | None = None) -> list[CrawlResult]:
    """Run one scheduler tick and log a summary of what happened."""
    now = now or datetime.now(timezone.utc)
    results = await crawl_service.run_scheduled(now)

    crawled = [r for r in results if r.status == "crawled"]
    failed = [r for r in results if r.status == "failed"]
    if crawled or failed:
        logger.info(
            f"Scheduler tick: {len(results)} sites, {len(crawled)} crawled, {len(failed)} failed"
        )
    for result in failed:
        logger.warning(f"Scheduled crawl failed for {result.site_key}")
    return results


async def scheduler_loop(crawl_service: CrawlService, tick_seconds: int = 60) -> None:
    """Main scheduler loop. Checks every tick for sites to crawl."""
    logger.info("Scheduler started")

    while True:
        try:
            await run_tick(crawl_service)
        except Exception as e:
            logger.error(f"Scheduler error: {e}")

        await asyncio.sleep(tick_seconds)
