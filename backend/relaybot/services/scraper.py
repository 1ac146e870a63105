"""Headless-browser page fetcher: text of the first node matching an XPath."""

import logging

from playwright.async_api import async_playwright

from relaybot.core.config import settings

logger = logging.getLogger(__name__)


class PageFetcher:
    """Best-effort fetcher. Returns None on any failure and never raises."""

    def __init__(self, user_agent: str | None = None, timeout_ms: int | None = None):
        self.user_agent = user_agent or settings.scrape_user_agent
        self.timeout_ms = timeout_ms or settings.scrape_timeout_ms

    async def fetch(self, url: str, xpath: str) -> str | None:
        try:
            async with async_playwright() as pw:
                browser = await pw.chromium.launch(
                    headless=True,
                    args=["--no-sandbox", "--disable-setuid-sandbox"],
                )
                try:
                    context = await browser.new_context(user_agent=self.user_agent)
                    page = await context.new_page()
                    await page.goto(url, wait_until="networkidle", timeout=self.timeout_ms)

                    node = page.locator(f"xpath={xpath}").first
                    if await node.count() == 0:
                        logger.info(f"No node matches {xpath} on {url}")
                        return None
                    return await node.text_content(timeout=self.timeout_ms)
                finally:
                    await browser.close()
        except Exception as e:
            logger.error(f"Error fetching {url}: {e}")
            return None
