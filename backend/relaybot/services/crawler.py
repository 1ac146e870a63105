"""Crawl service: scrape -> structured assistant turn -> dedup -> persist.

Used both by the on-demand ``POST /api/crawl`` endpoint and by the background
scheduler. In-flight crawls are tracked per ``{assistant}-{url}`` so the same
target is never crawled twice at once.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from relaybot.core.cache import CrawlStatusRegistry
from relaybot.core.config import settings
from relaybot.core.database import engine as default_engine
from relaybot.core.errors import ReplyError
from relaybot.models.crawl import CrawlRecord, CrawlSite
from relaybot.services.chat import ChatService
from relaybot.services.conversations import ReplyMode
from relaybot.services.normalizer import parse_structured
from relaybot.services.scraper import PageFetcher

logger = logging.getLogger(__name__)

SITE_FIELDS = ("name", "url", "xpath", "assistant_name", "interval_minutes", "is_active", "last_crawled")


@dataclass
class CrawlResult:
    site_key: str
    status: str  # not_due | in_progress | no_content | no_new_data | previous_data | crawled | failed
    new_posts: int = 0

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"site_key": self.site_key, "status": self.status}
        if self.status == "crawled":
            data["new_posts"] = self.new_posts
        return data


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _post_key(post: Any) -> str:
    if isinstance(post, dict) and post.get("id") is not None:
        return str(post["id"])
    return json.dumps(post, sort_keys=True, ensure_ascii=False)


def is_due(site: CrawlSite, now: datetime) -> bool:
    if site.last_crawled is None:
        return True
    return now - _as_utc(site.last_crawled) >= timedelta(minutes=site.interval_minutes)


class CrawlService:
    def __init__(
        self,
        chat: ChatService,
        fetcher: PageFetcher | None = None,
        status: CrawlStatusRegistry | None = None,
        engine: Engine | None = None,
    ):
        self.chat = chat
        self.fetcher = fetcher or PageFetcher()
        self.status = status if status is not None else CrawlStatusRegistry()
        self.engine = engine or default_engine

    async def _structure(self, content: str, assistant_name: str) -> Any:
        result = await self.chat.generate_reply(
            settings.crawl_user_id,
            settings.crawl_username,
            f" {content} ",
            assistant_name=assistant_name,
            reply_mode=ReplyMode.STRUCTURED,
        )
        return parse_structured(result.reply)

    # --- On-demand crawl ---

    async def crawl(self, assistant_name: str, url: str, xpath: str) -> AsyncIterator[dict]:
        """Yield progress events: crawlingStarted, crawlingCompleted, then gptResponse or error."""
        key = self.status.key_for(assistant_name, url)
        if not self.status.try_begin(key):
            logger.info(f"Crawl already in progress for {key}")
            yield {"status": "error", "message": "A crawl is already in progress for this site."}
            return

        try:
            yield {"status": "crawlingStarted", "message": "Crawling started."}
            content = await self.fetcher.fetch(url, xpath)
            if not content:
                yield {"status": "error", "message": "Failed to fetch content."}
                return
            yield {"status": "crawlingCompleted", "message": "Crawling completed."}

            try:
                data = await self._structure(content, assistant_name)
            except ReplyError as e:
                logger.error(f"Structuring content for {key} failed ({e.kind.value}): {e.message}")
                yield {"status": "error", "message": "Failed to process the crawled content."}
                return

            site = await asyncio.to_thread(self._find_site, assistant_name, url)
            if site:
                payload = data if isinstance(data, dict) else {"data": data}
                await asyncio.to_thread(self._save_record, site.id, payload, datetime.now(timezone.utc))
                logger.info(f"Saved crawl record for site {site.id}")

            yield {"status": "gptResponse", "data": data}
        finally:
            self.status.finish(key)
            logger.info(f"Crawl finished for {key}")

    # --- Scheduled crawl ---

    async def run_scheduled(self, now: datetime | None = None) -> list[CrawlResult]:
        now = now or datetime.now(timezone.utc)
        sites = await asyncio.to_thread(self.list_sites, True)
        results = []
        for site in sites:
            results.append(await self._crawl_scheduled_site(site, now))
        return results

    async def _crawl_scheduled_site(self, site: CrawlSite, now: datetime) -> CrawlResult:
        key = self.status.key_for(site.assistant_name, site.url)
        if not is_due(site, now):
            logger.debug(f"Site {site.id} not due yet (last crawled {site.last_crawled})")
            return CrawlResult(key, "not_due")
        if not self.status.try_begin(key):
            return CrawlResult(key, "in_progress")

        try:
            content = await self.fetcher.fetch(site.url, site.xpath)
            if not content:
                return CrawlResult(key, "no_content")

            data = await self._structure(content, site.assistant_name)
            posts = data.get("posts", []) if isinstance(data, dict) else []
            records = await asyncio.to_thread(self.list_records, site.id)
            seen = {_post_key(p) for r in records for p in (r.payload or {}).get("posts", [])}
            new_posts = [p for p in posts if _post_key(p) not in seen]

            if not new_posts:
                # last_crawled stays put so the next tick tries again
                return CrawlResult(key, "previous_data" if records else "no_new_data")

            await asyncio.to_thread(self._save_record, site.id, {"posts": new_posts}, now)
            logger.info(f"Site {site.id}: stored {len(new_posts)} new posts")
            return CrawlResult(key, "crawled", new_posts=len(new_posts))
        except Exception as e:
            logger.error(f"Scheduled crawl of site {site.id} failed: {e}")
            return CrawlResult(key, "failed")
        finally:
            self.status.finish(key)

    # --- Store helpers ---

    def _find_site(self, assistant_name: str, url: str) -> CrawlSite | None:
        with Session(self.engine) as session:
            return session.exec(
                select(CrawlSite)
                .where(CrawlSite.assistant_name == assistant_name)
                .where(CrawlSite.url == url)
            ).first()

    def _save_record(self, site_id: int, payload: dict, crawled_at: datetime) -> None:
        with Session(self.engine) as session:
            session.add(CrawlRecord(crawl_site_id=site_id, payload=payload, created_at=crawled_at))
            site = session.get(CrawlSite, site_id)
            if site:
                site.last_crawled = crawled_at
                session.add(site)
            session.commit()

    def list_sites(self, active_only: bool = False) -> list[CrawlSite]:
        with Session(self.engine) as session:
            query = select(CrawlSite).order_by(CrawlSite.id)  # type: ignore
            if active_only:
                query = query.where(CrawlSite.is_active == True)  # noqa: E712
            return list(session.exec(query).all())

    def get_site(self, site_id: int) -> CrawlSite | None:
        with Session(self.engine) as session:
            return session.get(CrawlSite, site_id)

    def create_site(self, **fields: Any) -> CrawlSite:
        with Session(self.engine) as session:
            site = CrawlSite(**fields)
            session.add(site)
            session.commit()
            session.refresh(site)
            return site

    def update_site(self, site_id: int, **fields: Any) -> CrawlSite | None:
        with Session(self.engine) as session:
            site = session.get(CrawlSite, site_id)
            if not site:
                return None
            for name, value in fields.items():
                if name in SITE_FIELDS and value is not None:
                    setattr(site, name, value)
            session.add(site)
            session.commit()
            session.refresh(site)
            return site

    def delete_site(self, site_id: int) -> bool:
        with Session(self.engine) as session:
            site = session.get(CrawlSite, site_id)
            if not site:
                return False
            records = session.exec(
                select(CrawlRecord).where(CrawlRecord.crawl_site_id == site_id)
            ).all()
            for record in records:
                session.delete(record)
            session.delete(site)
            session.commit()
            return True

    def list_records(self, site_id: int | None = None) -> list[CrawlRecord]:
        with Session(self.engine) as session:
            query = select(CrawlRecord).order_by(CrawlRecord.created_at.desc())  # type: ignore
            if site_id is not None:
                query = query.where(CrawlRecord.crawl_site_id == site_id)
            return list(session.exec(query).all())
