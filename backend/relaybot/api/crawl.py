"""REST API for crawling: on-demand crawls, crawl targets and their records."""

import json
import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from relaybot.models.crawl import CrawlRecord, CrawlSite
from relaybot.services.container import ServiceContainer, get_services

router = APIRouter()
logger = logging.getLogger(__name__)


class CrawlRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    assistant_name: str = Field(alias="assistantName")
    url: str
    xpath: str


class CrawlSiteCreate(BaseModel):
    name: str
    url: str
    xpath: str
    assistant_name: str
    interval_minutes: int = 60
    is_active: bool = True


class CrawlSiteUpdate(BaseModel):
    name: str | None = None
    url: str | None = None
    xpath: str | None = None
    assistant_name: str | None = None
    interval_minutes: int | None = None
    is_active: bool | None = None
    last_crawled: datetime | None = None


def _site_to_dict(site: CrawlSite) -> dict:
    return {
        "id": site.id,
        "name": site.name,
        "url": site.url,
        "xpath": site.xpath,
        "assistant_name": site.assistant_name,
        "interval_minutes": site.interval_minutes,
        "is_active": site.is_active,
        "last_crawled": site.last_crawled.isoformat() if site.last_crawled else None,
        "created_at": site.created_at.isoformat(),
    }


def _record_to_dict(record: CrawlRecord) -> dict:
    return {
        "id": record.id,
        "crawl_site_id": record.crawl_site_id,
        "payload": record.payload,
        "created_at": record.created_at.isoformat(),
    }


# --- On-demand crawl ---


@router.post("/crawl")
async def crawl(
    body: CrawlRequest, request: Request, services: ServiceContainer = Depends(get_services)
):
    crawler = services.crawler
    events = crawler.crawl(body.assistant_name, body.url, body.xpath)

    if "text/event-stream" in request.headers.get("accept", ""):
        async def event_stream():
            async for event in events:
                yield f"data: {json.dumps(event, ensure_ascii=False)}\n\n"

        return StreamingResponse(
            event_stream(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    if crawler.status.is_crawling(crawler.status.key_for(body.assistant_name, body.url)):
        raise HTTPException(status_code=409, detail="A crawl is already in progress for this site.")

    final = None
    async for event in events:
        final = event
    if final is None or final["status"] == "error":
        detail = final["message"] if final else "Crawl produced no result"
        raise HTTPException(status_code=502, detail=detail)
    return final


@router.get("/crawl/status")
async def crawl_status(services: ServiceContainer = Depends(get_services)):
    return services.crawler.status.snapshot()


@router.post("/schedule-crawling")
async def schedule_crawling(services: ServiceContainer = Depends(get_services)):
    """Run one scheduler pass now instead of waiting for the next tick."""
    results = await services.crawler.run_scheduled()
    return {"results": [r.to_dict() for r in results]}


# --- Crawl targets ---


@router.get("/crawling-sites")
async def list_sites(services: ServiceContainer = Depends(get_services)):
    return [_site_to_dict(s) for s in services.crawler.list_sites()]


@router.post("/crawling-sites", status_code=201)
async def create_site(body: CrawlSiteCreate, services: ServiceContainer = Depends(get_services)):
    site = services.crawler.create_site(**body.model_dump())
    logger.info(f"Created crawl site {site.id}: {site.name}")
    return _site_to_dict(site)


@router.put("/crawling-sites/{site_id}")
async def update_site(
    site_id: int, body: CrawlSiteUpdate, services: ServiceContainer = Depends(get_services)
):
    site = services.crawler.update_site(site_id, **body.model_dump())
    if not site:
        raise HTTPException(status_code=404, detail="Crawl site not found")
    return _site_to_dict(site)


@router.delete("/crawling-sites/{site_id}", status_code=204)
async def delete_site(site_id: int, services: ServiceContainer = Depends(get_services)):
    if not services.crawler.delete_site(site_id):
        raise HTTPException(status_code=404, detail="Crawl site not found")
    logger.info(f"Deleted crawl site {site_id}")


@router.get("/crawling-data")
async def list_records(site_id: int | None = None, services: ServiceContainer = Depends(get_services)):
    return [_record_to_dict(r) for r in services.crawler.list_records(site_id)]
