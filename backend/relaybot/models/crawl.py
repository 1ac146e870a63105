"""Crawl targets and the structured records extracted from them."""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


class CrawlSite(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    url: str
    xpath: str
    assistant_name: str
    interval_minutes: int = Field(default=60)
    is_active: bool = Field(default=True)
    last_crawled: Optional[datetime] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class CrawlRecord(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    crawl_site_id: int = Field(foreign_key="crawlsite.id", index=True)
    payload: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
