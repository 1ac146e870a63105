"""Tests for on-demand and scheduled crawls."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from relaybot.services.crawler import CrawlResult, is_due
from relaybot.models.crawl import CrawlSite

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
URL = "https://example.com/board"


def _naive(value):
    return value.replace(tzinfo=None) if value else None


def _posts(*ids):
    return json.dumps({"posts": [{"id": i, "title": f"Post {i}"} for i in ids]})


@pytest.fixture
def crawler(services):
    services.chat.persistence_policy = "raise"
    return services.crawler


@pytest.fixture
def site(crawler):
    return crawler.create_site(
        name="Board", url=URL, xpath="//main", assistant_name="default", interval_minutes=60
    )


async def _collect(events):
    return [event async for event in events]


def test_is_due():
    site = CrawlSite(name="s", url=URL, xpath="//a", assistant_name="default", interval_minutes=30)
    assert is_due(site, NOW)

    site.last_crawled = NOW - timedelta(minutes=29)
    assert not is_due(site, NOW)

    site.last_crawled = (NOW - timedelta(minutes=30)).replace(tzinfo=None)
    assert is_due(site, NOW)


def test_result_to_dict():
    assert CrawlResult("k", "crawled", new_posts=2).to_dict() == {
        "site_key": "k", "status": "crawled", "new_posts": 2
    }
    assert CrawlResult("k", "not_due").to_dict() == {"site_key": "k", "status": "not_due"}


# --- On-demand crawl ---


@pytest.mark.asyncio
async def test_crawl_emits_progress_and_result(crawler, provider, fetcher, site):
    fetcher.fetch.return_value = "Post 1 Post 2"
    provider.reply_text = _posts(1, 2)

    events = await _collect(crawler.crawl("default", URL, "//main"))

    assert [e["status"] for e in events] == ["crawlingStarted", "crawlingCompleted", "gptResponse"]
    assert events[-1]["data"]["posts"][0]["id"] == 1
    fetcher.fetch.assert_awaited_once_with(URL, "//main")

    _, _, messages, _ = provider.calls_to("create_conversation_and_run")[0]
    assert messages[1].content == " Post 1 Post 2 "

    records = crawler.list_records(site.id)
    assert len(records) == 1
    assert records[0].payload == {"posts": [{"id": 1, "title": "Post 1"}, {"id": 2, "title": "Post 2"}]}
    assert crawler.get_site(site.id).last_crawled is not None
    assert not crawler.status.is_crawling(crawler.status.key_for("default", URL))


@pytest.mark.asyncio
async def test_crawl_without_site_saves_nothing(crawler, provider, fetcher):
    fetcher.fetch.return_value = "content"
    provider.reply_text = _posts(1)

    events = await _collect(crawler.crawl("default", "https://other.example", "//main"))

    assert events[-1]["status"] == "gptResponse"
    assert crawler.list_records() == []


@pytest.mark.asyncio
async def test_crawl_fetch_failure(crawler, fetcher):
    fetcher.fetch.return_value = None

    events = await _collect(crawler.crawl("default", URL, "//main"))

    assert [e["status"] for e in events] == ["crawlingStarted", "error"]
    assert not crawler.status.is_crawling(crawler.status.key_for("default", URL))


@pytest.mark.asyncio
async def test_crawl_unparseable_reply(crawler, provider, fetcher):
    fetcher.fetch.return_value = "content"
    provider.reply_text = "not json"

    events = await _collect(crawler.crawl("default", URL, "//main"))
    assert events[-1]["status"] == "error"


@pytest.mark.asyncio
async def test_crawl_rejects_concurrent_crawl(crawler, fetcher):
    key = crawler.status.key_for("default", URL)
    crawler.status.try_begin(key)

    events = await _collect(crawler.crawl("default", URL, "//main"))

    assert [e["status"] for e in events] == ["error"]
    fetcher.fetch.assert_not_awaited()
    assert crawler.status.is_crawling(key)


# --- Scheduled crawl ---


@pytest.mark.asyncio
async def test_scheduled_crawl_dedups_posts(crawler, provider, fetcher, site):
    fetcher.fetch.return_value = "board"
    provider.reply_text = _posts(1, 2)

    [result] = await crawler.run_scheduled(NOW)
    assert result.status == "crawled"
    assert result.new_posts == 2
    assert _naive(crawler.get_site(site.id).last_crawled) == _naive(NOW)

    # Same tick again: interval not elapsed
    [result] = await crawler.run_scheduled(NOW + timedelta(minutes=5))
    assert result.status == "not_due"

    # Due again but nothing new: record and last_crawled untouched
    later = NOW + timedelta(minutes=61)
    [result] = await crawler.run_scheduled(later)
    assert result.status == "previous_data"
    assert len(crawler.list_records(site.id)) == 1
    assert _naive(crawler.get_site(site.id).last_crawled) == _naive(NOW)

    # One new post among old ones
    provider.reply_text = _posts(1, 2, 3)
    [result] = await crawler.run_scheduled(later)
    assert result.status == "crawled"
    assert result.new_posts == 1
    newest = crawler.list_records(site.id)[0]
    assert newest.payload == {"posts": [{"id": 3, "title": "Post 3"}]}
    assert _naive(crawler.get_site(site.id).last_crawled) == _naive(later)


@pytest.mark.asyncio
async def test_scheduled_crawl_empty_first_result(crawler, provider, fetcher, site):
    fetcher.fetch.return_value = "board"
    provider.reply_text = json.dumps({"posts": []})

    [result] = await crawler.run_scheduled(NOW)

    assert result.status == "no_new_data"
    assert crawler.get_site(site.id).last_crawled is None


@pytest.mark.asyncio
async def test_scheduled_crawl_no_content(crawler, fetcher, site):
    fetcher.fetch.return_value = None
    [result] = await crawler.run_scheduled(NOW)
    assert result.status == "no_content"


@pytest.mark.asyncio
async def test_scheduled_crawl_skips_in_progress(crawler, fetcher, site):
    crawler.status.try_begin(crawler.status.key_for("default", URL))

    [result] = await crawler.run_scheduled(NOW)

    assert result.status == "in_progress"
    fetcher.fetch.assert_not_awaited()


@pytest.mark.asyncio
async def test_scheduled_crawl_failure_is_contained(crawler, provider, fetcher, site):
    fetcher.fetch.return_value = "board"
    provider.reply_text = "not json"

    [result] = await crawler.run_scheduled(NOW)

    assert result.status == "failed"
    assert not crawler.status.is_crawling(result.site_key)


@pytest.mark.asyncio
async def test_inactive_sites_are_skipped(crawler, site):
    crawler.update_site(site.id, is_active=False)
    assert await crawler.run_scheduled(NOW) == []


def test_site_crud(crawler, site):
    updated = crawler.update_site(site.id, interval_minutes=15, name=None)
    assert updated.interval_minutes == 15
    assert updated.name == "Board"
    assert [s.id for s in crawler.list_sites()] == [site.id]

    assert crawler.delete_site(site.id) is True
    assert crawler.get_site(site.id) is None
    assert crawler.delete_site(site.id) is False
    assert crawler.update_site(site.id, name="x") is None
